"""
Offload service: move a record's files to the object store.

The orchestration here is independent of HTTP and of where records live.
It decides which variants to send, records remote metadata per variant,
and applies the local-deletion policy. The object store client, record
store and collaborator hooks are injected.

Rules that hold regardless of entry point (bulk sync, single upload,
ingest):
- Remote metadata is written only after the object store confirmed the
  upload
- Local files are deleted only after their own upload succeeded, and
  only when the policy says so
- The primary variant decides whether the record as a whole succeeded.
  A failed thumbnail is reported but does not fail the record
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Protocol

from ..media.errors import (
    LocalFileMissingError,
    NotConfiguredError,
    StorageError,
    is_fatal,
)
from ..media.models import (
    FULL_VARIANT,
    MediaRecord,
    OffloadConfig,
    RemoteMetadata,
    UploadMode,
    UploadResult,
    utcnow,
)
from ..media.store import MediaRecordStore


class ObjectStore(Protocol):
    """
    Protocol for the object store client.

    Using a protocol means tests can provide an in-memory fake and the
    offload logic never imports httpx.
    """

    def is_configured(self) -> bool:
        ...

    def upload(
        self,
        record_id: int,
        local_path: str,
        variant: str = FULL_VARIANT,
        uploaded_at: Optional[datetime] = None,
    ) -> UploadResult:
        ...

    def delete(self, key: str) -> None:
        ...

    def test_connection(self) -> None:
        ...


class OffloadCollaborator(Protocol):
    """
    Hooks for other components that react to offload events.

    A CDN purger or an image optimizer would implement this.
    """

    def on_upload_complete(self, record_id: int, variant: str, result: UploadResult) -> None:
        ...

    def on_record_deleted(self, record_id: int, keys: list[str]) -> None:
        ...


class NullCollaborator:
    """Default collaborator that ignores every event."""

    def on_upload_complete(self, record_id: int, variant: str, result: UploadResult) -> None:
        pass

    def on_record_deleted(self, record_id: int, keys: list[str]) -> None:
        pass


@dataclass
class VariantUploadReport:
    """
    Per-variant results of one upload pass over a record.

    skipped lists variants that already had remote metadata. failed maps
    variant names to the error that stopped them.
    """
    record_id: int
    uploaded: dict[str, UploadResult] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, StorageError] = field(default_factory=dict)
    deleted_local: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """The primary variant is remote, either now or from before."""
        if FULL_VARIANT in self.failed:
            return False
        return FULL_VARIANT in self.uploaded or FULL_VARIANT in self.skipped

    @property
    def partial_failure(self) -> bool:
        return self.success and bool(self.failed)

    @property
    def fatal_error(self) -> Optional[StorageError]:
        for error in self.failed.values():
            if is_fatal(error):
                return error
        return None

    @property
    def primary_error(self) -> Optional[StorageError]:
        return self.failed.get(FULL_VARIANT)


@dataclass
class DeleteReport:
    """Keys removed from the object store for a deleted record."""
    record_id: int
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, StorageError] = field(default_factory=dict)


class MediaOffloader:
    """
    Uploads record files and keeps their remote metadata current.

    remove_file is injectable so tests can observe local deletions
    without touching the filesystem policy.
    """

    def __init__(
        self,
        client: ObjectStore,
        store: MediaRecordStore,
        config: OffloadConfig,
        collaborator: Optional[OffloadCollaborator] = None,
        clock: Callable[[], datetime] = utcnow,
        remove_file: Callable[[str], None] = os.remove,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self._store = store
        self._config = config
        self._collaborator = collaborator or NullCollaborator()
        self._clock = clock
        self._remove_file = remove_file
        self._logger = logger or logging.getLogger(__name__)

    @property
    def config(self) -> OffloadConfig:
        return self._config

    def is_configured(self) -> bool:
        return self._client.is_configured()

    def require_configured(self) -> None:
        if not self.is_configured():
            raise NotConfiguredError("Object store credentials are not configured")

    def test_connection(self) -> None:
        self.require_configured()
        self._client.test_connection()

    # -------------------------------------------------------------------------
    # File selection
    # -------------------------------------------------------------------------

    def collect_files(self, record: MediaRecord) -> dict[str, str]:
        """
        Local files of a record that exist on disk, keyed by variant.

        The primary is always included so a missing primary surfaces as
        an upload error. Variant files that are gone are left out.
        """
        files = {FULL_VARIANT: record.local_path}
        if not record.is_image:
            return files

        for name in record.variants:
            if name == FULL_VARIANT:
                continue
            path = record.variant_path(name)
            if os.path.isfile(path):
                files[name] = path
            else:
                self._logger.warning(
                    "Variant file missing locally",
                    extra={"record_id": record.id, "variant": name, "path": path}
                )
        return files

    # -------------------------------------------------------------------------
    # Uploads
    # -------------------------------------------------------------------------

    def upload_variant(self, record: MediaRecord, variant: str, local_path: Optional[str] = None) -> UploadResult:
        """
        Upload one file of a record and persist its remote metadata.

        Raises StorageError subclasses unchanged.
        """
        path = local_path or record.variant_path(variant)
        result = self._client.upload(record.id, path, variant, record.created_at)

        self._store.save_remote_metadata(
            record.id,
            variant,
            RemoteMetadata(key=result.key, url=result.url, uploaded_at=self._clock()),
        )
        self._collaborator.on_upload_complete(record.id, variant, result)
        return result

    def upload_all_variants(
        self,
        record_id: int,
        files: dict[str, str],
        regenerate: bool = False,
    ) -> VariantUploadReport:
        """
        Upload the given files of a record.

        files maps variant names to local paths and must contain the
        primary. The upload mode policy is applied first: with FULL_ONLY
        only the primary is sent. Variants that already have remote
        metadata are skipped unless regenerate is set. A failed primary
        ends the pass before any variant is sent.

        Raises:
            NotConfiguredError: before anything is sent
            LookupError: the record does not exist
        """
        self.require_configured()

        record = self._store.get(record_id)
        if record is None:
            raise LookupError(f"Media record not found: {record_id}")

        report = VariantUploadReport(record_id=record_id)

        if FULL_VARIANT not in files:
            report.failed[FULL_VARIANT] = LocalFileMissingError(
                f"No primary file given for record {record_id}"
            )
            return report

        if self._config.upload_mode is UploadMode.FULL_ONLY:
            files = {FULL_VARIANT: files[FULL_VARIANT]}

        # primary first, a failed primary ends the pass
        ordered = [FULL_VARIANT] + [name for name in files if name != FULL_VARIANT]
        for variant in ordered:
            if not regenerate and variant in record.remote:
                report.skipped.append(variant)
                continue

            try:
                report.uploaded[variant] = self.upload_variant(record, variant, files[variant])
            except StorageError as e:
                self._logger.warning(
                    "Variant upload failed",
                    extra={"record_id": record_id, "variant": variant, "error": e.message}
                )
                report.failed[variant] = e
                if variant == FULL_VARIANT:
                    break

        if report.success and self._config.delete_local_after_upload and report.uploaded:
            self._delete_local_files(record_id, files, report)

        self._logger.info(
            "Upload pass complete",
            extra={
                "record_id": record_id,
                "uploaded": len(report.uploaded),
                "skipped": len(report.skipped),
                "failed": len(report.failed),
                "success": report.success,
            }
        )
        return report

    def upload_record(
        self,
        record_id: int,
        regenerate: bool = False,
        regenerated_variants: Optional[dict[str, str]] = None,
    ) -> VariantUploadReport:
        """
        Single-record upload: collect the record's files and send them.

        regenerated_variants is the output of an external metadata
        regeneration step (variant name to filename). When given, the
        record's variant list is replaced before files are collected.
        """
        record = self._store.get(record_id)
        if record is None:
            raise LookupError(f"Media record not found: {record_id}")

        if regenerated_variants is not None:
            self._store.update_variants(record_id, regenerated_variants)
            record = self._store.get(record_id)

        return self.upload_all_variants(record_id, self.collect_files(record), regenerate=regenerate)

    def _delete_local_files(
        self,
        record_id: int,
        files: dict[str, str],
        report: VariantUploadReport,
    ) -> None:
        """Remove local copies of the variants uploaded in this pass."""
        for variant in report.uploaded:
            path = files[variant]
            try:
                self._remove_file(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                self._logger.warning(
                    "Could not delete local file",
                    extra={"record_id": record_id, "path": path, "error": str(e)}
                )
                continue
            report.deleted_local.append(variant)

        if report.deleted_local:
            self._store.mark_local_deleted(record_id)
            self._logger.info(
                "Deleted local files after upload",
                extra={"record_id": record_id, "count": len(report.deleted_local)}
            )

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    def delete_record(self, record_id: int) -> DeleteReport:
        """
        Remove every remote copy of a record.

        Called when the host deletes the record. Each variant key is
        deleted independently, so one failure doesn't leave the others
        behind. Records without remote metadata are a no-op.
        """
        report = DeleteReport(record_id=record_id)
        record = self._store.get(record_id)
        if record is None or not record.remote:
            return report

        self.require_configured()

        for variant, metadata in record.remote.items():
            try:
                self._client.delete(metadata.key)
                report.deleted.append(metadata.key)
            except StorageError as e:
                self._logger.error(
                    "Failed to delete remote object",
                    extra={"record_id": record_id, "variant": variant, "key": metadata.key, "error": e.message}
                )
                report.failed[metadata.key] = e

        self._collaborator.on_record_deleted(record_id, report.deleted)
        self._logger.info(
            "Deleted remote objects for record",
            extra={"record_id": record_id, "deleted": len(report.deleted), "failed": len(report.failed)}
        )
        return report

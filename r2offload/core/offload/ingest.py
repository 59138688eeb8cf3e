"""
Offload on ingest.

When the host stores a new upload, the primary file is sent to the
object store inside the triggering request so the record is usable
right away. Image variants are slower to produce and not needed for the
response, so their uploads are queued and run after the response has
been sent.

The queue is an explicit value handed to the handler by the request
lifecycle. In the API it is drained by a FastAPI background task; any
other host drains it from its own end-of-request hook.
"""

import logging
import os
from typing import Any, Callable, Optional

from ..media.errors import StorageError
from ..media.models import FULL_VARIANT, MediaRecord, OffloadConfig, UploadMode, UploadResult
from ..media.store import MediaRecordStore
from .service import DeleteReport, MediaOffloader, VariantUploadReport


class DeferredTaskQueue:
    """
    Work to run once the triggering request has completed.

    drain() runs every queued task exactly once, in order. A failing task
    is logged and does not stop the ones after it: this phase is best
    effort and has no caller left to report to.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._tasks: list[tuple[Callable[..., Any], tuple, dict]] = []
        self._logger = logger or logging.getLogger(__name__)

    def enqueue(self, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._tasks.append((task, args, kwargs))

    def __len__(self) -> int:
        return len(self._tasks)

    def drain(self) -> int:
        """Run and clear all queued tasks. Returns how many ran."""
        tasks, self._tasks = self._tasks, []

        for task, args, kwargs in tasks:
            try:
                task(*args, **kwargs)
            except Exception:
                self._logger.exception(
                    "Deferred task failed",
                    extra={"task": getattr(task, "__name__", repr(task))}
                )

        return len(tasks)


class MediaIngestHandler:
    """
    Reacts to host media events: new upload, metadata update, deletion.
    """

    def __init__(
        self,
        offloader: MediaOffloader,
        store: MediaRecordStore,
        config: OffloadConfig,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._offloader = offloader
        self._store = store
        self._config = config
        self._logger = logger or logging.getLogger(__name__)

    def handle_new_upload(self, record_id: int, queue: DeferredTaskQueue) -> Optional[UploadResult]:
        """
        Upload the primary now and queue the variants.

        Returns the primary's upload result, or None when auto-offload is
        off, the store is not configured, or the upload failed. Failures
        here never propagate: the host's own upload must still succeed.

        A record whose primary is already remote is not sent again; its
        existing location is returned and only missing variants are queued.
        """
        if not self._config.auto_offload:
            return None

        if not self._offloader.is_configured():
            self._logger.info(
                "Object store not configured, skipping auto-offload",
                extra={"record_id": record_id}
            )
            return None

        record = self._store.get(record_id)
        if record is None:
            self._logger.warning("Ingested record not found", extra={"record_id": record_id})
            return None

        if record.is_synced:
            result = self._existing_primary(record)
            self._logger.info(
                "Primary already offloaded, not uploading again",
                extra={"record_id": record_id, "key": result.key}
            )
        else:
            try:
                result = self._offloader.upload_variant(record, FULL_VARIANT)
            except StorageError as e:
                self._logger.error(
                    "Auto-offload of primary failed",
                    extra={"record_id": record_id, "error": e.message}
                )
                return None

        wants_variants = (
            record.is_image
            and self._config.upload_mode is UploadMode.ALL_SIZES
            and bool(record.missing_variants())
        )
        if wants_variants:
            queue.enqueue(self.upload_pending_variants, record_id)
            self._logger.debug(
                "Queued variant uploads",
                extra={"record_id": record_id, "count": len(record.missing_variants())}
            )

        return result

    @staticmethod
    def _existing_primary(record: MediaRecord) -> UploadResult:
        metadata = record.remote[FULL_VARIANT]
        size = os.path.getsize(record.local_path) if os.path.isfile(record.local_path) else 0
        return UploadResult(key=metadata.key, url=metadata.url, size=size)

    def upload_pending_variants(self, record_id: int) -> Optional[VariantUploadReport]:
        """
        Deferred phase: upload variants that exist locally and aren't remote.

        Only runs for records whose primary made it to the store.
        """
        record = self._store.get(record_id)
        if record is None or not record.is_synced:
            return None

        files = self._offloader.collect_files(record)
        return self._offloader.upload_all_variants(record_id, files)

    def handle_metadata_update(
        self,
        record_id: int,
        variants: dict[str, str],
    ) -> Optional[VariantUploadReport]:
        """
        Re-upload after the host regenerated a record's variants.

        Records that were never offloaded are left for the bulk sync.
        """
        record = self._store.get(record_id)
        if record is None or not record.is_synced:
            return None

        if not self._offloader.is_configured():
            return None

        return self._offloader.upload_record(
            record_id,
            regenerate=True,
            regenerated_variants=variants,
        )

    def handle_deletion(self, record_id: int) -> DeleteReport:
        """Remove the record's remote objects before the host deletes it."""
        return self._offloader.delete_record(record_id)

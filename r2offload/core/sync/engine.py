"""
Batch engine for bulk sync.

A bulk sync over a large media library is driven from the client side:
the caller asks for one batch at a time, waits for the response, then
asks for the next one at offset + processed. The engine keeps no state
between calls; everything needed to resume is in the BatchCursor.

This shape exists because:
- A single request syncing thousands of files would hit every proxy and
  worker timeout on the way
- The host may route consecutive requests to different processes
- Stopping is trivial: the caller just doesn't send the next request

Within a batch, records are processed one after another in ID order. A
failing record becomes an "error" outcome and the batch carries on.
"""

import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from ..media.errors import NotConfiguredError, StorageError, is_fatal
from ..media.models import (
    BatchCursor,
    BatchResult,
    ItemOutcome,
    MediaRecord,
    OutcomeKind,
    SyncMode,
    utcnow,
)
from ..media.store import MediaRecordStore
from ..offload.service import MediaOffloader
from .selector import SyncSelector


class VariantRegenerator(Protocol):
    """
    Host capability that re-creates a record's image variants.

    Returns the new variant list (name to filename). How the files are
    produced is up to the host.
    """

    def regenerate(self, record: MediaRecord) -> dict[str, str]:
        ...


class BatchEngine:
    """
    Processes one batch of sync candidates per call.

    Each record goes through the mode's sync routine and yields exactly
    one ItemOutcome with a message naming the record.
    """

    def __init__(
        self,
        selector: SyncSelector,
        offloader: MediaOffloader,
        store: MediaRecordStore,
        regenerator: Optional[VariantRegenerator] = None,
        clock: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._selector = selector
        self._offloader = offloader
        self._store = store
        self._regenerator = regenerator
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    def process_batch(self, cursor: BatchCursor) -> BatchResult:
        """
        Sync the records at the cursor's position.

        Raises NotConfiguredError before touching any record when the
        object store has no credentials.
        """
        if not self._offloader.is_configured():
            raise NotConfiguredError(
                "Object store is not configured, fill in the R2 credentials first"
            )

        started = cursor.session_started_at or self._clock()
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        cursor = replace(cursor, session_started_at=started)

        candidates = self._selector.select(cursor)
        outcomes: list[ItemOutcome] = []
        halt_reason: Optional[str] = None

        for record in candidates:
            if cursor.mode is SyncMode.INCREMENTAL:
                outcome, error = self.sync_incremental(record, cursor.regenerate_metadata)
            else:
                outcome, error = self.sync_full(record, cursor.regenerate_metadata)
            outcomes.append(outcome)

            if error is not None and is_fatal(error) and halt_reason is None:
                halt_reason = error.message

        total = self._selector.count_candidates(cursor.mode, started)
        remaining = max(0, total - (cursor.offset + len(candidates)))

        result = BatchResult(
            cursor=cursor,
            processed_count=len(candidates),
            outcomes=outcomes,
            total_remaining=remaining,
            session_started_at=started,
            halt_reason=halt_reason,
        )

        self._logger.info(
            "Batch processed",
            extra={
                "mode": cursor.mode.value,
                "offset": cursor.offset,
                "processed": result.processed_count,
                "succeeded": result.success_count,
                "failed": result.error_count,
                "remaining": remaining,
            }
        )
        if halt_reason:
            self._logger.error("Batch reported a fatal error", extra={"reason": halt_reason})

        return result

    def run_scheduled_batch(self, batch_size: int = 10, mode: SyncMode = SyncMode.FULL) -> int:
        """
        One unattended batch from the start of the candidate list.

        Meant for a periodic trigger: records synced by earlier runs have
        left the candidate set, so offset 0 always points at fresh work.
        Returns the number of successfully synced records.
        """
        result = self.process_batch(BatchCursor(offset=0, batch_size=batch_size, mode=mode))
        self._logger.info(
            "Scheduled sync finished",
            extra={"mode": mode.value, "processed": result.processed_count, "succeeded": result.success_count}
        )
        return result.success_count

    # -------------------------------------------------------------------------
    # Per-record routines
    # -------------------------------------------------------------------------

    def _regenerate(self, record: MediaRecord) -> MediaRecord:
        """Run the host's variant regeneration and reload the record."""
        if self._regenerator is None or not record.is_image:
            return record

        variants = self._regenerator.regenerate(record)
        self._store.update_variants(record.id, variants)
        return self._store.get(record.id) or record

    def sync_full(
        self,
        record: MediaRecord,
        regenerate: bool = False,
    ) -> tuple[ItemOutcome, Optional[StorageError]]:
        """
        Upload the primary and every variant the upload mode allows.

        Returns the outcome plus the error behind it, if any, so the
        batch can tell fatal failures apart.
        """
        name = record.display_name

        if not os.path.isfile(record.local_path):
            return ItemOutcome(record.id, OutcomeKind.ERROR, f"Skipped {name}: file not found"), None

        if regenerate:
            record = self._regenerate(record)

        # variants that already have remote metadata are skipped here, so a
        # repeated batch request re-uploads nothing
        report = self._offloader.upload_all_variants(
            record.id,
            self._offloader.collect_files(record),
        )

        if not report.success:
            error = report.primary_error
            detail = error.message if error else "unknown error"
            return ItemOutcome(record.id, OutcomeKind.ERROR, f"Failed to sync {name}: {detail}"), error

        if not report.uploaded:
            return ItemOutcome(record.id, OutcomeKind.SKIPPED, f"Skipped {name}: already synced"), None

        message = f"Synced {name} -> R2"
        if report.failed:
            message += f" (failed variants: {', '.join(report.failed)})"
        return ItemOutcome(record.id, OutcomeKind.SUCCESS, message), report.fatal_error

    def sync_incremental(
        self,
        record: MediaRecord,
        regenerate: bool = False,
    ) -> tuple[ItemOutcome, Optional[StorageError]]:
        """
        Upload only the variants that have no remote metadata yet.

        Already-synced variants are never re-sent. The upload mode policy
        does not apply: incremental sync exists to fill in variants.
        """
        name = record.display_name

        if not os.path.isfile(record.local_path):
            return ItemOutcome(record.id, OutcomeKind.ERROR, f"Skipped {name}: file not found"), None

        if not record.is_image:
            return ItemOutcome(record.id, OutcomeKind.SKIPPED, f"Skipped {name}: not an image"), None

        if regenerate:
            record = self._regenerate(record)

        missing = record.missing_variants()
        if not missing:
            return ItemOutcome(record.id, OutcomeKind.SKIPPED, f"Skipped {name}: all variants synced"), None

        uploadable = [v for v in missing if os.path.isfile(record.variant_path(v))]
        if not uploadable:
            return ItemOutcome(
                record.id,
                OutcomeKind.WARNING,
                f"Skipped {name}: variant files missing locally ({', '.join(missing)})",
            ), None

        uploaded: list[str] = []
        failed: dict[str, StorageError] = {}
        for variant in uploadable:
            try:
                self._offloader.upload_variant(record, variant)
                uploaded.append(variant)
            except StorageError as e:
                self._logger.warning(
                    "Variant upload failed",
                    extra={"record_id": record.id, "variant": variant, "error": e.message}
                )
                failed[variant] = e

        fatal = next((e for e in failed.values() if is_fatal(e)), None)

        if not uploaded:
            first = next(iter(failed.values()))
            return ItemOutcome(
                record.id,
                OutcomeKind.ERROR,
                f"Failed to sync {name}: {first.message}",
            ), fatal or first

        message = f"Synced {len(uploaded)} variant(s) of {name} -> R2"
        if failed:
            message += f" (failed variants: {', '.join(failed)})"
        return ItemOutcome(record.id, OutcomeKind.SUCCESS, message), fatal

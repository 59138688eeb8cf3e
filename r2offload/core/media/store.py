"""
Record store protocol.

The media library itself (records, their files, their variant lists) is
owned by the host application. The offload layer only needs to read
records, page through them by sync status and attach remote metadata.

Filter semantics live here as plain functions so every store
implementation pages over exactly the same set.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Protocol

from .models import FULL_VARIANT, MediaRecord, RemoteMetadata


class RecordFilter(Enum):
    ALL = "all"
    SYNCED = "synced"
    UNSYNCED = "unsynced"
    PARTIALLY_SYNCED = "partially_synced"


def matches_filter(
    record: MediaRecord,
    record_filter: RecordFilter,
    touched_since: Optional[datetime] = None,
) -> bool:
    """
    Decide whether a record belongs to a filtered view.

    touched_since keeps records that left the view during a sync session
    inside it. Without it, each record uploaded by batch N would shift
    the offsets of batch N+1 and records would be skipped:
    - UNSYNCED also matches records whose primary was uploaded at or
      after touched_since
    - PARTIALLY_SYNCED also matches synced records with any variant
      uploaded at or after touched_since
    """
    if record_filter is RecordFilter.ALL:
        return True
    if record_filter is RecordFilter.SYNCED:
        return record.is_synced

    if record_filter is RecordFilter.UNSYNCED:
        if not record.is_synced:
            return True
        if touched_since is None:
            return False
        return record.remote[FULL_VARIANT].uploaded_at >= touched_since

    if record_filter is RecordFilter.PARTIALLY_SYNCED:
        if not record.is_synced:
            return False
        if record.missing_variants():
            return True
        if touched_since is None:
            return False
        return record.last_uploaded_at >= touched_since

    raise ValueError(f"Unknown record filter: {record_filter}")


class MediaRecordStore(Protocol):
    """
    Read and annotate media records.

    query() returns records in ascending id order so offsets are stable
    across calls.
    """

    def get(self, record_id: int) -> Optional[MediaRecord]:
        ...

    def find_by_attached_file(self, attached_file: str) -> Optional[MediaRecord]:
        ...

    def query(
        self,
        record_filter: RecordFilter,
        offset: int,
        limit: int,
        touched_since: Optional[datetime] = None,
    ) -> list[MediaRecord]:
        ...

    def count(
        self,
        record_filter: RecordFilter,
        touched_since: Optional[datetime] = None,
    ) -> int:
        ...

    def save_remote_metadata(
        self,
        record_id: int,
        variant: str,
        metadata: RemoteMetadata,
    ) -> None:
        ...

    def update_variants(self, record_id: int, variants: dict[str, str]) -> None:
        """Replace the non-primary variant list (name to filename)."""
        ...

    def mark_local_deleted(self, record_id: int) -> None:
        ...

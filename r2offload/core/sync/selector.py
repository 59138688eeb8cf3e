"""
Candidate selection for bulk sync.

Maps a sync mode onto a record filter and pages through the record
store. All selection is anchored at the session start so offsets from
earlier batches stay valid while records move from "unsynced" to
"synced" underneath the run.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..media.models import BatchCursor, MediaRecord, SyncMode
from ..media.store import MediaRecordStore, RecordFilter

_MODE_FILTERS = {
    SyncMode.FULL: RecordFilter.UNSYNCED,
    SyncMode.INCREMENTAL: RecordFilter.PARTIALLY_SYNCED,
}


@dataclass(frozen=True)
class SyncStatus:
    """Library-wide sync counts for status displays."""
    total: int
    synced: int
    unsynced: int
    partially_synced: int


class SyncSelector:
    """Pages over the records a sync mode should process."""

    def __init__(self, store: MediaRecordStore) -> None:
        self._store = store

    def select(self, cursor: BatchCursor) -> list[MediaRecord]:
        return self._store.query(
            _MODE_FILTERS[cursor.mode],
            cursor.offset,
            cursor.batch_size,
            touched_since=cursor.session_started_at,
        )

    def count_candidates(self, mode: SyncMode, session_started_at: Optional[datetime] = None) -> int:
        return self._store.count(_MODE_FILTERS[mode], touched_since=session_started_at)

    def status(self) -> SyncStatus:
        return SyncStatus(
            total=self._store.count(RecordFilter.ALL),
            synced=self._store.count(RecordFilter.SYNCED),
            unsynced=self._store.count(RecordFilter.UNSYNCED),
            partially_synced=self._store.count(RecordFilter.PARTIALLY_SYNCED),
        )

"""
In-memory media record store.

Implements the MediaRecordStore protocol over a dict of records. This is
the repository the API runs against when no host library is wired in,
and what the sync tests page through.

A lock guards every access: FastAPI runs sync endpoints and background
tasks on a thread pool, so an upload finishing in a background task can
race a batch request reading the same record.
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from ...core.media.models import FULL_VARIANT, MediaRecord, RemoteMetadata
from ...core.media.store import RecordFilter, matches_filter

logger = logging.getLogger(__name__)


class RecordNotFoundError(Exception):
    """Raised when a record ID doesn't exist."""
    pass


class InMemoryMediaStore:
    """
    Dict-backed record store.

    Records handed out are copies, so callers can't mutate stored state
    except through the store's own methods.
    """

    def __init__(self, records: Optional[Iterable[MediaRecord]] = None) -> None:
        self._records: dict[int, MediaRecord] = {}
        self._lock = threading.Lock()
        for record in records or []:
            self.add(record)

    def add(self, record: MediaRecord) -> None:
        """Insert or replace a record."""
        with self._lock:
            self._records[record.id] = self._copy(record)
        logger.debug("Stored media record", extra={"record_id": record.id})

    def remove(self, record_id: int) -> None:
        with self._lock:
            self._records.pop(record_id, None)

    def __len__(self) -> int:
        return len(self._records)

    @staticmethod
    def _copy(record: MediaRecord) -> MediaRecord:
        return replace(record, variants=dict(record.variants), remote=dict(record.remote))

    def _require(self, record_id: int) -> MediaRecord:
        record = self._records.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Media record not found: {record_id}")
        return record

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, record_id: int) -> Optional[MediaRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return self._copy(record) if record else None

    def find_by_attached_file(self, attached_file: str) -> Optional[MediaRecord]:
        with self._lock:
            for record in self._records.values():
                if record.attached_file == attached_file:
                    return self._copy(record)
        return None

    def _filtered(
        self,
        record_filter: RecordFilter,
        touched_since: Optional[datetime],
    ) -> list[MediaRecord]:
        return [
            self._records[record_id]
            for record_id in sorted(self._records)
            if matches_filter(self._records[record_id], record_filter, touched_since)
        ]

    def query(
        self,
        record_filter: RecordFilter,
        offset: int,
        limit: int,
        touched_since: Optional[datetime] = None,
    ) -> list[MediaRecord]:
        with self._lock:
            page = self._filtered(record_filter, touched_since)[offset:offset + limit]
            return [self._copy(record) for record in page]

    def count(
        self,
        record_filter: RecordFilter,
        touched_since: Optional[datetime] = None,
    ) -> int:
        with self._lock:
            return len(self._filtered(record_filter, touched_since))

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def save_remote_metadata(
        self,
        record_id: int,
        variant: str,
        metadata: RemoteMetadata,
    ) -> None:
        with self._lock:
            self._require(record_id).remote[variant] = metadata

    def update_variants(self, record_id: int, variants: dict[str, str]) -> None:
        with self._lock:
            record = self._require(record_id)
            record.variants = {
                FULL_VARIANT: record.variants[FULL_VARIANT],
                **{name: filename for name, filename in variants.items() if name != FULL_VARIANT},
            }

    def mark_local_deleted(self, record_id: int) -> None:
        with self._lock:
            self._require(record_id).local_deleted = True

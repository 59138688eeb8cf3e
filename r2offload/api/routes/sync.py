"""
Bulk sync API endpoints.

The batch endpoint is deliberately stateless: the client sends the
cursor, gets one batch worth of results, and decides whether to come
back. Nothing about a running sync is stored on the server, so any
worker process can serve any batch.

Field names on the wire are camelCase to match the batch contract the
polling clients already speak.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, status
from pydantic import Field

from ...core.media.models import (
    MAX_BATCH_SIZE,
    MIN_BATCH_SIZE,
    BatchCursor,
    BatchResult,
    ItemOutcome,
    OutcomeKind,
    SyncMode,
)
from ..models import CamelModel
from ..dependencies import (
    AuthenticatedKey,
    BatchEngineDep,
    OffloaderDep,
    SettingsDep,
    SyncSelectorDep,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class BatchRequest(CamelModel):
    """One batch of a client-driven bulk sync."""
    offset: int = Field(default=0, ge=0, description="Records already processed in this session")
    batch_size: Optional[int] = Field(
        default=None,
        ge=MIN_BATCH_SIZE,
        le=MAX_BATCH_SIZE,
        description="Records to process. Defaults to the configured batch size.",
    )
    mode: SyncMode = Field(default=SyncMode.FULL, description="full or incremental")
    session_started_at: Optional[datetime] = Field(
        default=None,
        description="Echo of the value returned by the first batch. Keeps offsets stable.",
    )
    regenerate_metadata: bool = Field(
        default=False,
        description="Regenerate image variants before uploading",
    )

    def to_cursor(self, default_batch_size: int) -> BatchCursor:
        return BatchCursor(
            offset=self.offset,
            batch_size=self.batch_size or default_batch_size,
            mode=self.mode,
            session_started_at=self.session_started_at,
            regenerate_metadata=self.regenerate_metadata,
        )


class OutcomeItem(CamelModel):
    """Result for one record."""
    id: int
    kind: str = Field(description="success, error, warning or info")
    message: str

    @classmethod
    def from_outcome(cls, outcome: ItemOutcome) -> "OutcomeItem":
        return cls(id=outcome.record_id, kind=outcome.kind.wire_kind, message=outcome.message)

    def to_outcome(self) -> ItemOutcome:
        kind = OutcomeKind.SKIPPED if self.kind == "info" else OutcomeKind(self.kind)
        return ItemOutcome(record_id=self.id, kind=kind, message=self.message)


class BatchResponse(CamelModel):
    """Results of one batch plus what the client needs for the next one."""
    processed_count: int
    outcomes: list[OutcomeItem]
    total_remaining: int
    session_started_at: datetime
    exhausted: bool
    next_offset: int
    batch_delay_ms: int
    halt_reason: Optional[str] = None

    @classmethod
    def from_result(cls, result: BatchResult, batch_delay_ms: int) -> "BatchResponse":
        return cls(
            processed_count=result.processed_count,
            outcomes=[OutcomeItem.from_outcome(o) for o in result.outcomes],
            total_remaining=result.total_remaining,
            session_started_at=result.session_started_at,
            exhausted=result.exhausted,
            next_offset=result.cursor.offset + result.processed_count,
            batch_delay_ms=batch_delay_ms,
            halt_reason=result.halt_reason,
        )

    def to_result(self, cursor: BatchCursor) -> BatchResult:
        """Rebuild the engine's result on the client side of the wire."""
        return BatchResult(
            cursor=cursor,
            processed_count=self.processed_count,
            outcomes=[item.to_outcome() for item in self.outcomes],
            total_remaining=self.total_remaining,
            session_started_at=self.session_started_at,
            halt_reason=self.halt_reason,
            delay_ms=self.batch_delay_ms,
        )


class SyncStatusResponse(CamelModel):
    """Library-wide sync counters."""
    configured: bool
    total: int
    synced: int
    unsynced: int
    partially_synced: int


class AutoSyncResponse(CamelModel):
    """Result of one scheduled sync run."""
    enabled: bool
    mode: SyncMode
    synced: int = 0


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/batch",
    response_model=BatchResponse,
    status_code=status.HTTP_200_OK,
    summary="Process one sync batch",
    description="Sync the records at the given offset. Call again at nextOffset until exhausted is true.",
)
def process_batch(
    request: BatchRequest,
    api_key: AuthenticatedKey,
    engine: BatchEngineDep,
    settings: SettingsDep,
) -> BatchResponse:
    """
    Run one batch synchronously.

    Sync (not async) endpoint: uploads block on network I/O, so FastAPI
    runs this in its thread pool instead of the event loop.
    """
    cursor = request.to_cursor(settings.sync_default_batch_size)

    logger.info(
        "Batch requested",
        extra={"offset": cursor.offset, "batch_size": cursor.batch_size, "mode": cursor.mode.value}
    )

    result = engine.process_batch(cursor)
    return BatchResponse.from_result(result, settings.sync_batch_delay_ms)


@router.get(
    "/status",
    response_model=SyncStatusResponse,
    summary="Sync counters",
)
def sync_status(
    api_key: AuthenticatedKey,
    selector: SyncSelectorDep,
    offloader: OffloaderDep,
) -> SyncStatusResponse:
    counts = selector.status()
    return SyncStatusResponse(
        configured=offloader.is_configured(),
        total=counts.total,
        synced=counts.synced,
        unsynced=counts.unsynced,
        partially_synced=counts.partially_synced,
    )


@router.post(
    "/auto",
    response_model=AutoSyncResponse,
    summary="Run one scheduled sync batch",
    description="Meant to be hit by a cron job. Does nothing unless AUTO_SYNC_ENABLED is set.",
)
def auto_sync(
    api_key: AuthenticatedKey,
    engine: BatchEngineDep,
    settings: SettingsDep,
) -> AutoSyncResponse:
    if not settings.auto_sync_enabled:
        logger.debug("Scheduled sync requested but disabled")
        return AutoSyncResponse(enabled=False, mode=settings.auto_sync_mode)

    synced = engine.run_scheduled_batch(settings.auto_sync_batch_size, settings.auto_sync_mode)
    return AutoSyncResponse(enabled=True, mode=settings.auto_sync_mode, synced=synced)

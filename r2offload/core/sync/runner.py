"""
Client-side bulk sync loop.

The batch engine is stateless, so something has to hold the cursor,
space out the requests and decide when to stop. BulkSyncRunner is that
loop. It talks to the engine through a plain callable, which is either
BatchEngine.process_batch in-process or an HTTP call to the batch
endpoint (see scripts/bulk_sync.py).

States:
    IDLE -> RUNNING -> COMPLETED   candidates exhausted
                    -> STOPPED     stop() was called
                    -> ERRORED     batch call raised, or a fatal halt reason
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from ..media.models import (
    MAX_BATCH_SIZE,
    MIN_BATCH_SIZE,
    BatchCursor,
    BatchResult,
    SyncMode,
)
from .progress import ProgressTracker

MIN_DELAY_MS = 100
MAX_DELAY_MS = 5000
DEFAULT_DELAY_MS = 500

BatchCall = Callable[[BatchCursor], BatchResult]


class SyncState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERRORED = "errored"


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class BulkSyncRunner:
    """
    Drives batches until the candidate pool is exhausted.

    A batch in flight is never interrupted: stop() takes effect before
    the next request is issued.
    """

    def __init__(
        self,
        process_batch: BatchCall,
        mode: SyncMode = SyncMode.FULL,
        batch_size: int = 10,
        delay_ms: Optional[int] = None,
        regenerate_metadata: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        on_batch: Optional[Callable[[BatchResult, ProgressTracker], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._process_batch = process_batch
        self.mode = mode
        self.batch_size = clamp(batch_size, MIN_BATCH_SIZE, MAX_BATCH_SIZE)
        self.delay_ms = None if delay_ms is None else clamp(delay_ms, MIN_DELAY_MS, MAX_DELAY_MS)
        self.regenerate_metadata = regenerate_metadata
        self._sleep = sleep
        self._on_batch = on_batch
        self._logger = logger or logging.getLogger(__name__)
        self._stop_requested = threading.Event()

        self.state = SyncState.IDLE
        self.progress = ProgressTracker()
        self.error: Optional[str] = None

    def stop(self) -> None:
        self._stop_requested.set()

    def delay_for(self, result: BatchResult) -> int:
        """
        Pause before the next batch, in milliseconds.

        An explicit delay_ms wins. Otherwise the pause the server sent with
        the batch is used, clamped like any other.
        """
        if self.delay_ms is not None:
            return self.delay_ms
        if result.delay_ms is not None:
            return clamp(result.delay_ms, MIN_DELAY_MS, MAX_DELAY_MS)
        return DEFAULT_DELAY_MS

    def run(self) -> SyncState:
        """Run to a terminal state and return it."""
        if self.state is SyncState.RUNNING:
            raise RuntimeError("Bulk sync is already running")

        self.state = SyncState.RUNNING
        self.progress = ProgressTracker()
        self.error = None
        self._stop_requested.clear()

        cursor = BatchCursor(
            offset=0,
            batch_size=self.batch_size,
            mode=self.mode,
            regenerate_metadata=self.regenerate_metadata,
        )
        self._logger.info(
            "Bulk sync started",
            extra={"mode": self.mode.value, "batch_size": self.batch_size, "delay_ms": self.delay_ms}
        )

        while True:
            if self._stop_requested.is_set():
                self.state = SyncState.STOPPED
                self._logger.info("Bulk sync stopped", extra={"processed": self.progress.processed})
                break

            try:
                result = self._process_batch(cursor)
            except Exception as e:
                self.state = SyncState.ERRORED
                self.error = str(e)
                self._logger.error(
                    "Bulk sync batch failed",
                    extra={"offset": cursor.offset, "error": self.error}
                )
                break

            self.progress.record(result)
            if self._on_batch is not None:
                self._on_batch(result, self.progress)

            if result.halt_reason:
                self.state = SyncState.ERRORED
                self.error = result.halt_reason
                self._logger.error("Bulk sync halted", extra={"reason": result.halt_reason})
                break

            if result.exhausted:
                self.progress.complete()
                self.state = SyncState.COMPLETED
                self._logger.info("Bulk sync completed", extra={"summary": self.progress.summary()})
                break

            cursor = result.next_cursor()
            self._sleep(self.delay_for(result) / 1000)

        return self.state

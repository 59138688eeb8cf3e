"""
Progress accounting for a client-driven bulk sync.
"""

from dataclasses import dataclass

from ..media.models import BatchResult, OutcomeKind


@dataclass
class ProgressTracker:
    """
    Running totals across the batches of one sync session.

    The total is re-estimated after every batch from processed so far
    plus the engine's remaining count, since the library can change
    while a sync runs.
    """
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    warnings: int = 0
    batches: int = 0

    def record(self, result: BatchResult) -> None:
        self.batches += 1
        self.processed += result.processed_count
        for outcome in result.outcomes:
            if outcome.kind is OutcomeKind.SUCCESS:
                self.succeeded += 1
            elif outcome.kind is OutcomeKind.ERROR:
                self.failed += 1
            elif outcome.kind is OutcomeKind.SKIPPED:
                self.skipped += 1
            else:
                self.warnings += 1
        self.total = self.processed + result.total_remaining

    def complete(self) -> None:
        """Pin the total to what was actually processed."""
        self.total = self.processed

    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 0
        return min(100, round(self.processed * 100 / self.total))

    def summary(self) -> str:
        return (
            f"{self.processed}/{self.total} processed ({self.percentage}%): "
            f"{self.succeeded} synced, {self.failed} failed, "
            f"{self.skipped} skipped, {self.warnings} warnings"
        )

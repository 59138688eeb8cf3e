"""
Bulk sync of an existing media library.

- selector: which records a sync mode processes
- engine: one stateless batch per call
- progress / runner: the client side that strings batches together
"""

from .engine import BatchEngine, VariantRegenerator
from .progress import ProgressTracker
from .runner import BulkSyncRunner, SyncState
from .selector import SyncSelector, SyncStatus

__all__ = [
    "BatchEngine",
    "BulkSyncRunner",
    "ProgressTracker",
    "SyncSelector",
    "SyncState",
    "SyncStatus",
    "VariantRegenerator",
]

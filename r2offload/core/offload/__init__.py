"""
Offloading of media files to the object store.

- service: per-record uploads, local cleanup and remote deletion
- ingest: reacting to host media events, with deferred variant uploads
"""

from .ingest import DeferredTaskQueue, MediaIngestHandler
from .service import (
    DeleteReport,
    MediaOffloader,
    NullCollaborator,
    ObjectStore,
    OffloadCollaborator,
    VariantUploadReport,
)

__all__ = [
    "DeferredTaskQueue",
    "DeleteReport",
    "MediaIngestHandler",
    "MediaOffloader",
    "NullCollaborator",
    "ObjectStore",
    "OffloadCollaborator",
    "VariantUploadReport",
]

"""
Media library domain: records, remote metadata, keys and public URLs.

Nothing in here talks to the network or the filesystem beyond checking
which local files exist. The object store and the record store are
reached through protocols so the sync and offload logic can be tested
against in-memory fakes.
"""

from .errors import (
    AuthError,
    LocalFileEmptyError,
    LocalFileMissingError,
    NetworkError,
    NotConfiguredError,
    ObjectNotFoundError,
    ServerError,
    StorageError,
    is_fatal,
)
from .keys import KeyDeriver, sanitize_filename
from .models import (
    FULL_VARIANT,
    BatchCursor,
    BatchResult,
    Credentials,
    ItemOutcome,
    MediaRecord,
    OffloadConfig,
    OutcomeKind,
    RemoteMetadata,
    SyncMode,
    UploadMode,
    UploadResult,
)
from .store import MediaRecordStore, RecordFilter, matches_filter
from .urls import URLResolver

__all__ = [
    "AuthError",
    "BatchCursor",
    "BatchResult",
    "Credentials",
    "FULL_VARIANT",
    "ItemOutcome",
    "KeyDeriver",
    "LocalFileEmptyError",
    "LocalFileMissingError",
    "MediaRecord",
    "MediaRecordStore",
    "NetworkError",
    "NotConfiguredError",
    "ObjectNotFoundError",
    "OffloadConfig",
    "OutcomeKind",
    "RecordFilter",
    "RemoteMetadata",
    "ServerError",
    "StorageError",
    "SyncMode",
    "URLResolver",
    "UploadMode",
    "UploadResult",
    "is_fatal",
    "matches_filter",
    "sanitize_filename",
]

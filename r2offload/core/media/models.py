"""
Domain models for media offload.

These models describe a media library record and its remote copies, plus
the values that flow through a bulk sync. They know nothing about HTTP,
FastAPI or where records are persisted.

A record has one primary file ("full") and, for images, any number of
named size variants stored next to it. Each variant that reached the
object store gets its own RemoteMetadata entry, so "synced" and
"partially synced" are derived from the record rather than stored.
"""

import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


FULL_VARIANT = "full"

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadMode(str, Enum):
    """Which variants an upload pass is allowed to send."""
    FULL_ONLY = "full_only"
    ALL_SIZES = "all_sizes"


class SyncMode(str, Enum):
    """
    How a bulk sync picks its candidates.

    FULL walks records that have never been uploaded. INCREMENTAL walks
    records whose primary is remote but some variants are not, typically
    after new image sizes were registered.
    """
    FULL = "full"
    INCREMENTAL = "incremental"


class OutcomeKind(Enum):
    """Classification of what happened to one record in a batch."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"
    WARNING = "warning"

    @property
    def wire_kind(self) -> str:
        """Skipped records are reported as "info" to batch clients."""
        if self is OutcomeKind.SKIPPED:
            return "info"
        return self.value


@dataclass(frozen=True)
class Credentials:
    """
    Connection parameters for an R2 bucket.

    The secret is excluded from repr so credentials can be logged by
    accident without leaking.
    """
    account_id: str
    access_key_id: str
    secret_access_key: str = field(repr=False)
    bucket_name: str
    custom_public_base_url: Optional[str] = None
    endpoint_url: Optional[str] = None

    def is_configured(self) -> bool:
        """All four required fields are non-empty."""
        return all([
            self.account_id,
            self.access_key_id,
            self.secret_access_key,
            self.bucket_name,
        ])

    @property
    def endpoint(self) -> str:
        """
        Base URL of the S3-compatible API.

        R2 endpoints follow https://{account_id}.r2.cloudflarestorage.com.
        An explicit endpoint_url wins, which is how tests and non-R2
        S3 services are pointed elsewhere.
        """
        if self.endpoint_url:
            return self.endpoint_url.rstrip("/")
        return f"https://{self.account_id}.r2.cloudflarestorage.com"

    @property
    def host(self) -> str:
        """Host part of the endpoint, as signed into every request."""
        return self.endpoint.split("://", 1)[-1].split("/", 1)[0]


@dataclass(frozen=True)
class OffloadConfig:
    """Policy switches read by the offload, ingest and URL layers."""
    upload_mode: UploadMode = UploadMode.ALL_SIZES
    delete_local_after_upload: bool = False
    enable_url_rewrite: bool = True
    auto_offload: bool = True


@dataclass(frozen=True)
class RemoteMetadata:
    """Where one variant of a record lives in the object store."""
    key: str
    url: str
    uploaded_at: datetime


@dataclass(frozen=True)
class UploadResult:
    """What the object store client reports back for a successful PUT."""
    key: str
    url: str
    size: int


@dataclass
class MediaRecord:
    """
    A media library entry.

    local_path is the absolute path of the primary file. Variant files
    sit in the same directory, so `variants` only stores filenames.
    attached_file is the primary's path relative to the uploads
    directory (e.g. "2024/03/cat.jpg") and is what URL lookups match on.
    """
    id: int
    local_path: str
    mime_type: str
    variants: dict[str, str] = field(default_factory=dict)
    title: str = ""
    attached_file: str = ""
    created_at: datetime = field(default_factory=utcnow)
    remote: dict[str, RemoteMetadata] = field(default_factory=dict)
    local_deleted: bool = False

    def __post_init__(self) -> None:
        if FULL_VARIANT not in self.variants:
            self.variants = {
                FULL_VARIANT: os.path.basename(self.local_path),
                **self.variants,
            }

    @property
    def display_name(self) -> str:
        return self.title or os.path.basename(self.local_path)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_synced(self) -> bool:
        """The primary file has remote metadata."""
        return FULL_VARIANT in self.remote

    @property
    def is_partially_synced(self) -> bool:
        return self.is_synced and bool(self.missing_variants())

    @property
    def last_uploaded_at(self) -> Optional[datetime]:
        if not self.remote:
            return None
        return max(meta.uploaded_at for meta in self.remote.values())

    def variant_path(self, variant: str) -> str:
        """Absolute local path of a variant. Raises KeyError for unknown names."""
        if variant == FULL_VARIANT:
            return self.local_path
        directory = os.path.dirname(self.local_path)
        return os.path.join(directory, self.variants[variant])

    def missing_variants(self) -> list[str]:
        """Non-primary variants without remote metadata, in registration order."""
        return [
            name for name in self.variants
            if name != FULL_VARIANT and name not in self.remote
        ]


@dataclass(frozen=True)
class BatchCursor:
    """
    Position of a bulk sync between two stateless batch calls.

    session_started_at anchors the candidate set for the whole run: records
    uploaded during the run stay in the set so later offsets still line up.
    The first batch leaves it empty and the engine fills it in.
    """
    offset: int = 0
    batch_size: int = 10
    mode: SyncMode = SyncMode.FULL
    session_started_at: Optional[datetime] = None
    regenerate_metadata: bool = False

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError("Batch offset cannot be negative")
        if not MIN_BATCH_SIZE <= self.batch_size <= MAX_BATCH_SIZE:
            raise ValueError(
                f"Batch size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}"
            )

    def advance(self, processed: int) -> "BatchCursor":
        return replace(self, offset=self.offset + processed)


@dataclass(frozen=True)
class ItemOutcome:
    """One line of a batch report."""
    record_id: int
    kind: OutcomeKind
    message: str


@dataclass
class BatchResult:
    """
    Everything a client needs to decide whether to ask for another batch.

    A batch is the last one when it came back short. halt_reason is set
    when an error made continuing pointless; the batch itself still ran
    to the end. delay_ms is the pause the server asks for before the
    next batch, when it sent one.
    """
    cursor: BatchCursor
    processed_count: int
    outcomes: list[ItemOutcome]
    total_remaining: int
    session_started_at: datetime
    halt_reason: Optional[str] = None
    delay_ms: Optional[int] = None

    @property
    def exhausted(self) -> bool:
        return self.processed_count < self.cursor.batch_size

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.kind is OutcomeKind.SUCCESS)

    @property
    def error_count(self) -> int:
        return sum(1 for o in self.outcomes if o.kind is OutcomeKind.ERROR)

    def next_cursor(self) -> BatchCursor:
        return replace(
            self.cursor.advance(self.processed_count),
            session_started_at=self.session_started_at,
        )

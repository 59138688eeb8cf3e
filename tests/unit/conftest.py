"""
Shared fixtures for unit tests.

Records are backed by real files under tmp_path so the offload code
exercises its actual file checks. Nothing here touches the network:
object store calls go to the in-memory mock client or to
httpx.MockTransport.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest

from r2offload.core.media.models import Credentials, MediaRecord, OffloadConfig, UploadMode
from r2offload.infrastructure.records import InMemoryMediaStore
from r2offload.infrastructure.storage import MockObjectStoreClient

CREATED_AT = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
SESSION_TIME = datetime(2024, 6, 1, 9, 30, tzinfo=timezone.utc)


class FixedClock:
    """Clock that always returns the same instant."""

    def __init__(self, now: datetime = SESSION_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        account_id="acct123",
        access_key_id="AKIDEXAMPLE",
        secret_access_key="test-secret",
        bucket_name="media",
        custom_public_base_url="https://cdn.example.com",
    )


@pytest.fixture
def store() -> InMemoryMediaStore:
    return InMemoryMediaStore()


@pytest.fixture
def object_store() -> MockObjectStoreClient:
    return MockObjectStoreClient()


@pytest.fixture
def config() -> OffloadConfig:
    return OffloadConfig(upload_mode=UploadMode.ALL_SIZES)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def uploads_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "uploads"
    directory.mkdir()
    return directory


@pytest.fixture
def make_record(uploads_dir: Path, store: InMemoryMediaStore):
    """
    Factory: create files for a record and add it to the store.

    Images get "thumbnail" and "medium" variants by default. Pass
    variants={} for a record with only its primary file.
    """

    def _make(
        record_id: int,
        name: Optional[str] = None,
        mime_type: str = "image/jpeg",
        variants: Optional[dict[str, str]] = None,
        create_variant_files: bool = True,
        content: bytes = b"image-bytes",
        title: str = "",
    ) -> MediaRecord:
        name = name or f"photo{record_id}.jpg"
        stem, _, ext = name.rpartition(".")

        if variants is None:
            variants = {}
            if mime_type.startswith("image/"):
                variants = {
                    "thumbnail": f"{stem}-150x150.{ext}",
                    "medium": f"{stem}-300x200.{ext}",
                }

        directory = uploads_dir / "2024" / "03"
        directory.mkdir(parents=True, exist_ok=True)
        (directory / name).write_bytes(content)
        if create_variant_files:
            for filename in variants.values():
                (directory / filename).write_bytes(content + b"-variant")

        record = MediaRecord(
            id=record_id,
            local_path=str(directory / name),
            mime_type=mime_type,
            variants=dict(variants),
            title=title,
            attached_file=f"2024/03/{name}",
            created_at=CREATED_AT,
        )
        store.add(record)
        return record

    return _make

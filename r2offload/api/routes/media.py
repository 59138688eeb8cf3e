"""
Media record endpoints.

These are the hooks a host media library calls:
- register a record (PUT) and trigger offload on ingest
- upload one record on demand, or re-upload after its variants changed
- delete a record's remote copies
- resolve remote URLs and rewrite stored content for rendering

Ingest follows a two-phase pattern. The primary file is uploaded before
the response is returned. Variant uploads go into a DeferredTaskQueue
that FastAPI drains as a background task after the response is sent.
"""

import logging
import os
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Response, status
from pydantic import Field

from ...core.media.models import FULL_VARIANT, MediaRecord, utcnow
from ...core.offload import DeferredTaskQueue, VariantUploadReport
from ..models import CamelModel
from ..dependencies import (
    AuthenticatedKey,
    IngestHandlerDep,
    OffloaderDep,
    RecordStoreDep,
    SettingsDep,
    URLResolverDep,
)

logger = logging.getLogger(__name__)

router = APIRouter()
content_router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class RecordPayload(CamelModel):
    """A media record as described by the host library."""
    attached_file: str = Field(description="Path relative to the uploads directory, e.g. 2024/03/cat.jpg")
    mime_type: str = Field(description="MIME type of the primary file")
    local_path: Optional[str] = Field(
        default=None,
        description="Absolute path of the primary file. Defaults to uploads_dir/attached_file.",
    )
    variants: dict[str, str] = Field(
        default_factory=dict,
        description="Image variants, name to filename, stored next to the primary",
    )
    title: str = ""
    created_at: Optional[datetime] = None


class RemoteItem(CamelModel):
    key: str
    url: str
    uploaded_at: datetime


class RecordResponse(CamelModel):
    id: int
    title: str
    attached_file: str
    mime_type: str
    variants: dict[str, str]
    remote: dict[str, RemoteItem]
    synced: bool
    partially_synced: bool
    local_deleted: bool

    @classmethod
    def from_record(cls, record: MediaRecord) -> "RecordResponse":
        return cls(
            id=record.id,
            title=record.display_name,
            attached_file=record.attached_file,
            mime_type=record.mime_type,
            variants=record.variants,
            remote={
                name: RemoteItem(key=meta.key, url=meta.url, uploaded_at=meta.uploaded_at)
                for name, meta in record.remote.items()
            },
            synced=record.is_synced,
            partially_synced=record.is_partially_synced,
            local_deleted=record.local_deleted,
        )


class UploadRequest(CamelModel):
    regenerate: bool = Field(default=False, description="Re-upload variants that are already remote")


class MetadataUpdateRequest(CamelModel):
    variants: dict[str, str] = Field(description="Regenerated variants, name to filename")


class UploadResponse(CamelModel):
    success: bool
    uploaded: dict[str, str] = Field(description="Variant name to remote URL")
    skipped: list[str]
    failed: dict[str, str] = Field(description="Variant name to error message")
    deleted_local: list[str]

    @classmethod
    def from_report(cls, report: VariantUploadReport) -> "UploadResponse":
        return cls(
            success=report.success,
            uploaded={name: result.url for name, result in report.uploaded.items()},
            skipped=report.skipped,
            failed={name: error.message for name, error in report.failed.items()},
            deleted_local=report.deleted_local,
        )


class IngestResponse(CamelModel):
    offloaded: bool
    url: Optional[str] = None
    deferred_tasks: int = 0


class DeleteResponse(CamelModel):
    deleted_keys: list[str]
    failed: dict[str, str]
    record_removed: bool


class UrlResponse(CamelModel):
    id: int
    variant: str
    url: Optional[str]


class ContentRewriteRequest(CamelModel):
    html: str


class ContentRewriteResponse(CamelModel):
    html: str


class ImageRewriteRequest(CamelModel):
    record_id: int
    src: str
    srcset: Optional[str] = None


class ImageRewriteResponse(CamelModel):
    src: str
    srcset: Optional[str] = None


def _require_record(store, record_id: int) -> MediaRecord:
    record = store.get(record_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Media record {record_id} not found",
        )
    return record


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@router.put(
    "/{record_id}",
    response_model=RecordResponse,
    summary="Register a media record",
)
def register_record(
    record_id: int,
    payload: RecordPayload,
    api_key: AuthenticatedKey,
    store: RecordStoreDep,
    settings: SettingsDep,
) -> RecordResponse:
    """
    Insert or replace a record. Remote metadata of an existing record is
    kept, so re-registering doesn't force a re-upload.
    """
    local_path = payload.local_path or os.path.join(settings.uploads_dir, payload.attached_file)
    existing = store.get(record_id)

    record = MediaRecord(
        id=record_id,
        local_path=local_path,
        mime_type=payload.mime_type,
        variants=dict(payload.variants),
        title=payload.title,
        attached_file=payload.attached_file,
        created_at=payload.created_at or (existing.created_at if existing else utcnow()),
        remote=dict(existing.remote) if existing else {},
        local_deleted=existing.local_deleted if existing else False,
    )
    store.add(record)

    logger.info("Registered media record", extra={"record_id": record_id, "attached_file": payload.attached_file})
    return RecordResponse.from_record(record)


@router.get(
    "/{record_id}",
    response_model=RecordResponse,
    summary="Get a media record with its remote metadata",
)
def get_record(
    record_id: int,
    api_key: AuthenticatedKey,
    store: RecordStoreDep,
) -> RecordResponse:
    return RecordResponse.from_record(_require_record(store, record_id))


@router.post(
    "/{record_id}/ingest",
    response_model=IngestResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Offload a newly uploaded record",
    description="Uploads the primary file now; variants are uploaded after the response is sent.",
)
def ingest_record(
    record_id: int,
    background_tasks: BackgroundTasks,
    api_key: AuthenticatedKey,
    store: RecordStoreDep,
    ingest: IngestHandlerDep,
) -> IngestResponse:
    _require_record(store, record_id)

    queue = DeferredTaskQueue()
    result = ingest.handle_new_upload(record_id, queue)

    deferred = len(queue)
    if deferred:
        background_tasks.add_task(queue.drain)

    return IngestResponse(
        offloaded=result is not None,
        url=result.url if result else None,
        deferred_tasks=deferred,
    )


@router.post(
    "/{record_id}/upload",
    response_model=UploadResponse,
    summary="Upload one record with all its variants",
)
def upload_record(
    record_id: int,
    api_key: AuthenticatedKey,
    store: RecordStoreDep,
    offloader: OffloaderDep,
    request: Optional[UploadRequest] = None,
) -> UploadResponse:
    _require_record(store, record_id)
    regenerate = request.regenerate if request else False

    report = offloader.upload_record(record_id, regenerate=regenerate)
    return UploadResponse.from_report(report)


@router.post(
    "/{record_id}/metadata",
    response_model=Optional[UploadResponse],
    summary="Re-upload after variants were regenerated",
    description="Only acts on records that are already offloaded; returns null otherwise.",
)
def update_metadata(
    record_id: int,
    request: MetadataUpdateRequest,
    api_key: AuthenticatedKey,
    store: RecordStoreDep,
    ingest: IngestHandlerDep,
) -> Optional[UploadResponse]:
    _require_record(store, record_id)

    report = ingest.handle_metadata_update(record_id, request.variants)
    if report is None:
        return None
    return UploadResponse.from_report(report)


@router.delete(
    "/{record_id}",
    response_model=DeleteResponse,
    summary="Delete a record and its remote copies",
    description="The record is kept, with a 502, while any remote key failed to delete, so the call can be retried.",
)
def delete_record(
    record_id: int,
    response: Response,
    api_key: AuthenticatedKey,
    store: RecordStoreDep,
    ingest: IngestHandlerDep,
) -> DeleteResponse:
    _require_record(store, record_id)

    report = ingest.handle_deletion(record_id)

    if report.failed:
        # the record keeps its remote keys until every delete succeeded
        logger.warning(
            "Keeping record after failed remote deletes",
            extra={"record_id": record_id, "failed": list(report.failed)}
        )
        response.status_code = status.HTTP_502_BAD_GATEWAY
    else:
        store.remove(record_id)

    return DeleteResponse(
        deleted_keys=report.deleted,
        failed={key: error.message for key, error in report.failed.items()},
        record_removed=not report.failed,
    )


@router.get(
    "/{record_id}/url",
    response_model=UrlResponse,
    summary="Remote URL of a record variant",
)
def get_variant_url(
    record_id: int,
    api_key: AuthenticatedKey,
    store: RecordStoreDep,
    resolver: URLResolverDep,
    variant: str = Query(default=FULL_VARIANT, description="Variant name, e.g. full or thumbnail"),
) -> UrlResponse:
    _require_record(store, record_id)
    return UrlResponse(id=record_id, variant=variant, url=resolver.variant_url(record_id, variant))


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

@content_router.post(
    "/rewrite",
    response_model=ContentRewriteResponse,
    summary="Rewrite local media URLs in HTML content",
)
def rewrite_content(
    request: ContentRewriteRequest,
    api_key: AuthenticatedKey,
    resolver: URLResolverDep,
) -> ContentRewriteResponse:
    return ContentRewriteResponse(html=resolver.rewrite_content(request.html))


@content_router.post(
    "/image",
    response_model=ImageRewriteResponse,
    summary="Rewrite src and srcset of a rendered image",
)
def rewrite_image(
    request: ImageRewriteRequest,
    api_key: AuthenticatedKey,
    resolver: URLResolverDep,
) -> ImageRewriteResponse:
    attributes = {"src": request.src}
    if request.srcset is not None:
        attributes["srcset"] = request.srcset

    rewritten = resolver.rewrite_image_attributes(attributes, request.record_id)
    return ImageRewriteResponse(src=rewritten["src"], srcset=rewritten.get("srcset"))

"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be overridden in tests (app.dependency_overrides)
- Configuration is centralized
- Resource lifecycle (HTTP clients) is managed in one place

The record store and the object store client are process-wide: the
store holds the media library, and the client's connection pool is
reused by background tasks that outlive the request that queued them.
Everything else is cheap and built per request.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings, get_settings
from ..core.offload import MediaIngestHandler, MediaOffloader, ObjectStore
from ..core.media import URLResolver
from ..core.sync import BatchEngine, SyncSelector
from ..infrastructure.records import InMemoryMediaStore
from ..infrastructure.storage import create_object_store_client

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Process-wide instances, created on first use
_record_store: Optional[InMemoryMediaStore] = None
_object_store: Optional[ObjectStore] = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:4]}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


# ---------------------------------------------------------------------------
# Shared Resources
# ---------------------------------------------------------------------------

def get_record_store() -> InMemoryMediaStore:
    """Provide the shared media record store."""
    global _record_store

    if _record_store is None:
        _record_store = InMemoryMediaStore()
        logger.info("Created shared in-memory media record store")
    return _record_store


def get_object_store(
    settings: Annotated[Settings, Depends(get_settings)],
) -> ObjectStore:
    """
    Provide the object store client.

    Returns either the R2 client or the in-memory mock based on settings.
    An unconfigured R2 client is still returned: operations raise
    NotConfiguredError, which the API reports as 409.
    """
    global _object_store

    if _object_store is None:
        if settings.r2_mock_mode:
            _object_store = create_object_store_client(mock_mode=True)
            logger.info("Created shared mock object store client")
        else:
            _object_store = create_object_store_client(credentials=settings.credentials)
            logger.info("Created shared R2 object store client")
    return _object_store


def close_shared_resources() -> None:
    """Release process-wide instances. Called on shutdown and between tests."""
    global _record_store, _object_store

    if _object_store is not None:
        _object_store.close()
    _object_store = None
    _record_store = None


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_offloader(
    settings: Annotated[Settings, Depends(get_settings)],
    client: Annotated[ObjectStore, Depends(get_object_store)],
    store: Annotated[InMemoryMediaStore, Depends(get_record_store)],
) -> MediaOffloader:
    return MediaOffloader(client, store, settings.offload_config)


def get_sync_selector(
    store: Annotated[InMemoryMediaStore, Depends(get_record_store)],
) -> SyncSelector:
    return SyncSelector(store)


def get_batch_engine(
    selector: Annotated[SyncSelector, Depends(get_sync_selector)],
    offloader: Annotated[MediaOffloader, Depends(get_offloader)],
    store: Annotated[InMemoryMediaStore, Depends(get_record_store)],
) -> BatchEngine:
    return BatchEngine(selector, offloader, store)


def get_url_resolver(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[InMemoryMediaStore, Depends(get_record_store)],
) -> URLResolver:
    return URLResolver(store, settings.offload_config, settings.uploads_base_url)


def get_ingest_handler(
    settings: Annotated[Settings, Depends(get_settings)],
    offloader: Annotated[MediaOffloader, Depends(get_offloader)],
    store: Annotated[InMemoryMediaStore, Depends(get_record_store)],
) -> MediaIngestHandler:
    return MediaIngestHandler(offloader, store, settings.offload_config)


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedKey = Annotated[str, Depends(verify_api_key)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
RecordStoreDep = Annotated[InMemoryMediaStore, Depends(get_record_store)]
ObjectStoreDep = Annotated[ObjectStore, Depends(get_object_store)]
OffloaderDep = Annotated[MediaOffloader, Depends(get_offloader)]
SyncSelectorDep = Annotated[SyncSelector, Depends(get_sync_selector)]
BatchEngineDep = Annotated[BatchEngine, Depends(get_batch_engine)]
URLResolverDep = Annotated[URLResolver, Depends(get_url_resolver)]
IngestHandlerDep = Annotated[MediaIngestHandler, Depends(get_ingest_handler)]

"""
Object store connectivity endpoint.

Backs the "test connection" action of an admin screen: one signed HEAD
against the bucket, reported back as a plain success flag and message
rather than an HTTP error, so the caller can show it verbatim.
"""

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from ...core.media.errors import StorageError
from ..dependencies import AuthenticatedKey, OffloaderDep

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    error_code: str | None = None


@router.post(
    "/test-connection",
    response_model=ConnectionTestResponse,
    summary="Test R2 connection",
)
def test_connection(
    api_key: AuthenticatedKey,
    offloader: OffloaderDep,
) -> ConnectionTestResponse:
    try:
        offloader.test_connection()
    except StorageError as e:
        logger.warning("Connection test failed", extra={"error": e.message, "code": e.code})
        return ConnectionTestResponse(success=False, message=e.message, error_code=e.code)

    return ConnectionTestResponse(success=True, message="Connection successful")

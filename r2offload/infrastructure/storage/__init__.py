"""
Object storage integration for offloaded media.

Talks to Cloudflare R2 through its S3-compatible API using SigV4 signed
httpx requests. Includes mock mode for local development without
credentials.
"""

from .client import (
    MockObjectStoreClient,
    R2ObjectStoreClient,
    create_object_store_client,
    parse_error_response,
)
from .signer import RequestSigner, encode_path

__all__ = [
    "MockObjectStoreClient",
    "R2ObjectStoreClient",
    "RequestSigner",
    "create_object_store_client",
    "encode_path",
    "parse_error_response",
]

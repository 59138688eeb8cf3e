"""
Object store client for media offload.

Talks to Cloudflare R2 (S3-compatible) over plain HTTPS with SigV4
signed requests, with a mock mode for local development.

Using httpx with our own signer instead of an SDK because:
- Only three operations are needed (PUT, DELETE, HEAD)
- The transport is injectable, so tests run against httpx.MockTransport
  without network access
- Error classification stays in our hands instead of being spread
  across SDK exception types

Failure handling:
- Transport errors and timeouts are retried (two retries, one second
  apart) for uploads and deletes
- Any HTTP status that comes back is authoritative and never retried
- S3 XML error bodies are parsed so known codes become actionable
  messages
"""

import logging
import mimetypes
import os
import time
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Callable, Optional

import httpx

from ...core.media.errors import (
    AuthError,
    LocalFileEmptyError,
    LocalFileMissingError,
    NetworkError,
    NotConfiguredError,
    ObjectNotFoundError,
    ServerError,
    StorageError,
)
from ...core.media.keys import KeyDeriver
from ...core.media.models import FULL_VARIANT, Credentials, UploadResult
from .signer import RequestSigner, encode_path

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT_SECONDS = 45.0
DELETE_TIMEOUT_SECONDS = 30.0
CONNECTION_TEST_TIMEOUT_SECONDS = 15.0

MAX_RETRIES = 2
RETRY_DELAY_SECONDS = 1.0


def _known_error(code: str, bucket_name: str) -> Optional[StorageError]:
    """Translate S3 error codes users can act on into specific errors."""
    if code == "AccessDenied":
        return AuthError(
            "Access denied: check that the API token has object read and write permission",
            code=code,
        )
    if code == "NoSuchBucket":
        return ObjectNotFoundError(
            f"Bucket does not exist: check the bucket name ({bucket_name})",
            code=code,
        )
    if code == "SignatureDoesNotMatch":
        return AuthError(
            "Signature mismatch: check the access key ID and secret access key",
            code=code,
        )
    return None


def _error_class_for_status(status_code: int) -> type[StorageError]:
    if status_code in (401, 403):
        return AuthError
    if status_code == 404:
        return ObjectNotFoundError
    return ServerError


def parse_error_response(response: httpx.Response, bucket_name: str) -> StorageError:
    """
    Build a StorageError from a non-success response.

    S3 error bodies look like:
        <Error><Code>AccessDenied</Code><Message>...</Message></Error>
    Bodies that aren't S3 XML fall back to "HTTP <status>: <first 200 chars>".
    """
    body = response.text or ""
    status_code = response.status_code

    code = None
    message = None
    if body.lstrip().startswith("<"):
        try:
            root = ET.fromstring(body)
        except ET.ParseError:
            root = None
        if root is not None:
            code = root.findtext("Code")
            message = root.findtext("Message")

    if code:
        error = _known_error(code, bucket_name)
        if error is not None:
            error.status_code = status_code
            return error
        error_class = _error_class_for_status(status_code)
        return error_class(
            f"{code}: {message or 'no message'}",
            code=code,
            status_code=status_code,
        )

    error_class = _error_class_for_status(status_code)
    return error_class(f"HTTP {status_code}: {body[:200]}", status_code=status_code)


class R2ObjectStoreClient:
    """
    Cloudflare R2 object store client.

    Path-style addressing is used throughout: objects live at
    {endpoint}/{bucket}/{key}. That works for every R2 account without
    DNS setup per bucket.

    The client is synchronous. It is driven from batch loops and
    background tasks where blocking one worker thread is fine.
    """

    def __init__(
        self,
        credentials: Credentials,
        http_client: Optional[httpx.Client] = None,
        signer: Optional[RequestSigner] = None,
        key_deriver: Optional[KeyDeriver] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._credentials = credentials
        self._http = http_client or httpx.Client()
        self._signer = signer or RequestSigner(credentials)
        self._keys = key_deriver or KeyDeriver(credentials)
        self._sleep = sleep

        logger.info(
            "Initialized R2 object store client",
            extra={
                "bucket": credentials.bucket_name,
                "endpoint": credentials.endpoint,
            }
        )

    def is_configured(self) -> bool:
        return self._credentials.is_configured()

    def public_url(self, key: str) -> str:
        return self._keys.public_url(key)

    def close(self) -> None:
        self._http.close()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def upload(
        self,
        record_id: int,
        local_path: str,
        variant: str = FULL_VARIANT,
        uploaded_at: Optional[datetime] = None,
    ) -> UploadResult:
        """
        Upload one local file and return its key and public URL.

        The key is derived from the file name and the record's upload
        date. Content type is guessed from the extension.

        Raises:
            NotConfiguredError: credentials incomplete, nothing was sent
            LocalFileMissingError / LocalFileEmptyError: bad local file
            NetworkError: transport failed on every attempt
            AuthError / ObjectNotFoundError / ServerError: store rejected the PUT
        """
        self._require_configured()

        if not os.path.isfile(local_path):
            raise LocalFileMissingError(f"Local file does not exist: {local_path}")
        size = os.path.getsize(local_path)
        if size == 0:
            raise LocalFileEmptyError(f"Local file is empty: {local_path}")

        with open(local_path, "rb") as f:
            body = f.read()

        filename = os.path.basename(local_path)
        key = self._keys.derive_key(record_id, filename, variant, uploaded_at)
        # unknown types go unsigned and without a Content-Type header
        content_type = mimetypes.guess_type(filename)[0]

        response = self._send_with_retry(
            "PUT",
            key,
            body=body,
            content_type=content_type,
            timeout=UPLOAD_TIMEOUT_SECONDS,
        )
        if response.status_code != 200:
            error = parse_error_response(response, self._credentials.bucket_name)
            logger.error(
                "Upload rejected",
                extra={
                    "record_id": record_id,
                    "variant": variant,
                    "key": key,
                    "status_code": response.status_code,
                    "error": error.message,
                }
            )
            raise error

        url = self._keys.public_url(key)
        logger.info(
            "Uploaded object",
            extra={
                "record_id": record_id,
                "variant": variant,
                "key": key,
                "size_bytes": size,
            }
        )
        return UploadResult(key=key, url=url, size=size)

    def delete(self, key: str) -> None:
        """
        Delete one object.

        A 404 counts as success: the object is gone either way.
        """
        self._require_configured()

        response = self._send_with_retry("DELETE", key, timeout=DELETE_TIMEOUT_SECONDS)
        if response.status_code in (204, 404):
            logger.info("Deleted object", extra={"key": key, "status_code": response.status_code})
            return

        error = parse_error_response(response, self._credentials.bucket_name)
        logger.error(
            "Delete rejected",
            extra={"key": key, "status_code": response.status_code, "error": error.message}
        )
        raise error

    def test_connection(self) -> None:
        """
        Check that the endpoint is reachable and the bucket exists.

        HEAD on the bucket: 200 means full access, 403 still proves the
        endpoint and bucket answered. Anything else raises. Not retried,
        since this backs an interactive "test connection" button.
        """
        self._require_configured()

        response = self._send(
            "HEAD",
            f"/{self._credentials.bucket_name}/",
            timeout=CONNECTION_TEST_TIMEOUT_SECONDS,
        )
        if response.status_code in (200, 403):
            logger.info(
                "Connection test passed",
                extra={"bucket": self._credentials.bucket_name, "status_code": response.status_code}
            )
            return

        raise parse_error_response(response, self._credentials.bucket_name)

    # -------------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------------

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise NotConfiguredError(
                "R2 is not configured: account ID, access key ID, secret access key "
                "and bucket name are all required"
            )

    def _object_path(self, key: str) -> str:
        return f"/{self._credentials.bucket_name}/{key}"

    def _send(
        self,
        method: str,
        path: str,
        body: bytes = b"",
        content_type: Optional[str] = None,
        timeout: float = UPLOAD_TIMEOUT_SECONDS,
    ) -> httpx.Response:
        """Sign and send one request. Transport failures become NetworkError."""
        headers = self._signer.sign(method, path, body=body, content_type=content_type)
        url = self._credentials.endpoint + encode_path(path)

        try:
            return self._http.request(
                method,
                url,
                content=body if body else None,
                headers=headers,
                timeout=timeout,
            )
        except httpx.TransportError as e:
            raise NetworkError(
                f"Network connection failed: {e}. Check server network and firewall settings"
            ) from e

    def _send_with_retry(
        self,
        method: str,
        key: str,
        body: bytes = b"",
        content_type: Optional[str] = None,
        timeout: float = UPLOAD_TIMEOUT_SECONDS,
    ) -> httpx.Response:
        """
        Send an object request, retrying transport failures only.

        Each attempt is signed afresh so the X-Amz-Date stays current.
        """
        path = self._object_path(key)

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                return self._send(method, path, body=body, content_type=content_type, timeout=timeout)
            except NetworkError as e:
                logger.warning(
                    "Request failed, retrying",
                    extra={"method": method, "key": key, "attempt": attempt, "error": e.message}
                )
                self._sleep(RETRY_DELAY_SECONDS)

        # last attempt, a NetworkError here propagates
        return self._send(method, path, body=body, content_type=content_type, timeout=timeout)


class MockObjectStoreClient:
    """
    In-memory object store for local development and tests.

    Performs the same local file checks and key derivation as the real
    client so records end up with realistic metadata. Objects are kept
    in a dict keyed by object key.
    """

    def __init__(
        self,
        credentials: Optional[Credentials] = None,
        configured: bool = True,
    ) -> None:
        self._credentials = credentials or Credentials(
            account_id="mock",
            access_key_id="mock",
            secret_access_key="mock",
            bucket_name="mock-bucket",
            custom_public_base_url="https://media.example.test",
        )
        self._keys = KeyDeriver(self._credentials)
        self._configured = configured
        self.objects: dict[str, bytes] = {}
        self.put_count = 0
        self.deleted_keys: list[str] = []
        logger.info("Initialized mock object store (in-memory)")

    def is_configured(self) -> bool:
        return self._configured

    def public_url(self, key: str) -> str:
        return self._keys.public_url(key)

    def close(self) -> None:
        pass

    def upload(
        self,
        record_id: int,
        local_path: str,
        variant: str = FULL_VARIANT,
        uploaded_at: Optional[datetime] = None,
    ) -> UploadResult:
        """Store file contents in memory."""
        if not self._configured:
            raise NotConfiguredError("Mock object store is marked as not configured")
        if not os.path.isfile(local_path):
            raise LocalFileMissingError(f"Local file does not exist: {local_path}")
        with open(local_path, "rb") as f:
            body = f.read()
        if not body:
            raise LocalFileEmptyError(f"Local file is empty: {local_path}")

        key = self._keys.derive_key(record_id, os.path.basename(local_path), variant, uploaded_at)
        self.objects[key] = body
        self.put_count += 1

        logger.debug(
            "Stored object in mock storage",
            extra={"record_id": record_id, "variant": variant, "key": key, "size_bytes": len(body)}
        )
        return UploadResult(key=key, url=self._keys.public_url(key), size=len(body))

    def delete(self, key: str) -> None:
        """Remove from memory. Unknown keys are not an error."""
        if not self._configured:
            raise NotConfiguredError("Mock object store is marked as not configured")
        self.objects.pop(key, None)
        self.deleted_keys.append(key)

    def test_connection(self) -> None:
        if not self._configured:
            raise NotConfiguredError("Mock object store is marked as not configured")


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_object_store_client(
    credentials: Optional[Credentials] = None,
    mock_mode: bool = False,
) -> R2ObjectStoreClient | MockObjectStoreClient:
    """
    Create object store client based on configuration.

    Factory function pattern because:
    - Centralizes client creation logic
    - Makes mock vs real decision explicit
    - Simplifies dependency injection in FastAPI

    Args:
        credentials: R2 credentials (required if not mock_mode)
        mock_mode: If True, return the in-memory client

    Returns:
        R2ObjectStoreClient or MockObjectStoreClient
    """
    if mock_mode:
        return MockObjectStoreClient()

    if credentials is None:
        raise ValueError("credentials are required when not in mock mode")

    return R2ObjectStoreClient(credentials)

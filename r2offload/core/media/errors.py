"""
Storage failure taxonomy.

Every failure that crosses the object store boundary is one of these.
Callers branch on the class, not on message text:
- NotConfiguredError and AuthError are fatal for a bulk run, retrying
  the next record cannot succeed either
- LocalFile* errors belong to a single record and never stop a batch
- NetworkError is the only class the client retries on its own
"""

from typing import Optional


class StorageError(Exception):
    """
    Base class for object store failures.

    Carries the remote error code (when the store sent one) and the HTTP
    status (when a response was received at all) so API handlers can
    report them without re-parsing the message.
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class NotConfiguredError(StorageError):
    """Credentials are incomplete, no request was attempted."""
    pass


class LocalFileMissingError(StorageError):
    """The local file to upload does not exist."""
    pass


class LocalFileEmptyError(StorageError):
    """The local file to upload is zero bytes."""
    pass


class NetworkError(StorageError):
    """Transport failure or timeout before any HTTP status arrived."""
    pass


class AuthError(StorageError):
    """Credentials were rejected (AccessDenied, SignatureDoesNotMatch, 401/403)."""
    pass


class ObjectNotFoundError(StorageError):
    """Bucket or object does not exist."""
    pass


class ServerError(StorageError):
    """Any other non-success HTTP status."""
    pass


def is_fatal(error: BaseException) -> bool:
    """True when continuing a bulk run after this error is pointless."""
    return isinstance(error, (NotConfiguredError, AuthError))

"""Application exception types."""

from upload_queue.schemas.error import ErrorResponse


class ApiError(Exception):
    """Structured API error that maps directly to contract error payloads."""

    def __init__(self, status_code: int, code: str, message: str, details: dict | None = None) -> None:
        self.status_code = status_code
        self.payload = ErrorResponse(code=code, message=message, details=details)
        super().__init__(message)


class StorageUnavailable(Exception):
    """Local bookkeeping store could not complete an operation."""


class StoreConnectionClosed(StorageUnavailable):
    """The store connection was closed or invalidated underneath the caller."""


class StoreBusy(StorageUnavailable):
    """The store is locked by another writer; safe to retry shortly."""


class CredentialsMissing(Exception):
    """No usable API secret exists for a tenant."""


__all__ = [
    "ApiError",
    "CredentialsMissing",
    "StorageUnavailable",
    "StoreBusy",
    "StoreConnectionClosed",
]

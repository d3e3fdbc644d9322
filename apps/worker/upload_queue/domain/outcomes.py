"""Remote call outcomes and their normalization into failures.

The remote service reports problems three ways: a non-2xx status, a
transport error with no response at all, or a 2xx response whose body says
``{"success": false, ...}``. Everything downstream of this module only sees
``UploadFailure`` so the third case can never be mistaken for success.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

AUTH_ERROR_CODES = frozenset({"NO_AUTH", "BAD_TOKEN", "AUTH_ERROR"})
_AUTH_STATUS_CODES = frozenset({401, 403})


@dataclass(frozen=True, slots=True)
class RemoteResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)


class RemoteCallError(Exception):
    """Raised by upload clients for HTTP error statuses and transport failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: dict[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body or {}
        self.headers = dict(headers or {})
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class UploadFailure:
    message: str
    status_code: int | None = None
    error_code: str | None = None
    detail: str | None = None
    retry_after_ms: int | None = None
    soft: bool = False
    remote: bool = True

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in _AUTH_STATUS_CODES or self.error_code in AUTH_ERROR_CODES


def parse_retry_after(headers: Mapping[str, str]) -> int | None:
    """Return the ``Retry-After`` hint in milliseconds, if it is a number of seconds."""
    for key, value in headers.items():
        if key.lower() != "retry-after":
            continue
        try:
            return max(0, int(str(value).strip())) * 1000
        except ValueError:
            return None
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def failure_from_response(response: RemoteResponse) -> UploadFailure | None:
    """Return ``None`` for a genuine success, else the embedded soft failure."""
    body = response.body if isinstance(response.body, dict) else {}
    if body.get("success") is not False:
        return None

    error_code = _text(body.get("error"))
    detail = _text(body.get("detail"))
    return UploadFailure(
        message=detail or error_code or "Remote service reported failure",
        status_code=response.status_code,
        error_code=error_code,
        detail=detail,
        retry_after_ms=parse_retry_after(response.headers),
        soft=True,
    )


def failure_from_error(exc: RemoteCallError) -> UploadFailure:
    body = exc.body if isinstance(exc.body, dict) else {}
    return UploadFailure(
        message=str(exc),
        status_code=exc.status_code,
        error_code=_text(body.get("error")),
        detail=_text(body.get("detail")),
        retry_after_ms=parse_retry_after(exc.headers),
    )


def local_failure(error_code: str, message: str) -> UploadFailure:
    """A failure detected before any remote call was made."""
    return UploadFailure(message=message, error_code=error_code, remote=False)

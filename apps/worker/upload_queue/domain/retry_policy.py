"""Classify a failed upload attempt into the job's next state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from upload_queue.domain.outcomes import UploadFailure
from upload_queue.domain.rate_window import RATE_LIMIT_FALLBACK_MS
from upload_queue.schemas.upload import UploadStatus

MAX_RETRIES = 3
INITIAL_BACKOFF_MS = 30_000
MAX_BACKOFF_MS = 300_000

NON_RETRYABLE_ERRORS = frozenset(
    {
        "DATABASE_ERROR",
        "NO_AUTH",
        "BAD_TOKEN",
        "AUTH_ERROR",
        "INVALID_OPTION",
        "MISSING_REQUIRED_OPTION",
        "BOZO_NZB",
        "BOZO_TORRENT",
        "DOWNLOAD_TOO_LARGE",
        "MONTHLY_LIMIT",
        "ACTIVE_LIMIT",
        "FILE_NOT_FOUND",
    }
)
_NON_RETRYABLE_DETAILS = (
    "You must provide either a file or magnet link",
    "Private torrent downloading is currently disabled",
)
_RATE_LIMIT_CODES = frozenset({"RATE_LIMITED", "RATE_LIMIT", "TOO_MANY_REQUESTS"})

FILE_NOT_FOUND_MESSAGE = "File not found. The upload file may have been deleted."
_FRIENDLY_MESSAGES = {
    "FILE_NOT_FOUND": FILE_NOT_FOUND_MESSAGE,
    "MISSING_REQUIRED_OPTION": "Missing required option. Please check upload settings.",
    "INVALID_OPTION": "Invalid option. Please check upload settings.",
    "NO_AUTH": "API key is invalid or missing. Please update your API key.",
    "BAD_TOKEN": "API key is invalid or missing. Please update your API key.",
    "AUTH_ERROR": "API key is invalid or missing. Please update your API key.",
}


class FailureKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    PERMANENT = "permanent"
    TRANSIENT = "transient"


@dataclass(frozen=True, slots=True)
class RetryDecision:
    kind: FailureKind
    status: UploadStatus
    retry_count: int
    delay_ms: int
    message: str | None


def is_rate_limited(failure: UploadFailure) -> bool:
    if failure.status_code == 429 or failure.error_code in _RATE_LIMIT_CODES:
        return True
    return "429" in failure.message


def is_non_retryable(failure: UploadFailure) -> bool:
    if failure.error_code in NON_RETRYABLE_ERRORS:
        return True
    detail = failure.detail or ""
    return any(phrase in detail or phrase in failure.message for phrase in _NON_RETRYABLE_DETAILS)


def backoff_delay_ms(retry_count: int) -> int:
    return min(INITIAL_BACKOFF_MS * 2 ** max(retry_count - 1, 0), MAX_BACKOFF_MS)


def user_facing_message(failure: UploadFailure) -> str:
    if failure.error_code in _FRIENDLY_MESSAGES:
        return _FRIENDLY_MESSAGES[failure.error_code]
    if "File not found" in failure.message:
        return FILE_NOT_FOUND_MESSAGE
    if "You must provide either a file or magnet link" in (failure.detail or ""):
        return "Invalid upload: file or magnet link is required."
    return failure.detail or failure.message or "Unknown error"


def classify_failure(failure: UploadFailure, *, retry_count: int, rate_limit_delay_ms: int | None = None) -> RetryDecision:
    """Decide status, retry count, delay and message for a failed attempt.

    ``rate_limit_delay_ms`` is the accountant's wait for the lane; it is only
    consulted for rate-limited failures without a server hint.
    """
    if is_rate_limited(failure):
        if failure.retry_after_ms is not None:
            delay_ms = failure.retry_after_ms
        elif rate_limit_delay_ms:
            delay_ms = rate_limit_delay_ms
        else:
            delay_ms = RATE_LIMIT_FALLBACK_MS
        return RetryDecision(
            kind=FailureKind.RATE_LIMITED,
            status=UploadStatus.QUEUED,
            retry_count=retry_count,
            delay_ms=delay_ms,
            message=None,
        )

    message = user_facing_message(failure)
    if is_non_retryable(failure):
        return RetryDecision(
            kind=FailureKind.PERMANENT,
            status=UploadStatus.FAILED,
            retry_count=retry_count,
            delay_ms=0,
            message=message,
        )

    new_retry_count = retry_count + 1
    if new_retry_count > MAX_RETRIES:
        return RetryDecision(
            kind=FailureKind.PERMANENT,
            status=UploadStatus.FAILED,
            retry_count=new_retry_count,
            delay_ms=0,
            message=message,
        )

    return RetryDecision(
        kind=FailureKind.TRANSIENT,
        status=UploadStatus.QUEUED,
        retry_count=new_retry_count,
        delay_ms=backoff_delay_ms(new_retry_count),
        message=message,
    )

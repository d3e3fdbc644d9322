"""Upload lifecycle transition rules."""

from upload_queue.errors import ApiError
from upload_queue.schemas.upload import UploadStatus

_TERMINAL_STATES: set[UploadStatus] = {
    UploadStatus.COMPLETED,
    UploadStatus.FAILED,
}

# Transitions the processor may apply on its own. A failed upload can only
# leave FAILED through an explicit user retry (see ``ensure_user_retry``).
_ALLOWED_TRANSITIONS: dict[UploadStatus, set[UploadStatus]] = {
    UploadStatus.QUEUED: {UploadStatus.PROCESSING},
    UploadStatus.PROCESSING: {UploadStatus.QUEUED, UploadStatus.COMPLETED, UploadStatus.FAILED},
    UploadStatus.COMPLETED: set(),
    UploadStatus.FAILED: set(),
}


def allowed_next_statuses(status: UploadStatus) -> list[UploadStatus]:
    """Return deterministically ordered allowed successors for a status."""
    return sorted(_ALLOWED_TRANSITIONS.get(status, set()), key=lambda s: s.value)


def ensure_transition(old_status: UploadStatus, new_status: UploadStatus) -> None:
    """Validate transition according to lifecycle rules."""
    if old_status in _TERMINAL_STATES:
        raise ApiError(
            status_code=409,
            code="FSM_TERMINAL_IMMUTABLE",
            message="Terminal state cannot be mutated",
            details={
                "current_status": old_status,
                "attempted_status": new_status,
                "allowed_next_statuses": [],
            },
        )

    if new_status not in _ALLOWED_TRANSITIONS.get(old_status, set()):
        raise ApiError(
            status_code=409,
            code="FSM_TRANSITION_INVALID",
            message="Invalid status transition",
            details={
                "current_status": old_status,
                "attempted_status": new_status,
                "allowed_next_statuses": allowed_next_statuses(old_status),
            },
        )


def ensure_user_retry(status: UploadStatus) -> None:
    """Only failed uploads may be requeued by their owner."""
    if status is not UploadStatus.FAILED:
        raise ApiError(
            status_code=409,
            code="FSM_TRANSITION_INVALID",
            message="Only failed uploads can be retried",
            details={
                "current_status": status,
                "attempted_status": UploadStatus.QUEUED,
                "allowed_next_statuses": allowed_next_statuses(status),
            },
        )

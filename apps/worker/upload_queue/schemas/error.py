"""Error payloads returned by the upload API."""

from typing import Any, Literal

from pydantic import BaseModel

from upload_queue.schemas.upload import UploadStatus


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class UnauthorizedError(BaseModel):
    code: Literal["UNAUTHORIZED"]
    message: str


class UploadValidationError(BaseModel):
    code: Literal["VALIDATION_ERROR"]
    message: str
    details: dict[str, Any] | None = None


class TransitionErrorDetails(BaseModel):
    current_status: UploadStatus
    attempted_status: UploadStatus
    allowed_next_statuses: list[UploadStatus] | None = None


class FsmTransitionError(BaseModel):
    code: Literal["FSM_TRANSITION_INVALID", "FSM_TERMINAL_IMMUTABLE"]
    message: str
    details: TransitionErrorDetails


class NoLeakNotFoundError(BaseModel):
    """Other tenants' uploads are indistinguishable from missing ones."""

    code: Literal["RESOURCE_NOT_FOUND"]
    message: str

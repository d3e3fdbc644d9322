"""Upload schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class UploadStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Lane(str, Enum):
    TORRENT = "torrent"
    USENET = "usenet"
    WEBDL = "webdl"


LANES: tuple[Lane, ...] = (Lane.TORRENT, Lane.USENET, Lane.WEBDL)


class PayloadKind(str, Enum):
    FILE = "file"
    MAGNET = "magnet"
    LINK = "link"


class PayloadDescriptor(BaseModel):
    kind: PayloadKind
    file_path: str | None = None
    url: str | None = None
    name: str = Field(min_length=1)


class UploadOptions(BaseModel):
    seed: int | None = None
    allow_zip: bool = True
    as_queued: bool = False
    password: str | None = None


class EnqueueRequest(BaseModel):
    lane: Lane
    kind: PayloadKind
    url: str = Field(min_length=1)
    name: str = Field(min_length=1)
    options: UploadOptions = Field(default_factory=UploadOptions)


class Upload(BaseModel):
    id: int
    lane: Lane
    kind: PayloadKind
    name: str
    status: UploadStatus
    file_path: str | None = None
    url: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    queue_order: int
    next_attempt_at: datetime | None = None
    last_processed_at: datetime | None = None
    completed_at: datetime | None = None
    file_deleted: bool = False
    created_at: datetime
    updated_at: datetime | None = None


class EnqueueResponse(BaseModel):
    upload_id: int
    status: UploadStatus

"""Remote upload service interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from upload_queue.domain.outcomes import RemoteResponse
from upload_queue.schemas.upload import Lane


@dataclass(frozen=True, slots=True)
class UploadPayload:
    """Multipart form fields plus an optional file part."""

    fields: dict[str, str] = field(default_factory=dict)
    file_name: str | None = None
    file_content: bytes | None = None


class UploadClient(ABC):
    """One authenticated session against the remote download service.

    Implementations return a ``RemoteResponse`` for 2xx replies (whose body may
    still report a business failure) and raise ``RemoteCallError`` otherwise.
    """

    @abstractmethod
    def create_torrent_upload(self, payload: UploadPayload) -> RemoteResponse:
        """Submit a torrent file or magnet link."""

    @abstractmethod
    def create_usenet_upload(self, payload: UploadPayload) -> RemoteResponse:
        """Submit an NZB file or link."""

    @abstractmethod
    def create_web_upload(self, payload: UploadPayload) -> RemoteResponse:
        """Submit a web download link."""

    def create_upload(self, lane: Lane, payload: UploadPayload) -> RemoteResponse:
        if lane is Lane.USENET:
            return self.create_usenet_upload(payload)
        if lane is Lane.WEBDL:
            return self.create_web_upload(payload)
        return self.create_torrent_upload(payload)

    def close(self) -> None:
        return None


__all__ = ["UploadClient", "UploadPayload"]

"""Remote upload service adapters."""

from .base import UploadClient, UploadPayload
from .http_client import HttpUploadClient

__all__ = ["HttpUploadClient", "UploadClient", "UploadPayload"]

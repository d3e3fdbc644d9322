"""User file storage adapters."""

from .base import FileStorage, StoredFile, UnsafeFilePathError
from .local import LocalFileStorage

__all__ = ["FileStorage", "LocalFileStorage", "StoredFile", "UnsafeFilePathError"]

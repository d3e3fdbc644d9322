"""User file storage interfaces."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


class UnsafeFilePathError(Exception):
    """Raised when a path resolves outside the tenant's upload directory."""


@dataclass(frozen=True, slots=True)
class StoredFile:
    path: str
    size: int
    mtime: datetime


class FileStorage(ABC):
    """Upload payload files, addressed by paths relative to the storage root."""

    @abstractmethod
    def save(self, tenant_id: str, lane: str, filename: str, content: bytes) -> str:
        """Persist ``content`` and return its relative path."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Return whether the file is present."""

    @abstractmethod
    def read(self, path: str) -> bytes:
        """Return the file content; raises ``FileNotFoundError`` when absent."""

    @abstractmethod
    def delete(self, tenant_id: str, path: str) -> bool:
        """Remove a tenant's file; ``False`` when it was already gone."""

    @abstractmethod
    def list_files(self, tenant_id: str) -> list[StoredFile]:
        """Every file of the tenant, oldest first."""

    @abstractmethod
    def is_tenant_path(self, tenant_id: str, path: str) -> bool:
        """Return whether ``path`` lies inside the tenant's upload directory."""

    def total_size(self, tenant_id: str) -> int:
        return sum(item.size for item in self.list_files(tenant_id))


__all__ = ["FileStorage", "StoredFile", "UnsafeFilePathError"]

"""Local filesystem storage under ``<root>/user_<tenant>/<lane>/``."""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from pathlib import Path
import re
import secrets
import time

from upload_queue.adapters.file_storage.base import FileStorage, StoredFile, UnsafeFilePathError
from upload_queue.core.logging_safety import tenant_token

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_MAX_STEM_LENGTH = 100


def safe_filename(original: str) -> str:
    """Sanitized stem plus a timestamp and random suffix, keeping the extension."""
    source = Path(original)
    stem = _UNSAFE_CHARS.sub("_", source.stem)[:_MAX_STEM_LENGTH] or "upload"
    return f"{stem}_{int(time.time() * 1000)}_{secrets.token_hex(6)}{source.suffix}"


class LocalFileStorage(FileStorage):
    def __init__(self, root: Path) -> None:
        self._root = Path(root).resolve()

    def _tenant_dir(self, tenant_id: str) -> Path:
        return self._root / f"user_{_UNSAFE_CHARS.sub('_', tenant_id)}"

    def _absolute(self, path: str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._root / candidate
        return candidate.resolve()

    def is_tenant_path(self, tenant_id: str, path: str) -> bool:
        return self._absolute(path).is_relative_to(self._tenant_dir(tenant_id).resolve())

    def save(self, tenant_id: str, lane: str, filename: str, content: bytes) -> str:
        target_dir = self._tenant_dir(tenant_id) / lane
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / safe_filename(filename)
        target.write_bytes(content)
        relative = target.relative_to(self._root).as_posix()
        logger.info("file.saved tenant=%s lane=%s bytes=%s", tenant_token(tenant_id), lane, len(content))
        return relative

    def exists(self, path: str) -> bool:
        return self._absolute(path).is_file()

    def read(self, path: str) -> bytes:
        return self._absolute(path).read_bytes()

    def delete(self, tenant_id: str, path: str) -> bool:
        if not self.is_tenant_path(tenant_id, path):
            logger.error("file.delete_rejected tenant=%s reason=path_outside_tenant_dir", tenant_token(tenant_id))
            raise UnsafeFilePathError("Invalid file path: path must be within user upload directory")

        target = self._absolute(path)
        try:
            target.unlink()
        except FileNotFoundError:
            logger.warning("file.delete_missing tenant=%s", tenant_token(tenant_id))
            return False
        logger.info("file.deleted tenant=%s", tenant_token(tenant_id))
        return True

    def list_files(self, tenant_id: str) -> list[StoredFile]:
        tenant_dir = self._tenant_dir(tenant_id)
        if not tenant_dir.is_dir():
            return []

        files: list[StoredFile] = []
        for entry in tenant_dir.rglob("*"):
            if not entry.is_file():
                continue
            stat = entry.stat()
            files.append(
                StoredFile(
                    path=entry.resolve().relative_to(self._root).as_posix(),
                    size=stat.st_size,
                    mtime=datetime.fromtimestamp(stat.st_mtime, UTC).replace(tzinfo=None),
                )
            )
        files.sort(key=lambda item: (item.mtime, item.path))
        return files

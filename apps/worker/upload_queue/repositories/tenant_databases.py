"""Opens and caches one database engine per tenant."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable
import logging
from pathlib import Path
import re
import threading

from sqlalchemy import Engine, create_engine

from upload_queue.core.logging_safety import tenant_token
from upload_queue.repositories.sql import UploadStore

logger = logging.getLogger(__name__)

EngineFactory = Callable[[str], Engine]

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sqlite_engine_factory(data_dir: Path) -> EngineFactory:
    """Engines backed by ``<data_dir>/tenants/tenant_<id>.db``."""

    def factory(tenant_id: str) -> Engine:
        tenants_dir = Path(data_dir) / "tenants"
        tenants_dir.mkdir(parents=True, exist_ok=True)
        safe_name = _UNSAFE_NAME_CHARS.sub("_", tenant_id)
        return create_engine(
            f"sqlite:///{tenants_dir / f'tenant_{safe_name}.db'}",
            connect_args={"check_same_thread": False, "timeout": 5},
        )

    return factory


class TenantDatabaseManager:
    """Bounded cache of open tenant stores; evicted stores are closed."""

    def __init__(self, engine_factory: EngineFactory, *, max_open: int = 200) -> None:
        self._engine_factory = engine_factory
        self._max_open = max(1, max_open)
        self._open: OrderedDict[str, tuple[Engine, UploadStore]] = OrderedDict()
        self._lock = threading.Lock()

    def get_store(self, tenant_id: str) -> UploadStore:
        with self._lock:
            entry = self._open.get(tenant_id)
            if entry is not None and not entry[1].closed:
                self._open.move_to_end(tenant_id)
                return entry[1]
            if entry is not None:
                self._close_entry(tenant_id, entry)

            engine = self._engine_factory(tenant_id)
            store = UploadStore(engine)
            store.create_schema()
            self._open[tenant_id] = (engine, store)
            while len(self._open) > self._max_open:
                oldest_id, oldest = self._open.popitem(last=False)
                self._close_entry(oldest_id, oldest)
            return store

    def evict(self, tenant_id: str) -> None:
        with self._lock:
            entry = self._open.pop(tenant_id, None)
            if entry is not None:
                self._close_entry(tenant_id, entry)

    def close_all(self) -> None:
        with self._lock:
            while self._open:
                tenant_id, entry = self._open.popitem(last=False)
                self._close_entry(tenant_id, entry)

    @staticmethod
    def _close_entry(tenant_id: str, entry: tuple[Engine, UploadStore]) -> None:
        engine, store = entry
        store.close()
        engine.dispose()
        logger.debug("tenant_db.closed tenant=%s", tenant_token(tenant_id))

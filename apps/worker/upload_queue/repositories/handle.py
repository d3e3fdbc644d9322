"""Reconnect-and-retry wrapper shared by every store-touching operation."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
from typing import TypeVar

from upload_queue.core.clock import Clock
from upload_queue.core.logging_safety import tenant_token
from upload_queue.domain.rate_window import AttemptWindow
from upload_queue.errors import StorageUnavailable, StoreConnectionClosed
from upload_queue.repositories.sql import UploadStore
from upload_queue.repositories.tenant_databases import TenantDatabaseManager
from upload_queue.schemas.upload import Lane

logger = logging.getLogger(__name__)

T = TypeVar("T")

BOOKKEEPING_ATTEMPTS = 3
BOOKKEEPING_INITIAL_DELAY_MS = 100


class StoreHandle:
    """The current store of one tenant.

    ``run`` re-acquires the store and retries exactly once when the connection
    turns out to be closed. ``run_bookkeeping`` additionally retries busy and
    closed errors a bounded number of times with exponential backoff; it is
    meant for writes that must land after a confirmed remote side effect.
    """

    def __init__(self, tenant_id: str, databases: TenantDatabaseManager, clock: Clock) -> None:
        self.tenant_id = tenant_id
        self._databases = databases
        self._clock = clock
        self._store = databases.get_store(tenant_id)

    @property
    def store(self) -> UploadStore:
        return self._store

    def reacquire(self) -> UploadStore:
        self._databases.evict(self.tenant_id)
        self._store = self._databases.get_store(self.tenant_id)
        return self._store

    def run(self, operation: Callable[[UploadStore], T], *, name: str) -> T:
        try:
            return operation(self._store)
        except StoreConnectionClosed:
            logger.warning("store.reconnect tenant=%s operation=%s", tenant_token(self.tenant_id), name)
            self.reacquire()
            return operation(self._store)

    def run_bookkeeping(
        self,
        operation: Callable[[UploadStore], T],
        *,
        name: str,
        attempts: int = BOOKKEEPING_ATTEMPTS,
    ) -> T:
        for attempt in range(attempts):
            try:
                return self.run(operation, name=name)
            except StorageUnavailable as exc:
                if attempt == attempts - 1:
                    raise
                delay_ms = BOOKKEEPING_INITIAL_DELAY_MS * 2**attempt
                logger.warning(
                    "store.retry tenant=%s operation=%s attempt=%s delay_ms=%s reason=%s",
                    tenant_token(self.tenant_id),
                    name,
                    attempt + 1,
                    delay_ms,
                    type(exc).__name__,
                )
                self._clock.sleep(delay_ms / 1000)
                if isinstance(exc, StoreConnectionClosed):
                    self.reacquire()
        raise StorageUnavailable(f"{name} was not attempted")

    def attempt_window(self, lane: Lane, since: datetime) -> AttemptWindow:
        return self.run(lambda store: store.attempt_window(lane, since), name="attempt_window")

"""Reclaims payload storage by age and per-tenant size cap."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import logging

from upload_queue.adapters.file_storage import FileStorage, StoredFile
from upload_queue.core.clock import Clock
from upload_queue.core.logging_safety import tenant_token
from upload_queue.repositories.handle import StoreHandle
from upload_queue.repositories.registry import TenantRegistry
from upload_queue.repositories.tenant_databases import TenantDatabaseManager
from upload_queue.services.counters import CounterSynchronizer

logger = logging.getLogger(__name__)

RETENTION_PERIOD = timedelta(days=30)
MAX_TENANT_STORAGE_BYTES = 50 * 1024 * 1024
RETENTION_INTERVAL = timedelta(hours=6)


@dataclass(slots=True)
class RetentionReport:
    tenants_swept: int = 0
    files_deleted: int = 0
    bytes_freed: int = 0
    queued_invalidated: int = 0


class RetentionSweeper:
    def __init__(
        self,
        databases: TenantDatabaseManager,
        registry: TenantRegistry,
        counters: CounterSynchronizer,
        files: FileStorage,
        clock: Clock,
        *,
        retention: timedelta = RETENTION_PERIOD,
        max_bytes: int = MAX_TENANT_STORAGE_BYTES,
    ) -> None:
        self._databases = databases
        self._registry = registry
        self._counters = counters
        self._files = files
        self._clock = clock
        self._retention = retention
        self._max_bytes = max_bytes

    def run(self) -> RetentionReport:
        report = RetentionReport()
        for tenant_id in self._registry.list_tenants():
            try:
                self.sweep_tenant(StoreHandle(tenant_id, self._databases, self._clock), report)
            except Exception:
                logger.exception("retention.tenant_failed tenant=%s", tenant_token(tenant_id))
                continue
            report.tenants_swept += 1
        logger.info(
            "retention.swept tenants=%s files_deleted=%s bytes_freed=%s queued_invalidated=%s",
            report.tenants_swept,
            report.files_deleted,
            report.bytes_freed,
            report.queued_invalidated,
        )
        return report

    def sweep_tenant(self, handle: StoreHandle, report: RetentionReport) -> None:
        tenant_id = handle.tenant_id
        cutoff = self._clock.now() - self._retention
        remaining: list[StoredFile] = []
        touched_queued = False

        for item in self._files.list_files(tenant_id):
            if item.mtime < cutoff:
                touched_queued = self._reclaim(handle, item, report) or touched_queued
            else:
                remaining.append(item)

        total = sum(item.size for item in remaining)
        for item in remaining:
            if total <= self._max_bytes:
                break
            touched_queued = self._reclaim(handle, item, report) or touched_queued
            total -= item.size

        if touched_queued:
            self._counters.recompute(handle)

    def _reclaim(self, handle: StoreHandle, item: StoredFile, report: RetentionReport) -> bool:
        """Delete one file and flag its uploads; returns whether a queued upload lost its payload."""
        self._files.delete(handle.tenant_id, item.path)
        now = self._clock.now()
        flagged, queued = handle.run(lambda store: store.mark_file_deleted(item.path, now), name="mark_file_deleted")
        report.files_deleted += 1
        report.bytes_freed += item.size
        report.queued_invalidated += queued
        logger.debug(
            "retention.reclaimed tenant=%s bytes=%s uploads_flagged=%s queued=%s",
            tenant_token(handle.tenant_id),
            item.size,
            flagged,
            queued,
        )
        return queued > 0

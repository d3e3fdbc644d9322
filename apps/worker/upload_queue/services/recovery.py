"""Requeue uploads orphaned in ``processing`` by a crashed worker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import logging

from upload_queue.core.clock import Clock
from upload_queue.core.logging_safety import tenant_token
from upload_queue.repositories.handle import StoreHandle
from upload_queue.repositories.registry import TenantRegistry
from upload_queue.repositories.tenant_databases import TenantDatabaseManager
from upload_queue.services.counters import CounterSynchronizer

logger = logging.getLogger(__name__)

STUCK_PROCESSING_TIMEOUT = timedelta(minutes=10)


@dataclass(slots=True)
class RecoveryReport:
    tenants_swept: int = 0
    requeued: int = 0
    completed: int = 0


class RecoverySweep:
    def __init__(
        self,
        databases: TenantDatabaseManager,
        registry: TenantRegistry,
        counters: CounterSynchronizer,
        clock: Clock,
        *,
        timeout: timedelta = STUCK_PROCESSING_TIMEOUT,
    ) -> None:
        self._databases = databases
        self._registry = registry
        self._counters = counters
        self._clock = clock
        self._timeout = timeout

    def run(self) -> RecoveryReport:
        report = RecoveryReport()
        for tenant_id in self._registry.list_tenants():
            try:
                requeued, completed = self.sweep_tenant(StoreHandle(tenant_id, self._databases, self._clock))
            except Exception:
                logger.exception("recovery.tenant_failed tenant=%s", tenant_token(tenant_id))
                continue
            report.tenants_swept += 1
            report.requeued += requeued
            report.completed += completed
        if report.requeued or report.completed:
            logger.info(
                "recovery.swept tenants=%s requeued=%s completed=%s",
                report.tenants_swept,
                report.requeued,
                report.completed,
            )
        return report

    def sweep_tenant(self, handle: StoreHandle) -> tuple[int, int]:
        """Return (requeued, completed) counts for one tenant."""
        now = self._clock.now()
        cutoff = now - self._timeout
        stale = handle.run(lambda store: store.stale_processing(cutoff), name="stale_processing")
        if not stale:
            return 0, 0

        requeued = 0
        completed = 0
        for upload in stale:
            since = upload.last_processed_at or upload.created_at
            succeeded = handle.run(
                lambda store: store.has_successful_attempt(upload.id, since),
                name="has_successful_attempt",
            )
            if succeeded:
                # The remote call went through but its bookkeeping never landed.
                if handle.run(lambda store: store.mark_completed(upload.id, now), name="mark_completed"):
                    completed += 1
                continue
            if handle.run(lambda store: store.requeue_stale(upload.id, cutoff, now), name="requeue_stale"):
                requeued += 1
                logger.warning(
                    "recovery.requeued tenant=%s upload_id=%s last_processed_at=%s",
                    tenant_token(handle.tenant_id),
                    upload.id,
                    upload.last_processed_at,
                )

        self._counters.recompute(handle)
        return requeued, completed

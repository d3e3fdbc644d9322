"""Periodic driver for the upload queue."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
import logging
import threading

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from upload_queue.core.clock import Clock
from upload_queue.core.logging_safety import tenant_token
from upload_queue.repositories.handle import StoreHandle
from upload_queue.repositories.registry import TenantRegistry
from upload_queue.repositories.tenant_databases import TenantDatabaseManager
from upload_queue.services.client_cache import ClientCache
from upload_queue.services.dispatcher import CycleReport, UploadDispatcher
from upload_queue.services.recovery import RecoverySweep
from upload_queue.services.retention import RETENTION_INTERVAL, RetentionSweeper

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5.0
ATTEMPT_RETENTION = timedelta(days=7)
ATTEMPT_TRIM_INTERVAL = timedelta(days=1)
RECOVERY_INTERVAL = timedelta(hours=1)
CYCLE_JOB_ID = "upload-queue-cycle"


class UploadProcessor:
    """Owns the scheduler and the maintenance cadence around dispatch cycles.

    Maintenance timestamps live in memory only. After a restart each task
    simply runs early, which is harmless.
    """

    def __init__(
        self,
        dispatcher: UploadDispatcher,
        recovery: RecoverySweep,
        retention: RetentionSweeper,
        clients: ClientCache,
        databases: TenantDatabaseManager,
        registry: TenantRegistry,
        clock: Clock,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        scheduler_factory: Callable[[], BackgroundScheduler] = BackgroundScheduler,
    ) -> None:
        self._dispatcher = dispatcher
        self._recovery = recovery
        self._retention = retention
        self._clients = clients
        self._databases = databases
        self._registry = registry
        self._clock = clock
        self._interval_seconds = interval_seconds
        self._scheduler_factory = scheduler_factory
        self._scheduler: BackgroundScheduler | None = None
        self._lock = threading.Lock()
        self.last_trim_at: datetime | None = None
        self.last_recovery_at: datetime | None = None
        self.last_retention_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        with self._lock:
            if self._scheduler is not None:
                logger.warning("processor.already_running")
                return

            # Reclaim orphans before the first dispatch.
            self._run_recovery()

            scheduler = self._scheduler_factory()
            scheduler.add_job(
                self.run_cycle,
                IntervalTrigger(seconds=self._interval_seconds),
                id=CYCLE_JOB_ID,
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(UTC),
            )
            scheduler.start()
            self._scheduler = scheduler
            logger.info("processor.started interval_seconds=%s", self._interval_seconds)

    def stop(self) -> None:
        with self._lock:
            if self._scheduler is None:
                return
            self._scheduler.shutdown(wait=True)
            self._scheduler = None
            self._clients.clear()
            logger.info("processor.stopped")

    def run_cycle(self) -> CycleReport | None:
        """One scheduler tick. Never raises."""
        try:
            self._run_maintenance()
            report = self._dispatcher.run_cycle()
        except Exception:
            logger.exception("processor.cycle_failed")
            return None

        if report.claimed:
            logger.info(
                "processor.cycle tenants=%s claimed=%s completed=%s deferred=%s retrying=%s failed=%s",
                report.tenants_visited,
                report.claimed,
                report.completed,
                report.deferred,
                report.retrying,
                report.failed,
            )
        return report

    def _due(self, last_run: datetime | None, interval: timedelta, now: datetime) -> bool:
        return last_run is None or now - last_run >= interval

    def _run_maintenance(self) -> None:
        now = self._clock.now()
        if self._due(self.last_recovery_at, RECOVERY_INTERVAL, now):
            self._run_recovery()
        if self._due(self.last_trim_at, ATTEMPT_TRIM_INTERVAL, now):
            self._trim_attempts()
        if self._due(self.last_retention_at, RETENTION_INTERVAL, now):
            self.last_retention_at = now
            try:
                self._retention.run()
            except Exception:
                logger.exception("processor.retention_failed")

    def _run_recovery(self) -> None:
        self.last_recovery_at = self._clock.now()
        try:
            self._recovery.run()
        except Exception:
            logger.exception("processor.recovery_failed")

    def _trim_attempts(self) -> None:
        now = self._clock.now()
        self.last_trim_at = now
        cutoff = now - ATTEMPT_RETENTION
        for tenant_id in self._registry.list_tenants():
            handle = StoreHandle(tenant_id, self._databases, self._clock)
            try:
                removed = handle.run(lambda store: store.trim_attempts(cutoff), name="trim_attempts")
            except Exception:
                logger.exception("processor.trim_failed tenant=%s", tenant_token(tenant_id))
                continue
            if removed:
                logger.debug("processor.attempts_trimmed tenant=%s removed=%s", tenant_token(tenant_id), removed)

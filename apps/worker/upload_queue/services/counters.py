"""Tenant pending-work counters."""

from __future__ import annotations

import logging

from upload_queue.core.clock import Clock
from upload_queue.core.logging_safety import tenant_token
from upload_queue.repositories.handle import StoreHandle
from upload_queue.repositories.registry import TenantRegistry
from upload_queue.repositories.sql import PendingSummary

logger = logging.getLogger(__name__)


class CounterSynchronizer:
    """Rewrites a tenant's registry row from its uploads table.

    Always a full recompute: deferrals change eligibility through
    ``next_attempt_at`` without touching ``status``, so incremental counters
    drift.
    """

    def __init__(self, registry: TenantRegistry, clock: Clock) -> None:
        self._registry = registry
        self._clock = clock

    def recompute(self, handle: StoreHandle) -> PendingSummary:
        now = self._clock.now()
        summary = handle.run(lambda store: store.pending_summary(now), name="pending_summary")
        self._registry.write_counters(
            handle.tenant_id,
            pending_uploads=summary.pending,
            next_upload_attempt_at=summary.next_deferred_at,
            now=now,
        )
        logger.debug(
            "counters.recomputed tenant=%s pending=%s next_attempt_at=%s",
            tenant_token(handle.tenant_id),
            summary.pending,
            summary.next_deferred_at,
        )
        return summary

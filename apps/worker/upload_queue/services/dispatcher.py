"""Claim and dispatch loop.

Each cycle visits tenants with pending work and, for every lane, claims at
most one ready upload through a conditional update, sends it to the remote
service and records the outcome. One upload per (tenant, lane) per cycle keeps
dispatch fair across tenants and bounds the cost of a cycle.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging

from upload_queue.adapters.file_storage import FileStorage
from upload_queue.adapters.remote import UploadPayload
from upload_queue.core.clock import Clock, add_ms
from upload_queue.core.logging_safety import safe_log_identifier, tenant_token
from upload_queue.domain.outcomes import (
    RemoteCallError,
    UploadFailure,
    failure_from_error,
    failure_from_response,
    local_failure,
)
from upload_queue.domain.rate_window import RATE_LIMIT_BUFFER_MS, RateWindowAccountant
from upload_queue.domain.retry_policy import FailureKind, RetryDecision, classify_failure, is_rate_limited
from upload_queue.domain.upload_fsm import ensure_transition
from upload_queue.errors import CredentialsMissing, StorageUnavailable
from upload_queue.repositories.handle import StoreHandle
from upload_queue.repositories.registry import TenantRegistry
from upload_queue.repositories.sql import UploadRecord
from upload_queue.repositories.tenant_databases import TenantDatabaseManager
from upload_queue.schemas.upload import LANES, Lane, PayloadKind, UploadStatus
from upload_queue.services.client_cache import ClientCache
from upload_queue.services.counters import CounterSynchronizer

logger = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    SKIPPED = "skipped"
    COMPLETED = "completed"
    DEFERRED = "deferred"
    RETRYING = "retrying"
    FAILED = "failed"


@dataclass(slots=True)
class CycleReport:
    tenants_visited: int = 0
    tenant_errors: int = 0
    claimed: int = 0
    completed: int = 0
    deferred: int = 0
    retrying: int = 0
    failed: int = 0

    def record(self, outcome: DispatchOutcome) -> None:
        if outcome is DispatchOutcome.SKIPPED:
            return
        self.claimed += 1
        if outcome is DispatchOutcome.COMPLETED:
            self.completed += 1
        elif outcome is DispatchOutcome.DEFERRED:
            self.deferred += 1
        elif outcome is DispatchOutcome.RETRYING:
            self.retrying += 1
        else:
            self.failed += 1


def build_payload(upload: UploadRecord, files: FileStorage) -> UploadPayload:
    """Form fields for the remote call; raises ``FileNotFoundError`` for a missing file."""
    fields: dict[str, str] = {}
    file_name = None
    file_content = None

    if upload.kind is PayloadKind.FILE:
        if not upload.file_path or upload.file_deleted or not files.exists(upload.file_path):
            raise FileNotFoundError(f"File not found: {upload.file_path}")
        file_name = upload.name
        file_content = files.read(upload.file_path)
    elif upload.kind is PayloadKind.MAGNET:
        fields["magnet"] = upload.url or ""
    else:
        fields["link"] = upload.url or ""

    if upload.lane is Lane.TORRENT or upload.kind is PayloadKind.MAGNET:
        fields["seed"] = str(upload.seed if upload.seed is not None else 1)
        fields["allow_zip"] = "true" if upload.allow_zip else "false"
    if upload.as_queued:
        fields["as_queued"] = "true"
    if upload.password:
        fields["password"] = upload.password
    if upload.name:
        fields["name"] = upload.name

    return UploadPayload(fields=fields, file_name=file_name, file_content=file_content)


class UploadDispatcher:
    def __init__(
        self,
        databases: TenantDatabaseManager,
        registry: TenantRegistry,
        counters: CounterSynchronizer,
        clients: ClientCache,
        files: FileStorage,
        clock: Clock,
    ) -> None:
        self._databases = databases
        self._registry = registry
        self._counters = counters
        self._clients = clients
        self._files = files
        self._clock = clock

    def run_cycle(self) -> CycleReport:
        report = CycleReport()
        for tenant_id in self._registry.list_tenants_with_pending_work(self._clock.now()):
            report.tenants_visited += 1
            try:
                self.process_tenant(tenant_id, report)
            except Exception:
                report.tenant_errors += 1
                logger.exception("dispatch.tenant_failed tenant=%s", tenant_token(tenant_id))
        return report

    def process_tenant(self, tenant_id: str, report: CycleReport | None = None) -> None:
        handle = StoreHandle(tenant_id, self._databases, self._clock)
        dispatched = False
        for lane in LANES:
            now = self._clock.now()
            upload = handle.run(lambda store: store.next_ready(lane, now), name="next_ready")
            if upload is None:
                continue
            outcome = self.dispatch(handle, upload)
            dispatched = dispatched or outcome is not DispatchOutcome.SKIPPED
            if report is not None:
                report.record(outcome)

        if not dispatched:
            # Listed but nothing was ready: the counters were stale.
            self._counters.recompute(handle)

    def dispatch(self, handle: StoreHandle, upload: UploadRecord) -> DispatchOutcome:
        claimed_at = self._clock.now()
        if not handle.run(lambda store: store.claim(upload.id, claimed_at), name="claim"):
            logger.debug(
                "dispatch.claim_lost tenant=%s upload_id=%s",
                tenant_token(handle.tenant_id),
                upload.id,
            )
            return DispatchOutcome.SKIPPED

        lane = upload.lane
        accountant = RateWindowAccountant(handle, self._clock)
        capacity = None
        try:
            capacity = accountant.capacity(lane)
            if not capacity.must_defer:
                spacing_ms = accountant.min_spacing_ms(lane)
                if spacing_ms > 0:
                    logger.debug("dispatch.spacing lane=%s wait_ms=%s", lane.value, spacing_ms)
                    self._clock.sleep(spacing_ms / 1000)
                failure = self._send(handle, upload)
        except Exception as exc:
            # Back through the retry policy instead of waiting for recovery.
            logger.exception(
                "dispatch.unexpected_error tenant=%s upload_id=%s lane=%s",
                tenant_token(handle.tenant_id),
                upload.id,
                lane.value,
            )
            capacity = None
            failure = local_failure(
                "PROCESSING_ERROR",
                f"Unexpected error while processing upload ({type(exc).__name__})",
            )

        if capacity is not None and capacity.must_defer:
            delay_ms = max(capacity.wait_ms, RATE_LIMIT_BUFFER_MS)
            self._release(handle, upload, UploadStatus.QUEUED, upload.retry_count, delay_ms, None)
            logger.info(
                "dispatch.deferred tenant=%s upload_id=%s lane=%s at_limit=%s wait_ms=%s",
                tenant_token(handle.tenant_id),
                upload.id,
                lane.value,
                capacity.at_limit,
                delay_ms,
            )
            self._counters.recompute(handle)
            return DispatchOutcome.DEFERRED

        if failure is None:
            self._complete(handle, upload)
            self._counters.recompute(handle)
            return DispatchOutcome.COMPLETED

        rate_limit_delay_ms = accountant.rate_limit_delay_ms(lane) if is_rate_limited(failure) else None
        decision = classify_failure(failure, retry_count=upload.retry_count, rate_limit_delay_ms=rate_limit_delay_ms)
        outcome = self._apply_decision(handle, upload, failure, decision)
        self._counters.recompute(handle)
        return outcome

    def _send(self, handle: StoreHandle, upload: UploadRecord) -> UploadFailure | None:
        try:
            payload = build_payload(upload, self._files)
        except FileNotFoundError as exc:
            return local_failure("FILE_NOT_FOUND", str(exc))
        except OSError as exc:
            logger.warning(
                "dispatch.file_unreadable tenant=%s upload_id=%s error=%s",
                tenant_token(handle.tenant_id),
                upload.id,
                type(exc).__name__,
            )
            return local_failure("FILE_READ_ERROR", f"Upload file could not be read ({type(exc).__name__})")
        return self._call_remote(handle, upload, payload)

    def _call_remote(self, handle: StoreHandle, upload: UploadRecord, payload: UploadPayload) -> UploadFailure | None:
        """Send the upload; ``None`` means the remote service accepted it.

        An auth failure forces one credential refresh and one more call.
        Every remote call logs exactly one attempt.
        """
        force_refresh = False
        while True:
            try:
                client = self._clients.get(handle.tenant_id, force_refresh=force_refresh)
            except CredentialsMissing as exc:
                return local_failure("NO_AUTH", str(exc))

            attempted_at = self._clock.now()
            try:
                response = client.create_upload(upload.lane, payload)
            except RemoteCallError as exc:
                failure = failure_from_error(exc)
            else:
                failure = failure_from_response(response)
                if failure is None:
                    self._log_attempt(handle, upload, response.status_code, None, attempted_at)
                    return None
            self._log_attempt(handle, upload, failure.status_code, failure, attempted_at)

            if failure.is_auth_error and not force_refresh:
                logger.warning(
                    "dispatch.auth_refresh tenant=%s upload_id=%s",
                    tenant_token(handle.tenant_id),
                    upload.id,
                )
                force_refresh = True
                continue
            if failure.is_auth_error:
                self._clients.invalidate(handle.tenant_id)
            return failure

    def _log_attempt(
        self,
        handle: StoreHandle,
        upload: UploadRecord,
        status_code: int | None,
        failure: UploadFailure | None,
        attempted_at: datetime,
    ) -> None:
        try:
            handle.run(
                lambda store: store.log_attempt(
                    upload_id=upload.id,
                    lane=upload.lane,
                    status_code=status_code,
                    success=failure is None,
                    attempted_at=attempted_at,
                    error_code=failure.error_code if failure else None,
                    error_message=(failure.detail or failure.message) if failure else None,
                ),
                name="log_attempt",
            )
        except Exception:
            # The remote outcome stands even when the attempt log cannot be written.
            logger.exception(
                "dispatch.attempt_log_failed tenant=%s upload_id=%s",
                tenant_token(handle.tenant_id),
                upload.id,
            )

    def _complete(self, handle: StoreHandle, upload: UploadRecord) -> None:
        """Record a confirmed remote success; never re-issues the remote call."""
        completed_at = self._clock.now()
        try:
            recorded = handle.run_bookkeeping(
                lambda store: store.mark_completed(upload.id, completed_at),
                name="mark_completed",
            )
        except StorageUnavailable:
            # The job stays in processing; recovery finds the successful attempt.
            logger.exception(
                "dispatch.completion_unrecorded tenant=%s upload_id=%s",
                tenant_token(handle.tenant_id),
                upload.id,
            )
            return

        if not recorded:
            logger.warning(
                "dispatch.completion_lost_row tenant=%s upload_id=%s",
                tenant_token(handle.tenant_id),
                upload.id,
            )
            return
        logger.info(
            "dispatch.completed tenant=%s upload_id=%s lane=%s name=%s",
            tenant_token(handle.tenant_id),
            upload.id,
            upload.lane.value,
            safe_log_identifier(upload.name, prefix="upl"),
        )

    def _apply_decision(
        self,
        handle: StoreHandle,
        upload: UploadRecord,
        failure: UploadFailure,
        decision: RetryDecision,
    ) -> DispatchOutcome:
        next_attempt_at = self._release(
            handle, upload, decision.status, decision.retry_count, decision.delay_ms, decision.message
        )

        if decision.kind is FailureKind.RATE_LIMITED and next_attempt_at is not None:
            deferred = handle.run(
                lambda store: store.defer_lane(upload.lane, next_attempt_at, self._clock.now(), exclude_id=upload.id),
                name="defer_lane",
            )
            logger.warning(
                "dispatch.rate_limited tenant=%s upload_id=%s lane=%s wait_ms=%s lane_deferred=%s",
                tenant_token(handle.tenant_id),
                upload.id,
                upload.lane.value,
                decision.delay_ms,
                deferred,
            )
            return DispatchOutcome.DEFERRED

        if decision.status is UploadStatus.QUEUED:
            logger.warning(
                "dispatch.retry_scheduled tenant=%s upload_id=%s lane=%s retry_count=%s backoff_ms=%s error_code=%s",
                tenant_token(handle.tenant_id),
                upload.id,
                upload.lane.value,
                decision.retry_count,
                decision.delay_ms,
                failure.error_code,
            )
            return DispatchOutcome.RETRYING

        logger.error(
            "dispatch.failed tenant=%s upload_id=%s lane=%s retry_count=%s error_code=%s status_code=%s soft=%s",
            tenant_token(handle.tenant_id),
            upload.id,
            upload.lane.value,
            decision.retry_count,
            failure.error_code,
            failure.status_code,
            failure.soft,
        )
        return DispatchOutcome.FAILED

    def _release(
        self,
        handle: StoreHandle,
        upload: UploadRecord,
        status: UploadStatus,
        retry_count: int,
        delay_ms: int,
        message: str | None,
    ) -> datetime | None:
        ensure_transition(UploadStatus.PROCESSING, status)
        now = self._clock.now()
        next_attempt_at = add_ms(now, delay_ms) if delay_ms > 0 else None
        handle.run(
            lambda store: store.release(
                upload.id,
                status=status,
                retry_count=retry_count,
                next_attempt_at=next_attempt_at,
                error_message=message,
                now=now,
            ),
            name="release",
        )
        return next_attempt_at

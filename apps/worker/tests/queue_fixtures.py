"""Shared fakes for upload queue tests."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from pathlib import Path

from upload_queue.adapters.remote import UploadClient, UploadPayload
from upload_queue.core.config import Settings
from upload_queue.domain.outcomes import RemoteCallError, RemoteResponse
from upload_queue.runtime import QueueRuntime, build_runtime
from upload_queue.schemas.upload import Lane, PayloadDescriptor, PayloadKind, UploadOptions

START = datetime(2026, 3, 2, 12, 0, 0)
SUCCESS = RemoteResponse(status_code=200, body={"success": True, "detail": "Found cached", "data": {"id": 1}})


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.advance(seconds=seconds)

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class ScriptedUploadClient(UploadClient):
    """Returns queued outcomes in order, then succeeds."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.outcomes: deque[RemoteResponse | RemoteCallError | Exception] = deque()
        self.calls: list[tuple[Lane, UploadPayload, datetime | None]] = []
        self.closed = 0
        self._clock = clock

    def script(self, *outcomes: RemoteResponse | RemoteCallError | Exception) -> None:
        self.outcomes.extend(outcomes)

    def _next(self, lane: Lane, payload: UploadPayload) -> RemoteResponse:
        self.calls.append((lane, payload, self._clock.now() if self._clock else None))
        outcome = self.outcomes.popleft() if self.outcomes else SUCCESS
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def create_torrent_upload(self, payload: UploadPayload) -> RemoteResponse:
        return self._next(Lane.TORRENT, payload)

    def create_usenet_upload(self, payload: UploadPayload) -> RemoteResponse:
        return self._next(Lane.USENET, payload)

    def create_web_upload(self, payload: UploadPayload) -> RemoteResponse:
        return self._next(Lane.WEBDL, payload)

    def close(self) -> None:
        self.closed += 1


class QueueHarness:
    """A full runtime over temporary SQLite files with a fake clock and remote."""

    def __init__(self, root: Path, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.client = ScriptedUploadClient(self.clock)
        self.clients_by_key: dict[str, UploadClient] = {}
        self.api_keys_used: list[str] = []
        self.settings = Settings(
            encryption_key="test-encryption-key",
            data_dir=root / "data",
            storage_dir=root / "uploads",
            processor_autostart=False,
            auth_provider="mock",
        )
        self.runtime: QueueRuntime = build_runtime(self.settings, clock=self.clock, client_factory=self._client_for)

    def _client_for(self, api_key: str) -> UploadClient:
        self.api_keys_used.append(api_key)
        return self.clients_by_key.get(api_key, self.client)

    def add_tenant(self, tenant_id: str, api_key: str | None = None) -> None:
        encrypted = self.runtime.cipher.encrypt(api_key or f"key-{tenant_id}")
        self.runtime.credentials.put_secret(tenant_id, encrypted, self.clock.now())
        self.runtime.registry.ensure_tenant(tenant_id, self.clock.now())

    def enqueue_magnet(self, tenant_id: str, name: str = "ubuntu.iso", options: UploadOptions | None = None) -> int:
        descriptor = PayloadDescriptor(kind=PayloadKind.MAGNET, url=f"magnet:?xt=urn:btih:{name}", name=name)
        return self.runtime.uploads.enqueue(tenant_id, Lane.TORRENT, descriptor, options)

    def enqueue_link(self, tenant_id: str, lane: Lane, name: str = "archive.zip") -> int:
        descriptor = PayloadDescriptor(kind=PayloadKind.LINK, url=f"https://example.com/{name}", name=name)
        return self.runtime.uploads.enqueue(tenant_id, lane, descriptor)

    def store(self, tenant_id: str):
        return self.runtime.databases.get_store(tenant_id)

    def upload(self, tenant_id: str, upload_id: int):
        return self.store(tenant_id).get_upload(upload_id)

    def pending(self, tenant_id: str) -> int:
        counters = self.runtime.registry.get_counters(tenant_id)
        return counters.pending_uploads if counters else 0

    def close(self) -> None:
        self.runtime.databases.close_all()

"""Object graph wiring for the queue processor and its ingress."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Engine, create_engine

from upload_queue.adapters.credentials import SecretCipher, SqlCredentialStore
from upload_queue.adapters.file_storage import FileStorage, LocalFileStorage
from upload_queue.adapters.remote import HttpUploadClient
from upload_queue.core.clock import Clock, SystemClock
from upload_queue.core.config import Settings
from upload_queue.repositories.registry import TenantRegistry
from upload_queue.repositories.tenant_databases import EngineFactory, TenantDatabaseManager, sqlite_engine_factory
from upload_queue.services.client_cache import ClientCache, ClientFactory
from upload_queue.services.counters import CounterSynchronizer
from upload_queue.services.dispatcher import UploadDispatcher
from upload_queue.services.processor import UploadProcessor
from upload_queue.services.recovery import RecoverySweep
from upload_queue.services.retention import RetentionSweeper
from upload_queue.services.uploads import UploadService


@dataclass(slots=True)
class QueueRuntime:
    databases: TenantDatabaseManager
    registry: TenantRegistry
    credentials: SqlCredentialStore
    cipher: SecretCipher
    files: FileStorage
    clients: ClientCache
    counters: CounterSynchronizer
    dispatcher: UploadDispatcher
    recovery: RecoverySweep
    retention: RetentionSweeper
    processor: UploadProcessor
    uploads: UploadService
    clock: Clock

    def close(self) -> None:
        self.processor.stop()
        self.databases.close_all()


def _http_client_factory(settings: Settings) -> ClientFactory:
    def factory(api_key: str) -> HttpUploadClient:
        return HttpUploadClient(
            api_key,
            base_url=settings.remote_api_base,
            api_version=settings.remote_api_version,
            timeout=settings.remote_timeout_seconds,
            user_agent=settings.remote_user_agent,
        )

    return factory


def build_runtime(
    settings: Settings,
    *,
    clock: Clock | None = None,
    master_engine: Engine | None = None,
    engine_factory: EngineFactory | None = None,
    client_factory: ClientFactory | None = None,
    files: FileStorage | None = None,
) -> QueueRuntime:
    clock = clock or SystemClock()
    if master_engine is None:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        master_engine = create_engine(
            settings.resolved_master_database_url,
            connect_args={"check_same_thread": False},
        )

    registry = TenantRegistry(master_engine)
    registry.create_schema()
    credentials = SqlCredentialStore(master_engine)
    cipher = SecretCipher(settings.encryption_key)
    databases = TenantDatabaseManager(
        engine_factory or sqlite_engine_factory(settings.data_dir),
        max_open=settings.tenant_engine_cache_size,
    )
    files = files or LocalFileStorage(settings.storage_dir)
    clients = ClientCache(
        credentials,
        cipher,
        client_factory or _http_client_factory(settings),
        clock,
        max_size=settings.client_cache_size,
        ttl_seconds=settings.client_cache_ttl_seconds,
    )
    counters = CounterSynchronizer(registry, clock)
    dispatcher = UploadDispatcher(databases, registry, counters, clients, files, clock)
    recovery = RecoverySweep(databases, registry, counters, clock)
    retention = RetentionSweeper(databases, registry, counters, files, clock)
    processor = UploadProcessor(
        dispatcher,
        recovery,
        retention,
        clients,
        databases,
        registry,
        clock,
        interval_seconds=settings.processor_interval_seconds,
    )
    uploads = UploadService(databases, registry, counters, files, clock)
    return QueueRuntime(
        databases=databases,
        registry=registry,
        credentials=credentials,
        cipher=cipher,
        files=files,
        clients=clients,
        counters=counters,
        dispatcher=dispatcher,
        recovery=recovery,
        retention=retention,
        processor=processor,
        uploads=uploads,
        clock=clock,
    )

"""Bounded, expiring cache of authenticated upload clients per tenant."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import threading

from upload_queue.adapters.credentials import CredentialDecryptionError, CredentialStore, SecretCipher
from upload_queue.adapters.remote import UploadClient
from upload_queue.core.clock import Clock
from upload_queue.core.logging_safety import secret_fingerprint, tenant_token
from upload_queue.errors import CredentialsMissing, StoreConnectionClosed

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], UploadClient]

DEFAULT_MAX_CLIENTS = 1000
DEFAULT_TTL_SECONDS = 30 * 60


@dataclass(slots=True)
class _CacheEntry:
    client: UploadClient
    expires_at: datetime


class ClientCache:
    def __init__(
        self,
        credentials: CredentialStore,
        cipher: SecretCipher,
        client_factory: ClientFactory,
        clock: Clock,
        *,
        max_size: int = DEFAULT_MAX_CLIENTS,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._credentials = credentials
        self._cipher = cipher
        self._client_factory = client_factory
        self._clock = clock
        self._max_size = max(1, max_size)
        self._ttl = timedelta(seconds=ttl_seconds)
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, tenant_id: str, *, force_refresh: bool = False) -> UploadClient:
        now = self._clock.now()
        with self._lock:
            entry = self._entries.get(tenant_id)
            if entry is not None and not force_refresh and entry.expires_at > now:
                return entry.client
            if entry is not None:
                self._drop(tenant_id)

        api_key = self._load_secret(tenant_id)
        client = self._client_factory(api_key)
        with self._lock:
            self._entries[tenant_id] = _CacheEntry(client=client, expires_at=now + self._ttl)
            while len(self._entries) > self._max_size:
                oldest_id = next(iter(self._entries))
                self._drop(oldest_id)
        logger.debug(
            "client_cache.created tenant=%s key=%s forced=%s",
            tenant_token(tenant_id),
            secret_fingerprint(api_key),
            force_refresh,
        )
        return client

    def invalidate(self, tenant_id: str) -> None:
        with self._lock:
            self._drop(tenant_id)

    def clear(self) -> None:
        with self._lock:
            for tenant_id in list(self._entries):
                self._drop(tenant_id)

    def _load_secret(self, tenant_id: str) -> str:
        try:
            blob = self._credentials.get_secret(tenant_id)
        except StoreConnectionClosed:
            logger.warning("client_cache.reconnect tenant=%s", tenant_token(tenant_id))
            blob = self._credentials.get_secret(tenant_id)

        if not blob:
            raise CredentialsMissing("API key not found for user")
        try:
            return self._cipher.decrypt(blob)
        except CredentialDecryptionError as exc:
            raise CredentialsMissing("Stored API key could not be decrypted") from exc

    def _drop(self, tenant_id: str) -> None:
        entry = self._entries.pop(tenant_id, None)
        if entry is not None:
            entry.client.close()

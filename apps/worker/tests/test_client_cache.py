"""Credential decryption and the per-tenant client cache."""

from __future__ import annotations

import unittest

from queue_fixtures import FakeClock, ScriptedUploadClient
from upload_queue.adapters.credentials import CredentialDecryptionError, CredentialStore, SecretCipher
from upload_queue.errors import CredentialsMissing, StoreConnectionClosed
from upload_queue.services.client_cache import ClientCache


class _DictCredentialStore(CredentialStore):
    def __init__(self) -> None:
        self.secrets: dict[str, str] = {}
        self.reads = 0
        self.fail_next_with_closed = False

    def get_secret(self, tenant_id: str) -> str | None:
        self.reads += 1
        if self.fail_next_with_closed:
            self.fail_next_with_closed = False
            raise StoreConnectionClosed("Cannot operate on a closed database.")
        return self.secrets.get(tenant_id)


class SecretCipherTests(unittest.TestCase):
    def test_blob_format_and_decrypt(self) -> None:
        cipher = SecretCipher("passphrase")

        blob = cipher.encrypt("api-secret")

        self.assertEqual(len(blob.split(":")), 3)
        self.assertEqual(cipher.decrypt(blob), "api-secret")

    def test_wrong_key_or_garbage_is_rejected(self) -> None:
        blob = SecretCipher("passphrase").encrypt("api-secret")

        with self.assertRaises(CredentialDecryptionError):
            SecretCipher("other").decrypt(blob)
        with self.assertRaises(CredentialDecryptionError):
            SecretCipher("passphrase").decrypt("not-a-blob")


class ClientCacheTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.cipher = SecretCipher("cache-test-key")

    def setUp(self) -> None:
        self.clock = FakeClock()
        self.credentials = _DictCredentialStore()
        self.built: list[tuple[str, ScriptedUploadClient]] = []

        def factory(api_key: str) -> ScriptedUploadClient:
            client = ScriptedUploadClient()
            self.built.append((api_key, client))
            return client

        self.cache = ClientCache(self.credentials, self.cipher, factory, self.clock, max_size=2, ttl_seconds=60)

    def _store_key(self, tenant_id: str, api_key: str) -> None:
        self.credentials.secrets[tenant_id] = self.cipher.encrypt(api_key)

    def test_hit_reuses_client_without_reading_credentials(self) -> None:
        self._store_key("alice", "secret-a")

        first = self.cache.get("alice")
        second = self.cache.get("alice")

        self.assertIs(first, second)
        self.assertEqual(self.credentials.reads, 1)
        self.assertEqual(self.built[0][0], "secret-a")

    def test_entry_expires_after_ttl(self) -> None:
        self._store_key("alice", "secret-a")
        first = self.cache.get("alice")

        self.clock.advance(seconds=61)
        second = self.cache.get("alice")

        self.assertIsNot(first, second)
        self.assertEqual(first.closed, 1)

    def test_force_refresh_replaces_entry(self) -> None:
        self._store_key("alice", "old")
        stale = self.cache.get("alice")
        self._store_key("alice", "rotated")

        fresh = self.cache.get("alice", force_refresh=True)

        self.assertIsNot(stale, fresh)
        self.assertEqual(self.built[-1][0], "rotated")
        self.assertIs(self.cache.get("alice"), fresh)

    def test_size_is_bounded(self) -> None:
        for tenant_id in ("a", "b", "c"):
            self._store_key(tenant_id, f"key-{tenant_id}")
            self.cache.get(tenant_id)

        self.assertEqual(len(self.cache), 2)
        self.assertEqual(self.built[0][1].closed, 1)

    def test_missing_or_undecryptable_secret_raises(self) -> None:
        with self.assertRaises(CredentialsMissing):
            self.cache.get("nobody")

        self.credentials.secrets["broken"] = "aa:bb:cc"
        with self.assertRaises(CredentialsMissing):
            self.cache.get("broken")

    def test_closed_connection_is_retried_once(self) -> None:
        self._store_key("alice", "secret-a")
        self.credentials.fail_next_with_closed = True

        self.cache.get("alice")

        self.assertEqual(self.credentials.reads, 2)

    def test_invalidate_and_clear_close_clients(self) -> None:
        self._store_key("alice", "secret-a")
        self._store_key("bob", "secret-b")
        alice = self.cache.get("alice")
        bob = self.cache.get("bob")

        self.cache.invalidate("alice")
        self.cache.clear()

        self.assertEqual((alice.closed, bob.closed), (1, 1))
        self.assertEqual(len(self.cache), 0)


if __name__ == "__main__":
    unittest.main()

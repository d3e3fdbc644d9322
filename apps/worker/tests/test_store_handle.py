from __future__ import annotations

from pathlib import Path
import tempfile
import unittest

from queue_fixtures import FakeClock
from upload_queue.errors import StoreBusy, StoreConnectionClosed
from upload_queue.repositories.handle import StoreHandle
from upload_queue.repositories.tenant_databases import TenantDatabaseManager, sqlite_engine_factory


class StoreHandleTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.databases = TenantDatabaseManager(sqlite_engine_factory(Path(tmp.name)))
        self.addCleanup(self.databases.close_all)
        self.clock = FakeClock()
        self.handle = StoreHandle("alice", self.databases, self.clock)

    def test_closed_store_is_reacquired_once(self) -> None:
        stale = self.handle.store
        stale.close()

        summary = self.handle.run(lambda store: store.pending_summary(self.clock.now()), name="pending_summary")

        self.assertEqual(summary.pending, 0)
        self.assertIsNot(self.handle.store, stale)
        self.assertFalse(self.handle.store.closed)

    def test_run_does_not_retry_a_second_closed_error(self) -> None:
        calls = []

        def always_closed(store):
            calls.append(store)
            raise StoreConnectionClosed("closed")

        with self.assertRaises(StoreConnectionClosed):
            self.handle.run(always_closed, name="always_closed")
        self.assertEqual(len(calls), 2)

    def test_bookkeeping_retries_busy_with_backoff(self) -> None:
        failures = [StoreBusy("database is locked"), StoreBusy("database is locked")]

        def flaky(store):
            if failures:
                raise failures.pop(0)
            return "written"

        self.assertEqual(self.handle.run_bookkeeping(flaky, name="flaky"), "written")
        self.assertEqual(self.clock.sleeps, [0.1, 0.2])

    def test_bookkeeping_gives_up_after_bounded_attempts(self) -> None:
        calls = []

        def locked(store):
            calls.append(1)
            raise StoreBusy("database is locked")

        with self.assertRaises(StoreBusy):
            self.handle.run_bookkeeping(locked, name="locked")
        self.assertEqual(len(calls), 3)
        self.assertEqual(self.clock.sleeps, [0.1, 0.2])


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
import tempfile
import unittest

from queue_fixtures import QueueHarness
from upload_queue.schemas.upload import Lane, UploadStatus
from upload_queue.services.processor import CYCLE_JOB_ID, UploadProcessor
from upload_queue.services.recovery import RecoveryReport


class _RecordingScheduler:
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.jobs: list[dict] = []

    def add_job(self, func, trigger, **kwargs) -> None:
        self.events.append("add_job")
        self.jobs.append({"func": func, "trigger": trigger, **kwargs})

    def start(self) -> None:
        self.events.append("start")

    def shutdown(self, wait: bool = True) -> None:
        self.events.append("shutdown")


class _RecordingRecovery:
    def __init__(self, events: list[str]) -> None:
        self.events = events

    def run(self) -> RecoveryReport:
        self.events.append("recovery")
        return RecoveryReport()


class _ExplodingDispatcher:
    def run_cycle(self):
        raise RuntimeError("boom")


class UploadProcessorTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.h = QueueHarness(Path(tmp.name))
        self.addCleanup(self.h.close)
        self.events: list[str] = []
        self.schedulers: list[_RecordingScheduler] = []

    def _processor(self, *, recovery=None, dispatcher=None) -> UploadProcessor:
        def scheduler_factory() -> _RecordingScheduler:
            scheduler = _RecordingScheduler(self.events)
            self.schedulers.append(scheduler)
            return scheduler

        runtime = self.h.runtime
        return UploadProcessor(
            dispatcher or runtime.dispatcher,
            recovery or _RecordingRecovery(self.events),
            runtime.retention,
            runtime.clients,
            runtime.databases,
            runtime.registry,
            self.h.clock,
            interval_seconds=2.5,
            scheduler_factory=scheduler_factory,
        )

    def test_start_recovers_before_scheduling_a_single_instance_job(self) -> None:
        processor = self._processor()

        processor.start()

        self.assertEqual(self.events, ["recovery", "add_job", "start"])
        job = self.schedulers[0].jobs[0]
        self.assertEqual(job["id"], CYCLE_JOB_ID)
        self.assertEqual(job["max_instances"], 1)
        self.assertTrue(job["coalesce"])
        self.assertEqual(job["trigger"].interval, timedelta(seconds=2.5))
        self.assertTrue(processor.running)

    def test_start_is_idempotent_and_stop_clears_clients(self) -> None:
        self.h.add_tenant("alice")
        processor = self._processor()
        processor.start()
        processor.start()
        self.h.runtime.clients.get("alice")

        processor.stop()
        processor.stop()

        self.assertEqual(len(self.schedulers), 1)
        self.assertEqual(self.events.count("shutdown"), 1)
        self.assertFalse(processor.running)
        self.assertEqual(len(self.h.runtime.clients), 0)
        self.assertEqual(self.h.client.closed, 1)

    def test_run_cycle_never_raises(self) -> None:
        processor = self._processor(dispatcher=_ExplodingDispatcher())

        self.assertIsNone(processor.run_cycle())

    def test_stale_job_is_recovered_on_start(self) -> None:
        self.h.add_tenant("alice")
        upload_id = self.h.enqueue_magnet("alice")
        self.h.store("alice").claim(upload_id, self.h.clock.now())
        self.h.clock.advance(minutes=11)
        processor = self._processor(recovery=self.h.runtime.recovery)

        processor.start()

        self.assertEqual(self.h.upload("alice", upload_id).status, UploadStatus.QUEUED)
        self.assertEqual(self.h.pending("alice"), 1)

    def test_attempts_are_trimmed_once_a_day(self) -> None:
        self.h.add_tenant("alice")
        store = self.h.store("alice")

        def log_old_attempt() -> None:
            store.log_attempt(
                upload_id=None,
                lane=Lane.TORRENT,
                status_code=200,
                success=True,
                attempted_at=self.h.clock.now() - timedelta(days=8),
            )

        processor = self._processor()
        log_old_attempt()
        processor.run_cycle()
        self.assertEqual(store.list_attempts(), [])

        log_old_attempt()
        self.h.clock.advance(hours=2)
        processor.run_cycle()
        self.assertEqual(len(store.list_attempts()), 1)

        self.h.clock.advance(days=1)
        processor.run_cycle()
        self.assertEqual(store.list_attempts(), [])


if __name__ == "__main__":
    unittest.main()

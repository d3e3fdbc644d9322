from __future__ import annotations

from pathlib import Path
import tempfile
import unittest

from fastapi.testclient import TestClient

from queue_fixtures import QueueHarness
from upload_queue.core.config import get_settings
from upload_queue.domain.outcomes import RemoteResponse
from upload_queue.main import create_app

ALICE = {"Authorization": "Bearer test:alice"}
BOB = {"Authorization": "Bearer test:bob"}


class UploadsApiTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.h = QueueHarness(Path(tmp.name))
        self.addCleanup(self.h.close)
        app = create_app(self.h.runtime, autostart=False)
        app.dependency_overrides[get_settings] = lambda: self.h.settings
        self.client = TestClient(app)

    def _enqueue_magnet(self, headers=ALICE) -> int:
        response = self.client.post(
            "/api/v1/uploads",
            headers=headers,
            json={"lane": "torrent", "kind": "magnet", "url": "magnet:?xt=urn:btih:abc", "name": "ubuntu.iso"},
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["upload_id"]

    def test_missing_or_bad_token_is_unauthorized(self) -> None:
        body = {"lane": "torrent", "kind": "magnet", "url": "magnet:?xt=1", "name": "x"}

        missing = self.client.post("/api/v1/uploads", json=body)
        malformed = self.client.post("/api/v1/uploads", json=body, headers={"Authorization": "Bearer nope"})

        self.assertEqual(missing.status_code, 401)
        self.assertEqual(missing.json()["code"], "UNAUTHORIZED")
        self.assertEqual(malformed.status_code, 401)

    def test_enqueue_and_read_back(self) -> None:
        upload_id = self._enqueue_magnet()

        response = self.client.get(f"/api/v1/uploads/{upload_id}", headers=ALICE)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "queued")
        self.assertEqual(body["lane"], "torrent")
        self.assertEqual(body["kind"], "magnet")
        self.assertEqual(self.h.pending("alice"), 1)

    def test_other_tenant_sees_not_found(self) -> None:
        upload_id = self._enqueue_magnet()

        response = self.client.get(f"/api/v1/uploads/{upload_id}", headers=BOB)

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "RESOURCE_NOT_FOUND")

    def test_payload_kind_must_match_lane(self) -> None:
        response = self.client.post(
            "/api/v1/uploads",
            headers=ALICE,
            json={"lane": "webdl", "kind": "magnet", "url": "magnet:?xt=1", "name": "x"},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")

    def test_file_upload_is_stored_and_queued(self) -> None:
        response = self.client.post(
            "/api/v1/uploads/file",
            headers=ALICE,
            data={"lane": "torrent", "seed": "2"},
            files={"file": ("ubuntu.torrent", b"d8:announce", "application/x-bittorrent")},
        )

        self.assertEqual(response.status_code, 201, response.text)
        upload = self.h.upload("alice", response.json()["upload_id"])
        self.assertEqual(upload.kind.value, "file")
        self.assertTrue(self.h.runtime.files.exists(upload.file_path))

    def test_file_upload_rejects_wrong_extension(self) -> None:
        response = self.client.post(
            "/api/v1/uploads/file",
            headers=ALICE,
            data={"lane": "usenet"},
            files={"file": ("ubuntu.torrent", b"d8:announce", "application/x-bittorrent")},
        )

        self.assertEqual(response.status_code, 400)

    def test_retry_failed_upload_then_conflict_while_queued(self) -> None:
        self.h.add_tenant("alice")
        upload_id = self._enqueue_magnet()
        self.h.client.script(RemoteResponse(200, {"success": False, "error": "BOZO_TORRENT", "detail": "Bad magnet"}))
        self.h.runtime.dispatcher.run_cycle()
        self.assertEqual(self.h.upload("alice", upload_id).status.value, "failed")

        retried = self.client.post(f"/api/v1/uploads/{upload_id}/retry", headers=ALICE)
        again = self.client.post(f"/api/v1/uploads/{upload_id}/retry", headers=ALICE)

        self.assertEqual(retried.status_code, 200)
        self.assertEqual(retried.json()["status"], "queued")
        self.assertEqual(retried.json()["retry_count"], 0)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["code"], "FSM_TRANSITION_INVALID")

    def test_delete_removes_upload(self) -> None:
        upload_id = self._enqueue_magnet()

        deleted = self.client.delete(f"/api/v1/uploads/{upload_id}", headers=ALICE)
        missing = self.client.get(f"/api/v1/uploads/{upload_id}", headers=ALICE)

        self.assertEqual(deleted.status_code, 204)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(self.h.pending("alice"), 0)

    def test_lifespan_logs_and_leaves_processor_stopped(self) -> None:
        app = create_app(self.h.runtime, autostart=False)

        with self.assertLogs("upload_queue.main", level="INFO") as logs:
            with TestClient(app):
                self.assertFalse(self.h.runtime.processor.running)

        self.assertIn("app.startup owned_runtime=False processor_autostart=False", logs.output[0])
        self.assertIn("app.shutdown owned_runtime=False", logs.output[-1])


if __name__ == "__main__":
    unittest.main()

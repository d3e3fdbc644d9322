from __future__ import annotations

import unittest

import httpx

from upload_queue.adapters.remote import HttpUploadClient, UploadPayload
from upload_queue.domain.outcomes import RemoteCallError, failure_from_error, failure_from_response
from upload_queue.schemas.upload import Lane


class HttpUploadClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []
        self.reply = httpx.Response(200, json={"success": True, "data": {"torrent_id": 7}})

    def _client(self) -> HttpUploadClient:
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if isinstance(self.reply, Exception):
                raise self.reply
            return self.reply

        client = HttpUploadClient(
            "secret-key",
            base_url="https://remote.test/",
            transport=httpx.MockTransport(handler),
        )
        self.addCleanup(client.close)
        return client

    def test_lane_endpoints_and_auth_header(self) -> None:
        client = self._client()

        client.create_upload(Lane.TORRENT, UploadPayload(fields={"magnet": "magnet:?xt=1"}))
        client.create_upload(Lane.USENET, UploadPayload(fields={"link": "https://example.com/a.nzb"}))
        client.create_upload(Lane.WEBDL, UploadPayload(fields={"link": "https://example.com/a.zip"}))

        self.assertEqual(
            [request.url.path for request in self.requests],
            [
                "/v1/api/torrents/createtorrent",
                "/v1/api/usenet/createusenetdownload",
                "/v1/api/webdl/createwebdownload",
            ],
        )
        self.assertEqual(self.requests[0].headers["Authorization"], "Bearer secret-key")
        self.assertIn(b"magnet", self.requests[0].content)

    def test_file_part_is_sent_as_multipart(self) -> None:
        client = self._client()

        client.create_torrent_upload(
            UploadPayload(fields={"seed": "1"}, file_name="ubuntu.torrent", file_content=b"d8:announce")
        )

        request = self.requests[0]
        self.assertTrue(request.headers["Content-Type"].startswith("multipart/form-data"))
        self.assertIn(b'filename="ubuntu.torrent"', request.content)
        self.assertIn(b"d8:announce", request.content)

    def test_soft_failure_body_is_returned_not_raised(self) -> None:
        self.reply = httpx.Response(200, json={"success": False, "error": "DOWNLOAD_LIMIT", "detail": "Too many"})

        response = self._client().create_torrent_upload(UploadPayload(fields={"magnet": "magnet:?"}))
        failure = failure_from_response(response)

        self.assertIsNotNone(failure)
        self.assertTrue(failure.soft)
        self.assertEqual(failure.error_code, "DOWNLOAD_LIMIT")

    def test_error_status_raises_with_headers(self) -> None:
        self.reply = httpx.Response(429, json={"detail": "slow down"}, headers={"Retry-After": "12"})

        with self.assertRaises(RemoteCallError) as ctx:
            self._client().create_web_upload(UploadPayload(fields={"link": "https://example.com"}))

        failure = failure_from_error(ctx.exception)
        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(failure.retry_after_ms, 12000)
        self.assertEqual(failure.detail, "slow down")

    def test_transport_error_has_no_status(self) -> None:
        self.reply = httpx.ConnectError("connection refused")

        with self.assertRaises(RemoteCallError) as ctx:
            self._client().create_usenet_upload(UploadPayload(fields={"link": "https://example.com/a.nzb"}))

        self.assertIsNone(ctx.exception.status_code)


if __name__ == "__main__":
    unittest.main()

"""httpx-backed client for the remote download service."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from upload_queue.adapters.remote.base import UploadClient, UploadPayload
from upload_queue.domain.outcomes import RemoteCallError, RemoteResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

_ENDPOINTS = {
    "torrent": "torrents/createtorrent",
    "usenet": "usenet/createusenetdownload",
    "webdl": "webdl/createwebdownload",
}


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class HttpUploadClient(UploadClient):
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str,
        api_version: str = "v1",
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = "upload-queue/1.0",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=f"{base_url.rstrip('/')}/{api_version}/api/",
            headers={"Authorization": f"Bearer {api_key}", "User-Agent": user_agent},
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self._client.close()

    def _post(self, endpoint: str, payload: UploadPayload) -> RemoteResponse:
        files = None
        if payload.file_content is not None:
            files = {"file": (payload.file_name or "upload", payload.file_content)}

        try:
            response = self._client.post(endpoint, data=payload.fields, files=files)
        except httpx.HTTPError as exc:
            logger.warning("remote.transport_error endpoint=%s error=%s", endpoint, type(exc).__name__)
            raise RemoteCallError(f"Transport error: {exc}") from exc

        body = _json_body(response)
        if response.status_code >= 400:
            raise RemoteCallError(
                f"Request failed with status code {response.status_code}",
                status_code=response.status_code,
                body=body,
                headers=dict(response.headers),
            )
        return RemoteResponse(status_code=response.status_code, body=body, headers=dict(response.headers))

    def create_torrent_upload(self, payload: UploadPayload) -> RemoteResponse:
        return self._post(_ENDPOINTS["torrent"], payload)

    def create_usenet_upload(self, payload: UploadPayload) -> RemoteResponse:
        return self._post(_ENDPOINTS["usenet"], payload)

    def create_web_upload(self, payload: UploadPayload) -> RemoteResponse:
        return self._post(_ENDPOINTS["webdl"], payload)

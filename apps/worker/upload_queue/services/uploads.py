"""Upload service layer: the enqueue surface used by the ingress."""

from __future__ import annotations

import logging

from upload_queue.adapters.file_storage import FileStorage
from upload_queue.core.clock import Clock
from upload_queue.core.logging_safety import tenant_token
from upload_queue.domain.upload_fsm import ensure_user_retry
from upload_queue.errors import ApiError
from upload_queue.repositories.handle import StoreHandle
from upload_queue.repositories.registry import TenantRegistry
from upload_queue.repositories.sql import UploadRecord
from upload_queue.repositories.tenant_databases import TenantDatabaseManager
from upload_queue.schemas.upload import Lane, PayloadDescriptor, PayloadKind, Upload, UploadOptions
from upload_queue.services.counters import CounterSynchronizer

logger = logging.getLogger(__name__)

_FILE_EXTENSIONS: dict[Lane, str] = {
    Lane.TORRENT: ".torrent",
    Lane.USENET: ".nzb",
}
_LINK_KINDS: dict[Lane, set[PayloadKind]] = {
    Lane.TORRENT: {PayloadKind.MAGNET},
    Lane.USENET: {PayloadKind.LINK},
    Lane.WEBDL: {PayloadKind.LINK},
}


def _validation_error(message: str, **details) -> ApiError:
    return ApiError(status_code=400, code="VALIDATION_ERROR", message=message, details=details or None)


def _not_found() -> ApiError:
    return ApiError(status_code=404, code="RESOURCE_NOT_FOUND", message="Resource not found")


class UploadService:
    def __init__(
        self,
        databases: TenantDatabaseManager,
        registry: TenantRegistry,
        counters: CounterSynchronizer,
        files: FileStorage,
        clock: Clock,
    ) -> None:
        self._databases = databases
        self._registry = registry
        self._counters = counters
        self._files = files
        self._clock = clock

    def _handle(self, tenant_id: str) -> StoreHandle:
        return StoreHandle(tenant_id, self._databases, self._clock)

    def _validate(self, tenant_id: str, lane: Lane, payload: PayloadDescriptor) -> None:
        if payload.kind is PayloadKind.FILE:
            extension = _FILE_EXTENSIONS.get(lane)
            if extension is None:
                raise _validation_error("File uploads are not supported for this type", lane=lane.value)
            if not payload.file_path:
                raise _validation_error("File path is required for file uploads")
            if not payload.file_path.lower().endswith(extension) and not payload.name.lower().endswith(extension):
                raise _validation_error(f"Only {extension} files are accepted for this type", lane=lane.value)
            if not self._files.is_tenant_path(tenant_id, payload.file_path):
                raise _validation_error("Invalid file path")
            return

        if payload.kind not in _LINK_KINDS[lane]:
            raise _validation_error(
                "Payload kind is not supported for this type",
                lane=lane.value,
                kind=payload.kind.value,
            )
        url = (payload.url or "").strip()
        if not url:
            raise _validation_error("A link is required for this upload")
        if payload.kind is PayloadKind.MAGNET and not url.startswith("magnet:"):
            raise _validation_error("Invalid magnet link")

    def enqueue(
        self,
        tenant_id: str,
        lane: Lane,
        payload: PayloadDescriptor,
        options: UploadOptions | None = None,
    ) -> int:
        self._validate(tenant_id, lane, payload)
        options = options or UploadOptions()
        now = self._clock.now()
        handle = self._handle(tenant_id)
        upload_id = handle.run(
            lambda store: store.insert_upload(
                lane=lane,
                kind=payload.kind,
                name=payload.name,
                options=options,
                now=now,
                file_path=payload.file_path if payload.kind is PayloadKind.FILE else None,
                url=payload.url.strip() if payload.kind is not PayloadKind.FILE and payload.url else None,
            ),
            name="insert_upload",
        )
        self._registry.ensure_tenant(tenant_id, now)
        self._counters.recompute(handle)
        logger.info(
            "upload.enqueued tenant=%s upload_id=%s lane=%s kind=%s",
            tenant_token(tenant_id),
            upload_id,
            lane.value,
            payload.kind.value,
        )
        return upload_id

    def enqueue_file(
        self,
        tenant_id: str,
        lane: Lane,
        filename: str,
        content: bytes,
        options: UploadOptions | None = None,
    ) -> int:
        extension = _FILE_EXTENSIONS.get(lane)
        if extension is None:
            raise _validation_error("File uploads are not supported for this type", lane=lane.value)
        if not filename.lower().endswith(extension):
            raise _validation_error(f"Only {extension} files are accepted for this type", lane=lane.value)
        if not content:
            raise _validation_error("Uploaded file is empty")

        file_path = self._files.save(tenant_id, lane.value, filename, content)
        descriptor = PayloadDescriptor(kind=PayloadKind.FILE, file_path=file_path, name=filename)
        return self.enqueue(tenant_id, lane, descriptor, options)

    def get_upload(self, tenant_id: str, upload_id: int) -> Upload:
        return self._to_upload(self._get_record(self._handle(tenant_id), upload_id))

    def retry_upload(self, tenant_id: str, upload_id: int) -> Upload:
        handle = self._handle(tenant_id)
        record = self._get_record(handle, upload_id)
        ensure_user_retry(record.status)
        if record.file_deleted:
            raise _validation_error("The upload file has been deleted and cannot be retried")

        now = self._clock.now()
        handle.run(lambda store: store.requeue_failed(upload_id, now), name="requeue_failed")
        self._registry.ensure_tenant(tenant_id, now)
        self._counters.recompute(handle)
        logger.info("upload.retried tenant=%s upload_id=%s", tenant_token(tenant_id), upload_id)
        return self._to_upload(self._get_record(handle, upload_id))

    def delete_upload(self, tenant_id: str, upload_id: int) -> None:
        handle = self._handle(tenant_id)
        record = self._get_record(handle, upload_id)
        # Attempts stay behind for rate accounting.
        handle.run(lambda store: store.delete_upload(upload_id), name="delete_upload")
        if record.kind is PayloadKind.FILE and record.file_path and not record.file_deleted:
            self._files.delete(tenant_id, record.file_path)
        self._counters.recompute(handle)
        logger.info("upload.deleted tenant=%s upload_id=%s", tenant_token(tenant_id), upload_id)

    @staticmethod
    def _get_record(handle: StoreHandle, upload_id: int) -> UploadRecord:
        record = handle.run(lambda store: store.get_upload(upload_id), name="get_upload")
        if record is None:
            raise _not_found()
        return record

    @staticmethod
    def _to_upload(record: UploadRecord) -> Upload:
        return Upload(
            id=record.id,
            lane=record.lane,
            kind=record.kind,
            name=record.name,
            status=record.status,
            file_path=record.file_path,
            url=record.url,
            error_message=record.error_message,
            retry_count=record.retry_count,
            queue_order=record.queue_order,
            next_attempt_at=record.next_attempt_at,
            last_processed_at=record.last_processed_at,
            completed_at=record.completed_at,
            file_deleted=record.file_deleted,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

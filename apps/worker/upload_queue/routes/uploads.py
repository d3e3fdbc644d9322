"""Upload routes."""

from typing import Annotated

from fastapi import APIRouter, File, Form, Path, Response, UploadFile, status

from upload_queue.routes.dependencies import TenantId, Uploads
from upload_queue.schemas.error import (
    FsmTransitionError,
    NoLeakNotFoundError,
    UnauthorizedError,
    UploadValidationError,
)
from upload_queue.schemas.upload import (
    EnqueueRequest,
    EnqueueResponse,
    Lane,
    PayloadDescriptor,
    Upload,
    UploadOptions,
    UploadStatus,
)

router = APIRouter(tags=["Uploads"], responses={401: {"model": UnauthorizedError}})

UploadId = Annotated[int, Path(alias="uploadId")]


@router.post(
    "/uploads",
    response_model=EnqueueResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": UploadValidationError}},
)
def create_upload(payload: EnqueueRequest, tenant_id: TenantId, service: Uploads) -> EnqueueResponse:
    upload_id = service.enqueue(
        tenant_id,
        payload.lane,
        PayloadDescriptor(kind=payload.kind, url=payload.url, name=payload.name),
        payload.options,
    )
    return EnqueueResponse(upload_id=upload_id, status=UploadStatus.QUEUED)


@router.post(
    "/uploads/file",
    response_model=EnqueueResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": UploadValidationError}},
)
async def create_file_upload(
    lane: Annotated[Lane, Form()],
    file: Annotated[UploadFile, File()],
    tenant_id: TenantId,
    service: Uploads,
    seed: Annotated[int | None, Form()] = None,
    allow_zip: Annotated[bool, Form()] = True,
    as_queued: Annotated[bool, Form()] = False,
    password: Annotated[str | None, Form()] = None,
) -> EnqueueResponse:
    content = await file.read()
    upload_id = service.enqueue_file(
        tenant_id,
        lane,
        file.filename or "upload",
        content,
        UploadOptions(seed=seed, allow_zip=allow_zip, as_queued=as_queued, password=password),
    )
    return EnqueueResponse(upload_id=upload_id, status=UploadStatus.QUEUED)


@router.get("/uploads/{uploadId}", response_model=Upload, responses={404: {"model": NoLeakNotFoundError}})
def get_upload(upload_id: UploadId, tenant_id: TenantId, service: Uploads) -> Upload:
    return service.get_upload(tenant_id, upload_id)


@router.post(
    "/uploads/{uploadId}/retry",
    response_model=Upload,
    responses={
        400: {"model": UploadValidationError},
        404: {"model": NoLeakNotFoundError},
        409: {"model": FsmTransitionError},
    },
)
def retry_upload(upload_id: UploadId, tenant_id: TenantId, service: Uploads) -> Upload:
    return service.retry_upload(tenant_id, upload_id)


@router.delete(
    "/uploads/{uploadId}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={404: {"model": NoLeakNotFoundError}},
)
def delete_upload(upload_id: UploadId, tenant_id: TenantId, service: Uploads) -> Response:
    service.delete_upload(tenant_id, upload_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

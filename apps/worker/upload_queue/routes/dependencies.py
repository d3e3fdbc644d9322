"""Request-scoped dependencies: bearer auth, tenant resolution and the runtime."""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import uuid4

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from upload_queue.adapters.auth import (
    AuthVerificationError,
    FirebaseTokenVerifier,
    MockTokenVerifier,
    TokenVerifier,
)
from upload_queue.core.config import Settings, get_settings
from upload_queue.core.logging_safety import safe_log_identifier, tenant_token
from upload_queue.errors import ApiError
from upload_queue.runtime import QueueRuntime
from upload_queue.schemas.auth import TenantPrincipal
from upload_queue.services.uploads import UploadService

bearer_scheme = HTTPBearer(auto_error=False, scheme_name="bearerAuth")
logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-Id"


def correlation_id(request: Request) -> str:
    current = getattr(request.state, "correlation_id", None)
    if not current:
        current = request.headers.get(CORRELATION_HEADER) or f"req-{uuid4()}"
        request.state.correlation_id = current
    return current


def get_token_verifier(settings: Annotated[Settings, Depends(get_settings)]) -> TokenVerifier:
    if settings.auth_provider == "firebase":
        return FirebaseTokenVerifier(
            project_id=settings.firebase_project_id,
            audience=settings.firebase_audience,
        )
    return MockTokenVerifier()


def _reject(request: Request, reason: str, message: str) -> ApiError:
    logger.warning(
        "auth.rejected correlation_id=%s method=%s path=%s reason=%s",
        safe_log_identifier(correlation_id(request), prefix="cid"),
        request.method,
        request.url.path,
        reason,
    )
    return ApiError(status_code=401, code="UNAUTHORIZED", message=message)


async def get_authenticated_principal(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    verifier: Annotated[TokenVerifier, Depends(get_token_verifier)],
) -> TenantPrincipal:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise _reject(request, "invalid_or_missing_bearer", "Invalid or missing bearer token")

    try:
        principal = verifier.verify_token(credentials.credentials)
    except AuthVerificationError as exc:
        raise _reject(request, "token_verification_failed", str(exc) or "Invalid bearer token") from exc

    logger.debug(
        "auth.accepted correlation_id=%s tenant=%s",
        safe_log_identifier(correlation_id(request), prefix="cid"),
        tenant_token(principal.tenant_id),
    )
    request.state.tenant_id = principal.tenant_id
    return principal


def get_tenant_id(principal: Annotated[TenantPrincipal, Depends(get_authenticated_principal)]) -> str:
    return principal.tenant_id


def get_runtime(request: Request) -> QueueRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise ApiError(status_code=503, code="SERVICE_UNAVAILABLE", message="Upload queue is not ready")
    return runtime


def get_upload_service(runtime: Annotated[QueueRuntime, Depends(get_runtime)]) -> UploadService:
    return runtime.uploads


TenantId = Annotated[str, Depends(get_tenant_id)]
Uploads = Annotated[UploadService, Depends(get_upload_service)]

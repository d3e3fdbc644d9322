"""Bearer token verification."""

from abc import ABC, abstractmethod

from upload_queue.schemas.auth import TenantPrincipal


class AuthVerificationError(Exception):
    """Raised when a bearer token does not identify a tenant."""


class TokenVerifier(ABC):
    @abstractmethod
    def verify_token(self, token: str) -> TenantPrincipal:
        """Return the tenant the token belongs to."""


def principal_from_claims(tenant_id: object, email: object = None) -> TenantPrincipal:
    tenant_text = str(tenant_id or "").strip()
    if not tenant_text:
        raise AuthVerificationError("Bearer token missing user identity")
    email_text = str(email or "").strip() or None
    return TenantPrincipal(tenant_id=tenant_text, email=email_text)


__all__ = ["AuthVerificationError", "TokenVerifier", "principal_from_claims"]

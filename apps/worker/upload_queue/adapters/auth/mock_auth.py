"""Deterministic tokens for local runs and tests."""

from upload_queue.adapters.auth.base import AuthVerificationError, TokenVerifier, principal_from_claims
from upload_queue.schemas.auth import TenantPrincipal

TOKEN_PREFIX = "test"


class MockTokenVerifier(TokenVerifier):
    """Accepts ``test:<tenant_id>`` or ``test:<tenant_id>:<email>``."""

    def verify_token(self, token: str) -> TenantPrincipal:
        prefix, _, rest = token.partition(":")
        if prefix != TOKEN_PREFIX or not rest:
            raise AuthVerificationError("Invalid bearer token")

        tenant_id, _, email = rest.partition(":")
        return principal_from_claims(tenant_id, email)


__all__ = ["MockTokenVerifier"]

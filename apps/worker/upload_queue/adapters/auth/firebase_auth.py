"""Firebase ID token verification for dashboard users."""

from __future__ import annotations

from upload_queue.adapters.auth.base import AuthVerificationError, TokenVerifier, principal_from_claims
from upload_queue.schemas.auth import TenantPrincipal


class FirebaseTokenVerifier(TokenVerifier):
    """Maps a verified Firebase user to its tenant (the Firebase ``uid``)."""

    def __init__(self, project_id: str | None, audience: str | None) -> None:
        self._project_id = project_id
        self._audience = audience or project_id

    def _claims(self, token: str) -> dict:
        try:
            import firebase_admin
            from firebase_admin import auth as firebase_auth
        except ImportError as exc:  # pragma: no cover - optional extra
            raise AuthVerificationError("Firebase auth verifier is unavailable") from exc

        if not firebase_admin._apps:
            options = {"projectId": self._project_id} if self._project_id else None
            firebase_admin.initialize_app(options=options)

        try:
            return firebase_auth.verify_id_token(token, check_revoked=True)
        except Exception as exc:  # pragma: no cover - provider exception surface
            raise AuthVerificationError("Invalid bearer token") from exc

    def verify_token(self, token: str) -> TenantPrincipal:
        claims = self._claims(token)
        if self._audience and claims.get("aud") != self._audience:
            raise AuthVerificationError("Invalid bearer token audience")
        return principal_from_claims(claims.get("uid") or claims.get("sub"), claims.get("email"))


__all__ = ["FirebaseTokenVerifier"]

"""Credential store interfaces."""

from abc import ABC, abstractmethod


class CredentialDecryptionError(Exception):
    """Raised when a stored secret cannot be decrypted."""


class CredentialStore(ABC):
    """Source of per-tenant encrypted API secrets."""

    @abstractmethod
    def get_secret(self, tenant_id: str) -> str | None:
        """Return the encrypted secret blob, or ``None`` when the tenant has none."""


__all__ = ["CredentialDecryptionError", "CredentialStore"]

"""Credential store adapters."""

from .base import CredentialDecryptionError, CredentialStore
from .cipher import SecretCipher
from .sql_store import SqlCredentialStore

__all__ = [
    "CredentialDecryptionError",
    "CredentialStore",
    "SecretCipher",
    "SqlCredentialStore",
]

"""AES-256-GCM secret encryption.

Blobs are ``hex(iv):hex(tag):hex(ciphertext)``; the key is derived from the
configured passphrase with scrypt.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from upload_queue.adapters.credentials.base import CredentialDecryptionError

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_SALT = b"upload-queue-salt"


def derive_key(passphrase: str) -> bytes:
    kdf = Scrypt(salt=KEY_SALT, length=32, n=2**14, r=8, p=1)
    return kdf.derive(passphrase.encode("utf-8"))


class SecretCipher:
    def __init__(self, passphrase: str) -> None:
        if not passphrase:
            raise ValueError("encryption passphrase must not be empty")
        self._aead = AESGCM(derive_key(passphrase))

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, blob: str) -> str:
        parts = blob.split(":")
        if len(parts) != 3:
            raise CredentialDecryptionError("Invalid encrypted data format")
        try:
            iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)
            return self._aead.decrypt(iv, ciphertext + tag, None).decode("utf-8")
        except (ValueError, InvalidTag) as exc:
            raise CredentialDecryptionError("Failed to decrypt secret") from exc

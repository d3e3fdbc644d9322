"""Log-safe stand-ins for tenant ids, correlation ids and API secrets.

Raw identifiers and keys never reach log lines; a short SHA-256 prefix is
enough to correlate entries across a cycle.
"""

from __future__ import annotations

import hashlib
from typing import Any

_DIGEST_LENGTH = 12


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:_DIGEST_LENGTH]


def safe_log_identifier(value: Any, *, prefix: str) -> str:
    text = str(value or "").strip()
    if not text:
        return f"{prefix}-missing"
    return f"{prefix}-{_digest(text)}"


def tenant_token(tenant_id: Any) -> str:
    return safe_log_identifier(tenant_id, prefix="tid")


def secret_fingerprint(secret: str | None) -> str:
    """Distinguishes rotated API keys in logs without revealing them."""
    return safe_log_identifier(secret, prefix="key")

"""Credential store over the master database ``api_keys`` table."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Engine, insert, select, update

from upload_queue.adapters.credentials.base import CredentialStore
from upload_queue.repositories.registry import api_keys
from upload_queue.repositories.sql import translate_store_errors


class SqlCredentialStore(CredentialStore):
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def get_secret(self, tenant_id: str) -> str | None:
        stmt = select(api_keys.c.encrypted_key).where(
            api_keys.c.tenant_id == tenant_id,
            api_keys.c.is_active.is_(True),
        )
        with translate_store_errors(), self._engine.begin() as conn:
            return conn.execute(stmt).scalar()

    def put_secret(self, tenant_id: str, encrypted_key: str, now: datetime) -> None:
        with translate_store_errors(), self._engine.begin() as conn:
            changed = conn.execute(
                update(api_keys)
                .where(api_keys.c.tenant_id == tenant_id)
                .values(encrypted_key=encrypted_key, is_active=True, updated_at=now)
            ).rowcount
            if changed == 0:
                conn.execute(
                    insert(api_keys).values(
                        tenant_id=tenant_id,
                        encrypted_key=encrypted_key,
                        is_active=True,
                        created_at=now,
                        updated_at=now,
                    )
                )

"""Master database: tenant registry counters and encrypted API keys."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Engine,
    Integer,
    MetaData,
    Table,
    Text,
    insert,
    or_,
    select,
    update,
)

from upload_queue.repositories.sql import translate_store_errors

master_metadata = MetaData()

tenant_registry = Table(
    "tenant_registry",
    master_metadata,
    Column("tenant_id", Text, primary_key=True),
    Column("pending_uploads", Integer, nullable=False, default=0),
    Column("next_upload_attempt_at", DateTime),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime),
)

api_keys = Table(
    "api_keys",
    master_metadata,
    Column("tenant_id", Text, primary_key=True),
    Column("encrypted_key", Text, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime),
)


@dataclass(frozen=True, slots=True)
class TenantCounters:
    tenant_id: str
    pending_uploads: int
    next_upload_attempt_at: datetime | None


class TenantRegistry:
    """Denormalized per-tenant pending counts used to skip idle tenants."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create_schema(self) -> None:
        with translate_store_errors(), self._engine.begin() as conn:
            master_metadata.create_all(conn)

    def ensure_tenant(self, tenant_id: str, now: datetime) -> None:
        with translate_store_errors(), self._engine.begin() as conn:
            exists = conn.execute(
                select(tenant_registry.c.tenant_id).where(tenant_registry.c.tenant_id == tenant_id)
            ).first()
            if exists is None:
                conn.execute(
                    insert(tenant_registry).values(
                        tenant_id=tenant_id,
                        pending_uploads=0,
                        next_upload_attempt_at=None,
                        created_at=now,
                        updated_at=now,
                    )
                )

    def write_counters(
        self,
        tenant_id: str,
        *,
        pending_uploads: int,
        next_upload_attempt_at: datetime | None,
        now: datetime,
    ) -> None:
        with translate_store_errors(), self._engine.begin() as conn:
            changed = conn.execute(
                update(tenant_registry)
                .where(tenant_registry.c.tenant_id == tenant_id)
                .values(
                    pending_uploads=pending_uploads,
                    next_upload_attempt_at=next_upload_attempt_at,
                    updated_at=now,
                )
            ).rowcount
            if changed == 0:
                conn.execute(
                    insert(tenant_registry).values(
                        tenant_id=tenant_id,
                        pending_uploads=pending_uploads,
                        next_upload_attempt_at=next_upload_attempt_at,
                        created_at=now,
                        updated_at=now,
                    )
                )

    def get_counters(self, tenant_id: str) -> TenantCounters | None:
        with translate_store_errors(), self._engine.begin() as conn:
            row = conn.execute(
                select(tenant_registry).where(tenant_registry.c.tenant_id == tenant_id)
            ).mappings().first()
        if row is None:
            return None
        return TenantCounters(
            tenant_id=row["tenant_id"],
            pending_uploads=row["pending_uploads"],
            next_upload_attempt_at=row["next_upload_attempt_at"],
        )

    def list_tenants_with_pending_work(self, now: datetime) -> list[str]:
        stmt = (
            select(tenant_registry.c.tenant_id)
            .where(
                or_(
                    tenant_registry.c.pending_uploads > 0,
                    tenant_registry.c.next_upload_attempt_at <= now,
                )
            )
            .order_by(tenant_registry.c.tenant_id)
        )
        with translate_store_errors(), self._engine.begin() as conn:
            return list(conn.execute(stmt).scalars().all())

    def list_tenants(self) -> list[str]:
        stmt = select(tenant_registry.c.tenant_id).order_by(tenant_registry.c.tenant_id)
        with translate_store_errors(), self._engine.begin() as conn:
            return list(conn.execute(stmt).scalars().all())

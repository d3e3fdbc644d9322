"""Per-tenant upload persistence on SQLAlchemy Core.

Each tenant owns one database holding ``uploads`` and ``upload_attempts``.
Every timestamp is passed in by the caller; SQL-side clocks are never used.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
import sqlite3

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Engine,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    and_,
    delete,
    exc as sa_exc,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Connection, RowMapping

from upload_queue.domain.rate_window import AttemptWindow
from upload_queue.errors import StoreBusy, StoreConnectionClosed
from upload_queue.schemas.upload import Lane, PayloadKind, UploadOptions, UploadStatus

tenant_metadata = MetaData()

uploads = Table(
    "uploads",
    tenant_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("lane", Text, nullable=False),
    Column("payload_kind", Text, nullable=False),
    Column("file_path", Text),
    Column("url", Text),
    Column("name", Text, nullable=False),
    Column("status", Text, nullable=False, default=UploadStatus.QUEUED.value),
    Column("error_message", Text),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("seed", Integer),
    Column("allow_zip", Boolean, nullable=False, default=True),
    Column("as_queued", Boolean, nullable=False, default=False),
    Column("password", Text),
    Column("queue_order", Integer, nullable=False, default=0),
    Column("next_attempt_at", DateTime),
    Column("last_processed_at", DateTime),
    Column("completed_at", DateTime),
    Column("file_deleted", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime),
    Index("idx_uploads_dequeue", "status", "lane", "next_attempt_at", "queue_order"),
    Index("idx_uploads_file_path", "file_path"),
)

upload_attempts = Table(
    "upload_attempts",
    tenant_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("upload_id", Integer),
    Column("lane", Text, nullable=False),
    Column("status_code", Integer),
    Column("success", Boolean, nullable=False),
    Column("error_code", Text),
    Column("error_message", Text),
    Column("attempted_at", DateTime, nullable=False),
    Index("idx_upload_attempts_lane_time", "lane", "attempted_at"),
    Index("idx_upload_attempts_upload_id", "upload_id"),
)


def _is_closed_error(error: sa_exc.DBAPIError) -> bool:
    if error.connection_invalidated:
        return True
    orig = error.orig
    return isinstance(orig, sqlite3.ProgrammingError) and "closed" in str(orig).lower()


def _is_busy_error(error: sa_exc.DBAPIError) -> bool:
    message = str(error.orig).lower()
    return isinstance(error, sa_exc.OperationalError) and ("locked" in message or "busy" in message)


@contextmanager
def translate_store_errors() -> Iterator[None]:
    """Map driver failures onto the typed storage errors callers retry on."""
    try:
        yield
    except sa_exc.ResourceClosedError as exc:
        raise StoreConnectionClosed(str(exc)) from exc
    except sa_exc.DBAPIError as exc:
        if _is_closed_error(exc):
            raise StoreConnectionClosed(str(exc.orig)) from exc
        if _is_busy_error(exc):
            raise StoreBusy(str(exc.orig)) from exc
        raise


@dataclass(slots=True)
class UploadRecord:
    id: int
    lane: Lane
    kind: PayloadKind
    name: str
    status: UploadStatus
    queue_order: int
    created_at: datetime
    file_path: str | None = None
    url: str | None = None
    error_message: str | None = None
    retry_count: int = 0
    seed: int | None = None
    allow_zip: bool = True
    as_queued: bool = False
    password: str | None = None
    next_attempt_at: datetime | None = None
    last_processed_at: datetime | None = None
    completed_at: datetime | None = None
    file_deleted: bool = False
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: RowMapping) -> UploadRecord:
        return cls(
            id=row["id"],
            lane=Lane(row["lane"]),
            kind=PayloadKind(row["payload_kind"]),
            name=row["name"],
            status=UploadStatus(row["status"]),
            queue_order=row["queue_order"],
            created_at=row["created_at"],
            file_path=row["file_path"],
            url=row["url"],
            error_message=row["error_message"],
            retry_count=row["retry_count"] or 0,
            seed=row["seed"],
            allow_zip=bool(row["allow_zip"]),
            as_queued=bool(row["as_queued"]),
            password=row["password"],
            next_attempt_at=row["next_attempt_at"],
            last_processed_at=row["last_processed_at"],
            completed_at=row["completed_at"],
            file_deleted=bool(row["file_deleted"]),
            updated_at=row["updated_at"],
        )


@dataclass(frozen=True, slots=True)
class PendingSummary:
    pending: int
    next_deferred_at: datetime | None


def _pending_clause(now: datetime):
    return and_(
        uploads.c.status == UploadStatus.QUEUED.value,
        uploads.c.file_deleted.is_(False),
        or_(uploads.c.next_attempt_at.is_(None), uploads.c.next_attempt_at <= now),
    )


class UploadStore:
    """Upload and attempt tables of a single tenant database."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def create_schema(self) -> None:
        with self._begin() as conn:
            tenant_metadata.create_all(conn)

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        if self._closed:
            raise StoreConnectionClosed("Upload store is closed")
        with translate_store_errors(), self._engine.begin() as conn:
            yield conn

    # Uploads

    def max_queue_order(self) -> int:
        with self._begin() as conn:
            value = conn.execute(select(func.max(uploads.c.queue_order))).scalar()
        return -1 if value is None else int(value)

    def insert_upload(
        self,
        *,
        lane: Lane,
        kind: PayloadKind,
        name: str,
        options: UploadOptions,
        now: datetime,
        file_path: str | None = None,
        url: str | None = None,
    ) -> int:
        with self._begin() as conn:
            current_max = conn.execute(select(func.max(uploads.c.queue_order))).scalar()
            queue_order = 0 if current_max is None else int(current_max) + 1
            result = conn.execute(
                insert(uploads).values(
                    lane=lane.value,
                    payload_kind=kind.value,
                    file_path=file_path,
                    url=url,
                    name=name,
                    status=UploadStatus.QUEUED.value,
                    retry_count=0,
                    seed=options.seed,
                    allow_zip=options.allow_zip,
                    as_queued=options.as_queued,
                    password=options.password,
                    queue_order=queue_order,
                    file_deleted=False,
                    created_at=now,
                    updated_at=now,
                )
            )
            return int(result.inserted_primary_key[0])

    def get_upload(self, upload_id: int) -> UploadRecord | None:
        with self._begin() as conn:
            row = conn.execute(select(uploads).where(uploads.c.id == upload_id)).mappings().first()
        return UploadRecord.from_row(row) if row is not None else None

    def list_uploads(self, *, status: UploadStatus | None = None) -> list[UploadRecord]:
        stmt = select(uploads).order_by(uploads.c.queue_order)
        if status is not None:
            stmt = stmt.where(uploads.c.status == status.value)
        with self._begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [UploadRecord.from_row(row) for row in rows]

    def next_ready(self, lane: Lane, now: datetime) -> UploadRecord | None:
        stmt = (
            select(uploads)
            .where(_pending_clause(now), uploads.c.lane == lane.value)
            .order_by(uploads.c.queue_order, uploads.c.id)
            .limit(1)
        )
        with self._begin() as conn:
            row = conn.execute(stmt).mappings().first()
        return UploadRecord.from_row(row) if row is not None else None

    def claim(self, upload_id: int, now: datetime) -> bool:
        """Optimistically take ownership; ``False`` means another claimer won."""
        stmt = (
            update(uploads)
            .where(uploads.c.id == upload_id, uploads.c.status == UploadStatus.QUEUED.value)
            .values(status=UploadStatus.PROCESSING.value, last_processed_at=now, updated_at=now)
        )
        with self._begin() as conn:
            return conn.execute(stmt).rowcount == 1

    def mark_completed(self, upload_id: int, now: datetime) -> bool:
        stmt = (
            update(uploads)
            .where(uploads.c.id == upload_id, uploads.c.status == UploadStatus.PROCESSING.value)
            .values(
                status=UploadStatus.COMPLETED.value,
                error_message=None,
                next_attempt_at=None,
                completed_at=now,
                updated_at=now,
            )
        )
        with self._begin() as conn:
            return conn.execute(stmt).rowcount == 1

    def release(
        self,
        upload_id: int,
        *,
        status: UploadStatus,
        retry_count: int,
        next_attempt_at: datetime | None,
        error_message: str | None,
        now: datetime,
    ) -> bool:
        """Move a processing upload back to queued, or to failed."""
        stmt = (
            update(uploads)
            .where(uploads.c.id == upload_id, uploads.c.status == UploadStatus.PROCESSING.value)
            .values(
                status=status.value,
                retry_count=retry_count,
                next_attempt_at=next_attempt_at,
                error_message=error_message,
                last_processed_at=now,
                updated_at=now,
            )
        )
        with self._begin() as conn:
            return conn.execute(stmt).rowcount == 1

    def defer_lane(self, lane: Lane, until: datetime, now: datetime, *, exclude_id: int | None = None) -> int:
        """Push every queued upload in ``lane`` out to at least ``until``."""
        conditions = [
            uploads.c.lane == lane.value,
            uploads.c.status == UploadStatus.QUEUED.value,
            uploads.c.file_deleted.is_(False),
            or_(uploads.c.next_attempt_at.is_(None), uploads.c.next_attempt_at < until),
        ]
        if exclude_id is not None:
            conditions.append(uploads.c.id != exclude_id)
        stmt = update(uploads).where(*conditions).values(next_attempt_at=until, updated_at=now)
        with self._begin() as conn:
            return conn.execute(stmt).rowcount

    def requeue_failed(self, upload_id: int, now: datetime) -> bool:
        with self._begin() as conn:
            current_max = conn.execute(select(func.max(uploads.c.queue_order))).scalar()
            queue_order = 0 if current_max is None else int(current_max) + 1
            stmt = (
                update(uploads)
                .where(uploads.c.id == upload_id, uploads.c.status == UploadStatus.FAILED.value)
                .values(
                    status=UploadStatus.QUEUED.value,
                    error_message=None,
                    retry_count=0,
                    next_attempt_at=None,
                    queue_order=queue_order,
                    updated_at=now,
                )
            )
            return conn.execute(stmt).rowcount == 1

    def delete_upload(self, upload_id: int) -> bool:
        with self._begin() as conn:
            return conn.execute(delete(uploads).where(uploads.c.id == upload_id)).rowcount == 1

    def pending_summary(self, now: datetime) -> PendingSummary:
        deferred_clause = and_(
            uploads.c.status == UploadStatus.QUEUED.value,
            uploads.c.file_deleted.is_(False),
            uploads.c.next_attempt_at > now,
        )
        with self._begin() as conn:
            pending = conn.execute(select(func.count()).select_from(uploads).where(_pending_clause(now))).scalar()
            next_deferred_at = conn.execute(select(func.min(uploads.c.next_attempt_at)).where(deferred_clause)).scalar()
        return PendingSummary(pending=int(pending or 0), next_deferred_at=next_deferred_at)

    # Crash recovery

    def stale_processing(self, cutoff: datetime) -> list[UploadRecord]:
        stmt = select(uploads).where(
            uploads.c.status == UploadStatus.PROCESSING.value,
            or_(uploads.c.last_processed_at.is_(None), uploads.c.last_processed_at < cutoff),
        )
        with self._begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [UploadRecord.from_row(row) for row in rows]

    def requeue_stale(self, upload_id: int, cutoff: datetime, now: datetime) -> bool:
        stmt = (
            update(uploads)
            .where(
                uploads.c.id == upload_id,
                uploads.c.status == UploadStatus.PROCESSING.value,
                or_(uploads.c.last_processed_at.is_(None), uploads.c.last_processed_at < cutoff),
            )
            .values(status=UploadStatus.QUEUED.value, error_message=None, updated_at=now)
        )
        with self._begin() as conn:
            return conn.execute(stmt).rowcount == 1

    # Retention

    def mark_file_deleted(self, file_path: str, now: datetime) -> tuple[int, int]:
        """Flag rows referencing ``file_path``; returns (rows flagged, of which queued)."""
        match = and_(uploads.c.file_path == file_path, uploads.c.file_deleted.is_(False))
        with self._begin() as conn:
            queued = conn.execute(
                select(func.count())
                .select_from(uploads)
                .where(match, uploads.c.status == UploadStatus.QUEUED.value)
            ).scalar()
            flagged = conn.execute(update(uploads).where(match).values(file_deleted=True, updated_at=now)).rowcount
        return flagged, int(queued or 0)

    # Attempts

    def log_attempt(
        self,
        *,
        upload_id: int | None,
        lane: Lane,
        status_code: int | None,
        success: bool,
        attempted_at: datetime,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        with self._begin() as conn:
            conn.execute(
                insert(upload_attempts).values(
                    upload_id=upload_id,
                    lane=lane.value,
                    status_code=status_code,
                    success=success,
                    error_code=error_code,
                    error_message=error_message,
                    attempted_at=attempted_at,
                )
            )

    def attempt_window(self, lane: Lane, since: datetime) -> AttemptWindow:
        stmt = select(
            func.count(upload_attempts.c.id),
            func.min(upload_attempts.c.attempted_at),
            func.max(upload_attempts.c.attempted_at),
        ).where(upload_attempts.c.lane == lane.value, upload_attempts.c.attempted_at >= since)
        with self._begin() as conn:
            count, oldest, newest = conn.execute(stmt).one()
        return AttemptWindow(count=int(count or 0), oldest=oldest, newest=newest)

    def has_successful_attempt(self, upload_id: int, since: datetime) -> bool:
        stmt = (
            select(upload_attempts.c.id)
            .where(
                upload_attempts.c.upload_id == upload_id,
                upload_attempts.c.success.is_(True),
                upload_attempts.c.attempted_at >= since,
            )
            .limit(1)
        )
        with self._begin() as conn:
            return conn.execute(stmt).first() is not None

    def list_attempts(self, lane: Lane | None = None) -> list[RowMapping]:
        stmt = select(upload_attempts).order_by(upload_attempts.c.attempted_at, upload_attempts.c.id)
        if lane is not None:
            stmt = stmt.where(upload_attempts.c.lane == lane.value)
        with self._begin() as conn:
            return list(conn.execute(stmt).mappings().all())

    def trim_attempts(self, before: datetime) -> int:
        with self._begin() as conn:
            return conn.execute(delete(upload_attempts).where(upload_attempts.c.attempted_at < before)).rowcount

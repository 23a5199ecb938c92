"""
audit/store.py -- SQLAlchemy Core persistence layer for the audit trail.

Pattern: Repository + Data Mapper. The table is append-only: the store
exposes insert, count and newest-first listing, and nothing that updates or
deletes a row.

user_id is nullable -- requests rejected before authentication are recorded
with no identity.

Layer rule: no imports from api/, auth/ or profiles/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from audit.models import AuditEntry
from core.config import get_settings
from core.db import create_store_engine, now_iso

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),
    Column("method", String(10), nullable=False),
    Column("url", Text, nullable=False),
    Column("status", Integer, nullable=False),
    Column("ip", String(45)),
    Column("created_at", String(32), nullable=False),
)


class AuditStore:
    """Repository for AuditEntry records."""

    def __init__(self, db_url: str | None = None, timeout_seconds: int | None = None) -> None:
        settings = get_settings()
        self.engine: Engine = create_store_engine(
            db_url or settings.database_url,
            timeout_seconds if timeout_seconds is not None else settings.storage_timeout_seconds,
        )
        _metadata.create_all(self.engine)

    def insert(self, entry: AuditEntry) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    user_id=entry.user_id,
                    method=entry.method[:10],
                    url=entry.url,
                    status=entry.status,
                    ip=entry.ip[:45] if entry.ip else None,
                    created_at=entry.created_at or now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_audit_logs)).scalar() or 0

    def list_entries(self, limit: int = 10, offset: int = 0) -> list[AuditEntry]:
        """Return one page of entries, newest first."""
        query = _audit_logs.select().order_by(_audit_logs.c.id.desc()).limit(limit).offset(offset)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        user_id=row.user_id,
        method=row.method,
        url=row.url,
        status=row.status,
        ip=row.ip,
        created_at=row.created_at,
    )

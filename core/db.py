"""
core/db.py -- SQLAlchemy engine construction shared by every store.

Each store (auth/store.py, profiles/store.py, audit/store.py) owns its tables
and builds its engine through create_store_engine() so the per-call storage
timeout and SQLite pragmas are applied in one place.

Timeout policy: every storage call gets a fixed ceiling
(Settings.storage_timeout_seconds). On SQLite this is the busy timeout; on
PostgreSQL it is statement_timeout. Pool checkout waits are bounded by the same
value. A call that exceeds it raises an SQLAlchemyError which callers surface
as an internal error -- it is never retried.

There are no cross-store foreign keys. Cascades (user -> roles, user ->
profile) are done in code by the route that deletes the user, the same way
stores stay importable and testable on their own.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str, timeout_seconds: int = 5) -> Engine:
    """Return an Engine for db_url with the storage timeout applied."""
    connect_args: dict = {}
    engine_kwargs: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
    else:
        engine_kwargs["pool_timeout"] = timeout_seconds
        engine_kwargs["pool_pre_ping"] = True
        if db_url.startswith("postgresql"):
            connect_args["options"] = f"-c statement_timeout={timeout_seconds * 1000}"
    engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

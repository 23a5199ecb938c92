"""
profiles/store.py -- SQLAlchemy Core persistence layer for profiles.

Pattern: Repository + Data Mapper (same as auth/store.py).

One profile per user: profiles.user_id carries a UNIQUE constraint, and
create_profile() lets IntegrityError propagate so the route can answer 409
without a racy existence check.

ProfileStore implements the ownership half of auth.access.AccessDirectory
(owner_of_profile).

Layer rule: no imports from api/, auth/ or audit/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.db import create_store_engine, now_iso
from profiles.models import Profile

_metadata = MetaData()

_profiles = Table(
    "profiles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, unique=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100)),
    Column("birth_date", String(10), nullable=False),
    Column("avatar", Text),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_UPDATABLE = frozenset({"first_name", "last_name", "birth_date", "avatar", "is_verified"})


class ProfileStore:
    """Repository for Profile entities."""

    def __init__(self, db_url: str | None = None, timeout_seconds: int | None = None) -> None:
        settings = get_settings()
        self.engine: Engine = create_store_engine(
            db_url or settings.database_url,
            timeout_seconds if timeout_seconds is not None else settings.storage_timeout_seconds,
        )
        _metadata.create_all(self.engine)

    def create_profile(self, profile: Profile) -> int:
        """Insert a profile and return its id.

        Raises sqlalchemy.exc.IntegrityError if the user already has one.
        """
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _profiles.insert().values(
                    user_id=profile.user_id,
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    birth_date=profile.birth_date,
                    avatar=profile.avatar,
                    is_verified=1 if profile.is_verified else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, profile_id: int) -> Profile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.id == profile_id)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def get_by_user_id(self, user_id: int) -> Profile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.user_id == user_id)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def owner_of_profile(self, profile_id: int) -> int | None:
        """Return the user_id owning profile_id, or None if it does not exist."""
        with self.engine.connect() as conn:
            return conn.execute(select(_profiles.c.user_id).where(_profiles.c.id == profile_id)).scalar()

    def count_profiles(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_profiles)).scalar() or 0

    def list_profiles(self, limit: int = 10, offset: int = 0) -> list[Profile]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _profiles.select().order_by(_profiles.c.id).limit(limit).offset(offset)
            ).fetchall()
        return [_row_to_profile(r) for r in rows]

    def update_by_user_id(self, user_id: int, **fields) -> bool:
        """Apply a partial update to a user's profile. Returns False if none exists.

        Unknown field names raise ValueError rather than being ignored.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update profile fields: {sorted(unknown)}")
        if "is_verified" in fields:
            fields["is_verified"] = 1 if fields["is_verified"] else 0
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_profiles.update().where(_profiles.c.user_id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_by_user_id(self, user_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_profiles.delete().where(_profiles.c.user_id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_profile(row) -> Profile:
    return Profile(
        id=row.id,
        user_id=row.user_id,
        first_name=row.first_name,
        last_name=row.last_name,
        birth_date=row.birth_date,
        avatar=row.avatar,
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and roles.

Pattern: Repository + Data Mapper (same as profiles/store.py).
UserStore is the repository; _row_to_user / _row_to_role are the mappers.
Route and dependency code never touches SQL directly.

UserStore also implements the role half of auth.access.AccessDirectory
(has_role), which is all the admin gate needs from storage.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The users.email UNIQUE constraint is the source of truth for duplicate
  registration. create_user() lets IntegrityError propagate; callers turn it
  into 409 Conflict rather than doing a racy check-then-insert.

Layer rule: no imports from api/, audit/ or profiles/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import SEED_ROLES, Role, User
from core.config import get_settings
from core.db import create_store_engine, now_iso
from core.errors import InternalError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for OAuth-only users
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, nullable=False),
    Column("role_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Role entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(User(email="a@b.com", hashed_password=hash_password("secret")), role_name="admin")
        store.has_role(uid, "admin")   # True
        store.close()
    """

    def __init__(self, db_url: str | None = None, timeout_seconds: int | None = None) -> None:
        settings = get_settings()
        self.engine: Engine = create_store_engine(
            db_url or settings.database_url,
            timeout_seconds if timeout_seconds is not None else settings.storage_timeout_seconds,
        )
        _metadata.create_all(self.engine)
        self.ensure_roles(SEED_ROLES)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User, role_name: str | None = None) -> int:
        """Insert a new user and return its assigned database ID.

        With role_name, the role assignment is written in the same
        transaction: if it fails, the user row is rolled back too.

        Raises sqlalchemy.exc.IntegrityError if the email already exists and
        ValueError if role_name does not exist.
        """
        now = now_iso()
        with self.engine.begin() as conn:
            role_id = None
            if role_name is not None:
                role_id = conn.execute(select(_roles.c.id).where(_roles.c.name == role_name)).scalar()
                if role_id is None:
                    raise ValueError(f"Unknown role: {role_name!r}")
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    hashed_password=user.hashed_password,
                    created_at=now,
                    updated_at=now,
                    is_active=1 if user.is_active else 0,
                )
            )
            user_id = result.inserted_primary_key[0]
            if role_id is not None:
                conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id, created_at=now))
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    def list_users(self, limit: int = 10, offset: int = 0) -> list[User]:
        """Return one page of users ordered by id."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id).limit(limit).offset(offset)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: email, hashed_password, is_active. updated_at is
        stamped automatically. Returns True if a row was updated.

        Raises IntegrityError when the new email belongs to another user.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and its role assignments. Returns False if not found.

        The caller is responsible for the user's profile (profiles/ is a
        separate store).
        """
        with self.engine.begin() as conn:
            conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def provision_oauth_user(self, email: str, default_role: str) -> User:
        """Return the single local account for an OAuth email, creating it if needed.

        Two concurrent first logins for the same email race on the UNIQUE
        index; the loser re-reads the winner's row, so both callers end up
        with the same identity.
        """
        existing = self.get_by_email(email)
        if existing is not None:
            return existing
        try:
            user_id = self.create_user(User(email=email, hashed_password=None), role_name=default_role)
        except IntegrityError:
            winner = self.get_by_email(email)
            if winner is None:
                raise
            return winner
        created = self.get_by_id(user_id)
        if created is None:
            raise InternalError("Provisioned account vanished before it could be read back.")
        return created

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def ensure_roles(self, names) -> None:
        """Insert any missing roles. Idempotent -- safe on every startup."""
        with self.engine.connect() as conn:
            existing = {r.name for r in conn.execute(select(_roles.c.name)).fetchall()}
            missing = [n for n in names if n not in existing]
            for name in missing:
                conn.execute(_roles.insert().values(name=name, created_at=now_iso()))
            if missing:
                conn.commit()

    def count_roles(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_roles)).scalar() or 0

    def list_roles(self, limit: int = 10, offset: int = 0) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.id).limit(limit).offset(offset)).fetchall()
        return [_row_to_role(r) for r in rows]

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def create_role(self, name: str) -> int:
        """Insert a role. Raises IntegrityError if the name already exists."""
        with self.engine.connect() as conn:
            result = conn.execute(_roles.insert().values(name=name, created_at=now_iso()))
            conn.commit()
            return result.inserted_primary_key[0]

    def delete_role(self, role_id: int) -> bool:
        """Delete a role and every assignment of it."""
        with self.engine.begin() as conn:
            conn.execute(_user_roles.delete().where(_user_roles.c.role_id == role_id))
            result = conn.execute(_roles.delete().where(_roles.c.id == role_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Role assignments
    # ------------------------------------------------------------------

    def get_user_roles(self, user_id: int) -> list[Role]:
        query = (
            select(_roles)
            .select_from(_roles.join(_user_roles, _user_roles.c.role_id == _roles.c.id))
            .where(_user_roles.c.user_id == user_id)
            .order_by(_roles.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_role(r) for r in rows]

    def has_role(self, user_id: int, role: str) -> bool:
        """Return True if the user holds the named role.

        Storage errors propagate. The admin gate turns them into 500 -- a
        failed lookup must never read as "not an admin".
        """
        query = (
            select(func.count())
            .select_from(_user_roles.join(_roles, _user_roles.c.role_id == _roles.c.id))
            .where((_user_roles.c.user_id == user_id) & (_roles.c.name == role))
        )
        with self.engine.connect() as conn:
            return (conn.execute(query).scalar() or 0) > 0

    def assign_role(self, user_id: int, role_id: int) -> bool:
        """Grant a role. Returns False if the user already held it."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id, created_at=now_iso()))
                conn.commit()
        except IntegrityError:
            return False
        return True

    def assign_role_by_name(self, user_id: int, name: str) -> bool:
        role = self.get_role_by_name(name)
        if role is None:
            raise ValueError(f"Unknown role: {name!r}")
        return self.assign_role(user_id, role.id)

    def replace_roles(self, user_id: int, role_id: int) -> None:
        """Make role_id the user's only role, atomically."""
        with self.engine.begin() as conn:
            conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id))
            conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id, created_at=now_iso()))

    def remove_role(self, user_id: int, role_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _user_roles.delete().where((_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id))
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
        updated_at=row.updated_at,
        is_active=bool(row.is_active),
    )


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, created_at=row.created_at)

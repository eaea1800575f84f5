"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper (same as catalog/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  update_user() only accepts columns from _UPDATABLE_FIELDS.

The users table is registered on core.db.metadata so catalog/ tables can
reference it with foreign keys and share a transaction with it.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from auth.models import ROLE_ADMIN, User
from auth.policy import can_remove_admin
from core.db import create_schema, metadata
from core.errors import Forbidden

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(10), nullable=False, server_default="user"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


_LAST_ADMIN_DEMOTION = "Forbidden: Cannot demote the last administrator. Promote another user first."


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        engine = create_db_engine(settings.database_url)
        store = UserStore(engine)
        user_id = store.create_user(User(name="Ada", email="ada@x.com", hashed_password=digest))
        user = store.get_by_email("ada@x.com")
    """

    _UPDATABLE_FIELDS: frozenset = frozenset({"name", "email", "role", "hashed_password"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        create_schema(self.engine)

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated UUID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers should catch IntegrityError as a signal that a concurrent
        request registered the same address first.
        """
        user_id = str(uuid.uuid4())
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    name=user.name,
                    email=user.email.lower(),
                    hashed_password=user.hashed_password,
                    role=user.role,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, limit: int, offset: int) -> tuple[int, list[User]]:
        """Return (total, page) with the newest accounts first. Admin-only operation."""
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(users)).scalar() or 0
            rows = conn.execute(
                users.select().order_by(users.c.created_at.desc(), users.c.id).limit(limit).offset(offset)
            ).fetchall()
        return total, [_row_to_user(r) for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, email, role, hashed_password. Unknown keys
        raise ValueError rather than being silently ignored.

        Changing an admin's role to anything else is refused with Forbidden
        when no other admin would remain. The count and the update run in one
        transaction, and the UPDATE repeats the count as a condition so two
        concurrent demotions cannot both succeed.

        Returns True if a row was updated, False if user_id was not found.
        Raises sqlalchemy.exc.IntegrityError on a duplicate email.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "email" in fields:
            fields["email"] = fields["email"].lower()
        fields["updated_at"] = _now_iso()
        stmt = users.update().where(users.c.id == user_id).values(**fields)
        with self.engine.begin() as conn:
            current_role = conn.execute(select(users.c.role).where(users.c.id == user_id)).scalar()
            if current_role is None:
                return False
            demoting = current_role == ROLE_ADMIN and fields.get("role", ROLE_ADMIN) != ROLE_ADMIN
            if demoting:
                # Alias keeps the count uncorrelated from the UPDATE target.
                peers = users.alias("admin_peers")
                admin_count = (
                    select(func.count()).select_from(peers).where(peers.c.role == ROLE_ADMIN).scalar_subquery()
                )
                if not can_remove_admin(conn.execute(select(admin_count)).scalar() or 0):
                    raise Forbidden(_LAST_ADMIN_DEMOTION)
                stmt = stmt.where(admin_count > 1)
            result = conn.execute(stmt)
            if demoting and result.rowcount == 0:
                raise Forbidden(_LAST_ADMIN_DEMOTION)
        return result.rowcount > 0

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(users)).scalar() or 0

    def count_admins(self) -> int:
        """Return the number of admin accounts. Used by the last-admin guards."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(users).where(users.c.role == ROLE_ADMIN)
            ).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

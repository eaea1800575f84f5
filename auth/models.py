"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in catalog/models.py -- dataclasses own domain shape; stores and routes do
the work.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_GUEST = "guest"
ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_GUEST)

# Ephemeral guest ids look like "guest_1718036400123". Persisted users always
# carry a UUID, so the prefix alone tells the two apart.
GUEST_ID_PREFIX = "guest_"
GUEST_NAME = "Guest User"


@dataclass
class User:
    """A persisted account.

    email is stored lower-cased and is unique. hashed_password is a bcrypt
    digest and never leaves the server.

    id is None before the record is written to the database.
    """

    name: str
    email: str
    hashed_password: str
    role: str = ROLE_USER  # "user" | "admin" | "guest"
    id: str | None = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass(frozen=True)
class Identity:
    """The authenticated caller of one request. Never persisted.

    Persisted identities are built from the users row (current role, not the
    token's). Ephemeral identities are built from guest token claims alone
    and have no row behind them.
    """

    id: str
    name: str
    email: str | None
    role: str
    ephemeral: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(id=user.id, name=user.name, email=user.email, role=user.role)

    @classmethod
    def guest(cls, subject_id: str) -> "Identity":
        return cls(
            id=subject_id,
            name=GUEST_NAME,
            email=None,
            role=ROLE_GUEST,
            ephemeral=subject_id.startswith(GUEST_ID_PREFIX),
        )

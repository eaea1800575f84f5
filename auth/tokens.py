"""
auth/tokens.py -- Session tokens, password hashing, and the session cookie.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id or guest id), role, iat and exp. TokenCodec.verify()
       returns a TokenFailure value instead of raising, so the session
       resolver can tell "expired" from "invalid" without exception plumbing.

  Passwords: bcrypt used directly (no passlib wrapper) with a fixed,
       configurable cost factor. The dummy digest enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

  Cookie: the token travels in an HttpOnly, SameSite=strict cookie named
       "token", scoped to the API base path. Its max_age mirrors the token
       TTL so both expire together.

Both TokenCodec and PasswordHasher are constructed by the app factory from
Settings. Nothing here reads configuration at import time.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import ROLES

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("recipeshelf.auth")

_ALGORITHM = "HS256"

SESSION_COOKIE = "token"


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


class PasswordHasher:
    """One-way password hashing with a fixed bcrypt work factor."""

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        # Computed once so the first failed login is not measurably slower
        # than the next. Same cost factor as real digests.
        self._dummy_hash = self.hash("recipeshelf_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt digest. Errors propagate to the caller.

        bcrypt only looks at the first 72 bytes of input. Request models cap
        passwords well below that, so truncation never applies in practice.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches the digest. Malformed digests never match."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def burn(self, plain: str) -> None:
        """Run one verification against the dummy digest to equalize timing."""
        self.verify(plain, self._dummy_hash)


def authenticate_user(store: UserStore, hasher: PasswordHasher, email: str, password: str) -> User | None:
    """Check an email/password pair with timing equalization.

    Always runs bcrypt whether or not the email exists:
    - Unknown email: bcrypt runs against the dummy digest (same cost)
    - Wrong password: bcrypt runs against the real digest (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None:
        hasher.burn(password)
        return None
    if not hasher.verify(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# JWT encode / verify
# ---------------------------------------------------------------------------


class TokenFailure(enum.Enum):
    INVALID = "invalid"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TokenClaims:
    subject_id: str
    role: str
    issued_at: datetime
    expires_at: datetime


class TokenCodec:
    """Issue and verify signed session tokens.

    Usage:
        codec = TokenCodec(settings.secret_key, settings.token_ttl_seconds)
        token = codec.issue(user.id, user.role)
        claims = codec.verify(token)   # TokenClaims or TokenFailure
    """

    def __init__(self, secret_key: str, ttl_seconds: int) -> None:
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds

    def issue(
        self,
        subject_id: str,
        role: str,
        ttl_seconds: int | None = None,
        now: datetime | None = None,
    ) -> str:
        """Encode a signed JWT for subject_id with an absolute expiry.

        Args:
            subject_id:  User UUID, or the synthetic guest id.
            role:        "user", "admin" or "guest".
            ttl_seconds: Override the configured lifetime.
            now:         Issue time; defaults to the current UTC time.
        """
        issued_at = now or datetime.now(timezone.utc)
        duration = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        payload = {
            "sub": subject_id,
            "role": role,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=duration),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenClaims | TokenFailure:
        """Verify signature, structure and expiry. Fails closed.

        ExpiredSignatureError is a JWTError subclass, so it must be caught
        first to keep the expired/invalid distinction.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError:
            return TokenFailure.EXPIRED
        except JWTError:
            return TokenFailure.INVALID

        subject_id = payload.get("sub")
        role = payload.get("role")
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        if not isinstance(subject_id, str) or not subject_id or role not in ROLES:
            return TokenFailure.INVALID
        if not isinstance(issued_at, int) or not isinstance(expires_at, int):
            return TokenFailure.INVALID
        return TokenClaims(
            subject_id=subject_id,
            role=role,
            issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, settings: Settings) -> None:
    """Write the session token as an HttpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    secure: HTTPS only in production or when SECURE_COOKIES=true.
    path: the API base path, so the cookie is not sent to unrelated routes.
    max_age: matches the JWT expiry.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
        path=settings.cookie_path,
        max_age=settings.token_ttl_seconds,
    )


def clear_session_cookie(response, settings: Settings) -> None:
    """Delete the session cookie. Attributes must mirror set_session_cookie()."""
    response.delete_cookie(
        SESSION_COOKIE,
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
        path=settings.cookie_path,
    )

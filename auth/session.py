"""
auth/session.py -- Turn a session token into an Identity.

State machine, evaluated once per request:

  no token                      -> MISSING        (cookie left alone)
  token fails verification      -> INVALID        (clear cookie)
  token expired                 -> EXPIRED        (clear cookie)
  valid, role == "guest"        -> ephemeral Identity from claims, no store access
  valid, other role, no row     -> SUBJECT_GONE   (clear cookie)
  valid, other role, row found  -> Identity from the row

The persisted branch deliberately takes the role from the users row, not
from the token. A promotion or demotion therefore applies on the next
request without the user having to log in again.

resolve() never raises for these states; it returns a SessionResult and the
caller decides whether a failure is fatal (protected routes) or means
"anonymous" (public reads). Resolution performs reads only.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from auth.models import ROLE_GUEST, Identity
from auth.store import UserStore
from auth.tokens import TokenCodec, TokenFailure

logger = logging.getLogger("recipeshelf.auth.session")


class SessionFailure(enum.Enum):
    MISSING = "Not authorized, no token provided"
    INVALID = "Not authorized, token is invalid"
    EXPIRED = "Not authorized, token has expired"
    SUBJECT_GONE = "Not authorized, user for this token no longer exists"

    @property
    def message(self) -> str:
        return self.value

    @property
    def clears_cookie(self) -> bool:
        # A missing cookie has nothing to clear; every other failure means the
        # browser is holding a token that will never work again.
        return self is not SessionFailure.MISSING


@dataclass(frozen=True)
class SessionResult:
    identity: Identity | None = None
    failure: SessionFailure | None = None

    @property
    def ok(self) -> bool:
        return self.identity is not None


_FROM_TOKEN_FAILURE = {
    TokenFailure.INVALID: SessionFailure.INVALID,
    TokenFailure.EXPIRED: SessionFailure.EXPIRED,
}


class SessionResolver:
    def __init__(self, user_store: UserStore, codec: TokenCodec) -> None:
        self._user_store = user_store
        self._codec = codec

    def resolve(self, token: str | None) -> SessionResult:
        if not token:
            return SessionResult(failure=SessionFailure.MISSING)

        claims = self._codec.verify(token)
        if isinstance(claims, TokenFailure):
            return SessionResult(failure=_FROM_TOKEN_FAILURE[claims])

        if claims.role == ROLE_GUEST:
            return SessionResult(identity=Identity.guest(claims.subject_id))

        user = self._user_store.get_by_id(claims.subject_id)
        if user is None:
            logger.warning(
                "Token subject %s (role: %s) not found in database",
                claims.subject_id,
                claims.role,
            )
            return SessionResult(failure=SessionFailure.SUBJECT_GONE)
        return SessionResult(identity=Identity.from_user(user))

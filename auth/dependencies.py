"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session token is read from the "token" cookie only. All three helpers
delegate to the SessionResolver stored on app.state by the app factory.

try_get_identity() is the soft variant (returns None on any failure and
never touches the cookie) -- used by public reads that show more to owners
and admins.
get_identity() raises Unauthorized on failure; the error handler clears the
cookie when the failure says the stored token is dead.
require_admin() wraps get_identity() and raises Forbidden if not admin.

Layer rule: no imports from catalog/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import Identity
from auth.session import SessionResolver, SessionResult
from auth.tokens import SESSION_COOKIE
from core.errors import Forbidden, Unauthorized


def resolve_request(request: Request) -> SessionResult:
    """Run the session resolver against the request's cookie."""
    resolver: SessionResolver = request.app.state.session_resolver
    return resolver.resolve(request.cookies.get(SESSION_COOKIE))


def try_get_identity(request: Request) -> Identity | None:
    """Return the caller's Identity, or None if the request is anonymous.

    Never raises -- callers that need a hard 401 should use get_identity().
    """
    return resolve_request(request).identity


def get_identity(request: Request) -> Identity:
    """Require a session. Raises Unauthorized (401) if the request has none.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_identity)): ...
    """
    result = resolve_request(request)
    if result.identity is None:
        raise Unauthorized(result.failure.message, clear_session=result.failure.clears_cookie)
    return result.identity


def require_admin(request: Request) -> Identity:
    """Require admin role. Raises 401 if unauthenticated, 403 if not admin.

    The role checked is the one currently stored for the user, not the one
    baked into the token.
    """
    identity = get_identity(request)
    if not identity.is_admin:
        raise Forbidden("Forbidden: Admin access required")
    return identity

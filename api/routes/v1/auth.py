"""
api/routes/v1/auth.py -- Registration, login, guest login and logout.

Routes:
  POST /api/v1/auth/register     -- create a "user" account; sets session cookie; 201
  POST /api/v1/auth/login        -- email/password login; sets session cookie
  POST /api/v1/auth/guest/login  -- ephemeral guest session, nothing persisted
  POST /api/v1/auth/logout       -- clears the session cookie unconditionally

Security:
  Register, login and guest login are rate-limited (AUTH_LIMIT) per IP.
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that sets or clears a session.
  Login with a cookie that already resolves to a persisted account skips the
  credential check and re-issues the token (sliding expiry). A stale cookie
  (invalid, expired, or orphaned) is cleared and the credential check runs.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import AUTH_LIMIT, limiter
from api.models import AuthResponse, ErrorResponse, LoginRequest, MessageResponse, RegisterRequest, UserResponse
from auth.models import GUEST_ID_PREFIX, ROLE_GUEST, Identity, User
from auth.store import UserStore
from auth.tokens import (
    SESSION_COOKIE,
    PasswordHasher,
    TokenCodec,
    authenticate_user,
    clear_session_cookie,
    set_session_cookie,
)
from core.errors import Conflict

logger = logging.getLogger("recipeshelf.api.auth")

# Auth policy:
# - POST /api/v1/auth/register:     public
# - POST /api/v1/auth/login:        public -- short-circuits on a live persisted session
# - POST /api/v1/auth/guest/login:  public
# - POST /api/v1/auth/logout:       public -- clearing a cookie needs no prior auth
router = APIRouter()


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(AUTH_LIMIT)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account with role "user" and start a session for it.

    The email check runs before hashing so a duplicate costs no bcrypt work.
    The unique constraint still backs it up: IntegrityError means a concurrent
    request registered the same address first.
    """
    user_store: UserStore = request.app.state.user_store
    hasher: PasswordHasher = request.app.state.password_hasher
    codec: TokenCodec = request.app.state.token_codec

    if user_store.get_by_email(body.email) is not None:
        raise Conflict("User with this email already exists")

    user = User(name=body.name, email=body.email, hashed_password=hasher.hash(body.password))
    try:
        user_id = user_store.create_user(user)
    except IntegrityError as exc:
        raise Conflict("User with this email already exists") from exc

    created = user_store.get_by_id(user_id)
    logger.info("Registered user %s", user_id)
    resp = _auth_response(201, "User registered successfully", UserResponse.from_user(created))
    set_session_cookie(resp, codec.issue(created.id, created.role), request.app.state.settings)
    return resp


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(AUTH_LIMIT)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Returns the same generic error for an unknown email and a wrong password
    to avoid leaking which addresses are registered.
    """
    settings = request.app.state.settings
    codec: TokenCodec = request.app.state.token_codec

    stale_cookie = False
    if request.cookies.get(SESSION_COOKIE):
        result = request.app.state.session_resolver.resolve(request.cookies[SESSION_COOKIE])
        if result.ok and not result.identity.ephemeral:
            identity: Identity = result.identity
            resp = _auth_response(200, "Already logged in. Session refreshed.", UserResponse.from_identity(identity))
            set_session_cookie(resp, codec.issue(identity.id, identity.role), settings)
            return resp
        stale_cookie = result.failure is not None and result.failure.clears_cookie

    user = authenticate_user(
        request.app.state.user_store,
        request.app.state.password_hasher,
        body.email,
        body.password,
    )
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(message="Invalid email or password").model_dump(exclude_none=True),
        )
        resp.headers["Cache-Control"] = "no-store"
        if stale_cookie:
            clear_session_cookie(resp, settings)
        return resp

    resp = _auth_response(200, "Login successful", UserResponse.from_user(user))
    set_session_cookie(resp, codec.issue(user.id, user.role), settings)
    return resp


@router.post("/auth/guest/login", response_model=AuthResponse)
@limiter.limit(AUTH_LIMIT)
def guest_login(request: Request) -> JSONResponse:
    """Start an ephemeral guest session. No users row is created.

    The subject id is "guest_" plus the current epoch in milliseconds; the
    session resolver rebuilds the identity from the token alone.
    """
    guest_id = f"{GUEST_ID_PREFIX}{int(time.time() * 1000)}"
    codec: TokenCodec = request.app.state.token_codec
    resp = _auth_response(200, "Guest login successful", UserResponse.from_identity(Identity.guest(guest_id)))
    set_session_cookie(resp, codec.issue(guest_id, ROLE_GUEST), request.app.state.settings)
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Clear the session cookie and end the session."""
    resp = JSONResponse(content=MessageResponse(message="User logged out successfully").model_dump())
    resp.headers["Cache-Control"] = "no-store"
    clear_session_cookie(resp, request.app.state.settings)
    return resp


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _auth_response(status_code: int, message: str, user: UserResponse) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(message=message, user=user).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp

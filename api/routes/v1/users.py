"""
api/routes/v1/users.py -- The caller's own account.

Routes:
  GET    /api/v1/users/me  -- current identity (guest sessions included)
  PUT    /api/v1/users/me  -- update name, email or role
  DELETE /api/v1/users/me  -- delete the account; clears the session cookie

Guards on PUT:
  Ephemeral guests are refused (no row to update).
  role="admin" is only accepted from a caller whose current role is admin.
  The last remaining admin may not demote itself (enforced by UserStore).
  An email owned by another account is a 409.

DELETE runs the same transactional account removal as the admin endpoint
(books detached, library entries removed); the last admin cannot delete
itself.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import READ_LIMIT, WRITE_LIMIT, limiter
from api.models import AccountDeletedResponse, ProfileUpdate, UserResponse
from auth.dependencies import get_identity
from auth.models import Identity
from auth.policy import Action, allow
from auth.store import UserStore
from auth.tokens import clear_session_cookie
from catalog.store import CatalogStore
from core.errors import Conflict, Forbidden, NotFound, ValidationFailed

logger = logging.getLogger("recipeshelf.api.users")

# Auth policy: every route requires a session. PUT and DELETE also require
# a persisted identity.
router = APIRouter()


@router.get("/users/me", response_model=UserResponse)
@limiter.limit(READ_LIMIT)
def get_me(request: Request, identity: Identity = Depends(get_identity)) -> UserResponse:
    """Return the caller's profile. Guests get their synthetic identity."""
    if identity.ephemeral:
        return UserResponse.from_identity(identity)
    user = request.app.state.user_store.get_by_id(identity.id)
    if user is None:
        raise NotFound("User not found")
    return UserResponse.from_user(user)


@router.put("/users/me", response_model=UserResponse)
@limiter.limit(WRITE_LIMIT)
def update_me(
    request: Request,
    body: ProfileUpdate,
    identity: Identity = Depends(get_identity),
) -> UserResponse:
    """Update the fields present in the body.

    The role checks use the caller's current role as loaded by the session
    resolver, never the role carried in the token.
    """
    if not allow(identity, Action.UPDATE_PROFILE):
        raise Forbidden("Forbidden: Guest users cannot update a profile")

    user_store: UserStore = request.app.state.user_store
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise ValidationFailed("No fields to update")

    new_role = updates.get("role")
    if new_role is not None and new_role != identity.role:
        if not allow(identity, Action.REQUEST_ROLE, new_role):
            raise Forbidden("Forbidden: You cannot assign yourself the admin role")

    new_email = updates.get("email")
    if new_email is not None and new_email != identity.email:
        if user_store.get_by_email(new_email) is not None:
            raise Conflict("Email already in use by another account")

    try:
        updated = user_store.update_user(identity.id, **updates)
    except IntegrityError as exc:
        raise Conflict("Email already in use by another account") from exc
    if not updated:
        raise NotFound("User not found")

    if "role" in updates:
        logger.info("User %s changed role %s -> %s", identity.id, identity.role, updates["role"])
    return UserResponse.from_user(user_store.get_by_id(identity.id))


@router.delete("/users/me", response_model=AccountDeletedResponse)
@limiter.limit(WRITE_LIMIT)
def delete_me(request: Request, identity: Identity = Depends(get_identity)) -> JSONResponse:
    if not allow(identity, Action.DELETE_ACCOUNT):
        raise Forbidden("Forbidden: Guest accounts cannot be deleted")

    catalog: CatalogStore = request.app.state.catalog
    detached = catalog.delete_user_account(identity.id)

    resp = JSONResponse(
        content=AccountDeletedResponse(
            message="Account deleted successfully",
            books_detached=detached,
        ).model_dump()
    )
    clear_session_cookie(resp, request.app.state.settings)
    return resp

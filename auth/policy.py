"""
auth/policy.py -- Access decisions for catalog and account mutations.

Every function here is pure: it looks only at its arguments, touches no
store, and returns a bool. Route handlers and stores call the specific
guard they need and pick the denial message; allow() is the single entry
point for callers that dispatch on an Action value.

Guards:
  can_modify_book    -- owner or admin may update/delete a book
  can_view_book      -- hidden books are readable by owner or admin only
  can_request_role   -- only a current admin may request role=admin
  can_persist        -- ephemeral guests own no row, so they cannot create
                        books, library entries, or edit/delete a profile
  can_delete_user    -- an admin may not delete its own account
  can_remove_admin   -- the last remaining admin may not be deleted or demoted

Layer rule: no imports from api/ or catalog/. Book-shaped arguments are
duck-typed (anything with owner_user_id / visibility).
"""

from __future__ import annotations

import enum
from typing import Any

from auth.models import ROLE_ADMIN, Identity


class Action(enum.Enum):
    VIEW_BOOK = "view_book"
    CREATE_BOOK = "create_book"
    MODIFY_BOOK = "modify_book"
    MANAGE_LIBRARY = "manage_library"
    REQUEST_ROLE = "request_role"
    UPDATE_PROFILE = "update_profile"
    DELETE_ACCOUNT = "delete_account"
    DELETE_USER = "delete_user"


def can_view_book(identity: Identity | None, book: Any) -> bool:
    if book.visibility:
        return True
    if identity is None:
        return False
    return identity.is_admin or (book.owner_user_id is not None and book.owner_user_id == identity.id)


def can_modify_book(identity: Identity, book: Any) -> bool:
    if identity.is_admin:
        return True
    return book.owner_user_id is not None and book.owner_user_id == identity.id


def can_request_role(identity: Identity, requested_role: str) -> bool:
    """Role escalation guard: the acting identity's current role decides."""
    if requested_role == ROLE_ADMIN:
        return identity.is_admin
    return True


def can_persist(identity: Identity) -> bool:
    return not identity.ephemeral


def can_delete_user(identity: Identity, target_user_id: str) -> bool:
    """Admin self-deletion guard."""
    return not (identity.is_admin and identity.id == target_user_id)


def can_remove_admin(admin_count: int) -> bool:
    """Last-admin guard. admin_count is taken before the change."""
    return admin_count > 1


def allow(identity: Identity | None, action: Action, resource: Any = None) -> bool:
    """Dispatch to the guard for action.

    resource is the book for book actions, the requested role for
    REQUEST_ROLE and the target user id for DELETE_USER.
    """
    if action is Action.VIEW_BOOK:
        return can_view_book(identity, resource)
    if identity is None:
        return False
    if action is Action.MODIFY_BOOK:
        return can_modify_book(identity, resource)
    if action is Action.REQUEST_ROLE:
        return can_request_role(identity, resource)
    if action is Action.DELETE_USER:
        return can_persist(identity) and can_delete_user(identity, resource)
    if action in (Action.CREATE_BOOK, Action.MANAGE_LIBRARY, Action.UPDATE_PROFILE, Action.DELETE_ACCOUNT):
        return can_persist(identity)
    return False

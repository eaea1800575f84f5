"""
api/routes/v1/admin.py -- Administration endpoints. Every route requires role admin.

Routes:
  GET    /api/v1/admin/users                    -- paginated accounts, newest first
  GET    /api/v1/admin/stats                    -- catalog-wide counts, top genres
  POST   /api/v1/admin/books/bulk               -- create many books; 201
  DELETE /api/v1/admin/users/{user_id}          -- delete an account (transactional)
  PATCH  /api/v1/admin/books/{book_id}/visibility -- hide or show a book

Bulk creation:
  Each element is validated against BookCreate on its own and ISBNs are
  checked against the batch and the catalog, so every problem is reported
  with its element index. What happens next depends on BULK_CREATE_POLICY:
    all_or_nothing -- any error rejects the request (400) and nothing is
                      written; the inserts share one transaction.
    partial        -- valid elements are written one by one, rejected ones
                      are listed under "errors".
  Bulk-created books are owned by the admin who uploaded them.

Account deletion guards (403): an admin cannot delete its own account here,
and the last remaining admin cannot be deleted at all.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from api.limiter import READ_LIMIT, WRITE_LIMIT, limiter
from api.models import (
    AccountDeletedResponse,
    BookCreate,
    BookResponse,
    BulkBooksRequest,
    BulkCreateResponse,
    FieldError,
    StatsResponse,
    UserPage,
    UserResponse,
    VisibilityUpdate,
    field_errors_from,
)
from api.pagination import PageParams
from auth.dependencies import require_admin
from auth.models import Identity
from auth.policy import can_delete_user
from auth.store import UserStore
from catalog.models import Book
from catalog.store import CatalogStore
from core.errors import Conflict, Forbidden, NotFound, ValidationFailed

logger = logging.getLogger("recipeshelf.api.admin")

# Auth policy: every route depends on require_admin (401 without a session,
# 403 for any role other than admin).
router = APIRouter()


@router.get("/admin/users", response_model=UserPage)
@limiter.limit(READ_LIMIT)
def list_users(
    request: Request,
    paging: PageParams = Depends(),
    admin: Identity = Depends(require_admin),
) -> UserPage:
    user_store: UserStore = request.app.state.user_store
    total, users = user_store.list_users(limit=paging.limit, offset=paging.offset)
    return UserPage(**paging.envelope(total), users=[UserResponse.from_user(u) for u in users])


@router.get("/admin/stats", response_model=StatsResponse)
@limiter.limit(READ_LIMIT)
def view_stats(request: Request, admin: Identity = Depends(require_admin)) -> StatsResponse:
    catalog: CatalogStore = request.app.state.catalog
    return StatsResponse.from_stats(catalog.get_stats())


@router.post("/admin/books/bulk", response_model=BulkCreateResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
def bulk_create_books(
    request: Request,
    body: BulkBooksRequest,
    admin: Identity = Depends(require_admin),
) -> BulkCreateResponse:
    catalog: CatalogStore = request.app.state.catalog
    policy = request.app.state.settings.bulk_create_policy

    candidates, errors = _validate_batch(catalog, body.books, owner_user_id=admin.id)

    if policy == "all_or_nothing":
        if errors:
            raise ValidationFailed(
                "Validation error during bulk creation",
                errors=[e.model_dump(exclude_none=True) for e in errors],
            )
        try:
            book_ids = catalog.create_books([book for _, book in candidates])
        except IntegrityError as exc:
            raise Conflict("Bulk creation conflicts with an existing book") from exc
    else:
        created, failed = catalog.create_books_partial([book for _, book in candidates])
        book_ids = [book_id for _, book_id in created]
        for position, reason in failed:
            errors.append(FieldError(field="isbn", message=reason, index=candidates[position][0]))
        errors.sort(key=lambda e: e.index)
        if not book_ids:
            raise ValidationFailed(
                "No books were created",
                errors=[e.model_dump(exclude_none=True) for e in errors],
            )

    logger.info("Admin %s bulk-created %d books (%d rejected)", admin.id, len(book_ids), len(errors))
    return BulkCreateResponse(
        message=f"{len(book_ids)} books created successfully.",
        created=len(book_ids),
        books=[BookResponse.from_book(catalog.get_book(book_id)) for book_id in book_ids],
        errors=errors,
    )


@router.delete("/admin/users/{user_id}", response_model=AccountDeletedResponse)
@limiter.limit(WRITE_LIMIT)
def delete_user(
    request: Request,
    user_id: str,
    admin: Identity = Depends(require_admin),
) -> AccountDeletedResponse:
    """Delete any account except the caller's own.

    Book ownership is cleared and library entries removed in the same
    transaction as the user row; the last-admin guard runs inside it too.
    """
    if not can_delete_user(admin, user_id):
        raise Forbidden(
            "Forbidden: Administrators cannot delete their own account. "
            "Please ask another admin to perform this action."
        )

    catalog: CatalogStore = request.app.state.catalog
    detached = catalog.delete_user_account(user_id)
    logger.info("Admin %s deleted user %s", admin.id, user_id)
    return AccountDeletedResponse(
        message=f"User account with ID {user_id} has been deleted.",
        books_detached=detached,
    )


@router.patch("/admin/books/{book_id}/visibility", response_model=BookResponse)
@limiter.limit(WRITE_LIMIT)
def set_book_visibility(
    request: Request,
    book_id: str,
    body: VisibilityUpdate,
    admin: Identity = Depends(require_admin),
) -> BookResponse:
    catalog: CatalogStore = request.app.state.catalog
    if not catalog.set_visibility(book_id, body.is_visible):
        raise NotFound("Book not found")
    logger.info("Admin %s set book %s visibility=%s", admin.id, book_id, body.is_visible)
    return BookResponse.from_book(catalog.get_book(book_id))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _validate_batch(
    catalog: CatalogStore,
    raw_books: list[dict],
    owner_user_id: str,
) -> tuple[list[tuple[int, Book]], list[FieldError]]:
    """Validate every element and pre-check ISBN uniqueness.

    Returns (candidates, errors): candidates pairs each valid element's
    original index with its Book; errors carries the index of each rejected
    element.
    """
    valid: list[tuple[int, Book]] = []
    errors: list[FieldError] = []
    for index, raw in enumerate(raw_books):
        try:
            item = BookCreate.model_validate(raw)
        except ValidationError as exc:
            errors.extend(field_errors_from(exc.errors(), index=index))
            continue
        valid.append((index, item.to_book(owner_user_id=owner_user_id)))

    existing = catalog.find_existing_isbns([book.isbn for _, book in valid if book.isbn])
    seen: set[str] = set()
    candidates: list[tuple[int, Book]] = []
    for index, book in valid:
        if book.isbn:
            if book.isbn in existing:
                errors.append(FieldError(field="isbn", message="A book with this ISBN already exists", index=index))
                continue
            if book.isbn in seen:
                errors.append(FieldError(field="isbn", message="Duplicate ISBN within the batch", index=index))
                continue
            seen.add(book.isbn)
        candidates.append((index, book))

    errors.sort(key=lambda e: e.index)
    return candidates, errors

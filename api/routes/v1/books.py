"""
api/routes/v1/books.py -- Catalog REST endpoints.

Routes:
  GET    /api/v1/books         -- paginated list; ?search= ?genre= ?author=
  GET    /api/v1/books/{id}    -- single book
  POST   /api/v1/books         -- create; caller becomes the owner; 201
  PUT    /api/v1/books/{id}    -- update allow-listed fields; owner or admin
  DELETE /api/v1/books/{id}    -- delete; owner or admin; 204

Reads accept an optional session: anonymous callers see visible books only,
a signed-in caller also sees the hidden books it owns, an admin sees all.
A hidden book the caller may not see is reported as 404, not 403, so its
existence is not leaked.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.exc import IntegrityError

from api.limiter import READ_LIMIT, WRITE_LIMIT, limiter
from api.models import BookCreate, BookPage, BookResponse, BookUpdate
from api.pagination import PageParams
from auth.dependencies import get_identity, try_get_identity
from auth.models import Identity
from auth.policy import Action, allow
from catalog.models import Book
from catalog.store import CatalogStore
from core.errors import Conflict, Forbidden, NotFound, ValidationFailed

logger = logging.getLogger("recipeshelf.api.books")

# Auth policy:
# - GET    /api/v1/books, /books/{id}:  optional session (visibility filtered)
# - POST   /api/v1/books:               session, not an ephemeral guest
# - PUT    /api/v1/books/{id}:          session + owner or admin
# - DELETE /api/v1/books/{id}:          session + owner or admin
router = APIRouter()


@router.get("/books", response_model=BookPage)
@limiter.limit(READ_LIMIT)
def list_books(
    request: Request,
    search: Optional[str] = Query(None, max_length=255, description="Substring of the title."),
    genre: Optional[str] = Query(None, max_length=100),
    author: Optional[str] = Query(None, max_length=255),
    paging: PageParams = Depends(),
    viewer: Optional[Identity] = Depends(try_get_identity),
) -> BookPage:
    """List books the caller may see, ordered by title."""
    store: CatalogStore = request.app.state.catalog
    total, books = store.list_books(
        viewer=viewer,
        limit=paging.limit,
        offset=paging.offset,
        search=search,
        genre=genre,
        author=author,
    )
    return BookPage(**paging.envelope(total), books=[BookResponse.from_book(b) for b in books])


@router.get("/books/{book_id}", response_model=BookResponse)
@limiter.limit(READ_LIMIT)
def get_book(
    request: Request,
    book_id: str,
    viewer: Optional[Identity] = Depends(try_get_identity),
) -> BookResponse:
    return BookResponse.from_book(_load_visible_book(request, book_id, viewer))


@router.post("/books", response_model=BookResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
def create_book(
    request: Request,
    body: BookCreate,
    identity: Identity = Depends(get_identity),
) -> BookResponse:
    """Create a book owned by the caller.

    Ephemeral guests are refused: they have no users row for owner_user_id
    to reference.
    """
    if not allow(identity, Action.CREATE_BOOK):
        raise Forbidden("Forbidden: Guest users cannot create books")

    store: CatalogStore = request.app.state.catalog
    try:
        book_id = store.create_book(body.to_book(owner_user_id=identity.id))
    except IntegrityError as exc:
        raise Conflict("A book with this ISBN already exists") from exc

    logger.info("Book %s created by %s", book_id, identity.id)
    return BookResponse.from_book(store.get_book(book_id))


@router.put("/books/{book_id}", response_model=BookResponse)
@limiter.limit(WRITE_LIMIT)
def update_book(
    request: Request,
    book_id: str,
    body: BookUpdate,
    identity: Identity = Depends(get_identity),
) -> BookResponse:
    """Update the fields present in the body. Owner or admin only."""
    store: CatalogStore = request.app.state.catalog
    book = _load_visible_book(request, book_id, identity)
    if not allow(identity, Action.MODIFY_BOOK, book):
        raise Forbidden("Forbidden: You do not have permission to modify this book")

    updates = body.model_dump(mode="json", exclude_unset=True)
    if not updates:
        raise ValidationFailed("No fields to update")
    try:
        store.update_book(book_id, **updates)
    except IntegrityError as exc:
        raise Conflict("A book with this ISBN already exists") from exc

    return BookResponse.from_book(store.get_book(book_id))


@router.delete("/books/{book_id}", status_code=204)
@limiter.limit(WRITE_LIMIT)
def delete_book(
    request: Request,
    book_id: str,
    identity: Identity = Depends(get_identity),
) -> Response:
    """Delete a book. Library entries referencing it are removed with it."""
    store: CatalogStore = request.app.state.catalog
    book = _load_visible_book(request, book_id, identity)
    if not allow(identity, Action.MODIFY_BOOK, book):
        raise Forbidden("Forbidden: You do not have permission to delete this book")

    store.delete_book(book_id)
    logger.info("Book %s deleted by %s", book_id, identity.id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_visible_book(request: Request, book_id: str, viewer: Optional[Identity]) -> Book:
    book = request.app.state.catalog.get_book(book_id)
    if book is None or not allow(viewer, Action.VIEW_BOOK, book):
        raise NotFound("Book not found")
    return book

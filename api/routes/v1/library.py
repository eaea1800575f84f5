"""
api/routes/v1/library.py -- The caller's personal library.

Routes:
  GET    /api/v1/library            -- paginated entries with nested book; ?status=
  POST   /api/v1/library/{book_id}  -- add a book (optional status/rating/notes); 201
  PUT    /api/v1/library/{book_id}  -- update status, rating or notes in place
  DELETE /api/v1/library/{book_id}  -- remove the entry; 204

Every route acts on the caller's own entries only; there is no user id in
the path. At most one entry exists per (user, book): a second POST is a 409
and PUT never inserts.

Ephemeral guests have no users row, so they get an empty library and 403 on
every mutation.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.exc import IntegrityError

from api.limiter import READ_LIMIT, WRITE_LIMIT, limiter
from api.models import LibraryEntryCreate, LibraryEntryResponse, LibraryEntryUpdate, LibraryPage, LibraryStatus
from api.pagination import PageParams
from auth.dependencies import get_identity
from auth.models import Identity
from auth.policy import Action, allow
from catalog.models import LibraryEntry
from catalog.store import CatalogStore
from core.errors import Conflict, Forbidden, NotFound, ValidationFailed

logger = logging.getLogger("recipeshelf.api.library")

# Auth policy: every route requires a session; mutations also require a
# persisted (non-ephemeral) identity.
router = APIRouter()


@router.get("/library", response_model=LibraryPage)
@limiter.limit(READ_LIMIT)
def list_library(
    request: Request,
    status: Optional[LibraryStatus] = Query(None, description="Only entries with this status."),
    paging: PageParams = Depends(),
    identity: Identity = Depends(get_identity),
) -> LibraryPage:
    if not allow(identity, Action.MANAGE_LIBRARY):
        return LibraryPage(**paging.envelope(0), books=[])

    store: CatalogStore = request.app.state.catalog
    total, entries = store.list_library(identity, limit=paging.limit, offset=paging.offset, status=status)
    return LibraryPage(**paging.envelope(total), books=[LibraryEntryResponse.from_entry(e) for e in entries])


@router.post("/library/{book_id}", response_model=LibraryEntryResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
def add_to_library(
    request: Request,
    book_id: str,
    body: Optional[LibraryEntryCreate] = None,
    identity: Identity = Depends(get_identity),
) -> LibraryEntryResponse:
    """Add a book the caller can see to the caller's library."""
    _require_persisted(identity)
    store: CatalogStore = request.app.state.catalog

    book = store.get_book(book_id)
    if book is None or not allow(identity, Action.VIEW_BOOK, book):
        raise NotFound("Book not found")

    body = body or LibraryEntryCreate()
    try:
        store.add_library_entry(
            LibraryEntry(
                user_id=identity.id,
                book_id=book_id,
                status=body.status,
                user_rating=body.user_rating,
                user_notes=body.user_notes,
            )
        )
    except IntegrityError as exc:
        raise Conflict("Book already in library") from exc

    return LibraryEntryResponse.from_entry(store.get_library_entry(identity.id, book_id))


@router.put("/library/{book_id}", response_model=LibraryEntryResponse)
@limiter.limit(WRITE_LIMIT)
def update_library_entry(
    request: Request,
    book_id: str,
    body: LibraryEntryUpdate,
    identity: Identity = Depends(get_identity),
) -> LibraryEntryResponse:
    _require_persisted(identity)
    store: CatalogStore = request.app.state.catalog

    entry = store.get_library_entry(identity.id, book_id)
    if entry is None:
        raise NotFound("Book not found in library")

    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise ValidationFailed("No fields to update")
    store.update_library_entry(entry.id, **updates)
    return LibraryEntryResponse.from_entry(store.get_library_entry(identity.id, book_id))


@router.delete("/library/{book_id}", status_code=204)
@limiter.limit(WRITE_LIMIT)
def remove_from_library(
    request: Request,
    book_id: str,
    identity: Identity = Depends(get_identity),
) -> Response:
    _require_persisted(identity)
    store: CatalogStore = request.app.state.catalog
    if not store.remove_library_entry(identity.id, book_id):
        raise NotFound("Book not found in library")
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_persisted(identity: Identity) -> None:
    if not allow(identity, Action.MANAGE_LIBRARY):
        raise Forbidden("Forbidden: Guest users cannot manage a library")

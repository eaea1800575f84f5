"""
catalog/store.py -- SQLAlchemy-backed persistence for books and libraries.

Uses SQLAlchemy Core (not ORM) so the dataclasses in catalog/models.py stay
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. CatalogStore is the repository; the
_row_to_* functions translate raw rows into domain dataclasses. Route
handlers never touch SQL directly.

Visibility: every read that can return somebody else's book takes a
`viewer` Identity and applies the same rule as auth.policy.can_view_book,
as a WHERE clause: admins see everything, other callers see visible books
plus the hidden books they own, anonymous callers see visible books only.

Transactions: delete_user_account() and all-or-nothing bulk creation run
inside engine.begin(). An exception raised inside the block (a guard
failure included) rolls back every statement issued so far.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CatalogStore(engine)
    book_id = store.create_book(Book(title="Ponyo's Ramen", author="M.", genre="noodles"))
    total, books = store.list_books(viewer=None, limit=10, offset=0, search="ramen")
    store.add_library_entry(LibraryEntry(user_id=uid, book_id=book_id))
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_ADMIN, Identity
from auth.policy import can_remove_admin
from auth.store import users
from catalog.models import Book, CatalogStats, LibraryEntry
from core.db import create_schema, metadata
from core.errors import Forbidden, NotFound

logger = logging.getLogger("recipeshelf.catalog")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

books = Table(
    "books",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("author", String(255), nullable=False),
    Column("isbn", String(20), unique=True),  # NULLs never collide
    Column("genre", String(100), nullable=False),
    Column("description", Text),
    Column("published_date", String(10)),  # YYYY-MM-DD
    Column("cover_url", String(2048)),
    Column("visibility", Boolean, nullable=False, server_default="1"),
    Column("owner_user_id", String(36), ForeignKey("users.id", ondelete="SET NULL")),
    Column("cuisine_type", String(100)),
    Column("dietary_category", String(100)),
    Column("difficulty_level", String(10)),
    Column("ingredients", Text),  # JSON array serialized as text
    Column("sample_recipes", Text),
    Column("author_bio", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

user_books = Table(
    "user_books",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("book_id", String(36), ForeignKey("books.id", ondelete="CASCADE"), nullable=False),
    Column("status", String(10), nullable=False, server_default="to-read"),
    Column("user_rating", Integer),
    Column("user_notes", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("user_id", "book_id", name="uq_user_book"),
)

# Library rows are selected together with their book. The entry columns are
# labelled so they do not shadow the book's id / created_at / updated_at.
_ENTRY_COLUMNS = [
    user_books.c.id.label("entry_id"),
    user_books.c.user_id.label("entry_user_id"),
    user_books.c.book_id.label("entry_book_id"),
    user_books.c.status.label("entry_status"),
    user_books.c.user_rating.label("entry_user_rating"),
    user_books.c.user_notes.label("entry_user_notes"),
    user_books.c.created_at.label("entry_created_at"),
    user_books.c.updated_at.label("entry_updated_at"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _contains(column, term: str):
    """Case-insensitive substring match with LIKE wildcards in term escaped."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return column.ilike(f"%{escaped}%", escape="\\")


def _visibility_clause(viewer: Optional[Identity]):
    """WHERE clause form of auth.policy.can_view_book. None means no filter."""
    if viewer is not None and viewer.is_admin:
        return None
    if viewer is None:
        return books.c.visibility.is_(True)
    return or_(books.c.visibility.is_(True), books.c.owner_user_id == viewer.id)


def _book_values(book: Book, book_id: str, now: str) -> dict:
    return {
        "id": book_id,
        "title": book.title,
        "author": book.author,
        "isbn": book.isbn,
        "genre": book.genre,
        "description": book.description,
        "published_date": book.published_date,
        "cover_url": book.cover_url,
        "visibility": book.visibility,
        "owner_user_id": book.owner_user_id,
        "cuisine_type": book.cuisine_type,
        "dietary_category": book.dietary_category,
        "difficulty_level": book.difficulty_level,
        "ingredients": json.dumps(book.ingredients),
        "sample_recipes": book.sample_recipes,
        "author_bio": book.author_bio,
        "created_at": now,
        "updated_at": now,
    }


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CatalogStore:
    # Columns a book update may touch. Visibility has its own admin-only
    # method; ownership is never changed through an update.
    _BOOK_UPDATE_FIELDS: frozenset = frozenset(
        {
            "title",
            "author",
            "isbn",
            "genre",
            "description",
            "published_date",
            "cover_url",
            "cuisine_type",
            "dietary_category",
            "difficulty_level",
            "ingredients",
            "sample_recipes",
            "author_bio",
        }
    )
    _ENTRY_UPDATE_FIELDS: frozenset = frozenset({"status", "user_rating", "user_notes"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        create_schema(self.engine)

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    def create_book(self, book: Book) -> str:
        """Insert a new book and return its generated UUID.

        Raises sqlalchemy.exc.IntegrityError if the ISBN is already taken or
        owner_user_id does not reference an existing user.
        """
        book_id = str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(books.insert().values(**_book_values(book, book_id, _now_iso())))
            conn.commit()
        return book_id

    def create_books(self, batch: list[Book]) -> list[str]:
        """Insert every book in one transaction and return their ids in order.

        Any IntegrityError rolls back the whole batch and propagates.
        """
        now = _now_iso()
        ids = [str(uuid.uuid4()) for _ in batch]
        with self.engine.begin() as conn:
            for book_id, book in zip(ids, batch):
                conn.execute(books.insert().values(**_book_values(book, book_id, now)))
        return ids

    def create_books_partial(self, batch: list[Book]) -> tuple[list[tuple[int, str]], list[tuple[int, str]]]:
        """Insert each book in its own transaction.

        Returns (created, failed): created is [(index, book_id)], failed is
        [(index, reason)] for elements rejected by a constraint.
        """
        created: list[tuple[int, str]] = []
        failed: list[tuple[int, str]] = []
        for index, book in enumerate(batch):
            try:
                created.append((index, self.create_book(book)))
            except IntegrityError:
                failed.append((index, "Conflicts with an existing book (duplicate ISBN)."))
        return created, failed

    def find_existing_isbns(self, isbns: list[str]) -> set[str]:
        """Return the subset of isbns already present in the catalog."""
        if not isbns:
            return set()
        with self.engine.connect() as conn:
            rows = conn.execute(select(books.c.isbn).where(books.c.isbn.in_(isbns))).fetchall()
        return {r.isbn for r in rows}

    def get_book(self, book_id: str) -> Optional[Book]:
        """Fetch a single book by id regardless of visibility. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(books.select().where(books.c.id == book_id)).fetchone()
        return _row_to_book(row) if row is not None else None

    def list_books(
        self,
        viewer: Optional[Identity],
        limit: int,
        offset: int,
        search: Optional[str] = None,
        genre: Optional[str] = None,
        author: Optional[str] = None,
    ) -> tuple[int, list[Book]]:
        """Return (total, page) of books the viewer may see, ordered by title.

        search matches the title; genre and author match their own columns.
        All three are case-insensitive substring filters and combine with AND.
        """
        conditions = []
        visibility = _visibility_clause(viewer)
        if visibility is not None:
            conditions.append(visibility)
        if search:
            conditions.append(_contains(books.c.title, search))
        if genre:
            conditions.append(_contains(books.c.genre, genre))
        if author:
            conditions.append(_contains(books.c.author, author))

        count_stmt = select(func.count()).select_from(books).where(*conditions)
        page_stmt = books.select().where(*conditions).order_by(books.c.title, books.c.id).limit(limit).offset(offset)
        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(page_stmt).fetchall()
        return total, [_row_to_book(r) for r in rows]

    def update_book(self, book_id: str, **fields) -> bool:
        """Update whitelisted fields on a book.

        Unknown keys raise ValueError. ingredients must be a list[str]; it is
        serialized to JSON here. Raises IntegrityError on a duplicate ISBN.

        Returns True if a row was updated, False if book_id was not found.
        """
        unknown = set(fields) - self._BOOK_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown book fields: {unknown!r}")
        if "ingredients" in fields:
            fields["ingredients"] = json.dumps(fields["ingredients"] or [])
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(books.update().where(books.c.id == book_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_visibility(self, book_id: str, visible: bool) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                books.update().where(books.c.id == book_id).values(visibility=visible, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_book(self, book_id: str) -> bool:
        """Delete a book. Library entries referencing it go with it (ON DELETE CASCADE)."""
        with self.engine.connect() as conn:
            result = conn.execute(books.delete().where(books.c.id == book_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Library entries
    # ------------------------------------------------------------------

    def add_library_entry(self, entry: LibraryEntry) -> str:
        """Insert a library entry and return its id.

        Raises sqlalchemy.exc.IntegrityError if (user_id, book_id) already
        exists -- the caller maps that to a 409.
        """
        entry_id = str(uuid.uuid4())
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                user_books.insert().values(
                    id=entry_id,
                    user_id=entry.user_id,
                    book_id=entry.book_id,
                    status=entry.status,
                    user_rating=entry.user_rating,
                    user_notes=entry.user_notes,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return entry_id

    def get_library_entry(self, user_id: str, book_id: str) -> Optional[LibraryEntry]:
        """Return the user's entry for book_id, with the book attached, or None."""
        stmt = (
            select(*_ENTRY_COLUMNS, books)
            .select_from(user_books.join(books, user_books.c.book_id == books.c.id))
            .where((user_books.c.user_id == user_id) & (user_books.c.book_id == book_id))
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_entry(row) if row is not None else None

    def update_library_entry(self, entry_id: str, **fields) -> bool:
        """Update status / user_rating / user_notes on an existing entry, in place."""
        unknown = set(fields) - self._ENTRY_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown library entry fields: {unknown!r}")
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(user_books.update().where(user_books.c.id == entry_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def remove_library_entry(self, user_id: str, book_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                user_books.delete().where((user_books.c.user_id == user_id) & (user_books.c.book_id == book_id))
            )
            conn.commit()
        return result.rowcount > 0

    def list_library(
        self,
        viewer: Identity,
        limit: int,
        offset: int,
        status: Optional[str] = None,
    ) -> tuple[int, list[LibraryEntry]]:
        """Return (total, page) of the viewer's library, ordered by book title.

        Entries whose book has been hidden drop out unless the viewer owns the
        book or is an admin.
        """
        joined = user_books.join(books, user_books.c.book_id == books.c.id)
        conditions = [user_books.c.user_id == viewer.id]
        visibility = _visibility_clause(viewer)
        if visibility is not None:
            conditions.append(visibility)
        if status:
            conditions.append(user_books.c.status == status)

        count_stmt = select(func.count()).select_from(joined).where(*conditions)
        page_stmt = (
            select(*_ENTRY_COLUMNS, books)
            .select_from(joined)
            .where(*conditions)
            .order_by(books.c.title, books.c.id)
            .limit(limit)
            .offset(offset)
        )
        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(page_stmt).fetchall()
        return total, [_row_to_entry(r) for r in rows]

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def delete_user_account(self, user_id: str) -> int:
        """Delete a user and detach everything that references it, atomically.

        Steps, all inside one transaction:
          1. load the user (NotFound if missing)
          2. last-admin guard (Forbidden if this is the only admin)
          3. null owner_user_id on the user's books
          4. delete the user's library entries
          5. delete the user row

        Returns the number of books whose ownership was cleared. Any
        exception rolls back every step.
        """
        with self.engine.begin() as conn:
            row = conn.execute(select(users.c.id, users.c.role).where(users.c.id == user_id)).fetchone()
            if row is None:
                raise NotFound("User not found.")
            if row.role == ROLE_ADMIN:
                admin_count = conn.execute(
                    select(func.count()).select_from(users).where(users.c.role == ROLE_ADMIN)
                ).scalar()
                if not can_remove_admin(admin_count or 0):
                    raise Forbidden(
                        "Forbidden: Cannot delete the last administrator account. "
                        "Promote another user to admin first."
                    )
            detached = conn.execute(
                books.update()
                .where(books.c.owner_user_id == user_id)
                .values(owner_user_id=None, updated_at=_now_iso())
            ).rowcount
            conn.execute(user_books.delete().where(user_books.c.user_id == user_id))
            conn.execute(users.delete().where(users.c.id == user_id))
        logger.info("Deleted user %s (%d books detached)", user_id, detached)
        return detached

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> CatalogStats:
        """Return catalog-wide counts and the five most common genres."""
        genre_stmt = (
            select(books.c.genre, func.count().label("count"))
            .group_by(books.c.genre)
            .order_by(func.count().desc(), books.c.genre)
            .limit(5)
        )
        with self.engine.connect() as conn:
            total_users = conn.execute(select(func.count()).select_from(users)).scalar() or 0
            total_books = conn.execute(select(func.count()).select_from(books)).scalar() or 0
            visible = (
                conn.execute(select(func.count()).select_from(books).where(books.c.visibility.is_(True))).scalar()
                or 0
            )
            entries = conn.execute(select(func.count()).select_from(user_books)).scalar() or 0
            genre_rows = conn.execute(genre_stmt).fetchall()
        return CatalogStats(
            total_users=total_users,
            total_books=total_books,
            visible_books=visible,
            hidden_books=total_books - visible,
            library_entries=entries,
            popular_genres=[{"genre": r.genre, "count": r.count} for r in genre_rows],
        )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_book(row) -> Book:
    ingredients: list[str] = json.loads(row.ingredients) if row.ingredients else []
    return Book(
        id=row.id,
        title=row.title,
        author=row.author,
        isbn=row.isbn,
        genre=row.genre,
        description=row.description,
        published_date=row.published_date,
        cover_url=row.cover_url,
        visibility=bool(row.visibility),
        owner_user_id=row.owner_user_id,
        cuisine_type=row.cuisine_type,
        dietary_category=row.dietary_category,
        difficulty_level=row.difficulty_level,
        ingredients=ingredients,
        sample_recipes=row.sample_recipes,
        author_bio=row.author_bio,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_entry(row) -> LibraryEntry:
    return LibraryEntry(
        id=row.entry_id,
        user_id=row.entry_user_id,
        book_id=row.entry_book_id,
        status=row.entry_status,
        user_rating=row.entry_user_rating,
        user_notes=row.entry_user_notes,
        created_at=row.entry_created_at,
        updated_at=row.entry_updated_at,
        book=_row_to_book(row),
    )

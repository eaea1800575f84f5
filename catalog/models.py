"""
catalog/models.py -- Domain dataclasses for the Recipe Shelf catalog.

These are pure data containers with zero logic. Query logic lives in
catalog/store.py and access decisions in auth/policy.py.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Book:
    """A cook book (or any book) in the shared catalog.

    owner_user_id is the creator. It becomes None when the creator's account
    is deleted; the book itself stays in the catalog.

    visibility=False hides the book from everyone except its owner and
    admins. Only admins toggle it.

    id is None before the record is written to the database.
    """

    title: str
    author: str
    genre: str
    id: Optional[str] = None
    isbn: Optional[str] = None
    description: Optional[str] = None
    published_date: Optional[str] = None  # YYYY-MM-DD
    cover_url: Optional[str] = None
    visibility: bool = True
    owner_user_id: Optional[str] = None
    cuisine_type: Optional[str] = None
    dietary_category: Optional[str] = None
    difficulty_level: Optional[str] = None  # "easy" | "medium" | "hard"
    ingredients: list[str] = field(default_factory=list)
    sample_recipes: Optional[str] = None
    author_bio: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class LibraryEntry:
    """One user's annotation of one book. At most one per (user_id, book_id).

    book is populated by store reads that join the catalog row.
    """

    user_id: str
    book_id: str
    status: str = "to-read"  # to-read | reading | finished | on-hold | dnf
    user_rating: Optional[int] = None  # 1..5
    user_notes: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    book: Optional[Book] = None


@dataclass
class CatalogStats:
    total_users: int
    total_books: int
    visible_books: int
    hidden_books: int
    library_entries: int
    popular_genres: list[dict] = field(default_factory=list)  # [{"genre", "count"}], top 5

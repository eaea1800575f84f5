"""
API request and response models for the Recipe Shelf REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Request models are the validation gate: anything that reaches a store has
already passed them. Update models are read with model_dump(exclude_unset=True)
so only the fields present in the request body are changed.

Separation of concerns: auth/ + catalog/ models = domain truth; api/ models = API contract.
"""

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from auth.models import Identity, User
from catalog.models import Book, CatalogStats, LibraryEntry

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

LibraryStatus = Literal["to-read", "reading", "finished", "on-hold", "dnf"]
DifficultyLevel = Literal["easy", "medium", "hard"]

# bcrypt accepts at most 72 bytes of password; the limit is on the UTF-8
# encoding, not the character count.
PASSWORD_MAX_BYTES = 72


def check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    There is no role field: every registration creates a plain "user".
    Promotion happens through PUT /users/me by an existing admin.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=PASSWORD_MAX_BYTES)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return check_password_bytes(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_BYTES)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return check_password_bytes(value)


# ---------------------------------------------------------------------------
# Users -- request models
# ---------------------------------------------------------------------------


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/users/me.

    Allow-list: name, email, role. Any other key is rejected rather than
    silently dropped. Requesting role="admin" is checked against the caller's
    current role in the route, not here.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[Literal["user", "admin"]] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value is not None else None

    @model_validator(mode="after")
    def reject_nulls(self) -> "ProfileUpdate":
        # Omitting a field means "leave it"; sending null is a client bug.
        for name in self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"{name} may not be null")
        return self


# ---------------------------------------------------------------------------
# Books -- request models
# ---------------------------------------------------------------------------


class BookCreate(BaseModel):
    """Request body for POST /api/v1/books and each element of a bulk upload."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: str = Field(min_length=1, max_length=255)
    author: str = Field(min_length=1, max_length=255)
    genre: str = Field(min_length=1, max_length=100)
    isbn: Optional[str] = Field(default=None, min_length=10, max_length=20)
    description: Optional[str] = Field(default=None, max_length=10000)
    published_date: Optional[date] = None
    cover_url: Optional[str] = Field(default=None, max_length=2048)
    cuisine_type: Optional[str] = Field(default=None, max_length=100)
    dietary_category: Optional[str] = Field(default=None, max_length=100)
    difficulty_level: Optional[DifficultyLevel] = None
    ingredients: list[str] = Field(default_factory=list, max_length=200)
    sample_recipes: Optional[str] = Field(default=None, max_length=20000)
    author_bio: Optional[str] = Field(default=None, max_length=5000)

    def to_book(self, owner_user_id: Optional[str]) -> Book:
        return Book(
            owner_user_id=owner_user_id,
            **self.model_dump(mode="json"),
        )


class BookUpdate(BaseModel):
    """Request body for PUT /api/v1/books/{id}.

    Same fields as BookCreate, all optional. Visibility and ownership are not
    part of the allow-list; visibility has its own admin endpoint.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    author: Optional[str] = Field(default=None, min_length=1, max_length=255)
    genre: Optional[str] = Field(default=None, min_length=1, max_length=100)
    isbn: Optional[str] = Field(default=None, min_length=10, max_length=20)
    description: Optional[str] = Field(default=None, max_length=10000)
    published_date: Optional[date] = None
    cover_url: Optional[str] = Field(default=None, max_length=2048)
    cuisine_type: Optional[str] = Field(default=None, max_length=100)
    dietary_category: Optional[str] = Field(default=None, max_length=100)
    difficulty_level: Optional[DifficultyLevel] = None
    ingredients: Optional[list[str]] = Field(default=None, max_length=200)
    sample_recipes: Optional[str] = Field(default=None, max_length=20000)
    author_bio: Optional[str] = Field(default=None, max_length=5000)

    @model_validator(mode="after")
    def required_fields_not_null(self) -> "BookUpdate":
        for name in ("title", "author", "genre"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} may not be null")
        return self


class VisibilityUpdate(BaseModel):
    """Request body for PATCH /api/v1/admin/books/{id}/visibility."""

    is_visible: bool


class BulkBooksRequest(BaseModel):
    """Request body for POST /api/v1/admin/books/bulk.

    Elements are left as raw dicts here and validated one by one against
    BookCreate in the route, so a bad element is reported by index instead
    of failing the whole body with an opaque path.
    """

    books: list[dict] = Field(min_length=1, max_length=500)


# ---------------------------------------------------------------------------
# Library -- request models
# ---------------------------------------------------------------------------


class LibraryEntryCreate(BaseModel):
    """Request body for POST /api/v1/library/{book_id}. The body may be empty."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    status: LibraryStatus = "to-read"
    user_rating: Optional[int] = Field(default=None, ge=1, le=5)
    user_notes: Optional[str] = Field(default=None, max_length=5000)


class LibraryEntryUpdate(BaseModel):
    """Request body for PUT /api/v1/library/{book_id}.

    user_rating and user_notes may be sent as null to clear them; status may not.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    status: Optional[LibraryStatus] = None
    user_rating: Optional[int] = Field(default=None, ge=1, le=5)
    user_notes: Optional[str] = Field(default=None, max_length=5000)

    @model_validator(mode="after")
    def status_not_null(self) -> "LibraryEntryUpdate":
        if "status" in self.model_fields_set and self.status is None:
            raise ValueError("status may not be null")
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account or a session identity. Never carries the password digest."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: Optional[str]
    role: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Factory Method -- the mapping lives beside the output model."""
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            created_at=user.created_at or None,
            updated_at=user.updated_at or None,
        )

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserResponse":
        return cls(id=identity.id, name=identity.name, email=identity.email, role=identity.role)


class AuthResponse(BaseModel):
    """Response for register, login and guest login. The token itself travels in the cookie."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class BookResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    author: str
    genre: str
    isbn: Optional[str]
    description: Optional[str]
    published_date: Optional[str]
    cover_url: Optional[str]
    visibility: bool
    owner_user_id: Optional[str]
    cuisine_type: Optional[str]
    dietary_category: Optional[str]
    difficulty_level: Optional[str]
    ingredients: list[str]
    sample_recipes: Optional[str]
    author_bio: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_book(cls, book: Book) -> "BookResponse":
        return cls(
            id=book.id,
            title=book.title,
            author=book.author,
            genre=book.genre,
            isbn=book.isbn,
            description=book.description,
            published_date=book.published_date,
            cover_url=book.cover_url,
            visibility=book.visibility,
            owner_user_id=book.owner_user_id,
            cuisine_type=book.cuisine_type,
            dietary_category=book.dietary_category,
            difficulty_level=book.difficulty_level,
            ingredients=list(book.ingredients),
            sample_recipes=book.sample_recipes,
            author_bio=book.author_bio,
            created_at=book.created_at,
            updated_at=book.updated_at,
        )


class LibraryEntryResponse(BaseModel):
    """One library entry with the full book nested under "book"."""

    model_config = ConfigDict(frozen=True)

    id: str
    book_id: str
    status: str
    user_rating: Optional[int]
    user_notes: Optional[str]
    created_at: str
    updated_at: str
    book: BookResponse

    @classmethod
    def from_entry(cls, entry: LibraryEntry) -> "LibraryEntryResponse":
        return cls(
            id=entry.id,
            book_id=entry.book_id,
            status=entry.status,
            user_rating=entry.user_rating,
            user_notes=entry.user_notes,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
            book=BookResponse.from_book(entry.book),
        )


class _Page(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_items: int
    total_pages: int
    current_page: int


class BookPage(_Page):
    books: list[BookResponse]


class LibraryPage(_Page):
    books: list[LibraryEntryResponse]


class UserPage(_Page):
    users: list[UserResponse]


class GenreCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    genre: str
    count: int


class StatsResponse(BaseModel):
    """Response for GET /api/v1/admin/stats."""

    model_config = ConfigDict(frozen=True)

    total_users: int
    total_books: int
    visible_books: int
    hidden_books: int
    library_entries: int
    popular_genres: list[GenreCount]

    @classmethod
    def from_stats(cls, stats: CatalogStats) -> "StatsResponse":
        return cls(
            total_users=stats.total_users,
            total_books=stats.total_books,
            visible_books=stats.visible_books,
            hidden_books=stats.hidden_books,
            library_entries=stats.library_entries,
            popular_genres=[GenreCount(**g) for g in stats.popular_genres],
        )


class FieldError(BaseModel):
    """One validation problem. index is set for bulk upload elements."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str
    index: Optional[int] = None


_REQUEST_LOCATIONS = ("body", "query", "path", "cookie", "header")


def field_errors_from(errors: list[dict], index: Optional[int] = None) -> list[FieldError]:
    """Flatten pydantic error dicts (exc.errors()) into FieldError rows.

    The leading request location ("body", "query", ...) is dropped so a bad
    title reports field="title", not field="body.title". Model-level errors
    with an empty location report field="body".
    """
    rows: list[FieldError] = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in _REQUEST_LOCATIONS:
            loc = loc[1:]
        rows.append(FieldError(field=".".join(loc) or "body", message=err.get("msg", "Invalid value"), index=index))
    return rows


class BulkCreateResponse(BaseModel):
    """Response for POST /api/v1/admin/books/bulk.

    With the partial policy, errors lists the rejected elements and the
    others are created; with all_or_nothing, any error aborts the request
    before this model is built.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    created: int
    books: list[BookResponse]
    errors: list[FieldError] = Field(default_factory=list)


class AccountDeletedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    books_detached: int


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx response.

    errors is present on validation failures; detail only on 500s outside
    production.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    errors: Optional[list[FieldError]] = None
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

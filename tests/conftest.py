"""
tests/conftest.py -- Shared fixtures for Recipe Shelf tests.

This module provides:
  - make_settings(): explicit Settings for one isolated test database
  - engine: a bare engine for store-level unit tests
  - app / client: a fresh app per test, lifespan running, no seed data
  - seed_user() / sign_in() / seed_book(): helpers that go through the
    app's own stores, hasher and codec

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process;
a uuid in the name keeps tests from seeing each other's rows.

Settings are built explicitly, never from get_settings(), so the process
environment cannot leak into a test. TestClient sends Host: testserver,
hence allowed_hosts=["testserver"]. bcrypt_rounds=4 keeps hashing fast.
"""

from __future__ import annotations

import uuid
from collections.abc import Generator
from typing import Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import create_app
from auth.models import User
from auth.tokens import SESSION_COOKIE
from catalog.models import Book
from core.config import Settings
from core.db import create_db_engine

TEST_SECRET_KEY = "test-secret-key-for-recipeshelf-0123456789"
DEFAULT_PASSWORD = "secret1"


def memory_db_url() -> str:
    return f"sqlite:///file:test_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    """Settings for one test. Keyword arguments override the defaults below."""
    values = {
        "secret_key": TEST_SECRET_KEY,
        "environment": "test",
        "database_url": memory_db_url(),
        "bcrypt_rounds": 4,
        "rate_limit_enabled": False,
        "allowed_hosts": ["testserver"],
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Store-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """A fresh engine on its own shared-memory database."""
    eng = create_db_engine(memory_db_url())
    yield eng
    eng.dispose()


# ---------------------------------------------------------------------------
# App-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def app(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """TestClient with the lifespan running, so app.state is fully wired."""
    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------


def seed_user(
    app: FastAPI,
    name: str = "Ada",
    email: str = "ada@x.com",
    password: str = DEFAULT_PASSWORD,
    role: str = "user",
) -> User:
    """Create a user directly through the app's store and return the stored row."""
    state = app.state
    user_id = state.user_store.create_user(
        User(name=name, email=email, hashed_password=state.password_hasher.hash(password), role=role)
    )
    return state.user_store.get_by_id(user_id)


# Where the cookie jar files cookies set by the app: http.cookiejar maps the
# dotless host "testserver" to "testserver.local". Planting tokens under the
# same key lets a Set-Cookie from the app replace or delete them.
COOKIE_DOMAIN = "testserver.local"
COOKIE_PATH = "/api/v1"


def set_token_cookie(client: TestClient, token: str) -> None:
    client.cookies.clear()
    client.cookies.set(SESSION_COOKIE, token, domain=COOKIE_DOMAIN, path=COOKIE_PATH)


def sign_in(client: TestClient, subject_id: str, role: str = "user") -> str:
    """Replace the client's session cookie with a fresh token for subject_id."""
    token = client.app.state.token_codec.issue(subject_id, role)
    set_token_cookie(client, token)
    return token


def cookie_cleared(resp) -> bool:
    """True if resp deletes the session cookie (Max-Age=0)."""
    for header in resp.headers.get_list("set-cookie"):
        attrs = [part.strip().lower() for part in header.split(";")]
        if attrs[0].startswith(f"{SESSION_COOKIE}=") and "max-age=0" in attrs:
            return True
    return False


def seed_book(
    app: FastAPI,
    title: str = "Ponyo's Ham Ramen",
    owner: Optional[User] = None,
    visibility: bool = True,
    **fields,
) -> Book:
    """Insert a book through the app's catalog store and return the stored row."""
    values = {"author": "Hayao Kitchen", "genre": "noodles"}
    values.update(fields)
    catalog = app.state.catalog
    book_id = catalog.create_book(
        Book(
            title=title,
            owner_user_id=owner.id if owner else None,
            visibility=visibility,
            **values,
        )
    )
    return catalog.get_book(book_id)

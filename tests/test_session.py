"""Unit tests for auth/session.py -- the token -> Identity state machine.

The user store is a MagicMock throughout so each test can assert exactly
which lookups the resolver performed.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from auth.models import User
from auth.session import SessionFailure, SessionResolver
from auth.tokens import TokenCodec

SECRET = "unit-test-secret-key-0123456789abcdef"


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(SECRET, ttl_seconds=3600)


@pytest.fixture
def store() -> MagicMock:
    return MagicMock()


@pytest.fixture
def resolver(store, codec) -> SessionResolver:
    return SessionResolver(store, codec)


def test_missing_token(resolver, store):
    result = resolver.resolve(None)
    assert not result.ok
    assert result.failure is SessionFailure.MISSING
    assert result.failure.clears_cookie is False
    store.get_by_id.assert_not_called()


def test_empty_token_counts_as_missing(resolver):
    assert resolver.resolve("").failure is SessionFailure.MISSING


def test_invalid_token_clears_cookie(resolver, store):
    result = resolver.resolve("garbage")
    assert result.failure is SessionFailure.INVALID
    assert result.failure.message == "Not authorized, token is invalid"
    assert result.failure.clears_cookie is True
    store.get_by_id.assert_not_called()


def test_expired_token(resolver, codec):
    token = codec.issue("user-1", "user", now=datetime.now(timezone.utc) - timedelta(days=2))
    result = resolver.resolve(token)
    assert result.failure is SessionFailure.EXPIRED
    assert result.failure.message == "Not authorized, token has expired"
    assert result.failure.clears_cookie is True


def test_guest_token_never_touches_store(resolver, store, codec):
    result = resolver.resolve(codec.issue("guest_1718036400123", "guest"))
    assert result.ok
    identity = result.identity
    assert identity.id == "guest_1718036400123"
    assert identity.role == "guest"
    assert identity.name == "Guest User"
    assert identity.email is None
    assert identity.ephemeral is True
    store.get_by_id.assert_not_called()
    store.get_by_email.assert_not_called()


def test_persisted_user_loaded_from_store(resolver, store, codec):
    store.get_by_id.return_value = User(id="user-1", name="Ada", email="ada@x.com", hashed_password="x")
    result = resolver.resolve(codec.issue("user-1", "user"))
    assert result.ok
    assert result.identity.email == "ada@x.com"
    assert result.identity.ephemeral is False
    store.get_by_id.assert_called_once_with("user-1")


def test_role_comes_from_store_not_token(resolver, store, codec):
    """A token minted while the user was an admin carries role=admin, but the
    row now says user. The row wins."""
    store.get_by_id.return_value = User(id="user-1", name="Ada", email="ada@x.com", hashed_password="x", role="user")
    result = resolver.resolve(codec.issue("user-1", "admin"))
    assert result.identity.role == "user"
    assert result.identity.is_admin is False


def test_promotion_applies_without_new_token(resolver, store, codec):
    store.get_by_id.return_value = User(id="user-1", name="Ada", email="ada@x.com", hashed_password="x", role="admin")
    result = resolver.resolve(codec.issue("user-1", "user"))
    assert result.identity.is_admin is True


def test_deleted_subject(resolver, store, codec):
    store.get_by_id.return_value = None
    result = resolver.resolve(codec.issue("user-1", "user"))
    assert result.failure is SessionFailure.SUBJECT_GONE
    assert result.failure.message == "Not authorized, user for this token no longer exists"
    assert result.failure.clears_cookie is True


def test_resolution_never_writes(resolver, store, codec):
    store.get_by_id.return_value = User(id="user-1", name="Ada", email="ada@x.com", hashed_password="x")
    resolver.resolve(codec.issue("user-1", "user"))
    store.create_user.assert_not_called()
    store.update_user.assert_not_called()

"""
tests/test_library_routes.py -- Integration tests for /api/v1/library.

Coverage:
  - Add with and without a body, nested book in the response
  - Duplicate add -> 409, update never creates a second row
  - Status filter, pagination envelope
  - Validation: unknown status, rating out of range, notes too long
  - Hidden / missing books cannot be added
  - Ephemeral guests: empty list, 403 on mutations
  - Entries are private to their owner
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import seed_book, seed_user, sign_in


def _reader(client: TestClient, app, email: str = "reader@x.com"):
    user = seed_user(app, email=email)
    sign_in(client, user.id)
    return user


class TestAddToLibrary:
    def test_add_defaults_to_to_read(self, client: TestClient, app) -> None:
        _reader(client, app)
        book = seed_book(app, title="Spirited Away Dumplings")
        resp = client.post(f"/api/v1/library/{book.id}")
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["status"] == "to-read"
        assert data["book_id"] == book.id
        assert data["book"]["title"] == "Spirited Away Dumplings"

    def test_add_with_body(self, client: TestClient, app) -> None:
        _reader(client, app)
        book = seed_book(app)
        resp = client.post(
            f"/api/v1/library/{book.id}",
            json={"status": "reading", "user_rating": 4, "user_notes": "Try with miso"},
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert (data["status"], data["user_rating"], data["user_notes"]) == ("reading", 4, "Try with miso")

    def test_duplicate_add_conflicts(self, client: TestClient, app) -> None:
        _reader(client, app)
        book = seed_book(app)
        assert client.post(f"/api/v1/library/{book.id}").status_code == 201
        resp = client.post(f"/api/v1/library/{book.id}", json={"status": "finished"})
        assert resp.status_code == 409
        assert resp.json() == {"message": "Book already in library"}

    def test_missing_book(self, client: TestClient, app) -> None:
        _reader(client, app)
        assert client.post("/api/v1/library/no-such-book").status_code == 404

    def test_hidden_book_of_someone_else(self, client: TestClient, app) -> None:
        owner = seed_user(app, email="owner@x.com")
        hidden = seed_book(app, owner=owner, visibility=False)
        _reader(client, app)
        assert client.post(f"/api/v1/library/{hidden.id}").status_code == 404

    def test_validation(self, client: TestClient, app) -> None:
        _reader(client, app)
        book = seed_book(app)
        assert client.post(f"/api/v1/library/{book.id}", json={"status": "skimmed"}).status_code == 400
        assert client.post(f"/api/v1/library/{book.id}", json={"user_rating": 6}).status_code == 400
        assert client.post(f"/api/v1/library/{book.id}", json={"user_rating": 0}).status_code == 400
        assert client.post(f"/api/v1/library/{book.id}", json={"user_notes": "x" * 5001}).status_code == 400


class TestUpdateAndList:
    def test_update_in_place(self, client: TestClient, app) -> None:
        _reader(client, app)
        book = seed_book(app)
        created = client.post(f"/api/v1/library/{book.id}").json()

        resp = client.put(f"/api/v1/library/{book.id}", json={"status": "finished", "user_rating": 5})
        assert resp.status_code == 200, resp.text
        assert resp.json()["id"] == created["id"]
        assert resp.json()["status"] == "finished"

        listing = client.get("/api/v1/library").json()
        assert listing["total_items"] == 1, "Update must never create a second entry"

    def test_clear_rating_with_null(self, client: TestClient, app) -> None:
        _reader(client, app)
        book = seed_book(app)
        client.post(f"/api/v1/library/{book.id}", json={"user_rating": 3})
        resp = client.put(f"/api/v1/library/{book.id}", json={"user_rating": None})
        assert resp.status_code == 200
        assert resp.json()["user_rating"] is None
        assert resp.json()["status"] == "to-read"

    def test_update_missing_entry(self, client: TestClient, app) -> None:
        _reader(client, app)
        book = seed_book(app)
        resp = client.put(f"/api/v1/library/{book.id}", json={"status": "reading"})
        assert resp.status_code == 404

    def test_status_filter_and_nested_book(self, client: TestClient, app) -> None:
        _reader(client, app)
        first = seed_book(app, title="A")
        second = seed_book(app, title="B")
        client.post(f"/api/v1/library/{first.id}", json={"status": "reading"})
        client.post(f"/api/v1/library/{second.id}", json={"status": "on-hold"})

        data = client.get("/api/v1/library", params={"status": "on-hold"}).json()
        assert data["total_items"] == 1
        assert data["books"][0]["book"]["title"] == "B"

        assert client.get("/api/v1/library", params={"status": "bogus"}).status_code == 400

    def test_entries_are_private(self, client: TestClient, app) -> None:
        _reader(client, app, email="first@x.com")
        book = seed_book(app)
        client.post(f"/api/v1/library/{book.id}")

        _reader(client, app, email="second@x.com")
        assert client.get("/api/v1/library").json()["total_items"] == 0
        assert client.put(f"/api/v1/library/{book.id}", json={"status": "dnf"}).status_code == 404
        assert client.delete(f"/api/v1/library/{book.id}").status_code == 404

    def test_remove(self, client: TestClient, app) -> None:
        _reader(client, app)
        book = seed_book(app)
        client.post(f"/api/v1/library/{book.id}")
        assert client.delete(f"/api/v1/library/{book.id}").status_code == 204
        assert client.delete(f"/api/v1/library/{book.id}").status_code == 404

    def test_requires_session(self, client: TestClient) -> None:
        assert client.get("/api/v1/library").status_code == 401


class TestGuestLibrary:
    def test_guest_sees_empty_library(self, client: TestClient) -> None:
        client.post("/api/v1/auth/guest/login")
        resp = client.get("/api/v1/library")
        assert resp.status_code == 200
        assert resp.json()["books"] == []

    def test_guest_cannot_mutate(self, client: TestClient, app) -> None:
        book = seed_book(app)
        client.post("/api/v1/auth/guest/login")
        assert client.post(f"/api/v1/library/{book.id}").status_code == 403
        assert client.put(f"/api/v1/library/{book.id}", json={"status": "reading"}).status_code == 403
        assert client.delete(f"/api/v1/library/{book.id}").status_code == 403

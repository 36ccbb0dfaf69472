import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from api.dependencies import get_config, get_provider
from librarium.config import LibraryConfig
from librarium.library import LibraryProvider, PersonalizedMessageService

HEADERS = {"X-User-Id": "u1"}


@pytest.fixture
def client(service):
    provider = LibraryProvider(service, messages=PersonalizedMessageService(clock=service.clock))
    app = create_app()
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_config] = lambda: LibraryConfig(whoosh_index_dir=None)
    return TestClient(app)


def _create(client, **overrides):
    body = {"title": "Dune", "author": "Frank Herbert", "total_pages": 412, "genre": "Sci-Fi"}
    body.update(overrides)
    response = client.post("/books", json=body, headers=HEADERS)
    assert response.status_code == 201
    return response.json()["data"]


def test_requires_user_header(client):
    assert client.get("/books").status_code == 401


def test_book_lifecycle(client):
    book = _create(client)
    assert book["state"] == "not_started"

    started = client.post(f"/books/{book['id']}/state", json={"state": "in_progress"}, headers=HEADERS)
    assert started.status_code == 200
    assert started.json()["warnings"] == []

    progress = client.post(f"/books/{book['id']}/progress", json={"current_page": 100}, headers=HEADERS)
    assert progress.json()["data"]["progress"]["current_page"] == 100

    client.post(f"/books/{book['id']}/state", json={"state": "finished"}, headers=HEADERS)
    rated = client.post(f"/books/{book['id']}/rating", json={"rating": 5}, headers=HEADERS)
    assert rated.json()["data"]["rating"] == 5

    history = client.get(f"/books/{book['id']}/events", headers=HEADERS).json()["data"]
    assert [e["type"] for e in history] == ["rating_added", "state_change", "progress_update", "state_change"]

    stats = client.get("/statistics", headers=HEADERS).json()["data"]
    assert stats["total_books_read"] == 1
    assert stats["total_pages_read"] == 412
    assert stats["favorite_genres"] == ["Sci-Fi"]


def test_error_status_codes(client):
    book = _create(client)

    illegal = client.post(f"/books/{book['id']}/state", json={"state": "finished"}, headers=HEADERS)
    assert illegal.status_code == 409
    assert illegal.json()["detail"]["message"] == "Cannot transition from not_started to finished"

    invalid = client.post(f"/books/{book['id']}/progress", json={"current_page": 999}, headers=HEADERS)
    assert invalid.status_code == 422
    assert invalid.json()["detail"]["category"] == "validation"

    assert client.get("/books/missing", headers=HEADERS).status_code == 404
    assert client.post("/books", json={"title": "", "author": "x"}, headers=HEADERS).status_code == 422


def test_list_filter_search_and_delete(client):
    dune = _create(client)
    _create(client, title="Emma", author="Jane Austen", is_owned=True)

    owned = client.get("/books", params={"ownership": "owned"}, headers=HEADERS).json()["data"]
    assert [b["title"] for b in owned] == ["Emma"]
    by_title = client.get("/books", params={"sort_by": "title", "descending": False}, headers=HEADERS)
    assert [b["title"] for b in by_title.json()["data"]] == ["Dune", "Emma"]
    found = client.get("/books/search", params={"q": "austen"}, headers=HEADERS).json()["data"]
    assert [b["title"] for b in found] == ["Emma"]

    assert client.delete(f"/books/{dune['id']}", headers=HEADERS).status_code == 200
    assert client.get(f"/books/{dune['id']}", headers=HEADERS).status_code == 404


def test_manual_edit_comments_and_review(client):
    book = _create(client)
    patched = client.patch(f"/books/{book['id']}", json={"state": "finished", "rating": 4}, headers=HEADERS)
    assert patched.status_code == 200
    assert patched.json()["data"]["state"] == "finished"

    comment = client.post(
        f"/books/{book['id']}/comments", json={"text": "What an ending", "page": 400}, headers=HEADERS
    )
    assert comment.status_code == 201
    comments = client.get(f"/books/{book['id']}/comments", headers=HEADERS).json()["data"]
    assert comments[0]["data"]["text"] == "What an ending"
    assert comments[0]["data"]["reading_state"] == "finished"

    client.post(f"/books/{book['id']}/review", json={"text": "A towering classic."}, headers=HEADERS)
    review = client.get(f"/books/{book['id']}/review", headers=HEADERS).json()["data"]
    assert review["data"]["text"] == "A towering classic."

    events = client.get("/events", params={"type": "state_change"}, headers=HEADERS).json()["data"]
    assert events[0]["data"]["override"] is True


def test_activity_purge_and_message(client):
    _create(client)
    activity = client.get("/events/activity", headers=HEADERS).json()["data"]
    assert [a["type"] for a in activity] == ["added"]

    purged = client.post("/events/purge", json={}, headers=HEADERS)
    assert purged.json()["data"] == 0
    assert client.post("/events/purge", json={"max_age_days": 0}, headers=HEADERS).status_code == 422

    message = client.get("/messages/personalized", params={"display_name": "Ada"}, headers=HEADERS)
    assert message.status_code == 200
    assert message.json()["data"]["generated"] is False


def test_import_and_refresh(client):
    response = client.post(
        "/books/import",
        json={"books": [{"title": "Emma", "author": "Jane Austen"}, {"title": "Persuasion", "author": "Jane Austen"}]},
        headers=HEADERS,
    )
    assert response.status_code == 201
    assert len(response.json()["data"]) == 2
    refreshed = client.post("/statistics/refresh", headers=HEADERS).json()["data"]
    assert refreshed["books_in_library"] == 2
    assert client.get("/healthz").json() == {"status": "ok"}

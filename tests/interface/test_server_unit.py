from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from flashdeck.application.engine import FlashcardEngine
from flashdeck.application.sync_service import SyncService
from flashdeck.consts import VERSION
from flashdeck.server import app, get_engine

client = TestClient(app)

TEXT = (
    "## Flash: Capital of France?\n### Answer: Paris\n\n"
    "## Flash: Capital of Spain?\n### Answer: Madrid\n"
)


@pytest.fixture
def engine(repo, model, library, now):
    engine = FlashcardEngine(
        repo, model, sync=SyncService(repo, library_root=library), clock=lambda: now
    )
    app.dependency_overrides[get_engine] = lambda: engine
    yield engine
    app.dependency_overrides.clear()


@pytest.fixture
def deck_id(engine, library):
    path = library / "Geography.md"
    path.write_text(TEXT, encoding="utf-8")
    response = client.post("/sync", json={"file_path": str(path)})
    return response.json()["deck_id"]


def test_health_check():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION


def test_get_version():
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


# ---------- Sync ----------


def test_sync_editor_buffer(engine, library):
    path = library / "Unsaved.md"

    response = client.post("/sync", json={"file_path": str(path), "text": TEXT})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["created"] == 2
    assert data["message"] == "Synchronized: 2 created"
    assert data["deck_id"] is not None


def test_sync_reads_file_from_disk(engine, deck_id, library):
    response = client.post("/sync", json={"file_path": str(library / "Geography.md")})

    data = response.json()
    assert data["deck_id"] == deck_id
    assert data["unchanged"] == 2
    assert data["message"] == "All flashcards are already synchronized"


def test_sync_library(engine, library):
    (library / "Geography.md").write_text(TEXT, encoding="utf-8")

    response = client.post("/sync", json={"library_root": str(library)})

    assert response.status_code == 200
    data = response.json()
    assert data["files_processed"] == 1
    assert data["created"] == 2
    assert data["orphaned_decks"] == []


def test_sync_fail():
    broken = MagicMock()
    broken.sync_library.side_effect = Exception("Boom")
    app.dependency_overrides[get_engine] = lambda: broken
    try:
        response = client.post("/sync", json={})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert "Boom" in response.json()["detail"]


# ---------- Reviews ----------


def test_review_card(engine, deck_id, repo):
    card = repo.list_cards(deck_id)[0]

    response = client.post(f"/cards/{card.id}/review", json={"rating": 4})

    assert response.status_code == 200
    data = response.json()
    assert data["card_id"] == card.id
    assert data["state"] == "Review"
    assert data["reps"] == 1


def test_review_errors(engine, deck_id, repo):
    card = repo.list_cards(deck_id)[0]

    assert client.post("/cards/9999/review", json={"rating": 3}).status_code == 404
    assert client.post(f"/cards/{card.id}/review", json={"rating": 9}).status_code == 422


def test_preview_card(engine, deck_id, repo):
    card = repo.list_cards(deck_id)[0]

    response = client.get(f"/cards/{card.id}/preview")

    assert response.status_code == 200
    data = response.json()
    assert data["retrievability"] == 0.0
    assert set(data["options"]) == {"Again", "Hard", "Good", "Easy"}
    assert data["options"]["Easy"]["state"] == "Review"
    assert data["options"]["Again"]["state"] == "Learning"
    assert repo.list_reviews(card.id) == []

    assert client.get("/cards/9999/preview").status_code == 404


# ---------- Sessions ----------


def test_session_lifecycle(engine, deck_id):
    started = client.post("/sessions", json={"deck_id": deck_id, "mode": "due"}).json()
    session = started["session"]
    assert session["remaining"] == 2
    assert session["current_card"]["front"] == "Capital of France?"

    answered = client.post(f"/sessions/{session['id']}/answer", json={"rating": 3}).json()
    assert answered["next_card"]["front"] == "Capital of Spain?"
    assert answered["session"]["cards_reviewed"] == 1

    last = client.post(f"/sessions/{session['id']}/answer", json={"rating": 4}).json()
    assert last["next_card"] is None
    assert last["session"]["status"] == "exhausted"

    ended = client.delete(f"/sessions/{session['id']}")
    assert ended.json() == {"ended": True, "cards_reviewed": 2}
    assert client.delete(f"/sessions/{session['id']}").status_code == 404


def test_session_nothing_to_study(engine, deck_id):
    response = client.post("/sessions", json={"deck_id": deck_id, "mode": "new", "new_limit": 0})

    assert response.status_code == 200
    assert response.json() == {"session": None}


def test_session_unknown_deck(engine):
    assert client.post("/sessions", json={"deck_id": 9999}).status_code == 404


def test_answer_unknown_session(engine):
    response = client.post("/sessions/nope/answer", json={"rating": 3})

    assert response.status_code == 404


# ---------- Decks ----------


def test_list_decks_and_stats(engine, deck_id):
    decks = client.get("/decks").json()["decks"]

    assert len(decks) == 1
    assert decks[0]["name"] == "Geography"
    assert decks[0]["total_cards"] == 2
    assert decks[0]["children"] == []

    stats = client.get(f"/decks/{deck_id}/stats").json()
    assert stats["total_cards"] == 2
    assert stats["due_cards"] == 2

    assert client.get("/decks/9999/stats").status_code == 404

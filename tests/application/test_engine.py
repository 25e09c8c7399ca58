"""End-to-end tests for the engine facade over an in-memory store."""

from datetime import timedelta

import pytest

from flashdeck.application.engine import FlashcardEngine
from flashdeck.application.parser import parse_markdown
from flashdeck.application.sync_service import SyncService
from flashdeck.domain.errors import InvalidRating, NotFoundError
from flashdeck.domain.models import Flashcard, Rating, SessionStatus, State, StudyMode

DECK_TEXT = "## Flash: Q1\n### Answer: A1\n\n## Flash: Q2\n### Answer: A2\n"


@pytest.fixture
def engine(repo, model, library, now):
    sync = SyncService(repo, library_root=library)
    return FlashcardEngine(repo, model, sync=sync, clock=lambda: now)


@pytest.fixture
def synced(engine, library):
    path = library / "Deck.md"
    path.write_text(DECK_TEXT, encoding="utf-8")
    return engine.sync_file(path, DECK_TEXT)


def test_sync_then_study_round_trip(engine, repo, synced, now):
    session = engine.start_session(synced.deck_id)

    assert session.current_card.front == "Q1"
    next_card = engine.answer_current(session.id, Rating.Good)
    assert next_card.front == "Q2"
    assert engine.answer_current(session.id, Rating.Easy) is None
    assert engine.get_session(session.id).status == SessionStatus.EXHAUSTED

    ended = engine.end_session(session.id)
    assert ended.cards_reviewed == 2
    with pytest.raises(NotFoundError):
        engine.get_session(session.id)


def test_sessions_are_independent(engine, synced):
    first = engine.start_session(synced.deck_id)
    second = engine.start_session(synced.deck_id)

    engine.answer_current(first.id, Rating.Easy)

    assert first.id != second.id
    assert engine.get_session(first.id).cards_reviewed == 1
    assert engine.get_session(second.id).cards_reviewed == 0


def test_start_session_nothing_due(engine, synced, now):
    assert engine.start_session(synced.deck_id, mode=StudyMode.NEW, new_limit=0) is None


def test_unknown_session(engine):
    with pytest.raises(NotFoundError):
        engine.answer_current("missing", Rating.Good)
    with pytest.raises(NotFoundError):
        engine.end_session("missing")


def test_review_card(engine, repo, synced, now):
    card = repo.list_cards(synced.deck_id)[0]

    state = engine.review_card(card.id, Rating.Easy)

    assert state.state == State.Review
    assert state.due > now
    assert len(repo.list_reviews(card.id)) == 1


def test_review_card_errors(engine, repo, synced):
    with pytest.raises(NotFoundError):
        engine.review_card(9999, Rating.Good)

    card = repo.list_cards(synced.deck_id)[0]
    with pytest.raises(InvalidRating):
        engine.review_card(card.id, 0)
    assert repo.list_reviews(card.id) == []


def test_explicit_now_wins_over_clock(engine, repo, synced, now):
    card = repo.list_cards(synced.deck_id)[0]
    later = now + timedelta(days=1)

    state = engine.review_card(card.id, Rating.Again, now=later)

    assert state.last_review == later


def test_deck_tree_and_stats(engine, library, now):
    (library / "Science").mkdir()
    engine.sync_file(library / "Science" / "Physics.md", DECK_TEXT)
    engine.sync_file(library / "Science" / "Chemistry.md", "## Flash: H2O?\n### Answer: Water")

    roots = engine.deck_tree()

    assert [r.deck.name for r in roots] == ["Science"]
    assert sorted(c.deck.name for c in roots[0].children) == ["Chemistry", "Physics"]
    assert roots[0].total_cards == 3

    science = roots[0].deck.id
    assert engine.deck_stats(science).total_cards == 0
    stats = engine.deck_stats(science, include_children=True)
    assert stats.total_cards == 3
    assert stats.new_cards == 3
    assert stats.due_cards == 3

    with pytest.raises(NotFoundError):
        engine.deck_stats(9999)


def test_export_deck(engine, synced):
    exported = engine.export_deck(synced.deck_id)

    assert [(c.front, c.back) for c in parse_markdown(exported)] == [("Q1", "A1"), ("Q2", "A2")]
    with pytest.raises(NotFoundError):
        engine.export_deck(9999)


def test_reset_history(engine, repo, synced):
    card = repo.list_cards(synced.deck_id)[0]
    engine.review_card(card.id, Rating.Good)

    engine.reset_history()

    assert repo.get_card_state(card.id).state == State.New
    assert repo.list_reviews(card.id) == []


def test_sync_library_and_orphans(engine, repo, library, synced):
    report = engine.sync_library()
    assert report.files_processed == 1
    assert report.results[0].unchanged == 2

    (library / "Deck.md").unlink()
    orphans = engine.find_orphaned_decks()
    assert [o.id for o in orphans] == [synced.deck_id]

    assert engine.remove_orphaned_decks([o.id for o in orphans]) == 1
    assert repo.list_decks() == []


def test_remove_duplicate_cards(engine, repo, synced, now):
    card = repo.list_cards(synced.deck_id)[0]
    duplicate = Flashcard(
        deck_id=synced.deck_id, front="q1", back="a1", created_at=now + timedelta(days=1)
    )
    repo.insert_card(duplicate, repo.get_card_state(card.id))

    assert engine.remove_duplicate_cards() == 1
    assert len(repo.list_cards(synced.deck_id)) == 2


def test_preview_card_persists_nothing(engine, repo, synced, now):
    card = repo.list_cards(synced.deck_id)[0]

    options = engine.preview_card(card.id)

    assert set(options) == set(Rating)
    assert options[Rating.Again].due == now + timedelta(minutes=10)
    assert options[Rating.Easy].state == State.Review
    assert repo.list_reviews(card.id) == []
    assert repo.get_card_state(card.id).state == State.New
    with pytest.raises(NotFoundError):
        engine.preview_card(9999)


def test_recall_probability(engine, repo, synced, now):
    card = repo.list_cards(synced.deck_id)[0]
    assert engine.recall_probability(card.id) == 0.0

    engine.review_card(card.id, Rating.Easy)

    assert engine.recall_probability(card.id) == pytest.approx(1.0)
    later = engine.recall_probability(card.id, now=now + timedelta(days=30))
    assert 0.0 < later < 1.0


def test_delete_deck(engine, repo, synced):
    card = repo.list_cards(synced.deck_id)[0]

    engine.delete_deck(synced.deck_id)

    assert repo.get_deck(synced.deck_id) is None
    assert repo.get_card_state(card.id) is None
    with pytest.raises(NotFoundError):
        engine.delete_deck(synced.deck_id)

from datetime import datetime, timezone

import pytest

from flashdeck.application.scheduler import MemoryModel
from flashdeck.domain.models import CardState, Deck, Flashcard
from flashdeck.infrastructure.sqlite_repository import SqliteRepository


@pytest.fixture
def now():
    """A fixed, timezone-aware clock reading."""
    return datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def repo():
    """An empty in-memory card store."""
    repository = SqliteRepository(":memory:")
    yield repository
    repository.close()


@pytest.fixture
def model():
    return MemoryModel()


@pytest.fixture
def library(tmp_path):
    """Creates a temporary directory acting as the markdown library."""
    d = tmp_path / "Library"
    d.mkdir()
    return d


@pytest.fixture
def make_deck(repo, now):
    def _make(name="Deck", parent=None, source_path=None):
        path = f"{parent.collection_path}::{name}" if parent else name
        deck = Deck(
            name=name,
            collection_path=path,
            parent_id=parent.id if parent else None,
            source_path=source_path,
            created_at=now,
        )
        deck.id = repo.insert_deck(deck)
        return deck

    return _make


@pytest.fixture
def make_card(repo, now):
    def _make(deck, front="Q", back="A", state=None, created_at=None, source_file=None):
        card = Flashcard(
            deck_id=deck.id,
            front=front,
            back=back,
            source_file=source_file,
            created_at=created_at or now,
        )
        card.id = repo.insert_card(card, state or CardState(due=now))
        return card

    return _make

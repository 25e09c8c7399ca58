"""
Ports (interfaces) for persistence.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager
from datetime import datetime

from .models import CardState, Deck, DeckStats, Flashcard, ReviewLogEntry, StudyCard


class FlashcardRepository(ABC):
    """
    Port for the card store.

    Implementations:
        - SqliteRepository: Local SQLite database.

    Single statements are atomic; multi-statement work must run inside
    `transaction()`, which nests by joining the outer transaction.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Commit on success, roll back everything on any exception."""

    # ---------- Decks ----------

    @abstractmethod
    def get_deck(self, deck_id: int) -> Deck | None:
        pass

    @abstractmethod
    def find_file_deck(self, source_path: str) -> Deck | None:
        """Look up the deck generated from a markdown file."""

    @abstractmethod
    def find_collection(self, collection_path: str) -> Deck | None:
        """Look up a folder deck (no source file) by its collection path."""

    @abstractmethod
    def insert_deck(self, deck: Deck) -> int:
        pass

    @abstractmethod
    def update_collection_path(self, deck_id: int, collection_path: str) -> None:
        pass

    @abstractmethod
    def delete_deck(self, deck_id: int) -> None:
        """Delete a deck and its cards; child decks are re-parented to the root."""

    @abstractmethod
    def list_decks(self) -> list[Deck]:
        """All decks with `card_count` populated, ordered by collection path."""

    @abstractmethod
    def descendant_deck_ids(self, deck_id: int) -> list[int]:
        """The deck itself followed by every deck below it."""

    # ---------- Cards ----------

    @abstractmethod
    def get_card(self, card_id: int) -> Flashcard | None:
        pass

    @abstractmethod
    def list_cards(self, deck_id: int, source_file: str | None = None) -> list[Flashcard]:
        """Cards of a deck, optionally restricted to one source file, oldest first."""

    @abstractmethod
    def insert_card(self, card: Flashcard, state: CardState) -> int:
        """Insert a card together with its initial state, atomically."""

    @abstractmethod
    def update_card(self, card_id: int, **fields) -> None:
        pass

    @abstractmethod
    def delete_card(self, card_id: int) -> None:
        """Delete a card along with its state and review history."""

    # ---------- Scheduling ----------

    @abstractmethod
    def get_card_state(self, card_id: int) -> CardState | None:
        pass

    @abstractmethod
    def put_card_state(self, card_id: int, state: CardState) -> None:
        pass

    @abstractmethod
    def append_review(self, entry: ReviewLogEntry) -> int:
        pass

    @abstractmethod
    def list_reviews(self, card_id: int) -> list[ReviewLogEntry]:
        pass

    @abstractmethod
    def reset_history(self, now: datetime) -> None:
        """Delete every review and return every card to the New state."""

    # ---------- Study queries ----------

    @abstractmethod
    def due_cards(
        self,
        now: datetime,
        deck_ids: Sequence[int] | None = None,
        limit: int | None = None,
        exclude_new: bool = False,
    ) -> list[StudyCard]:
        """Cards whose due date is at or before `now`, earliest first."""

    @abstractmethod
    def new_cards(
        self, deck_ids: Sequence[int] | None = None, limit: int | None = None
    ) -> list[StudyCard]:
        """Cards in the New state, in creation order."""

    @abstractmethod
    def deck_stats(self, now: datetime, deck_ids: Sequence[int] | None = None) -> DeckStats:
        pass

    def iter_all_cards(self) -> Iterator[Flashcard]:
        """Every card, deck by deck, oldest first within each deck."""
        for deck in self.list_decks():
            if deck.id is not None:
                yield from self.list_cards(deck.id)

"""
Domain models for decks, cards and their scheduling state.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum


class State(IntEnum):
    """Lifecycle phase of a card."""

    New = 0
    Learning = 1
    Review = 2
    Relearning = 3


class Rating(IntEnum):
    """Button pressed during review."""

    Again = 1
    Hard = 2
    Good = 3
    Easy = 4


class StudyMode(str, Enum):
    NEW = "new"
    DUE = "due"
    ALL = "all"


class SessionStatus(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    EXHAUSTED = "exhausted"


@dataclass
class Deck:
    """
    A node in the deck tree.

    File decks carry a `source_path`; collection decks (folders) do not.
    `collection_path` mirrors the ancestor names joined by "::".
    """

    name: str
    collection_path: str
    id: int | None = None
    description: str | None = None
    source_path: str | None = None
    parent_id: int | None = None
    tags: list[str] = field(default_factory=list)
    color: str | None = None
    icon: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    card_count: int = 0

    @property
    def is_collection(self) -> bool:
        return self.source_path is None


@dataclass
class Flashcard:
    deck_id: int
    front: str
    back: str
    id: int | None = None
    media_paths: tuple[str, ...] = ()
    source_file: str | None = None
    source_line: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class CardState:
    """
    Scheduling state of a card.

    Attributes:
        due: When the card is next due.
        stability: Days until recall probability drops to 90%.
        difficulty: Intrinsic hardness (1-10 once reviewed, 0 while New).
        elapsed_days: Days between the last two reviews.
        scheduled_days: Interval assigned by the last review (0 inside learning steps).
        learning_steps: Completed sub-steps within Learning/Relearning.
        reps: Total review count.
        lapses: Times the card was forgotten from Review.
        state: Lifecycle phase.
        last_review: When the card was last reviewed.
    """

    due: datetime
    stability: float = 0.0
    difficulty: float = 0.0
    elapsed_days: int = 0
    scheduled_days: int = 0
    learning_steps: int = 0
    reps: int = 0
    lapses: int = 0
    state: State = State.New
    last_review: datetime | None = None


@dataclass(frozen=True)
class ReviewLogEntry:
    """
    A single append-only review record.

    `scheduled_days` is the interval the card carried into the review and
    `actual_days` the days that really elapsed; the remaining fields are
    snapshots taken after the review.
    """

    card_id: int | None
    rating: Rating
    scheduled_days: int
    actual_days: int
    review_date: datetime
    stability: float
    difficulty: float
    elapsed_days: int
    lapses: int
    reps: int
    state: State
    id: int | None = None


@dataclass
class StudyCard:
    """Flashcard joined with its deck name and scheduling state."""

    id: int
    deck_id: int
    deck_name: str
    front: str
    back: str
    card_state: CardState
    media_paths: tuple[str, ...] = ()
    source_file: str | None = None
    source_line: int | None = None
    created_at: datetime | None = None

    @property
    def due(self) -> datetime:
        return self.card_state.due

    @property
    def state(self) -> State:
        return self.card_state.state


@dataclass(frozen=True)
class ParsedCard:
    front: str
    back: str
    source_line: int
    media_paths: tuple[str, ...] = ()


@dataclass
class SyncResult:
    """Outcome of reconciling one source file."""

    source_file: str
    deck_id: int | None = None
    created: int = 0
    updated: int = 0
    relocated: int = 0
    unchanged: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted)

    def summary(self) -> str:
        if not self.changed:
            return "All flashcards are already synchronized"
        changes = []
        if self.created:
            changes.append(f"{self.created} created")
        if self.updated:
            changes.append(f"{self.updated} updated")
        if self.deleted:
            changes.append(f"{self.deleted} deleted")
        return f"Synchronized: {', '.join(changes)}"


@dataclass
class OrphanedDeck:
    id: int
    name: str
    source_path: str


@dataclass
class LibrarySyncReport:
    files_processed: int = 0
    decks_touched: int = 0
    cards_created: int = 0
    results: list[SyncResult] = field(default_factory=list)
    orphaned_decks: list[OrphanedDeck] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class DeckStats:
    total_cards: int = 0
    new_cards: int = 0
    learning_cards: int = 0
    review_cards: int = 0
    due_cards: int = 0

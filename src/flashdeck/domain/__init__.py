# Domain Package
from .errors import FlashdeckError, InvalidRating, InvalidState, NotFoundError, ValidationError
from .models import (
    CardState,
    Deck,
    Flashcard,
    ParsedCard,
    Rating,
    ReviewLogEntry,
    State,
    StudyCard,
    StudyMode,
    SyncResult,
)
from .ports import FlashcardRepository

__all__ = [
    "CardState",
    "Deck",
    "Flashcard",
    "FlashdeckError",
    "FlashcardRepository",
    "InvalidRating",
    "InvalidState",
    "NotFoundError",
    "ParsedCard",
    "Rating",
    "ReviewLogEntry",
    "State",
    "StudyCard",
    "StudyMode",
    "SyncResult",
    "ValidationError",
]

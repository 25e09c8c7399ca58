"""
Study queue manager.

Owns one in-memory study session: picks due and new cards, feeds answers to
the memory model, re-inserts failed cards a few positions later and keeps
the unshown part of the queue in a sensible order.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from ulid import ULID

from flashdeck.application.review import apply_review
from flashdeck.application.scheduler import MemoryModel, coerce_rating
from flashdeck.application.utils.clock import ensure_utc
from flashdeck.domain.constants import (
    DEFAULT_LEARN_AHEAD_MINUTES,
    DEFAULT_MAX_REVIEWS_PER_DAY,
    DEFAULT_NEW_CARDS_PER_DAY,
    REFILL_BATCH_SIZE,
    REORDER_EVERY,
    REQUEUE_BUFFER_MAX,
    REQUEUE_BUFFER_MIN,
    REQUEUE_MIN_SECONDS,
)
from flashdeck.domain.errors import NotFoundError
from flashdeck.domain.models import (
    Rating,
    SessionStatus,
    State,
    StudyCard,
    StudyMode,
)
from flashdeck.domain.ports import FlashcardRepository

logger = logging.getLogger(__name__)


def card_summary(card: StudyCard) -> dict[str, Any]:
    return {
        "id": card.id,
        "deck_id": card.deck_id,
        "deck_name": card.deck_name,
        "front": card.front,
        "back": card.back,
        "media_paths": list(card.media_paths),
        "state": card.state.name,
        "due": card.due.isoformat(),
        "source_file": card.source_file,
        "source_line": card.source_line,
    }


@dataclass
class StudySession:
    """
    A transient study session.

    `cards[:current_index]` have been shown; the card at `current_index` is
    the one awaiting an answer.
    `holds` maps a re-queued card id to the earliest index it may occupy.
    """

    id: str
    deck_id: int | None
    mode: StudyMode
    cards: list[StudyCard]
    session_start: datetime
    deck_ids: list[int] | None = None
    current_index: int = 0
    cards_reviewed: int = 0
    status: SessionStatus = SessionStatus.ACTIVE
    ratings: dict[str, int] = field(default_factory=dict)
    holds: dict[int, int] = field(default_factory=dict)

    @property
    def current_card(self) -> StudyCard | None:
        if self.status != SessionStatus.ACTIVE or self.current_index >= len(self.cards):
            return None
        return self.cards[self.current_index]

    @property
    def remaining(self) -> list[StudyCard]:
        """The current card and everything queued after it."""
        return self.cards[self.current_index :]

    def summary(self) -> dict[str, Any]:
        current = self.current_card
        return {
            "id": self.id,
            "deck_id": self.deck_id,
            "mode": self.mode.value,
            "status": self.status.value,
            "session_start": self.session_start.isoformat(),
            "cards_reviewed": self.cards_reviewed,
            "remaining": len(self.remaining) if self.status == SessionStatus.ACTIVE else 0,
            "ratings": dict(self.ratings),
            "current_card": card_summary(current) if current else None,
        }


class StudyQueueManager:
    def __init__(
        self,
        repo: FlashcardRepository,
        model: MemoryModel,
        new_cards_per_day: int = DEFAULT_NEW_CARDS_PER_DAY,
        max_reviews_per_day: int = DEFAULT_MAX_REVIEWS_PER_DAY,
        learn_ahead_minutes: int = DEFAULT_LEARN_AHEAD_MINUTES,
        requeue_min_seconds: int = REQUEUE_MIN_SECONDS,
        reorder_every: int = REORDER_EVERY,
        refill_batch_size: int = REFILL_BATCH_SIZE,
        requeue_buffer_min: int = REQUEUE_BUFFER_MIN,
        requeue_buffer_max: int = REQUEUE_BUFFER_MAX,
    ):
        self.repo = repo
        self.model = model
        self.new_cards_per_day = new_cards_per_day
        self.max_reviews_per_day = max_reviews_per_day
        self.learn_ahead = timedelta(minutes=learn_ahead_minutes)
        self.requeue_min = timedelta(seconds=requeue_min_seconds)
        self.reorder_every = reorder_every
        self.refill_batch_size = refill_batch_size
        self.requeue_buffer_min = requeue_buffer_min
        self.requeue_buffer_max = requeue_buffer_max
        self.session: StudySession | None = None

    @property
    def status(self) -> SessionStatus:
        return self.session.status if self.session else SessionStatus.IDLE

    @property
    def current_card(self) -> StudyCard | None:
        return self.session.current_card if self.session else None

    @property
    def remaining(self) -> list[StudyCard]:
        return self.session.remaining if self.session else []

    # ---------- Lifecycle ----------

    def start(
        self,
        deck_id: int | None = None,
        mode: StudyMode | str = StudyMode.DUE,
        include_children: bool = False,
        new_limit: int | None = None,
        review_limit: int | None = None,
        now: datetime | None = None,
    ) -> StudySession | None:
        """Build a session; None when nothing is due, leaving the manager idle."""
        now = ensure_utc(now)
        mode = StudyMode(mode)
        new_limit = self.new_cards_per_day if new_limit is None else new_limit
        review_limit = self.max_reviews_per_day if review_limit is None else review_limit

        deck_ids = self._deck_scope(deck_id, include_children)
        cards = self._select(mode, deck_ids, new_limit, review_limit, now)
        if not cards:
            logger.info(f"Nothing to study (deck={deck_id}, mode={mode.value})")
            self.session = None
            return None

        cards.sort(key=lambda c: (c.due > now, c.due))
        self.session = StudySession(
            id=str(ULID()),
            deck_id=deck_id,
            deck_ids=deck_ids,
            mode=mode,
            cards=cards,
            session_start=now,
        )
        logger.info(f"Started session {self.session.id} with {len(cards)} cards")
        return self.session

    def end(self) -> StudySession | None:
        session, self.session = self.session, None
        if session:
            logger.info(f"Ended session {session.id} after {session.cards_reviewed} reviews")
        return session

    def answer_current(self, rating: Rating | int, now: datetime | None = None) -> StudyCard | None:
        """Rate the current card; returns the next card, or None once exhausted."""
        session = self.session
        if session is None:
            raise NotFoundError("Study session", "in progress")
        card = session.current_card
        if card is None:
            return None

        now = ensure_utc(now)
        rating = coerce_rating(rating)
        new_state, _ = apply_review(self.repo, self.model, card.id, rating, now)

        session.holds.pop(card.id, None)
        answered = replace(card, card_state=new_state)
        session.cards[session.current_index] = answered
        session.current_index += 1
        session.cards_reviewed += 1
        session.ratings[rating.name] = session.ratings.get(rating.name, 0) + 1

        if rating == Rating.Again:
            self._requeue(session, answered, now)
        if session.cards_reviewed % self.reorder_every == 0:
            self._reorder(session, now)
        if session.current_index >= len(session.cards):
            self._refill(session, now)

        return session.current_card

    # ---------- Selection ----------

    def _deck_scope(self, deck_id: int | None, include_children: bool) -> list[int] | None:
        if deck_id is None:
            return None
        if self.repo.get_deck(deck_id) is None:
            raise NotFoundError("Deck", deck_id)
        if include_children:
            return self.repo.descendant_deck_ids(deck_id)
        return [deck_id]

    def _select(
        self,
        mode: StudyMode,
        deck_ids: list[int] | None,
        new_limit: int,
        review_limit: int,
        now: datetime,
    ) -> list[StudyCard]:
        due: list[StudyCard] = []
        new: list[StudyCard] = []
        if mode in (StudyMode.DUE, StudyMode.ALL):
            due = self.repo.due_cards(now, deck_ids, limit=review_limit)
        if mode in (StudyMode.NEW, StudyMode.ALL):
            new = self.repo.new_cards(deck_ids, limit=new_limit)

        seen: set[int] = set()
        cards = []
        for card in due + new:
            if card.id not in seen:
                seen.add(card.id)
                cards.append(card)
        return cards

    # ---------- Queue maintenance ----------

    def requeue_buffer(self, minutes_until_due: float) -> int:
        """Untouched cards that must come before a re-queued card reappears."""
        spacing = math.floor(minutes_until_due / 2)
        return max(self.requeue_buffer_min, min(self.requeue_buffer_max, spacing))

    def _requeue(self, session: StudySession, card: StudyCard, now: datetime) -> bool:
        due = card.due
        if not (now + self.requeue_min <= due <= now + self.learn_ahead):
            return False

        upcoming = session.remaining
        position = 0
        for other in upcoming:
            if other.due > due:
                break
            position += 1

        if due > now + self.requeue_min:
            minutes_until_due = (due - now).total_seconds() / 60
            buffer = self.requeue_buffer(minutes_until_due)
            position = max(position, min(buffer, len(upcoming)))
            session.holds[card.id] = session.current_index + buffer

        session.cards.insert(session.current_index + position, card)
        logger.debug(f"Re-queued card {card.id} at position {position}")
        return True

    def _reorder(self, session: StudySession, now: datetime) -> None:
        horizon = now + self.learn_ahead
        shown = session.cards[: session.current_index]
        upcoming = session.remaining

        soon = [c for c in upcoming if c.due <= horizon]
        later = [c for c in upcoming if c.due > horizon]
        soon.sort(key=lambda c: (c.state not in (State.Learning, State.Relearning), c.due))
        later.sort(key=lambda c: c.due)
        session.cards = shown + self._respect_holds(session, soon + later)

    def _respect_holds(self, session: StudySession, ordered: list[StudyCard]) -> list[StudyCard]:
        """Keep `ordered` but delay held cards until their buffer has been shown."""
        placed: list[StudyCard] = []
        pending = list(ordered)
        while pending:
            slot = session.current_index + len(placed)
            pick = next(
                (i for i, c in enumerate(pending) if session.holds.get(c.id, 0) <= slot), None
            )
            if pick is None:
                # Fewer cards left than the buffer: the least-held card goes next.
                pick = min(range(len(pending)), key=lambda i: session.holds[pending[i].id])
            placed.append(pending.pop(pick))
        return placed

    def _refill(self, session: StudySession, now: datetime) -> None:
        batch = self.repo.due_cards(
            now, session.deck_ids, limit=self.refill_batch_size, exclude_new=True
        )
        if batch:
            session.cards.extend(sorted(batch, key=lambda c: c.due))
            logger.info(f"Session {session.id} refilled with {len(batch)} newly due cards")
            return

        session.status = SessionStatus.EXHAUSTED
        logger.info(f"Session {session.id} exhausted after {session.cards_reviewed} reviews")

"""
Engine facade.

The single entry point the CLI and the HTTP daemon talk to. Sessions are
explicit objects addressed by id; nothing here is global.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from flashdeck.application.parser import render_markdown
from flashdeck.application.queue_manager import StudyQueueManager, StudySession
from flashdeck.application.review import apply_review
from flashdeck.application.scheduler import MemoryModel
from flashdeck.application.sync_service import SyncService
from flashdeck.application.utils.clock import ensure_utc, utcnow
from flashdeck.domain.errors import NotFoundError
from flashdeck.domain.hierarchy import DeckNode, build_hierarchy
from flashdeck.domain.models import (
    CardState,
    DeckStats,
    LibrarySyncReport,
    OrphanedDeck,
    Rating,
    StudyCard,
    StudyMode,
    SyncResult,
)
from flashdeck.domain.ports import FlashcardRepository

logger = logging.getLogger(__name__)


class FlashcardEngine:
    def __init__(
        self,
        repo: FlashcardRepository,
        model: MemoryModel | None = None,
        sync: SyncService | None = None,
        queue_settings: dict[str, Any] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.model = model or MemoryModel()
        self.sync = sync or SyncService(repo)
        self.queue_settings = queue_settings or {}
        self.clock = clock
        self._sessions: dict[str, StudyQueueManager] = {}
        self._sessions_lock = threading.Lock()

    def _now(self, now: datetime | None) -> datetime:
        return ensure_utc(now) if now is not None else ensure_utc(self.clock())

    # ---------- Sync ----------

    def sync_file(self, path: str | Path, text: str, now: datetime | None = None) -> SyncResult:
        return self.sync.sync_file(path, text, self._now(now))

    def sync_library(
        self, root: Path | None = None, now: datetime | None = None
    ) -> LibrarySyncReport:
        return self.sync.sync_library(root, self._now(now))

    def find_orphaned_decks(self, root: Path | None = None) -> list[OrphanedDeck]:
        return self.sync.find_orphaned_decks(root)

    def remove_orphaned_decks(self, deck_ids: Iterable[int]) -> int:
        return self.sync.remove_orphaned_decks(deck_ids)

    def remove_duplicate_cards(self) -> int:
        return self.sync.remove_duplicate_cards()

    # ---------- Reviews ----------

    def review_card(
        self, card_id: int, rating: Rating | int, now: datetime | None = None
    ) -> CardState:
        if self.repo.get_card(card_id) is None:
            raise NotFoundError("Card", card_id)
        new_state, _ = apply_review(self.repo, self.model, card_id, rating, self._now(now))
        return new_state

    def _card_state(self, card_id: int) -> CardState:
        state = self.repo.get_card_state(card_id)
        if state is None:
            raise NotFoundError("Card", card_id)
        return state

    def preview_card(
        self, card_id: int, now: datetime | None = None
    ) -> dict[Rating, CardState]:
        """What each rating would schedule, without persisting anything."""
        return self.model.preview(self._card_state(card_id), self._now(now))

    def recall_probability(self, card_id: int, now: datetime | None = None) -> float:
        return self.model.retrievability(self._card_state(card_id), self._now(now))

    def reset_history(self, now: datetime | None = None) -> None:
        self.repo.reset_history(self._now(now))
        logger.warning("Review history reset; every card is New again")

    # ---------- Sessions ----------

    def start_session(
        self,
        deck_id: int | None = None,
        mode: StudyMode | str = StudyMode.DUE,
        include_children: bool = False,
        new_limit: int | None = None,
        review_limit: int | None = None,
        now: datetime | None = None,
    ) -> StudySession | None:
        manager = StudyQueueManager(self.repo, self.model, **self.queue_settings)
        session = manager.start(
            deck_id=deck_id,
            mode=mode,
            include_children=include_children,
            new_limit=new_limit,
            review_limit=review_limit,
            now=self._now(now),
        )
        if session is not None:
            with self._sessions_lock:
                self._sessions[session.id] = manager
        return session

    def _manager(self, session_id: str) -> StudyQueueManager:
        with self._sessions_lock:
            manager = self._sessions.get(session_id)
        if manager is None:
            raise NotFoundError("Session", session_id)
        return manager

    def get_session(self, session_id: str) -> StudySession:
        session = self._manager(session_id).session
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def answer_current(
        self, session_id: str, rating: Rating | int, now: datetime | None = None
    ) -> StudyCard | None:
        return self._manager(session_id).answer_current(rating, self._now(now))

    def end_session(self, session_id: str) -> StudySession | None:
        manager = self._manager(session_id)
        with self._sessions_lock:
            self._sessions.pop(session_id, None)
        return manager.end()

    # ---------- Decks ----------

    def deck_tree(self) -> list[DeckNode]:
        return build_hierarchy(self.repo.list_decks())

    def deck_stats(
        self, deck_id: int, include_children: bool = False, now: datetime | None = None
    ) -> DeckStats:
        if self.repo.get_deck(deck_id) is None:
            raise NotFoundError("Deck", deck_id)
        deck_ids = self.repo.descendant_deck_ids(deck_id) if include_children else [deck_id]
        return self.repo.deck_stats(self._now(now), deck_ids)

    def delete_deck(self, deck_id: int) -> None:
        if self.repo.get_deck(deck_id) is None:
            raise NotFoundError("Deck", deck_id)
        self.sync.delete_deck(deck_id)
        logger.info(f"Deleted deck {deck_id}")

    def export_deck(self, deck_id: int) -> str:
        if self.repo.get_deck(deck_id) is None:
            raise NotFoundError("Deck", deck_id)
        return render_markdown(self.repo.list_cards(deck_id))

    def close(self) -> None:
        close = getattr(self.repo, "close", None)
        if close is not None:
            close()

"""
Sync reconciler.

Applies the content matcher's plan to the store so that a markdown file and
its deck agree, keeping the scheduling history of every card that survives.
"""

import logging
import threading
import zlib
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path

from flashdeck.application.matcher import match_cards
from flashdeck.application.parser import (
    DeckMetadata,
    has_flashcards,
    parse_deck_metadata,
    parse_markdown,
    validate_card,
)
from flashdeck.application.scheduler import new_card_state
from flashdeck.application.utils.clock import ensure_utc
from flashdeck.application.utils.fs import deck_name_from_path, iter_markdown_files
from flashdeck.application.utils.text import content_key
from flashdeck.domain.constants import (
    COLLECTION_ICON,
    DECK_COLORS,
    FILE_DECK_ICON,
    FUZZY_MATCH_THRESHOLD,
)
from flashdeck.domain.errors import ValidationError
from flashdeck.domain.hierarchy import (
    build_hierarchy,
    expected_collection_paths,
    join_collection_path,
)
from flashdeck.domain.models import (
    Deck,
    Flashcard,
    LibrarySyncReport,
    OrphanedDeck,
    ParsedCard,
    SyncResult,
)
from flashdeck.domain.ports import FlashcardRepository

logger = logging.getLogger(__name__)


def deck_color(name: str) -> str:
    return DECK_COLORS[zlib.crc32(name.encode("utf-8")) % len(DECK_COLORS)]


def split_valid(parsed: Iterable[ParsedCard]) -> tuple[list[ParsedCard], list[str]]:
    """Separate cards that may enter the store from those reported as errors."""
    valid: list[ParsedCard] = []
    errors: list[str] = []
    for card in parsed:
        problems = validate_card(card)
        if problems:
            error = ValidationError(card.source_line, problems)
            logger.warning(f"Skipping invalid card: {error}")
            errors.append(str(error))
        else:
            valid.append(card)
    return valid, errors


class SyncService:
    """
    Keeps decks and cards in step with markdown files.

    Every file is reconciled inside one store transaction, and a per-file
    lock makes a second sync of the same file wait for the first.
    """

    def __init__(
        self,
        repo: FlashcardRepository,
        library_root: Path | None = None,
        fuzzy_match_threshold: float = FUZZY_MATCH_THRESHOLD,
    ):
        self.repo = repo
        self.library_root = Path(library_root).resolve() if library_root else None
        self.fuzzy_match_threshold = fuzzy_match_threshold
        self._file_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, source_file: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._file_locks.get(source_file)
            if lock is None:
                lock = self._file_locks[source_file] = threading.Lock()
            return lock

    @staticmethod
    def source_key(path: str | Path) -> str:
        return str(Path(path).expanduser().resolve())

    def _relative_to_library(self, source_file: str) -> Path | None:
        if self.library_root is None:
            return None
        try:
            return Path(source_file).relative_to(self.library_root)
        except ValueError:
            return None

    # ---------- Single file ----------

    def reconcile(
        self,
        deck_id: int,
        source_file: str,
        parsed: Sequence[ParsedCard],
        existing: Sequence[Flashcard],
        now: datetime | None = None,
    ) -> SyncResult:
        now = ensure_utc(now)
        valid, errors = split_valid(parsed)
        result = SyncResult(source_file=source_file, deck_id=deck_id, errors=errors)
        plan = match_cards(valid, existing, threshold=self.fuzzy_match_threshold)
        by_id = {card.id: card for card in existing}

        with self.repo.transaction():
            for index, card_id in plan.exact_matches:
                card = valid[index]
                stored = by_id[card_id]
                if stored.source_line != card.source_line or tuple(stored.media_paths) != tuple(
                    card.media_paths
                ):
                    self.repo.update_card(
                        card_id,
                        source_line=card.source_line,
                        media_paths=card.media_paths,
                        updated_at=now,
                    )
                    result.relocated += 1
                else:
                    result.unchanged += 1

            for index, card_id, score in plan.fuzzy_matches:
                card = valid[index]
                self.repo.update_card(
                    card_id,
                    front=card.front,
                    back=card.back,
                    media_paths=card.media_paths,
                    source_file=source_file,
                    source_line=card.source_line,
                    updated_at=now,
                )
                result.updated += 1
                logger.debug(f"Updated card {card_id} in place (score {score:.2f})")

            for index in plan.new_cards:
                card = valid[index]
                self.repo.insert_card(
                    Flashcard(
                        deck_id=deck_id,
                        front=card.front,
                        back=card.back,
                        media_paths=card.media_paths,
                        source_file=source_file,
                        source_line=card.source_line,
                        created_at=now,
                        updated_at=now,
                    ),
                    new_card_state(now),
                )
                result.created += 1

            for card_id in plan.removed_cards:
                self.repo.delete_card(card_id)
                result.deleted += 1
                logger.debug(f"Deleted card {card_id} with its history")

        return result

    def sync_file(self, path: str | Path, text: str, now: datetime | None = None) -> SyncResult:
        now = ensure_utc(now)
        source_file = self.source_key(path)

        with self._lock_for(source_file):
            parsed = parse_markdown(text)
            with self.repo.transaction():
                deck = self.repo.find_file_deck(source_file)
                if deck is None:
                    if all(validate_card(card) for card in parsed):
                        logger.info(f"No flashcards in {source_file}; nothing to sync")
                        _, errors = split_valid(parsed)
                        return SyncResult(source_file=source_file, errors=errors)
                    deck_id = self._create_file_deck(
                        source_file, parse_deck_metadata(text), now
                    )
                else:
                    deck_id = deck.id

                existing = self.repo.list_cards(deck_id, source_file)
                result = self.reconcile(deck_id, source_file, parsed, existing, now)

        logger.info(f"{source_file}: {result.summary()}")
        return result

    def _create_file_deck(self, source_file: str, metadata: DeckMetadata, now: datetime) -> int:
        relative = self._relative_to_library(source_file)
        folders = relative.parts[:-1] if relative is not None else ()

        parent_id: int | None = None
        parent_path: str | None = None
        for segment in folders:
            collection_path = join_collection_path(parent_path, segment)
            collection = self.repo.find_collection(collection_path)
            if collection is None:
                parent_id = self.repo.insert_deck(
                    Deck(
                        name=segment,
                        collection_path=collection_path,
                        parent_id=parent_id,
                        description=f"Auto-generated collection from folder: {segment}",
                        color=deck_color(segment),
                        icon=COLLECTION_ICON,
                        created_at=now,
                        updated_at=now,
                    )
                )
                logger.info(f"Created collection '{collection_path}'")
            else:
                parent_id = collection.id
            parent_path = collection_path

        name = metadata.name or deck_name_from_path(source_file)
        display_path = relative if relative is not None else Path(source_file).name
        deck_id = self.repo.insert_deck(
            Deck(
                name=name,
                collection_path=join_collection_path(parent_path, name),
                parent_id=parent_id,
                source_path=source_file,
                description=metadata.description or f"Generated from file: {display_path}",
                tags=metadata.tags,
                color=metadata.color or deck_color(name),
                icon=metadata.icon or FILE_DECK_ICON,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(f"Created deck '{join_collection_path(parent_path, name)}' for {source_file}")
        return deck_id

    # ---------- Library ----------

    def sync_library(
        self, root: Path | None = None, now: datetime | None = None
    ) -> LibrarySyncReport:
        root = Path(root).resolve() if root else self.library_root
        if root is None:
            raise ValueError("No library root configured")
        now = ensure_utc(now)
        report = LibrarySyncReport()

        for path in iter_markdown_files(root):
            try:
                text = path.read_text(encoding="utf-8")
                if not has_flashcards(text) and self.repo.find_file_deck(
                    self.source_key(path)
                ) is None:
                    continue

                result = self.sync_file(path, text, now)
            except Exception as e:
                logger.error(f"Failed to sync {path}: {e}", exc_info=True)
                report.errors.append(f"{path}: {e}")
                continue

            report.files_processed += 1
            report.results.append(result)
            report.cards_created += result.created
            if result.changed:
                report.decks_touched += 1
            report.errors.extend(f"{path}: {error}" for error in result.errors)

        report.orphaned_decks = self.find_orphaned_decks(root)
        logger.info(
            f"Library sync complete: {report.files_processed} files, "
            f"{report.cards_created} cards created, {len(report.orphaned_decks)} orphaned decks, "
            f"{len(report.errors)} errors"
        )
        return report

    def find_orphaned_decks(self, root: Path | None = None) -> list[OrphanedDeck]:
        """
        File decks whose source is missing or lies outside the library.

        Advisory only: nothing is deleted here.
        """
        root = Path(root).resolve() if root else self.library_root
        orphaned = []
        for deck in self.repo.list_decks():
            if deck.source_path is None or deck.id is None:
                continue
            source = Path(deck.source_path)
            outside = False
            if root is not None:
                try:
                    source.relative_to(root)
                except ValueError:
                    outside = True
            if outside or not source.is_file():
                orphaned.append(
                    OrphanedDeck(id=deck.id, name=deck.name, source_path=deck.source_path)
                )
                logger.warning(f"Orphaned deck '{deck.name}' ({deck.source_path})")
        return orphaned

    def delete_deck(self, deck_id: int) -> None:
        with self.repo.transaction():
            self.repo.delete_deck(deck_id)
            self.rebuild_collection_paths()

    def remove_orphaned_decks(self, deck_ids: Iterable[int]) -> int:
        removed = 0
        with self.repo.transaction():
            for deck_id in deck_ids:
                if self.repo.get_deck(deck_id) is None:
                    logger.warning(f"Deck {deck_id} no longer exists; skipping")
                    continue
                self.repo.delete_deck(deck_id)
                removed += 1
            if removed:
                self.rebuild_collection_paths()
        logger.info(f"Removed {removed} orphaned decks")
        return removed

    def remove_duplicate_cards(self) -> int:
        """Per deck, keep only the oldest card of each content key."""
        removed = 0
        with self.repo.transaction():
            seen: set[tuple[int, str]] = set()
            for card in self.repo.iter_all_cards():
                key = (card.deck_id, content_key(card.front, card.back))
                if key in seen:
                    self.repo.delete_card(card.id)
                    removed += 1
                else:
                    seen.add(key)
        logger.info(f"Removed {removed} duplicate cards")
        return removed

    def rebuild_collection_paths(self) -> int:
        """Recompute every collection path from the hierarchy; returns how many changed."""
        decks = self.repo.list_decks()
        expected = expected_collection_paths(build_hierarchy(decks))
        changed = 0
        with self.repo.transaction():
            for deck in decks:
                path = expected.get(deck.id)
                if path is not None and path != deck.collection_path:
                    self.repo.update_collection_path(deck.id, path)
                    changed += 1
        if changed:
            logger.info(f"Rebuilt {changed} collection paths")
        return changed

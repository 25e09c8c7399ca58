"""
SQLite Repository: infrastructure adapter for the local card store.

Implements FlashcardRepository on a single sqlite3 connection. Timestamps are
stored as UTC ISO-8601 strings with microsecond precision so that string
comparison orders them correctly.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from flashdeck.domain.models import (
    CardState,
    Deck,
    DeckStats,
    Flashcard,
    Rating,
    ReviewLogEntry,
    State,
    StudyCard,
)
from flashdeck.domain.ports import FlashcardRepository

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS decks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    source_path TEXT,
    parent_id INTEGER REFERENCES decks(id) ON DELETE SET NULL,
    collection_path TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    color TEXT,
    icon TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS flashcards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    deck_id INTEGER NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
    front TEXT NOT NULL,
    back TEXT NOT NULL,
    media_paths TEXT NOT NULL DEFAULT '[]',
    source_file TEXT,
    source_line INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS card_states (
    card_id INTEGER PRIMARY KEY REFERENCES flashcards(id) ON DELETE CASCADE,
    due TEXT NOT NULL,
    stability REAL NOT NULL DEFAULT 0,
    difficulty REAL NOT NULL DEFAULT 0,
    elapsed_days INTEGER NOT NULL DEFAULT 0,
    scheduled_days INTEGER NOT NULL DEFAULT 0,
    learning_steps INTEGER NOT NULL DEFAULT 0,
    reps INTEGER NOT NULL DEFAULT 0,
    lapses INTEGER NOT NULL DEFAULT 0,
    state INTEGER NOT NULL DEFAULT 0 CHECK(state BETWEEN 0 AND 3),
    last_review TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reviews (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    card_id INTEGER NOT NULL REFERENCES flashcards(id) ON DELETE CASCADE,
    rating INTEGER NOT NULL CHECK(rating BETWEEN 1 AND 4),
    scheduled_days INTEGER NOT NULL,
    actual_days INTEGER NOT NULL,
    review_date TEXT NOT NULL,
    stability REAL NOT NULL,
    difficulty REAL NOT NULL,
    elapsed_days INTEGER NOT NULL,
    lapses INTEGER NOT NULL,
    reps INTEGER NOT NULL,
    state INTEGER NOT NULL CHECK(state BETWEEN 0 AND 3)
);

CREATE INDEX IF NOT EXISTS idx_card_states_due ON card_states(due);
CREATE INDEX IF NOT EXISTS idx_card_states_state ON card_states(state);
CREATE INDEX IF NOT EXISTS idx_flashcards_deck ON flashcards(deck_id);
CREATE INDEX IF NOT EXISTS idx_flashcards_source ON flashcards(source_file);
CREATE INDEX IF NOT EXISTS idx_decks_collection_path ON decks(collection_path);
CREATE INDEX IF NOT EXISTS idx_decks_source_path ON decks(source_path);
CREATE INDEX IF NOT EXISTS idx_reviews_card ON reviews(card_id);
"""

_DECK_SELECT = """
SELECT d.*, (SELECT COUNT(*) FROM flashcards f WHERE f.deck_id = d.id) AS card_count
FROM decks d
"""

_STUDY_SELECT = """
SELECT f.id, f.deck_id, d.name AS deck_name, f.front, f.back, f.media_paths,
       f.source_file, f.source_line, f.created_at,
       s.due, s.stability, s.difficulty, s.elapsed_days, s.scheduled_days,
       s.learning_steps, s.reps, s.lapses, s.state, s.last_review
FROM flashcards f
JOIN card_states s ON s.card_id = f.id
JOIN decks d ON d.id = f.deck_id
"""

_CARD_COLUMNS = {"front", "back", "media_paths", "source_file", "source_line", "deck_id"}


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _in_clause(column: str, values: Sequence[int]) -> str:
    return f"{column} IN ({', '.join('?' for _ in values)})"


def connect(database_path: Path | str) -> sqlite3.Connection:
    """Open (creating if needed) a store and make sure the schema exists."""
    database_path = Path(database_path)
    in_memory = str(database_path) == ":memory:"
    if not in_memory:
        database_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(
        str(database_path), timeout=5, check_same_thread=False, isolation_level=None
    )
    conn.row_factory = sqlite3.Row
    if not in_memory:
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA)
    return conn


class SqliteRepository(FlashcardRepository):
    """
    Card store backed by SQLite.

    The connection runs in autocommit mode; `transaction()` issues explicit
    BEGIN/COMMIT/ROLLBACK and joins an outer transaction when nested. A
    re-entrant lock serializes transactions across threads.
    """

    def __init__(self, database_path: Path | str = ":memory:"):
        self.database_path = str(database_path)
        self.conn = connect(database_path)
        self._lock = threading.RLock()
        self._depth = 0

    def close(self) -> None:
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self.conn.execute("BEGIN")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if outermost:
                    self.conn.execute("ROLLBACK")
                    logger.debug("Transaction rolled back")
                raise
            else:
                self._depth -= 1
                if outermost:
                    self.conn.execute("COMMIT")

    # ---------- Row mapping ----------

    @staticmethod
    def _deck(row: sqlite3.Row) -> Deck:
        return Deck(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            source_path=row["source_path"],
            parent_id=row["parent_id"],
            collection_path=row["collection_path"],
            tags=json.loads(row["tags"] or "[]"),
            color=row["color"],
            icon=row["icon"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            card_count=row["card_count"],
        )

    @staticmethod
    def _card(row: sqlite3.Row) -> Flashcard:
        return Flashcard(
            id=row["id"],
            deck_id=row["deck_id"],
            front=row["front"],
            back=row["back"],
            media_paths=tuple(json.loads(row["media_paths"] or "[]")),
            source_file=row["source_file"],
            source_line=row["source_line"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    @staticmethod
    def _state(row: sqlite3.Row) -> CardState:
        return CardState(
            due=_dt(row["due"]),
            stability=row["stability"],
            difficulty=row["difficulty"],
            elapsed_days=row["elapsed_days"],
            scheduled_days=row["scheduled_days"],
            learning_steps=row["learning_steps"],
            reps=row["reps"],
            lapses=row["lapses"],
            state=State(row["state"]),
            last_review=_dt(row["last_review"]),
        )

    def _study_card(self, row: sqlite3.Row) -> StudyCard:
        return StudyCard(
            id=row["id"],
            deck_id=row["deck_id"],
            deck_name=row["deck_name"],
            front=row["front"],
            back=row["back"],
            card_state=self._state(row),
            media_paths=tuple(json.loads(row["media_paths"] or "[]")),
            source_file=row["source_file"],
            source_line=row["source_line"],
            created_at=_dt(row["created_at"]),
        )

    # ---------- Decks ----------

    def get_deck(self, deck_id: int) -> Deck | None:
        row = self.conn.execute(f"{_DECK_SELECT} WHERE d.id = ?", (deck_id,)).fetchone()
        return self._deck(row) if row else None

    def find_file_deck(self, source_path: str) -> Deck | None:
        row = self.conn.execute(
            f"{_DECK_SELECT} WHERE d.source_path = ? ORDER BY d.id LIMIT 1", (source_path,)
        ).fetchone()
        return self._deck(row) if row else None

    def find_collection(self, collection_path: str) -> Deck | None:
        row = self.conn.execute(
            f"{_DECK_SELECT} WHERE d.collection_path = ? AND d.source_path IS NULL "
            "ORDER BY d.id LIMIT 1",
            (collection_path,),
        ).fetchone()
        return self._deck(row) if row else None

    def insert_deck(self, deck: Deck) -> int:
        now = _utcnow()
        cur = self.conn.execute(
            """
            INSERT INTO decks (name, description, source_path, parent_id, collection_path,
                               tags, color, icon, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                deck.name,
                deck.description,
                deck.source_path,
                deck.parent_id,
                deck.collection_path,
                json.dumps(list(deck.tags)),
                deck.color,
                deck.icon,
                _ts(deck.created_at or now),
                _ts(deck.updated_at or deck.created_at or now),
            ),
        )
        return cur.lastrowid

    def update_collection_path(self, deck_id: int, collection_path: str) -> None:
        self.conn.execute(
            "UPDATE decks SET collection_path = ?, updated_at = ? WHERE id = ?",
            (collection_path, _ts(_utcnow()), deck_id),
        )

    def delete_deck(self, deck_id: int) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM decks WHERE id = ?", (deck_id,))

    def list_decks(self) -> list[Deck]:
        rows = self.conn.execute(f"{_DECK_SELECT} ORDER BY d.collection_path, d.id").fetchall()
        return [self._deck(row) for row in rows]

    def descendant_deck_ids(self, deck_id: int) -> list[int]:
        if self.conn.execute("SELECT 1 FROM decks WHERE id = ?", (deck_id,)).fetchone() is None:
            return []
        # UNION (not UNION ALL) stops at parent cycles.
        rows = self.conn.execute(
            """
            WITH RECURSIVE subtree(id) AS (
                SELECT ?
                UNION
                SELECT d.id FROM decks d JOIN subtree t ON d.parent_id = t.id
            )
            SELECT id FROM subtree
            """,
            (deck_id,),
        ).fetchall()
        below = sorted(row["id"] for row in rows if row["id"] != deck_id)
        return [deck_id, *below]

    # ---------- Cards ----------

    def get_card(self, card_id: int) -> Flashcard | None:
        row = self.conn.execute("SELECT * FROM flashcards WHERE id = ?", (card_id,)).fetchone()
        return self._card(row) if row else None

    def list_cards(self, deck_id: int, source_file: str | None = None) -> list[Flashcard]:
        if source_file is None:
            rows = self.conn.execute(
                "SELECT * FROM flashcards WHERE deck_id = ? ORDER BY created_at, id", (deck_id,)
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM flashcards WHERE deck_id = ? AND source_file = ? "
                "ORDER BY created_at, id",
                (deck_id, source_file),
            ).fetchall()
        return [self._card(row) for row in rows]

    def insert_card(self, card: Flashcard, state: CardState) -> int:
        created = card.created_at or _utcnow()
        with self.transaction():
            cur = self.conn.execute(
                """
                INSERT INTO flashcards (deck_id, front, back, media_paths, source_file,
                                        source_line, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    card.deck_id,
                    card.front,
                    card.back,
                    json.dumps(list(card.media_paths)),
                    card.source_file,
                    card.source_line,
                    _ts(created),
                    _ts(card.updated_at or created),
                ),
            )
            card_id = cur.lastrowid
            self._write_state(card_id, state, created)
        return card_id

    def update_card(self, card_id: int, **fields) -> None:
        updated_at = fields.pop("updated_at", None) or _utcnow()
        unknown = set(fields) - _CARD_COLUMNS
        if unknown:
            raise ValueError(f"Unknown flashcard fields: {sorted(unknown)}")
        if "media_paths" in fields:
            fields["media_paths"] = json.dumps(list(fields["media_paths"]))

        assignments = ", ".join(f"{column} = ?" for column in fields)
        params = [*fields.values(), _ts(updated_at), card_id]
        prefix = f"{assignments}, " if assignments else ""
        self.conn.execute(f"UPDATE flashcards SET {prefix}updated_at = ? WHERE id = ?", params)

    def delete_card(self, card_id: int) -> None:
        # card_states and reviews follow through ON DELETE CASCADE.
        self.conn.execute("DELETE FROM flashcards WHERE id = ?", (card_id,))

    # ---------- Scheduling ----------

    def get_card_state(self, card_id: int) -> CardState | None:
        row = self.conn.execute(
            "SELECT * FROM card_states WHERE card_id = ?", (card_id,)
        ).fetchone()
        return self._state(row) if row else None

    def _write_state(self, card_id: int, state: CardState, now: datetime) -> None:
        self.conn.execute(
            """
            INSERT INTO card_states (card_id, due, stability, difficulty, elapsed_days,
                                     scheduled_days, learning_steps, reps, lapses, state,
                                     last_review, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(card_id) DO UPDATE SET
                due = excluded.due,
                stability = excluded.stability,
                difficulty = excluded.difficulty,
                elapsed_days = excluded.elapsed_days,
                scheduled_days = excluded.scheduled_days,
                learning_steps = excluded.learning_steps,
                reps = excluded.reps,
                lapses = excluded.lapses,
                state = excluded.state,
                last_review = excluded.last_review,
                updated_at = excluded.updated_at
            """,
            (
                card_id,
                _ts(state.due),
                state.stability,
                state.difficulty,
                state.elapsed_days,
                state.scheduled_days,
                state.learning_steps,
                state.reps,
                state.lapses,
                int(state.state),
                _ts(state.last_review),
                _ts(now),
                _ts(now),
            ),
        )

    def put_card_state(self, card_id: int, state: CardState) -> None:
        self._write_state(card_id, state, _utcnow())

    def append_review(self, entry: ReviewLogEntry) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO reviews (card_id, rating, scheduled_days, actual_days, review_date,
                                 stability, difficulty, elapsed_days, lapses, reps, state)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.card_id,
                int(entry.rating),
                entry.scheduled_days,
                entry.actual_days,
                _ts(entry.review_date),
                entry.stability,
                entry.difficulty,
                entry.elapsed_days,
                entry.lapses,
                entry.reps,
                int(entry.state),
            ),
        )
        return cur.lastrowid

    def list_reviews(self, card_id: int) -> list[ReviewLogEntry]:
        rows = self.conn.execute(
            "SELECT * FROM reviews WHERE card_id = ? ORDER BY review_date, id", (card_id,)
        ).fetchall()
        return [
            ReviewLogEntry(
                id=row["id"],
                card_id=row["card_id"],
                rating=Rating(row["rating"]),
                scheduled_days=row["scheduled_days"],
                actual_days=row["actual_days"],
                review_date=_dt(row["review_date"]),
                stability=row["stability"],
                difficulty=row["difficulty"],
                elapsed_days=row["elapsed_days"],
                lapses=row["lapses"],
                reps=row["reps"],
                state=State(row["state"]),
            )
            for row in rows
        ]

    def reset_history(self, now: datetime) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM reviews")
            self.conn.execute(
                """
                UPDATE card_states SET due = ?, stability = 0, difficulty = 0,
                    elapsed_days = 0, scheduled_days = 0, learning_steps = 0,
                    reps = 0, lapses = 0, state = 0, last_review = NULL, updated_at = ?
                """,
                (_ts(now), _ts(now)),
            )

    # ---------- Study queries ----------

    def due_cards(
        self,
        now: datetime,
        deck_ids: Sequence[int] | None = None,
        limit: int | None = None,
        exclude_new: bool = False,
    ) -> list[StudyCard]:
        clauses = ["s.due <= ?"]
        params: list = [_ts(now)]
        if deck_ids is not None:
            if not deck_ids:
                return []
            clauses.append(_in_clause("f.deck_id", deck_ids))
            params.extend(deck_ids)
        if exclude_new:
            clauses.append("s.state != 0")

        sql = f"{_STUDY_SELECT} WHERE {' AND '.join(clauses)} ORDER BY s.due, f.id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._study_card(row) for row in self.conn.execute(sql, params).fetchall()]

    def new_cards(
        self, deck_ids: Sequence[int] | None = None, limit: int | None = None
    ) -> list[StudyCard]:
        clauses = ["s.state = 0"]
        params: list = []
        if deck_ids is not None:
            if not deck_ids:
                return []
            clauses.append(_in_clause("f.deck_id", deck_ids))
            params.extend(deck_ids)

        sql = f"{_STUDY_SELECT} WHERE {' AND '.join(clauses)} ORDER BY f.created_at, f.id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._study_card(row) for row in self.conn.execute(sql, params).fetchall()]

    def deck_stats(self, now: datetime, deck_ids: Sequence[int] | None = None) -> DeckStats:
        sql = """
            SELECT COUNT(*) AS total_cards,
                   SUM(s.state = 0) AS new_cards,
                   SUM(s.state IN (1, 3)) AS learning_cards,
                   SUM(s.state = 2) AS review_cards,
                   SUM(s.due <= ?) AS due_cards
            FROM flashcards f
            JOIN card_states s ON s.card_id = f.id
        """
        params: list = [_ts(now)]
        if deck_ids is not None:
            if not deck_ids:
                return DeckStats()
            sql += f" WHERE {_in_clause('f.deck_id', deck_ids)}"
            params.extend(deck_ids)

        row = self.conn.execute(sql, params).fetchone()
        return DeckStats(
            total_cards=row["total_cards"] or 0,
            new_cards=row["new_cards"] or 0,
            learning_cards=row["learning_cards"] or 0,
            review_cards=row["review_cards"] or 0,
            due_cards=row["due_cards"] or 0,
        )

import logging
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from flashdeck.application.engine import FlashcardEngine
from flashdeck.application.queue_manager import card_summary
from flashdeck.consts import VERSION
from flashdeck.domain.errors import InvalidRating, NotFoundError, ValidationError
from flashdeck.domain.hierarchy import DeckNode
from flashdeck.domain.models import CardState, StudyMode

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("flashdeck.server")

_engine: FlashcardEngine | None = None
_engine_lock = threading.Lock()


def get_engine() -> FlashcardEngine:
    global _engine
    with _engine_lock:
        if _engine is None:
            from flashdeck.application.config import resolve_config
            from flashdeck.application.factory import create_engine

            _engine = create_engine(resolve_config())
        return _engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"flashdeck server v{VERSION} starting up...")
    yield
    # Shutdown
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.close()
            _engine = None
    logger.info("flashdeck server shutting down...")


app = FastAPI(
    title="flashdeck server",
    description="Local daemon for markdown editor flashcard integrations.",
    version=VERSION,
    lifespan=lifespan,
)


def _http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (InvalidRating, ValidationError)):
        return HTTPException(status_code=422, detail=str(e))
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


start_time = time.time()


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


# ---------- Sync ----------


class SyncRequest(BaseModel):
    # file_path alone reads the file from disk; with text the editor buffer wins.
    file_path: str | None = None
    text: str | None = None
    library_root: str | None = None


class SyncResponse(BaseModel):
    success: bool
    message: str
    files_processed: int = 0
    created: int = 0
    updated: int = 0
    relocated: int = 0
    unchanged: int = 0
    deleted: int = 0
    deck_id: int | None = None
    orphaned_decks: list[dict[str, Any]] = []
    errors: list[str] = []


@app.post("/sync", response_model=SyncResponse)
def trigger_sync(req: SyncRequest, engine: FlashcardEngine = Depends(get_engine)):
    """
    Sync one markdown file, or the whole library when no file is given.
    """
    logger.info(f"Sync requested via API: file={req.file_path} library={req.library_root}")
    try:
        if req.file_path:
            text = req.text
            if text is None:
                text = Path(req.file_path).read_text(encoding="utf-8")
            result = engine.sync_file(req.file_path, text)
            return SyncResponse(
                success=not result.errors,
                message=result.summary(),
                files_processed=1,
                created=result.created,
                updated=result.updated,
                relocated=result.relocated,
                unchanged=result.unchanged,
                deleted=result.deleted,
                deck_id=result.deck_id,
                errors=result.errors,
            )

        root = Path(req.library_root) if req.library_root else None
        report = engine.sync_library(root)
        return SyncResponse(
            success=not report.errors,
            message=f"Processed {report.files_processed} files",
            files_processed=report.files_processed,
            created=report.cards_created,
            updated=sum(r.updated for r in report.results),
            relocated=sum(r.relocated for r in report.results),
            unchanged=sum(r.unchanged for r in report.results),
            deleted=sum(r.deleted for r in report.results),
            orphaned_decks=[asdict(o) for o in report.orphaned_decks],
            errors=report.errors,
        )
    except Exception as e:
        raise _http_error(e, "Sync") from e


# ---------- Reviews ----------


class ReviewRequest(BaseModel):
    rating: int


class CardStateResponse(BaseModel):
    card_id: int
    state: str
    due: str
    stability: float
    difficulty: float
    scheduled_days: int
    reps: int
    lapses: int

    @classmethod
    def from_state(cls, card_id: int, state: CardState) -> "CardStateResponse":
        return cls(
            card_id=card_id,
            state=state.state.name,
            due=state.due.isoformat(),
            stability=state.stability,
            difficulty=state.difficulty,
            scheduled_days=state.scheduled_days,
            reps=state.reps,
            lapses=state.lapses,
        )


@app.post("/cards/{card_id}/review", response_model=CardStateResponse)
def review_card(
    card_id: int, req: ReviewRequest, engine: FlashcardEngine = Depends(get_engine)
):
    try:
        state = engine.review_card(card_id, req.rating)
        return CardStateResponse.from_state(card_id, state)
    except Exception as e:
        raise _http_error(e, "Review") from e


class CardPreviewResponse(BaseModel):
    card_id: int
    retrievability: float
    options: dict[str, CardStateResponse]


@app.get("/cards/{card_id}/preview", response_model=CardPreviewResponse)
def preview_card(card_id: int, engine: FlashcardEngine = Depends(get_engine)):
    """Outcome of each rating for answer buttons; nothing is stored."""
    try:
        options = engine.preview_card(card_id)
        return CardPreviewResponse(
            card_id=card_id,
            retrievability=engine.recall_probability(card_id),
            options={
                rating.name: CardStateResponse.from_state(card_id, state)
                for rating, state in options.items()
            },
        )
    except Exception as e:
        raise _http_error(e, "Preview") from e


# ---------- Sessions ----------


class SessionRequest(BaseModel):
    deck_id: int | None = None
    mode: StudyMode = StudyMode.DUE
    include_children: bool = False
    new_limit: int | None = None
    review_limit: int | None = None


class AnswerRequest(BaseModel):
    rating: int


@app.post("/sessions")
def start_session(req: SessionRequest, engine: FlashcardEngine = Depends(get_engine)):
    """
    Start a study session. Returns {"session": null} when nothing is due.
    """
    try:
        session = engine.start_session(
            deck_id=req.deck_id,
            mode=req.mode,
            include_children=req.include_children,
            new_limit=req.new_limit,
            review_limit=req.review_limit,
        )
        return {"session": session.summary() if session else None}
    except Exception as e:
        raise _http_error(e, "Start session") from e


@app.post("/sessions/{session_id}/answer")
def answer_current(
    session_id: str, req: AnswerRequest, engine: FlashcardEngine = Depends(get_engine)
):
    try:
        next_card = engine.answer_current(session_id, req.rating)
        session = engine.get_session(session_id)
        return {
            "next_card": card_summary(next_card) if next_card else None,
            "session": session.summary(),
        }
    except Exception as e:
        raise _http_error(e, "Answer") from e


@app.delete("/sessions/{session_id}")
def end_session(session_id: str, engine: FlashcardEngine = Depends(get_engine)):
    try:
        session = engine.end_session(session_id)
        return {"ended": True, "cards_reviewed": session.cards_reviewed if session else 0}
    except Exception as e:
        raise _http_error(e, "End session") from e


# ---------- Decks ----------


def _node_to_dict(node: DeckNode) -> dict[str, Any]:
    deck = node.deck
    return {
        "id": deck.id,
        "name": deck.name,
        "collection_path": deck.collection_path,
        "source_path": deck.source_path,
        "is_collection": deck.is_collection,
        "card_count": deck.card_count,
        "total_cards": node.total_cards,
        "depth": node.depth,
        "children": [_node_to_dict(child) for child in node.children],
    }


@app.get("/decks")
def list_decks(engine: FlashcardEngine = Depends(get_engine)):
    try:
        return {"decks": [_node_to_dict(root) for root in engine.deck_tree()]}
    except Exception as e:
        raise _http_error(e, "List decks") from e


@app.get("/decks/{deck_id}/stats")
def deck_stats(
    deck_id: int, include_children: bool = False, engine: FlashcardEngine = Depends(get_engine)
):
    try:
        return asdict(engine.deck_stats(deck_id, include_children=include_children))
    except Exception as e:
        raise _http_error(e, "Deck stats") from e

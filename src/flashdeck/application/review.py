import logging
from datetime import datetime

from flashdeck.application.scheduler import MemoryModel
from flashdeck.domain.errors import NotFoundError
from flashdeck.domain.models import CardState, Rating, ReviewLogEntry
from flashdeck.domain.ports import FlashcardRepository

logger = logging.getLogger(__name__)


def apply_review(
    repo: FlashcardRepository,
    model: MemoryModel,
    card_id: int,
    rating: Rating | int,
    now: datetime,
) -> tuple[CardState, ReviewLogEntry]:
    """Schedule one answer and persist the new state with its log entry atomically."""
    with repo.transaction():
        state = repo.get_card_state(card_id)
        if state is None:
            raise NotFoundError("Card state", card_id)

        new_state, entry = model.schedule(state, rating, now, card_id=card_id)
        repo.put_card_state(card_id, new_state)
        repo.append_review(entry)

    logger.debug(
        f"Card {card_id} rated {entry.rating.name}: {new_state.state.name}, "
        f"due {new_state.due.isoformat()}"
    )
    return new_state, entry

"""
Content matcher.

Pairs freshly parsed cards with the cards already stored for the same file.
Identity is content, not position: exact content-key matches first, then a
greedy word-overlap pass, and whatever is left over is new or removed.
"""

import logging
from collections import defaultdict, deque
from collections.abc import Sequence
from dataclasses import dataclass, field

from flashdeck.application.utils.text import content_key, word_jaccard
from flashdeck.domain.constants import (
    FUZZY_BACK_WEIGHT,
    FUZZY_FRONT_WEIGHT,
    FUZZY_MATCH_THRESHOLD,
    SCORE_EPSILON,
)
from flashdeck.domain.models import Flashcard, ParsedCard

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    """
    Reconciliation plan.

    Attributes:
        exact_matches: (parsed index, existing card id) with identical content keys.
        fuzzy_matches: (parsed index, existing card id, score) for light edits.
        new_cards: Parsed indices with no counterpart.
        removed_cards: Existing card ids nobody claimed.
    """

    exact_matches: list[tuple[int, int]] = field(default_factory=list)
    fuzzy_matches: list[tuple[int, int, float]] = field(default_factory=list)
    new_cards: list[int] = field(default_factory=list)
    removed_cards: list[int] = field(default_factory=list)


def similarity(
    parsed: ParsedCard,
    existing: Flashcard,
    front_weight: float = FUZZY_FRONT_WEIGHT,
    back_weight: float = FUZZY_BACK_WEIGHT,
) -> float:
    return front_weight * word_jaccard(parsed.front, existing.front) + back_weight * word_jaccard(
        parsed.back, existing.back
    )


def match_cards(
    parsed: Sequence[ParsedCard],
    existing: Sequence[Flashcard],
    threshold: float = FUZZY_MATCH_THRESHOLD,
    front_weight: float = FUZZY_FRONT_WEIGHT,
    back_weight: float = FUZZY_BACK_WEIGHT,
) -> MatchResult:
    result = MatchResult()
    claimed: set[int] = set()
    unmatched: list[int] = []

    # Phase 1: exact content keys. Duplicates are claimed in stored order.
    by_key: dict[str, deque[int]] = defaultdict(deque)
    for card in existing:
        if card.id is not None:
            by_key[content_key(card.front, card.back)].append(card.id)

    for index, card in enumerate(parsed):
        candidates = by_key.get(content_key(card.front, card.back))
        if candidates:
            card_id = candidates.popleft()
            claimed.add(card_id)
            result.exact_matches.append((index, card_id))
        else:
            unmatched.append(index)

    # Phase 2: greedy best-score pass in parsed order.
    for index in unmatched:
        best_id: int | None = None
        best_score = -1.0
        for card in existing:
            if card.id is None or card.id in claimed:
                continue
            score = similarity(parsed[index], card, front_weight, back_weight)
            if score > best_score + SCORE_EPSILON:
                best_id = card.id
                best_score = score

        if best_id is not None and best_score + SCORE_EPSILON >= threshold:
            claimed.add(best_id)
            result.fuzzy_matches.append((index, best_id, best_score))
            logger.debug(f"Fuzzy match: parsed #{index} -> card {best_id} ({best_score:.3f})")
        else:
            result.new_cards.append(index)

    # Phase 3: leftovers.
    result.removed_cards = [
        card.id for card in existing if card.id is not None and card.id not in claimed
    ]
    return result

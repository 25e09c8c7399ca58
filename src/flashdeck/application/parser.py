"""
Markdown flashcard notation.

    ## Flash: <front>
    ### Answer: <first line of the back>
    <more back lines...>

The back runs until the next heading of level 1, 2, 4, 5 or 6, the next
`## Flash:` line, or the end of the text. Parsing is total: malformed blocks
are dropped, never reported.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from flashdeck.application.utils.text import extract_media_paths, parse_frontmatter
from flashdeck.domain.constants import MAX_BACK_LENGTH, MAX_FRONT_LENGTH
from flashdeck.domain.models import ParsedCard

FLASH_RE = re.compile(r"^## Flash: (.+)$")
ANSWER_RE = re.compile(r"^### Answer: ?(.*)$")
HEADING_RE = re.compile(r"^#{1,6} ")
LEVEL3_RE = re.compile(r"^### ")
FLASH_PROBE_RE = re.compile(r"^#{2,3}\s*Flash:\s*.+$", re.MULTILINE)


def parse_markdown(text: str) -> list[ParsedCard]:
    cards: list[ParsedCard] = []

    front: str | None = None
    source_line = 0
    answer_lines: list[str] = []
    in_answer = False

    def finalize() -> None:
        if not front:
            return
        back = "\n".join(answer_lines).strip()
        if not back:
            return
        cards.append(
            ParsedCard(
                front=front,
                back=back,
                source_line=source_line,
                media_paths=extract_media_paths(front, back),
            )
        )

    for index, raw_line in enumerate(text.split("\n")):
        line = raw_line.rstrip("\r")

        flash = FLASH_RE.match(line)
        if flash:
            finalize()
            front = flash.group(1).strip()
            source_line = index + 1
            answer_lines = []
            in_answer = False
            continue

        if front is None:
            continue

        answer = ANSWER_RE.match(line)
        if answer:
            in_answer = True
            answer_lines = [answer.group(1)]
            continue

        if not in_answer:
            continue

        if HEADING_RE.match(line) and not LEVEL3_RE.match(line):
            finalize()
            front = None
            answer_lines = []
            in_answer = False
        else:
            answer_lines.append(line)

    finalize()
    return cards


def validate_card(card: ParsedCard) -> list[str]:
    """Problems that keep a parsed card out of the store. Empty when the card is fine."""
    errors = []
    if not card.front.strip():
        errors.append("Front of card cannot be empty")
    if not card.back.strip():
        errors.append("Back of card cannot be empty")
    if len(card.front) > MAX_FRONT_LENGTH:
        errors.append(f"Front of card is too long (max {MAX_FRONT_LENGTH} characters)")
    if len(card.back) > MAX_BACK_LENGTH:
        errors.append(f"Back of card is too long (max {MAX_BACK_LENGTH} characters)")
    return errors


def has_flashcards(text: str) -> bool:
    """Cheap probe used during library discovery; more lenient than the grammar."""
    return FLASH_PROBE_RE.search(text) is not None


def render_markdown(cards: Iterable[Any]) -> str:
    """Inverse notation: anything with `front` and `back` attributes."""
    return "\n\n".join(f"## Flash: {card.front}\n### Answer: {card.back}" for card in cards)


@dataclass
class DeckMetadata:
    """Optional frontmatter keys that decorate a file deck."""

    name: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    color: str | None = None
    icon: str | None = None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_deck_metadata(text: str) -> DeckMetadata:
    meta, _ = parse_frontmatter(text)
    if not meta or "__yaml_error__" in meta:
        return DeckMetadata()

    tags = meta.get("tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",")]
    elif not isinstance(tags, list):
        tags = [tags]

    return DeckMetadata(
        name=_optional_str(meta.get("deck")),
        description=_optional_str(meta.get("description")),
        tags=[str(t) for t in tags if str(t).strip()],
        color=_optional_str(meta.get("color")),
        icon=_optional_str(meta.get("icon")),
    )

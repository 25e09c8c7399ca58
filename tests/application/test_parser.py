from flashdeck.application.parser import (
    has_flashcards,
    parse_deck_metadata,
    parse_markdown,
    render_markdown,
    validate_card,
)
from flashdeck.domain.constants import MAX_BACK_LENGTH, MAX_FRONT_LENGTH
from flashdeck.domain.models import ParsedCard


def test_single_card():
    cards = parse_markdown("## Flash: Q\n### Answer: A\n")

    assert len(cards) == 1
    assert cards[0].front == "Q"
    assert cards[0].back == "A"
    assert cards[0].source_line == 1
    assert cards[0].media_paths == ()


def test_multiline_back_keeps_level_three_headings():
    text = """# Biology

## Flash: What is a cell?
### Answer: The basic unit of life.
It has a membrane.
### Details
Cells divide.

## Notes
Not part of any card.
"""
    cards = parse_markdown(text)

    assert len(cards) == 1
    assert cards[0].source_line == 3
    assert cards[0].back == (
        "The basic unit of life.\nIt has a membrane.\n### Details\nCells divide."
    )


def test_next_flash_heading_ends_previous_back():
    text = "## Flash: One\n### Answer: 1\n## Flash: Two\n### Answer: 2"
    cards = parse_markdown(text)

    assert [(c.front, c.back, c.source_line) for c in cards] == [
        ("One", "1", 1),
        ("Two", "2", 3),
    ]


def test_deeper_headings_end_back():
    text = "## Flash: Q\n### Answer: A\n#### Aside\nignored"
    cards = parse_markdown(text)

    assert cards[0].back == "A"


def test_answer_may_start_on_next_line():
    cards = parse_markdown("## Flash: Q\n### Answer:\nline one\nline two\n")

    assert cards[0].back == "line one\nline two"


def test_blocks_without_answer_or_back_are_dropped():
    text = """## Flash: No answer heading
some text

## Flash: Empty back
### Answer:

## Flash: Good
### Answer: Yes
"""
    cards = parse_markdown(text)

    assert [c.front for c in cards] == ["Good"]


def test_empty_front_is_not_a_flash_heading():
    assert parse_markdown("## Flash: \n### Answer: A") == []
    assert parse_markdown("## Flash:\n### Answer: A") == []


def test_text_before_first_flash_is_ignored():
    assert parse_markdown("### Answer: orphan\n\nplain text") == []


def test_crlf_line_endings():
    cards = parse_markdown("## Flash: Q\r\n### Answer: A\r\nmore\r\n")

    assert cards[0].front == "Q"
    assert cards[0].back == "A\nmore"


def test_media_paths_are_collected():
    text = (
        '## Flash: What is this? ![diagram](img/cell.png "Cell")\n'
        "### Answer: A cell ![diagram](img/cell.png)\n"
        "[audio: pronunciation](audio/cell.mp3)\n"
    )
    cards = parse_markdown(text)

    assert cards[0].media_paths == ("img/cell.png", "audio/cell.mp3")


def test_has_flashcards_probe():
    text = "## Flash: Q\n### Answer: A\n\n## Flash: Q2\n### Answer: A2"

    assert has_flashcards(text)
    assert has_flashcards("###Flash: loose")
    assert not has_flashcards("# Just notes\n\nFlash: not a heading")


def test_render_round_trips_through_parser():
    cards = [ParsedCard("Q1", "A1", 1), ParsedCard("Q2", "line\nline", 4)]
    rendered = render_markdown(cards)

    parsed = parse_markdown(rendered)
    assert [(c.front, c.back) for c in parsed] == [("Q1", "A1"), ("Q2", "line\nline")]


def test_validate_card():
    assert validate_card(ParsedCard("Q", "A", 1)) == []

    errors = validate_card(ParsedCard(" ", "", 1))
    assert errors == ["Front of card cannot be empty", "Back of card cannot be empty"]

    long_card = ParsedCard("q" * (MAX_FRONT_LENGTH + 1), "a" * (MAX_BACK_LENGTH + 1), 1)
    errors = validate_card(long_card)
    assert len(errors) == 2
    assert all("too long" in e for e in errors)


def test_parse_deck_metadata():
    text = """---
deck: Cell Biology
description: Chapter 2
tags: bio, cells
color: "#10B981"
---
## Flash: Q
### Answer: A
"""
    meta = parse_deck_metadata(text)

    assert meta.name == "Cell Biology"
    assert meta.description == "Chapter 2"
    assert meta.tags == ["bio", "cells"]
    assert meta.color == "#10B981"
    assert meta.icon is None


def test_parse_deck_metadata_tolerates_bad_yaml():
    text = "---\ndeck: [unclosed\n---\nbody"

    meta = parse_deck_metadata(text)

    assert meta.name is None
    assert meta.tags == []


def test_frontmatter_does_not_create_cards():
    text = "---\ntags:\n  - a\n---\n## Flash: Q\n### Answer: A\n"

    cards = parse_markdown(text)
    assert len(cards) == 1
    assert cards[0].source_line == 5
    assert parse_deck_metadata(text).tags == ["a"]

"""Tests for CLI commands against a throwaway card store."""

import json
import sqlite3
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from flashdeck.domain.errors import InvalidRating, NotFoundError, ValidationError
from flashdeck.domain.models import Rating
from flashdeck.interface.cli import app, format_interval, humanize_error, parse_rating

runner = CliRunner()

CELLS = (
    "## Flash: What is a cell?\n### Answer: The unit of life\n\n"
    "## Flash: DNA?\n### Answer: Genes\n"
)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """A library folder as CWD plus an isolated store and config file."""
    monkeypatch.setattr("flashdeck.application.config.CONFIG_FILE", tmp_path / "config.toml")
    library = tmp_path / "Library"
    (library / "Biology").mkdir(parents=True)
    (library / "Biology" / "Cells.md").write_text(CELLS, encoding="utf-8")
    monkeypatch.chdir(library)
    return library


@pytest.fixture
def store(tmp_path):
    return ["--database", str(tmp_path / "cards.db")]


def synced(store, workspace):
    result = runner.invoke(app, [*store, "sync", str(workspace)])
    assert result.exit_code == 0, result.output
    return result


# --- Help ---


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "flashdeck: spaced repetition for markdown flashcards." in result.stdout
    for command in ("sync", "review", "study", "decks", "orphans", "serve"):
        assert command in result.stdout


# --- Sync ---


def test_sync_library(store, workspace):
    result = synced(store, workspace)

    assert "Files processed: 1" in result.stdout
    assert "Cards created: 2" in result.stdout


def test_sync_single_file_twice(store, workspace):
    path = str(workspace / "Biology" / "Cells.md")

    first = runner.invoke(app, [*store, "sync", path])
    second = runner.invoke(app, [*store, "sync", path])

    assert first.exit_code == 0
    assert "Synchronized: 2 created" in first.stdout
    assert "All flashcards are already synchronized" in second.stdout


def test_sync_reports_invalid_cards(store, workspace):
    path = workspace / "Long.md"
    path.write_text(f"## Flash: {'x' * 1001}\n### Answer: A\n", encoding="utf-8")

    result = runner.invoke(app, [*store, "sync", str(path)])

    assert result.exit_code == 0
    assert "Line 1: Front of card is too long" in result.stdout


# --- Decks & stats ---


def test_decks_tree(store, workspace):
    synced(store, workspace)

    result = runner.invoke(app, [*store, "decks"])

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines[0].startswith("+ Biology")
    assert lines[1].startswith("  - Cells")
    assert "(2 cards)" in lines[1]


def test_decks_empty(store, workspace):
    result = runner.invoke(app, [*store, "decks"])

    assert result.exit_code == 0
    assert "No decks yet" in result.stdout


def test_stats_json(store, workspace):
    synced(store, workspace)

    result = runner.invoke(app, [*store, "stats", "1", "--include-children", "--json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["total_cards"] == 2
    assert data["new_cards"] == 2


def test_stats_unknown_deck(store, workspace):
    result = runner.invoke(app, [*store, "stats", "42"])

    assert result.exit_code == 1
    assert "Not found: Deck 42 not found" in result.output


# --- Review & study ---


def test_review_command(store, workspace):
    synced(store, workspace)

    result = runner.invoke(app, [*store, "review", "1", "good"])

    assert result.exit_code == 0
    assert result.stdout.startswith("Card 1: Learning")


def test_review_bad_rating(store, workspace):
    result = runner.invoke(app, [*store, "review", "1", "meh"])

    assert result.exit_code == 1
    assert "Use again/hard/good/easy or 1-4" in result.output


def test_review_unknown_card(store, workspace):
    result = runner.invoke(app, [*store, "review", "99", "3"])

    assert result.exit_code == 1
    assert "Not found" in result.output


def test_study_session(store, workspace):
    synced(store, workspace)

    # A rejected rating shows the card again before Easy is accepted.
    result = runner.invoke(app, [*store, "study", "--deck", "2"], input="\n3\n\nx\n\n4\n")

    assert result.exit_code == 0, result.output
    assert "What is a cell?" in result.stdout
    assert "Genes" in result.stdout
    assert "1 again (10m)" in result.stdout
    assert "Reviewed 2 cards." in result.stdout


def test_study_quit(store, workspace):
    synced(store, workspace)

    result = runner.invoke(app, [*store, "study"], input="\nq\n")

    assert result.exit_code == 0
    assert "Reviewed 0 cards." in result.stdout


def test_study_nothing_due(store, workspace):
    result = runner.invoke(app, [*store, "study"])

    assert result.exit_code == 0
    assert "Nothing to study right now." in result.stdout


# --- Maintenance ---


def test_export(store, workspace, tmp_path):
    synced(store, workspace)
    out = tmp_path / "export.md"

    result = runner.invoke(app, [*store, "export", "2", "-o", str(out)])

    assert result.exit_code == 0
    assert out.read_text(encoding="utf-8").startswith("## Flash: What is a cell?")


def test_orphans_flow(store, workspace):
    synced(store, workspace)

    assert "No orphaned decks." in runner.invoke(app, [*store, "orphans"]).stdout

    (workspace / "Biology" / "Cells.md").unlink()
    listed = runner.invoke(app, [*store, "orphans"])
    assert "[2] Cells" in listed.stdout

    aborted = runner.invoke(app, [*store, "orphans", "--remove"], input="n\n")
    assert aborted.exit_code == 1
    assert "Aborted." in aborted.stdout

    removed = runner.invoke(app, [*store, "orphans", "--remove", "--force"])
    assert removed.exit_code == 0
    assert "Removed 1 orphaned decks." in removed.stdout


def test_dedupe(store, workspace):
    synced(store, workspace)

    result = runner.invoke(app, [*store, "dedupe"])

    assert result.exit_code == 0
    assert "Removed 0 duplicate cards." in result.stdout


def test_delete_deck(store, workspace):
    synced(store, workspace)

    aborted = runner.invoke(app, [*store, "delete-deck", "2"], input="n\n")
    assert aborted.exit_code == 1

    result = runner.invoke(app, [*store, "delete-deck", "2", "--force"])
    assert result.exit_code == 0
    assert "Deleted deck 2." in result.stdout

    tree = runner.invoke(app, [*store, "decks"]).stdout.splitlines()
    assert len(tree) == 1
    assert tree[0].startswith("+ Biology")

    missing = runner.invoke(app, [*store, "delete-deck", "2", "--force"])
    assert missing.exit_code == 1
    assert "Not found: Deck 2 not found" in missing.output


def test_reset_history(store, workspace):
    synced(store, workspace)
    runner.invoke(app, [*store, "review", "1", "easy"])

    aborted = runner.invoke(app, [*store, "reset-history"], input="n\n")
    assert aborted.exit_code == 1

    result = runner.invoke(app, [*store, "reset-history", "--force"])
    assert result.exit_code == 0
    assert "Review history cleared." in result.stdout


# --- Server & config ---


@patch("uvicorn.run")
def test_serve_command(mock_run, workspace):
    result = runner.invoke(app, ["serve", "--port", "9000"])
    assert result.exit_code == 0
    mock_run.assert_called_with("flashdeck.server:app", host="127.0.0.1", port=9000, reload=False)


@patch("flashdeck.interface.cli.resolve_config")
def test_config_show_command(mock_resolve_config):
    """Test config show command displays JSON."""
    mock_config = MagicMock()
    mock_config.model_dump.return_value = {
        "library_root": Path("/tmp/library"),
        "desired_retention": 0.9,
        "verbose": 1,
    }
    mock_resolve_config.return_value = mock_config

    result = runner.invoke(app, ["config", "show"])

    assert result.exit_code == 0
    output_data = json.loads(result.stdout)
    assert output_data["library_root"] == str(Path("/tmp/library"))
    assert output_data["desired_retention"] == 0.9


# --- Helpers ---


def test_parse_rating():
    assert parse_rating("1") is Rating.Again
    assert parse_rating(" Good ") is Rating.Good
    assert parse_rating("EASY") is Rating.Easy
    with pytest.raises(InvalidRating):
        parse_rating("5")
    with pytest.raises(InvalidRating):
        parse_rating("great")


def test_humanize_error():
    assert humanize_error(NotFoundError("Card", 3)) == "Not found: Card 3 not found"
    assert humanize_error(ValidationError(4, ["Front of card cannot be empty"])).startswith(
        "Invalid card: Line 4"
    )
    assert humanize_error(sqlite3.OperationalError("locked")) == "Database error: locked"
    assert humanize_error(RuntimeError("other")) == "other"


def test_format_interval():
    assert format_interval(timedelta(seconds=10)) == "1m"
    assert format_interval(timedelta(minutes=10)) == "10m"
    assert format_interval(timedelta(hours=3)) == "3h"
    assert format_interval(timedelta(days=20)) == "20d"

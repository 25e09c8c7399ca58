"""flashdeck CLI: sync, review, study and deck maintenance commands."""

import json
import logging
import sqlite3
import sys
from contextlib import contextmanager
from dataclasses import asdict
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any

import typer

from flashdeck.application.config import resolve_config
from flashdeck.application.utils.clock import utcnow
from flashdeck.domain.errors import (
    FlashdeckError,
    InvalidRating,
    NotFoundError,
    ValidationError,
)
from flashdeck.domain.hierarchy import iter_subtree
from flashdeck.domain.models import Rating, State, StudyCard, StudyMode

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="flashdeck: spaced repetition for markdown flashcards.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage flashdeck configuration.")
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def _configure_logging(verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.getLogger("flashdeck").setLevel(level)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def humanize_error(exc: Exception) -> str:
    """One-line, user-facing description of an error."""
    if isinstance(exc, NotFoundError):
        return f"Not found: {exc}"
    if isinstance(exc, InvalidRating):
        return f"{exc}. Use again/hard/good/easy or 1-4."
    if isinstance(exc, ValidationError):
        return f"Invalid card: {exc}"
    if isinstance(exc, sqlite3.Error):
        return f"Database error: {exc}"
    return str(exc)


@contextmanager
def _handle_errors():
    try:
        yield
    except (FlashdeckError, sqlite3.Error) as e:
        logger.debug("Command failed", exc_info=True)
        typer.secho(humanize_error(e), fg="red", err=True)
        raise typer.Exit(1) from None


def parse_rating(value: str) -> Rating:
    value = value.strip()
    if value.isdigit():
        try:
            return Rating(int(value))
        except ValueError:
            raise InvalidRating(value) from None
    for rating in Rating:
        if rating.name.lower() == value.lower():
            return rating
    raise InvalidRating(value)


def _engine(ctx: typer.Context, **overrides: Any):
    from flashdeck.application.factory import create_engine

    verbose = ctx.obj.get("verbose", 1) if ctx.obj else 1
    config = resolve_config({**overrides, "verbose": verbose})
    return create_engine(config)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
    database: Annotated[
        Path | None, typer.Option("--database", help="Card store to use.")
    ] = None,
):
    """Global settings for flashdeck."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["database"] = database
    _configure_logging(verbose)


def _overrides(ctx: typer.Context, **extra: Any) -> dict[str, Any]:
    overrides = {"database_path": ctx.obj.get("database")}
    overrides.update(extra)
    return overrides


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    ctx: typer.Context,
    path: Annotated[
        Path | None,
        typer.Argument(
            help="Markdown file or library folder. Defaults to 'library_root' in config, or CWD."
        ),
    ] = None,
):
    """[bold green]Sync[/bold green] markdown flashcards into the card store."""
    target = path.resolve() if path else None
    library = target if target and target.is_dir() else None

    with _handle_errors():
        engine = _engine(ctx, **_overrides(ctx, library_root=library))
        try:
            if target is not None and target.is_file():
                result = engine.sync_file(target, target.read_text(encoding="utf-8"))
                typer.secho(result.summary(), fg="green")
                for error in result.errors:
                    typer.secho(f"  {error}", fg="yellow")
                return

            report = engine.sync_library(library)
        finally:
            engine.close()

    typer.echo(f"Files processed: {report.files_processed}")
    typer.echo(f"Decks changed: {report.decks_touched}")
    typer.echo(f"Cards created: {report.cards_created}")
    for error in report.errors:
        typer.secho(f"  {error}", fg="yellow")
    if report.orphaned_decks:
        typer.secho(
            f"{len(report.orphaned_decks)} orphaned decks. "
            "Run 'flashdeck orphans --remove' to delete them.",
            fg="yellow",
        )


# ---------------------------------------------------------------------------
# Reviews & study
# ---------------------------------------------------------------------------


@app.command()
def review(
    ctx: typer.Context,
    card_id: Annotated[int, typer.Argument(help="Card to rate.")],
    rating: Annotated[str, typer.Argument(help="again, hard, good, easy (or 1-4).")],
):
    """Record one answer for a card outside a session."""
    with _handle_errors():
        parsed = parse_rating(rating)
        engine = _engine(ctx, **_overrides(ctx))
        try:
            state = engine.review_card(card_id, parsed)
        finally:
            engine.close()

    typer.echo(
        f"Card {card_id}: {state.state.name}, due {state.due.isoformat(timespec='minutes')}"
        f" ({state.scheduled_days} days)"
    )


def format_interval(delta: timedelta) -> str:
    """Compact label for the wait until a card is due again."""
    minutes = max(round(delta.total_seconds() / 60), 1)
    if minutes < 60:
        return f"{minutes}m"
    if minutes < 24 * 60:
        return f"{round(minutes / 60)}h"
    return f"{round(minutes / (24 * 60))}d"


def _show_card(engine, card: StudyCard, position: int) -> None:
    typer.secho(f"\n[{position}] {card.deck_name}", fg="cyan")
    if card.state != State.New:
        recall = engine.recall_probability(card.id)
        typer.secho(f"Recall estimate: {recall:.0%}", dim=True)
    typer.secho(card.front, bold=True)


def _show_choices(engine, card: StudyCard) -> None:
    now = utcnow()
    options = engine.preview_card(card.id, now=now)
    typer.echo(
        "  ".join(
            f"{rating.value} {rating.name.lower()} ({format_interval(state.due - now)})"
            for rating, state in options.items()
        )
    )


@app.command()
def study(
    ctx: typer.Context,
    deck: Annotated[int | None, typer.Option("--deck", help="Deck id to study.")] = None,
    mode: Annotated[
        StudyMode, typer.Option("--mode", help="Which cards to study.")
    ] = StudyMode.DUE,
    include_children: Annotated[
        bool, typer.Option("--include-children", help="Include sub-decks.")
    ] = False,
    new_limit: Annotated[int | None, typer.Option(help="Cap on new cards.")] = None,
    review_limit: Annotated[int | None, typer.Option(help="Cap on due cards.")] = None,
):
    """Run an interactive study session in the terminal."""
    with _handle_errors():
        engine = _engine(ctx, **_overrides(ctx))
        try:
            session = engine.start_session(
                deck_id=deck,
                mode=mode,
                include_children=include_children,
                new_limit=new_limit,
                review_limit=review_limit,
            )
            if session is None:
                typer.secho("Nothing to study right now.", fg="yellow")
                return

            card = session.current_card
            while card is not None:
                _show_card(engine, card, session.cards_reviewed + 1)
                typer.prompt("Press Enter to show the answer", default="", show_default=False)
                typer.echo(card.back)
                _show_choices(engine, card)

                answer = typer.prompt("Rating [1 again, 2 hard, 3 good, 4 easy, q quit]")
                if answer.strip().lower() == "q":
                    break
                try:
                    rating = parse_rating(answer)
                except InvalidRating as e:
                    typer.secho(humanize_error(e), fg="red")
                    continue
                card = engine.answer_current(session.id, rating)

            summary = session.summary()
            engine.end_session(session.id)
        finally:
            engine.close()

    typer.secho(f"\nReviewed {summary['cards_reviewed']} cards.", fg="green")


# ---------------------------------------------------------------------------
# Decks
# ---------------------------------------------------------------------------


@app.command()
def decks(ctx: typer.Context):
    """Show the deck tree."""
    with _handle_errors():
        engine = _engine(ctx, **_overrides(ctx))
        try:
            roots = engine.deck_tree()
        finally:
            engine.close()

    if not roots:
        typer.secho("No decks yet. Run 'flashdeck sync' first.", fg="yellow")
        return
    for root in roots:
        for node in iter_subtree(root):
            marker = "+" if node.deck.is_collection else "-"
            typer.echo(
                f"{'  ' * node.depth}{marker} {node.deck.name}"
                f"  [{node.deck.id}]  ({node.total_cards} cards)"
            )


@app.command()
def stats(
    ctx: typer.Context,
    deck_id: Annotated[int, typer.Argument(help="Deck id.")],
    include_children: Annotated[
        bool, typer.Option("--include-children", help="Include sub-decks.")
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Card counts for a deck."""
    with _handle_errors():
        engine = _engine(ctx, **_overrides(ctx))
        try:
            counts = engine.deck_stats(deck_id, include_children=include_children)
        finally:
            engine.close()

    if json_output:
        typer.echo(json.dumps(asdict(counts), indent=2))
        return
    typer.echo(f"Total: {counts.total_cards}")
    typer.echo(f"New: {counts.new_cards}")
    typer.echo(f"Learning: {counts.learning_cards}")
    typer.echo(f"Review: {counts.review_cards}")
    typer.secho(f"Due now: {counts.due_cards}", fg="green" if counts.due_cards else None)


@app.command()
def orphans(
    ctx: typer.Context,
    remove: Annotated[
        bool, typer.Option("--remove", help="Delete orphaned decks and their history.")
    ] = False,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Bypass confirmation for destructive actions.")
    ] = False,
):
    """List decks whose markdown source is gone."""
    with _handle_errors():
        engine = _engine(ctx, **_overrides(ctx))
        try:
            found = engine.find_orphaned_decks()
            if not found:
                typer.secho("No orphaned decks.", fg="green")
                return

            for deck in found:
                typer.echo(f"  [{deck.id}] {deck.name}  ({deck.source_path})")
            if not remove:
                return

            if not force and not typer.confirm(
                f"Delete {len(found)} decks together with their review history?"
            ):
                typer.secho("Aborted.", fg="yellow")
                raise typer.Exit(1)
            removed = engine.remove_orphaned_decks([deck.id for deck in found])
        finally:
            engine.close()

    typer.secho(f"Removed {removed} orphaned decks.", fg="green")


@app.command()
def dedupe(ctx: typer.Context):
    """Remove duplicate cards, keeping the oldest copy in each deck."""
    with _handle_errors():
        engine = _engine(ctx, **_overrides(ctx))
        try:
            removed = engine.remove_duplicate_cards()
        finally:
            engine.close()
    typer.secho(f"Removed {removed} duplicate cards.", fg="green")


@app.command("delete-deck")
def delete_deck(
    ctx: typer.Context,
    deck_id: Annotated[int, typer.Argument(help="Deck id.")],
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Bypass confirmation for destructive actions.")
    ] = False,
):
    """Delete a deck with its cards and history; sub-decks move to the top level."""
    if not force and not typer.confirm(f"Delete deck {deck_id} and its review history?"):
        typer.secho("Aborted.", fg="yellow")
        raise typer.Exit(1)

    with _handle_errors():
        engine = _engine(ctx, **_overrides(ctx))
        try:
            engine.delete_deck(deck_id)
        finally:
            engine.close()
    typer.secho(f"Deleted deck {deck_id}.", fg="green")


@app.command()
def export(
    ctx: typer.Context,
    deck_id: Annotated[int, typer.Argument(help="Deck id.")],
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Write to a file.")] = None,
):
    """Render a deck back to flashcard markdown."""
    with _handle_errors():
        engine = _engine(ctx, **_overrides(ctx))
        try:
            markdown = engine.export_deck(deck_id)
        finally:
            engine.close()

    if output:
        output.write_text(markdown + "\n", encoding="utf-8")
        typer.secho(f"Wrote {output}", fg="green")
    else:
        typer.echo(markdown)


@app.command("reset-history")
def reset_history(
    ctx: typer.Context,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Bypass confirmation for destructive actions.")
    ] = False,
):
    """Delete every review and return all cards to New."""
    if not force and not typer.confirm("This erases all study history. Continue?"):
        typer.secho("Aborted.", fg="yellow")
        raise typer.Exit(1)

    with _handle_errors():
        engine = _engine(ctx, **_overrides(ctx))
        try:
            engine.reset_history()
        finally:
            engine.close()
    typer.secho("Review history cleared.", fg="green")


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: Annotated[str | None, typer.Option(help="Interface to bind.")] = None,
    port: Annotated[int | None, typer.Option(help="Port to listen on.")] = None,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes.")] = False,
):
    """Run the local HTTP daemon for editor integrations."""
    import uvicorn

    config = resolve_config({"host": host, "port": port})
    typer.secho(f"Starting flashdeck server on {config.host}:{config.port}", fg="green")
    uvicorn.run("flashdeck.server:app", host=config.host, port=config.port, reload=reload)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))

"""Cadence CLI: root commands and the deck/card/config subgroups."""

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

import typer

from cadence.application.config import resolve_config
from cadence.application.factory import open_scheduler
from cadence.application.scheduler_service import SchedulerService
from cadence.application.utils.clock import format_duration
from cadence.domain.errors import NotFound, SchedulerError
from cadence.domain.models import Deck, Grade, make_content, revise_content

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="cadence: spaced-repetition scheduler for flashcard decks.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

deck_app = typer.Typer(help="Create and edit decks.", no_args_is_help=True)
app.add_typer(deck_app, name="deck")

card_app = typer.Typer(help="Add and edit cards.", no_args_is_help=True)
app.add_typer(card_app, name="card")

config_app = typer.Typer(help="Manage cadence configuration.")
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

_LOG_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG]


class GradeChoice(str, Enum):
    again = "again"
    hard = "hard"
    good = "good"
    easy = "easy"

    def to_grade(self) -> Grade:
        return Grade[self.name.upper()]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _open(ctx: typer.Context) -> SchedulerService:
    overrides = (ctx.obj or {}).get("overrides", {})
    return open_scheduler(resolve_config(overrides))


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Turn scheduler errors into a red message and exit code 1."""
    try:
        yield
    except (SchedulerError, ValueError) as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from None


def _resolve_deck(scheduler: SchedulerService, ref: str) -> Deck:
    """Accept either a deck id or a deck name."""
    try:
        return scheduler.get_deck(ref)
    except NotFound:
        deck = scheduler.find_deck(ref)
        if deck is None:
            raise
        return deck


def _policy_overrides(**options: Any) -> dict[str, Any]:
    return {k: v for k, v in options.items() if v is not None}


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


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
    ] = 0,
    data_file: Annotated[
        Path | None, typer.Option(help="Collection file. Defaults to config.")
    ] = None,
):
    """Global settings for cadence."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {"data_file": data_file, "verbose": verbose}
    logging.getLogger().setLevel(_LOG_LEVELS[min(verbose, len(_LOG_LEVELS) - 1)])


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="YAML deck file to import.")],
):
    """[bold green]Import[/bold green] cards from a YAML deck file."""
    from cadence.application.importer import import_deck_file

    with _handle_errors():
        scheduler = _open(ctx)
        result = import_deck_file(scheduler, path, _now())

    action = "Created" if result.created_deck else "Updated"
    typer.secho(f"{action} deck '{result.deck_name}' ({result.deck_id})", fg="green")
    typer.echo(f"Imported: {len(result.imported)}  Skipped: {len(result.skipped)}")


@app.command("queue")
def queue(
    ctx: typer.Context,
    decks: Annotated[list[str], typer.Argument(help="Deck ids or names, in priority order.")],
    limit: Annotated[int | None, typer.Option(help="Show at most this many cards.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show the review queue for one or more decks."""
    with _handle_errors():
        scheduler = _open(ctx)
        deck_ids = [_resolve_deck(scheduler, ref).id for ref in decks]
        card_ids = []
        for card_id in scheduler.iter_queue(deck_ids, _now()):
            if limit is not None and len(card_ids) >= limit:
                break
            card_ids.append(card_id)

        if json_output:
            _echo_json(card_ids)
            return

        if not card_ids:
            typer.secho("Nothing due.", fg="yellow")
            return

        for card_id in card_ids:
            card = scheduler.get_card(card_id)
            typer.echo(f"{card_id}  [{card.state.value}]  {card.content.front}")


@app.command()
def grade(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card to grade.")],
    answer: Annotated[GradeChoice, typer.Argument(help="again, hard, good or easy.")],
):
    """Grade a card and show when it is due next."""
    with _handle_errors():
        scheduler = _open(ctx)
        card = scheduler.grade_card(card_id, answer.to_grade(), _now())

    typer.echo(
        f"{card.id}: {card.state.value}, due {card.due_at.isoformat()} "
        f"(ease {card.ease_factor:.2f}, lapses {card.lapse_count})"
    )


@app.command()
def due(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card to look up.")],
):
    """Print when a card is next due."""
    with _handle_errors():
        scheduler = _open(ctx)
        typer.echo(scheduler.next_due(card_id).isoformat())


@app.command()
def reschedule(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card to reschedule.")],
    when: Annotated[datetime, typer.Argument(help="New due date (ISO 8601).")],
):
    """Explicitly move a card's due date."""
    with _handle_errors():
        scheduler = _open(ctx)
        card = scheduler.reschedule(card_id, when)
    typer.echo(f"{card.id}: due {card.due_at.isoformat()}")


@app.command()
def stats(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id or name.")],
    window: Annotated[int, typer.Option(help="Window in days for retention.")] = 30,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show retention, lapse rate and the due forecast for a deck."""
    with _handle_errors():
        scheduler = _open(ctx)
        deck_id = _resolve_deck(scheduler, deck).id
        report = scheduler.stats(deck_id, _now(), timedelta(days=window))

    if json_output:
        _echo_json(asdict(report))
        return

    typer.echo(f"Reviews ({window}d): {report.total_reviews}")
    typer.echo(f"Retention: {report.retention_rate:.1%}  Lapse rate: {report.lapse_rate:.1%}")
    typer.echo("Cards: " + "  ".join(f"{k}={v}" for k, v in report.state_counts.items()))
    typer.echo("Forecast: " + " ".join(str(n) for n in report.forecast))


@app.command()
def serve(
    port: Annotated[int, typer.Option(help="Port to bind the server to.")] = 8787,
    host: Annotated[str, typer.Option(help="Host to bind the server to.")] = "127.0.0.1",
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("cadence.server:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Deck subgroup
# ---------------------------------------------------------------------------


@deck_app.command("create")
def deck_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Deck name.")],
    description: Annotated[str | None, typer.Option(help="Optional description.")] = None,
    steps: Annotated[str | None, typer.Option(help="Learning steps, e.g. '1m 10m'.")] = None,
    new_per_day: Annotated[int | None, typer.Option(help="New cards per day.")] = None,
    reviews_per_day: Annotated[int | None, typer.Option(help="Max reviews per day.")] = None,
    relearn: Annotated[
        bool | None, typer.Option("--relearn/--no-relearn", help="Relearn lapsed cards.")
    ] = None,
):
    """Create a deck."""
    from cadence.application.importer import parse_policy

    with _handle_errors():
        scheduler = _open(ctx)
        policy = parse_policy(
            _policy_overrides(
                learning_steps=steps,
                new_cards_per_day=new_per_day,
                max_reviews_per_day=reviews_per_day,
                lapsed_cards_relearn=relearn,
            )
        )
        deck = scheduler.create_deck(name, _now(), policy=policy, description=description)
    typer.secho(f"Created deck '{deck.name}' ({deck.id})", fg="green")


@deck_app.command("policy")
def deck_policy(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id or name.")],
    steps: Annotated[str | None, typer.Option(help="Learning steps, e.g. '1m 10m'.")] = None,
    new_per_day: Annotated[int | None, typer.Option(help="New cards per day.")] = None,
    reviews_per_day: Annotated[int | None, typer.Option(help="Max reviews per day.")] = None,
    modifier: Annotated[float | None, typer.Option(help="Interval modifier.")] = None,
    lapse_ratio: Annotated[float | None, typer.Option(help="Lapse interval ratio.")] = None,
    relearn: Annotated[
        bool | None, typer.Option("--relearn/--no-relearn", help="Relearn lapsed cards.")
    ] = None,
):
    """Show or update a deck's policy."""
    from cadence.application.importer import parse_policy

    with _handle_errors():
        scheduler = _open(ctx)
        target = _resolve_deck(scheduler, deck)
        overrides = _policy_overrides(
            learning_steps=steps,
            new_cards_per_day=new_per_day,
            max_reviews_per_day=reviews_per_day,
            interval_modifier=modifier,
            lapse_interval_ratio=lapse_ratio,
            lapsed_cards_relearn=relearn,
        )
        if overrides:
            target = scheduler.update_policy(target.id, parse_policy(overrides, base=target.policy))

    policy = target.policy
    typer.echo(f"Deck: {target.name} ({target.id})")
    typer.echo("Learning steps: " + " ".join(format_duration(s) for s in policy.learning_steps))
    typer.echo(f"New/day: {policy.new_cards_per_day}  Reviews/day: {policy.max_reviews_per_day}")
    typer.echo(
        f"Interval modifier: {policy.interval_modifier}  "
        f"Lapse ratio: {policy.lapse_interval_ratio}  Relearn: {policy.lapsed_cards_relearn}"
    )


@deck_app.command("edit")
def deck_edit(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id or name.")],
    name: Annotated[str | None, typer.Option(help="New deck name.")] = None,
    description: Annotated[str | None, typer.Option(help="New description.")] = None,
):
    """Rename a deck or change its description."""
    with _handle_errors():
        scheduler = _open(ctx)
        target = scheduler.update_deck(
            _resolve_deck(scheduler, deck).id, name=name, description=description
        )
    typer.echo(f"Deck: {target.name} ({target.id})")
    if target.description:
        typer.echo(f"Description: {target.description}")


@deck_app.command("list")
def deck_list(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """List decks."""
    with _handle_errors():
        scheduler = _open(ctx)
        decks = scheduler.list_decks()

    if json_output:
        _echo_json([{"id": d.id, "name": d.name, "cards": len(d.card_ids)} for d in decks])
        return
    if not decks:
        typer.secho("No decks.", fg="yellow")
        return
    for d in decks:
        typer.echo(f"{d.id}  {d.name}  ({len(d.card_ids)} cards)")


# ---------------------------------------------------------------------------
# Card subgroup
# ---------------------------------------------------------------------------


@card_app.command("add")
def card_add(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id or name.")],
    front: Annotated[str, typer.Argument(help="Front text.")],
    back: Annotated[str, typer.Argument(help="Back text.")],
    tag: Annotated[list[str] | None, typer.Option(help="Tag (repeatable).")] = None,
    image: Annotated[str | None, typer.Option(help="Image reference.")] = None,
):
    """Add a new card to a deck."""
    with _handle_errors():
        scheduler = _open(ctx)
        deck_id = _resolve_deck(scheduler, deck).id
        content = make_content(front, back, image)
        card = scheduler.add_card(deck_id, content, _now(), tags=tag or [])
    typer.echo(card.id)


@card_app.command("edit")
def card_edit(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card to edit.")],
    front: Annotated[str | None, typer.Option(help="New front text.")] = None,
    back: Annotated[str | None, typer.Option(help="New back text.")] = None,
    image: Annotated[str | None, typer.Option(help="New image reference.")] = None,
    tag: Annotated[
        list[str] | None, typer.Option(help="Replace the card's tags (repeatable).")
    ] = None,
    clear_tags: Annotated[bool, typer.Option("--clear-tags", help="Remove all tags.")] = False,
):
    """Edit a card's content or tags without touching its schedule."""
    with _handle_errors():
        scheduler = _open(ctx)
        content = None
        if front is not None or back is not None or image:
            current = scheduler.get_card(card_id).content
            content = revise_content(current, front=front, back=back, image_path=image)
        tags = [] if clear_tags else tag
        card = scheduler.edit_card(card_id, content=content, tags=tags)
    typer.echo(f"{card.id}  {card.content.front} / {card.content.back}  tags={list(card.tags)}")


@card_app.command("move")
def card_move(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card to move.")],
    deck: Annotated[str, typer.Argument(help="Target deck id or name.")],
):
    """Move a card to another deck."""
    with _handle_errors():
        scheduler = _open(ctx)
        card = scheduler.move_card(card_id, _resolve_deck(scheduler, deck).id)
    typer.echo(f"{card.id} -> {card.deck_id}")


@card_app.command("list")
def card_list(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id or name.")],
    last_grade: Annotated[
        GradeChoice | None, typer.Option(help="Only cards last graded this way.")
    ] = None,
):
    """List a deck's cards, optionally by their most recent grade."""
    with _handle_errors():
        scheduler = _open(ctx)
        deck_id = _resolve_deck(scheduler, deck).id
        if last_grade is None:
            cards = scheduler.cards_in_deck(deck_id)
        else:
            cards = scheduler.cards_by_last_grade(deck_id, last_grade.to_grade())

    for card in cards:
        typer.echo(
            f"{card.id}  [{card.state.value}]  due {card.due_at.date().isoformat()}  "
            f"{card.content.front}"
        )


@card_app.command("history")
def card_history(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card to inspect.")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show a card's review history."""
    with _handle_errors():
        scheduler = _open(ctx)
        events = scheduler.history(card_id)

    if json_output:
        _echo_json([asdict(e) for e in events])
        return
    for e in events:
        typer.echo(
            f"{e.timestamp.isoformat()}  {e.grade.name.lower():<5}  "
            f"{e.prior_state.value} -> {e.resulting_state.value}  "
            f"interval={e.resulting_interval:.2f} ease={e.resulting_ease:.2f}"
        )


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    overrides = (ctx.obj or {}).get("overrides", {})
    config = resolve_config(overrides)
    _echo_json(config.model_dump(mode="json"))

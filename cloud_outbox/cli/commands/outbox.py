"""Operator commands for the transactional outbox.

Example:bash
    # Inspect dead-lettered events
    cloud-outbox outbox failed --limit 20

    # Replay two events, or every failed event
    cloud-outbox outbox replay 0192f3c4-... 0192f3c5-...
    cloud-outbox outbox replay --all --yes

    # Row counts per status
    cloud-outbox outbox stats --json

    # Recover claims of a crashed relay, run retention now
    cloud-outbox outbox release-stale --stale-after 120
    cloud-outbox outbox sweep --retention-days 7
"""

from __future__ import annotations

import json
import uuid
from datetime import timedelta

import click

from cloud_outbox.cli.utils import coro, database_context, header, info, success, table, warning
from cloud_outbox.core.settings import get_outbox_settings
from cloud_outbox.infra.events.outbox.repository import OutboxRepository
from cloud_outbox.infra.events.outbox.sweeper import RetentionSweeper


def _parse_ids(values: tuple[str, ...]) -> list[uuid.UUID]:
    ids = []
    for value in values:
        try:
            ids.append(uuid.UUID(value))
        except ValueError:
            msg = f"Invalid event id: {value}"
            raise click.BadParameter(msg, param_hint="EVENT_IDS") from None
    return list(dict.fromkeys(ids))


@click.group(name="outbox")
def outbox() -> None:
    """Inspect and repair the event outbox."""


@outbox.command()
@click.option("--limit", default=50, show_default=True, type=click.IntRange(1, 1000), help="Maximum events to show.")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table.")
@coro
async def failed(limit: int, as_json: bool) -> None:
    """List dead-lettered events, newest first."""
    async with database_context() as ctx:
        events = await OutboxRepository().list_failed(ctx, limit=limit)

    if as_json:
        click.echo(
            json.dumps(
                [
                    {
                        "id": str(e.id),
                        "topic": e.topic,
                        "event_type": e.event_type,
                        "retry_count": e.retry_count,
                        "last_error": e.last_error,
                        "created_at": e.created_at.isoformat(),
                    }
                    for e in events
                ],
                indent=2,
            )
        )
        return

    if not events:
        success("No failed events")
        return

    header(f"Failed events ({len(events)})")
    table(
        [
            (e.id, e.topic, e.event_type, e.retry_count, e.created_at.isoformat(timespec="seconds"), (e.last_error or "")[:60])
            for e in events
        ],
        headers=["ID", "TOPIC", "TYPE", "RETRIES", "CREATED", "LAST ERROR"],
    )


@outbox.command()
@click.argument("event_ids", nargs=-1)
@click.option("--all", "replay_all", is_flag=True, help="Replay every failed event.")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation with --all.")
@coro
async def replay(event_ids: tuple[str, ...], replay_all: bool, yes: bool) -> None:
    """Reset failed events to pending with a fresh retry budget.

    Replayed events keep their ids, so consumers still deduplicate them.
    """
    if bool(event_ids) == replay_all:
        msg = "Pass event ids or --all (not both)"
        raise click.UsageError(msg)

    ids = None if replay_all else _parse_ids(event_ids)
    if replay_all and not yes and not click.confirm("Replay every failed event?"):
        warning("Aborted")
        return

    async with database_context() as ctx:
        replayed = await OutboxRepository().replay_failed(ctx, ids)

    if ids is not None and replayed < len(ids):
        warning(f"{len(ids) - replayed} id(s) were not failed events and were skipped")
    success(f"Replayed {replayed} event(s)")


@outbox.command()
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table.")
@coro
async def stats(as_json: bool) -> None:
    """Show row counts per status."""
    async with database_context() as ctx:
        counts = await OutboxRepository().count_by_status(ctx)

    if as_json:
        click.echo(json.dumps({status.value: count for status, count in counts.items()}, indent=2))
        return

    header("Outbox")
    table([(status.value, count) for status, count in counts.items()], headers=["STATUS", "COUNT"])
    info(f"Total: {sum(counts.values())}")


@outbox.command("release-stale")
@click.option(
    "--stale-after",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds a claim may be held (default: OUTBOX_STALE_AFTER).",
)
@coro
async def release_stale(stale_after: float | None) -> None:
    """Return events stuck in processing to pending."""
    seconds = stale_after if stale_after is not None else get_outbox_settings().stale_after
    async with database_context() as ctx:
        released = await OutboxRepository().release_stale_processing(ctx, timedelta(seconds=seconds))
    success(f"Released {released} stale claim(s) older than {seconds:g}s")


@outbox.command()
@click.option(
    "--retention-days",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Keep published events this long (default: OUTBOX_RETENTION_DAYS).",
)
@coro
async def sweep(retention_days: float | None) -> None:
    """Delete published events past retention now."""
    days = retention_days if retention_days is not None else float(get_outbox_settings().retention_days)
    async with database_context() as ctx:
        deleted = await RetentionSweeper(ctx, retention=timedelta(days=days)).sweep()
    success(f"Deleted {deleted} published event(s) older than {days:g} day(s)")

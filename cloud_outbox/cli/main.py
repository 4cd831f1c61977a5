"""Main CLI entry point for cloud-outbox management commands."""

from __future__ import annotations

import click

from cloud_outbox import __version__
from cloud_outbox.cli.commands import db, outbox, relay, server
from cloud_outbox.infra.logging.config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="cloud-outbox")
@click.option(
    "--database-url",
    envvar="CLOUD_OUTBOX_DATABASE_URL",
    default=None,
    help="SQLAlchemy async URL overriding the DB_* settings.",
)
@click.pass_context
def cli(ctx: click.Context, database_url: str | None) -> None:
    """cloud-outbox: transactional outbox relay and operator tooling.

    \b
    Command Groups:
      db      Database connectivity and migrations
      relay   Run the outbox relay dispatcher
      outbox  Inspect and repair outbox events

    \b
    Quick Start:
      cloud-outbox db upgrade            # Apply migrations
      cloud-outbox relay run             # Publish pending events
      cloud-outbox outbox stats          # Row counts per status
      cloud-outbox outbox replay --all   # Retry dead-lettered events
    """
    ctx.ensure_object(dict)
    if database_url:
        from cloud_outbox.infra.database.session import configure_database

        configure_database(database_url)
        ctx.obj["database_url"] = database_url


cli.add_command(db.db)
cli.add_command(relay.relay)
cli.add_command(outbox.outbox)
cli.add_command(server.serve)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()

"""Database management commands.

Example:bash
    # Check connectivity (and create tables for local SQLite runs)
    cloud-outbox db init --create-tables

    # Apply migrations
    cloud-outbox db upgrade
"""

from __future__ import annotations

from pathlib import Path

import click

from cloud_outbox.cli.utils import coro, error, info, success
from cloud_outbox.infra.database.session import close_database, get_engine, init_database

ALEMBIC_INI = Path(__file__).resolve().parents[3] / "alembic.ini"


@click.group(name="db")
def db() -> None:
    """Database management commands."""


@db.command()
@click.option("--create-tables", is_flag=True, help="Create missing tables from the models.")
@coro
async def init(create_tables: bool) -> None:
    """Verify connectivity, optionally creating tables."""
    info(f"Connecting to: {get_engine().url.render_as_string(hide_password=True)}")
    try:
        await init_database(create_tables=create_tables)
    except Exception as e:
        error(f"Database connection failed: {e}")
        raise SystemExit(1) from e
    finally:
        await close_database()

    success("Database connected successfully!")
    if create_tables:
        success("Tables created")


@db.command()
@click.option("--revision", default="head", show_default=True, help="Target revision.")
def upgrade(revision: str) -> None:
    """Apply alembic migrations."""
    from alembic import command
    from alembic.config import Config

    if not ALEMBIC_INI.exists():
        error(f"alembic.ini not found at {ALEMBIC_INI}")
        raise SystemExit(1)

    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    url = get_engine().url
    config.set_main_option(
        "sqlalchemy.url", url.render_as_string(hide_password=False).replace("%", "%%")
    )
    info(f"Upgrading {url.render_as_string(hide_password=True)} to {revision}")
    command.upgrade(config, revision)
    success("Migrations applied")

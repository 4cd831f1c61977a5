"""Output formatting utilities for CLI commands."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import click


def success(message: str) -> None:
    click.secho(f"✓ {message}", fg="green")


def error(message: str) -> None:
    click.secho(f"✗ {message}", fg="red", err=True)


def warning(message: str) -> None:
    click.secho(f"⚠ {message}", fg="yellow")


def info(message: str) -> None:
    click.secho(f"ℹ {message}", fg="blue")


def header(message: str) -> None:
    click.secho(f"\n{message}", fg="cyan", bold=True)


def table(rows: Sequence[Sequence[Any]], headers: Sequence[str]) -> None:
    """Print rows as a left-aligned plain-text table."""
    cells = [[str(h) for h in headers], *([("" if v is None else str(v)) for v in row] for row in rows)]
    widths = [max(len(row[i]) for row in cells) for i in range(len(headers))]

    def _line(row: Sequence[str]) -> str:
        return "  ".join(value.ljust(width) for value, width in zip(row, widths, strict=True)).rstrip()

    click.secho(_line(cells[0]), bold=True)
    click.echo("  ".join("-" * width for width in widths))
    for row in cells[1:]:
        click.echo(_line(row))


__all__ = ["error", "header", "info", "success", "table", "warning"]

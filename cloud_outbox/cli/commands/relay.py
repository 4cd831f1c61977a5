"""Standalone relay process.

Run any number of these next to (or instead of) the dispatcher embedded
in the API; the atomic claim keeps them from publishing the same event
twice in one round.

Example:bash
    cloud-outbox relay run
    cloud-outbox relay run --once
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

import click
from pydantic import ValidationError

from cloud_outbox.cli.utils import coro, database_context, error, info, success
from cloud_outbox.core.settings import OutboxSettings, get_outbox_settings
from cloud_outbox.infra.events.outbox.dispatcher import OutboxDispatcher
from cloud_outbox.infra.messaging.broker import broker_context, get_exchange
from cloud_outbox.infra.messaging.publisher import RabbitPublisher

logger = logging.getLogger(__name__)


@click.group(name="relay")
def relay() -> None:
    """Run the outbox relay dispatcher."""


@relay.command()
@click.option("--once", is_flag=True, help="Dispatch a single batch and exit.")
@click.option("--batch-size", type=click.IntRange(1, 1000), default=None, help="Override OUTBOX_BATCH_SIZE.")
@coro
async def run(once: bool, batch_size: int | None) -> None:
    """Publish pending outbox events until interrupted."""
    settings = get_outbox_settings()
    if batch_size is not None:
        try:
            settings = OutboxSettings.model_validate({**settings.model_dump(), "batch_size": batch_size})
        except ValidationError as e:
            raise click.BadParameter(str(e), param_hint="--batch-size") from None

    async with database_context() as ctx, broker_context() as broker:
        if broker is None:
            error("RabbitMQ is not configured (RABBIT_ENABLED / AMQP_URI)")
            raise SystemExit(1)

        dispatcher = OutboxDispatcher(ctx, RabbitPublisher(broker, exchange=get_exchange()), settings=settings)

        if once:
            result = await dispatcher.run_once()
            success(
                f"Claimed {result.claimed}: {result.published} published, "
                f"{result.retried} retried, {result.dead_lettered} dead-lettered"
            )
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop.set)

        await dispatcher.start()
        info(f"Relay {dispatcher.dispatcher_id} running (Ctrl+C to stop)")
        try:
            await stop.wait()
        finally:
            await dispatcher.stop()
        success("Relay stopped")

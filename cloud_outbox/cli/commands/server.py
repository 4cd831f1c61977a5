"""API server command."""

from __future__ import annotations

import click

from cloud_outbox.core.settings import get_app_settings


@click.command()
@click.option("--host", default=None, help="Bind address (default: APP_HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: APP_PORT).")
@click.option("--reload", is_flag=True, help="Reload on code changes (development only).")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the API with the embedded relay dispatcher and sweeper."""
    import uvicorn

    app_settings = get_app_settings()
    uvicorn.run(
        "cloud_outbox.app.main:create_app",
        factory=True,
        host=host or app_settings.host,
        port=port or app_settings.port,
        reload=reload,
        log_config=None,  # logging is configured by the app lifespan
    )

"""Health and Prometheus endpoints.

Endpoints:
    GET /health  - Database and broker reachability
    GET /metrics - Prometheus scrape endpoint for the outbox registry
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from cloud_outbox.infra.database.session import get_engine
from cloud_outbox.infra.events.outbox.dispatcher import get_outbox_dispatcher
from cloud_outbox.infra.messaging.broker import check_broker_health
from cloud_outbox.infra.metrics.prometheus import REGISTRY

router = APIRouter(tags=["observability"])
logger = logging.getLogger(__name__)


@router.get("/health")
async def health() -> JSONResponse:
    """Report component health.

    Only the database is critical: without the broker, producers keep
    working and events wait in the outbox.
    """
    checks: dict[str, Any] = {}
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as e:
        logger.warning("Database health check failed", extra={"error": str(e)})
        checks["database"] = {"status": "unhealthy", "error": str(e)}

    checks["broker"] = check_broker_health()
    dispatcher = get_outbox_dispatcher()
    checks["dispatcher"] = {"running": dispatcher is not None and dispatcher.running}

    healthy = checks["database"]["status"] == "healthy"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "healthy" if healthy else "unhealthy", "checks": checks},
    )


@router.get("/metrics")
async def metrics() -> Response:
    """Expose outbox metrics in Prometheus text format."""
    data = generate_latest(REGISTRY)
    return Response(
        content=data,
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )


__all__ = ["router"]

"""Tests for the outbox operator endpoints."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from cloud_outbox.app.main import create_app
from cloud_outbox.core.database import generate_uuid7, utcnow
from cloud_outbox.features.outbox_admin.dependencies import get_ctx, get_outbox_repository, get_settings
from cloud_outbox.infra.events.outbox.models import OutboxStatus
from cloud_outbox.infra.events.outbox.repository import OutboxRepository
from tests.utils import fetch_event, seed_event

ADMIN = "/api/v1/admin/outbox"


@pytest.fixture
def app(ctx, outbox_settings) -> FastAPI:
    """Application bound to the test database."""
    app = create_app()
    app.dependency_overrides[get_ctx] = lambda: ctx
    app.dependency_overrides[get_settings] = lambda: outbox_settings
    return app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _seed_failed(ctx, **fields):
    return await seed_event(
        ctx,
        status=OutboxStatus.FAILED,
        retry_count=3,
        last_error="broker unavailable",
        **fields,
    )


# ──────────────────────────────────────────────────────────────
# Failed events
# ──────────────────────────────────────────────────────────────


class TestListFailed:
    async def test_lists_only_failed_events_newest_first(self, client, ctx):
        now = utcnow()
        older = await _seed_failed(ctx, created_at=now - timedelta(minutes=2))
        newer = await _seed_failed(ctx, created_at=now - timedelta(minutes=1))
        await seed_event(ctx, status=OutboxStatus.PENDING)

        response = await client.get(f"{ADMIN}/failed")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [item["id"] for item in data["items"]] == [str(newer.id), str(older.id)]
        assert data["items"][0]["last_error"] == "broker unavailable"
        assert data["items"][0]["status"] == "failed"

    async def test_limit_is_validated(self, client):
        response = await client.get(f"{ADMIN}/failed", params={"limit": 0})

        assert response.status_code == 422
        assert response.headers["content-type"] == "application/problem+json"


class TestReplay:
    async def test_replay_all(self, client, ctx):
        first = await _seed_failed(ctx)
        second = await _seed_failed(ctx)

        response = await client.post(f"{ADMIN}/replay")

        assert response.status_code == 200
        assert response.json() == {"replayed": 2}
        for event_id in (first.id, second.id):
            event = await fetch_event(ctx, event_id)
            assert event.status is OutboxStatus.PENDING
            assert event.retry_count == 0

    async def test_replay_selected_ids(self, client, ctx):
        chosen = await _seed_failed(ctx)
        other = await _seed_failed(ctx)

        response = await client.post(f"{ADMIN}/replay", json={"ids": [str(chosen.id)]})

        assert response.json() == {"replayed": 1}
        assert (await fetch_event(ctx, chosen.id)).status is OutboxStatus.PENDING
        assert (await fetch_event(ctx, other.id)).status is OutboxStatus.FAILED

    async def test_replay_empty_id_list(self, client, ctx):
        await _seed_failed(ctx)

        response = await client.post(f"{ADMIN}/replay", json={"ids": []})

        assert response.json() == {"replayed": 0}

    async def test_replay_single_event(self, client, ctx):
        event = await _seed_failed(ctx)

        response = await client.post(f"{ADMIN}/failed/{event.id}/replay")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == str(event.id)
        assert data["status"] == "pending"
        assert data["retry_count"] == 0
        assert data["last_error"] == "broker unavailable"

    async def test_replay_single_missing_event(self, client):
        response = await client.post(f"{ADMIN}/failed/{generate_uuid7()}/replay")

        assert response.status_code == 404
        assert response.headers["content-type"] == "application/problem+json"
        assert response.json()["type"] == "eventoutbox-not-found"

    async def test_replay_single_event_that_is_not_failed(self, client, ctx):
        event = await seed_event(ctx, status=OutboxStatus.PUBLISHED, published_at=utcnow())

        response = await client.post(f"{ADMIN}/failed/{event.id}/replay")

        assert response.status_code == 409
        problem = response.json()
        assert problem["type"] == "outbox-event-not-failed"
        assert problem["status"] == 409
        assert problem["event_id"] == str(event.id)
        assert problem["current_status"] == "published"

    async def test_replay_single_event_lost_to_concurrent_replay(self, app, client, ctx):
        """Another operator replays the event between the status check and the update."""
        event = await _seed_failed(ctx)

        class RacingRepository(OutboxRepository):
            async def replay_failed(self, ctx, ids=None, *, now=None):
                await super().replay_failed(ctx, ids, now=now)
                return await super().replay_failed(ctx, ids, now=now)

        app.dependency_overrides[get_outbox_repository] = RacingRepository

        response = await client.post(f"{ADMIN}/failed/{event.id}/replay")

        assert response.status_code == 409
        problem = response.json()
        assert problem["type"] == "outbox-event-not-failed"
        assert problem["current_status"] == "pending"


# ──────────────────────────────────────────────────────────────
# Stats and maintenance
# ──────────────────────────────────────────────────────────────


class TestStats:
    async def test_counts_every_status(self, client, ctx):
        await seed_event(ctx, status=OutboxStatus.PENDING)
        await seed_event(ctx, status=OutboxStatus.PENDING)
        await _seed_failed(ctx)

        response = await client.get(f"{ADMIN}/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["counts"] == {"pending": 2, "processing": 0, "published": 0, "failed": 1}
        assert data["total"] == 3
        assert data["dispatcher_running"] is False
        assert data["sweeper_running"] is False


class TestMaintenance:
    async def test_release_stale_uses_configured_threshold(self, client, ctx):
        now = utcnow()
        stuck = await seed_event(ctx, status=OutboxStatus.PROCESSING, claimed_at=now - timedelta(minutes=5))
        fresh = await seed_event(ctx, status=OutboxStatus.PROCESSING, claimed_at=now)

        response = await client.post(f"{ADMIN}/release-stale")

        assert response.json() == {"released": 1, "stale_after_seconds": 60.0}
        assert (await fetch_event(ctx, stuck.id)).status is OutboxStatus.PENDING
        assert (await fetch_event(ctx, fresh.id)).status is OutboxStatus.PROCESSING

    async def test_release_stale_threshold_override(self, client, ctx):
        await seed_event(ctx, status=OutboxStatus.PROCESSING, claimed_at=utcnow() - timedelta(seconds=30))

        response = await client.post(f"{ADMIN}/release-stale", params={"stale_after_seconds": 10})

        assert response.json()["released"] == 1

    async def test_sweep(self, client, ctx):
        now = utcnow()
        await seed_event(ctx, status=OutboxStatus.PUBLISHED, published_at=now - timedelta(days=40))
        await seed_event(ctx, status=OutboxStatus.PUBLISHED, published_at=now - timedelta(days=1))

        response = await client.post(f"{ADMIN}/sweep")

        assert response.status_code == 200
        assert response.json() == {"deleted": 1, "retention_days": 30.0}

    async def test_sweep_retention_override(self, client, ctx):
        await seed_event(ctx, status=OutboxStatus.PUBLISHED, published_at=utcnow() - timedelta(days=2))

        response = await client.post(f"{ADMIN}/sweep", params={"retention_days": 1})

        assert response.json() == {"deleted": 1, "retention_days": 1.0}

"""Transactional outbox: store, relay dispatcher and retention sweeper.

Producers write events to the outbox inside their own transaction; the
dispatcher publishes them afterwards, so a committed change is never
missing its event and a rolled-back change never emits one.
"""

from __future__ import annotations

from .backoff import retry_delay
from .dispatcher import (
    DispatchResult,
    OutboxDispatcher,
    get_outbox_dispatcher,
    start_outbox_dispatcher,
    stop_outbox_dispatcher,
)
from .models import EventOutbox, OutboxStatus
from .repository import OutboxRepository, RetryOutcome
from .sweeper import (
    RetentionSweeper,
    get_retention_sweeper,
    start_retention_sweeper,
    stop_retention_sweeper,
)

__all__ = [
    "DispatchResult",
    "EventOutbox",
    "OutboxDispatcher",
    "OutboxRepository",
    "OutboxStatus",
    "RetentionSweeper",
    "RetryOutcome",
    "get_outbox_dispatcher",
    "get_retention_sweeper",
    "retry_delay",
    "start_outbox_dispatcher",
    "start_retention_sweeper",
    "stop_outbox_dispatcher",
    "stop_retention_sweeper",
]

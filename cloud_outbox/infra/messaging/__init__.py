"""Message bus integration (RabbitMQ through FastStream)."""

from __future__ import annotations

from .publisher import PublishError, Publisher, RabbitPublisher

__all__ = ["PublishError", "Publisher", "RabbitPublisher"]

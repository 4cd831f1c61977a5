"""Database repository and transaction exceptions.

Custom exceptions for repository operations that provide better
error messages and typing than raw SQLAlchemy exceptions. Storage
failures (connection loss, timeouts) are not wrapped: they surface as
the SQLAlchemy error so callers can tell them apart from logic errors.
"""
from __future__ import annotations

from typing import Any


class RepositoryError(Exception):
    """Base exception for repository operations."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize repository error.

        Args:
            message: Error description
            details: Additional context about the error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class NotFoundError(RepositoryError):
    """Entity not found in database.

    Attributes:
        model_name: Name of the model class that wasn't found
        identifier: The key/value that was searched for
    """

    def __init__(self, model_name: str, identifier: dict[str, Any]):
        self.model_name = model_name
        self.identifier = identifier

        id_str = ", ".join(f"{k}={v!r}" for k, v in identifier.items())
        super().__init__(f"{model_name} not found with {id_str}", details={"model": model_name, **identifier})

    def __repr__(self) -> str:
        return f"NotFoundError(model={self.model_name!r}, identifier={self.identifier!r})"


class InvalidTransitionError(RepositoryError):
    """A status change was requested from a state that does not allow it.

    Raised, for example, when an outbox event is acknowledged twice: the
    second acknowledgement finds the event already ``published`` rather
    than ``processing``.

    Attributes:
        entity_id: Identifier of the entity whose transition was rejected
        expected: Status the entity had to be in
        target: Status the caller asked for
    """

    def __init__(self, model_name: str, entity_id: Any, *, expected: str, target: str):
        self.entity_id = entity_id
        self.expected = expected
        self.target = target
        super().__init__(
            f"{model_name} cannot move to {target!r}: not currently {expected!r}",
            details={"model": model_name, "id": str(entity_id)},
        )


class TransactionError(RepositoryError):
    """Misuse of the transaction scope (e.g., beginning twice on one context)."""


class NoActiveTransactionError(TransactionError):
    """An operation needs an active transaction but the context carries none."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"{operation} requires an active transaction",
            details={"operation": operation},
        )


__all__ = [
    "InvalidTransitionError",
    "NoActiveTransactionError",
    "NotFoundError",
    "RepositoryError",
    "TransactionError",
]

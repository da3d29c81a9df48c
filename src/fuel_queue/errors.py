"""Error taxonomy for queue operations.

Every failure surfaced to a dashboard or tracker carries a stable ``code``
and a human readable ``message``. ``to_message()`` renders the same error
envelope used on the wire.
"""

from __future__ import annotations

from typing import Any, ClassVar


class QueueError(Exception):
    """Base class for all queue failures."""

    code: ClassVar[str] = "queue_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class ValidationError(QueueError):
    """Malformed input, rejected before the store is touched."""

    code = "validation_error"


class InvalidAmount(ValidationError):
    """Requested or served litres are missing or not positive."""

    code = "invalid_amount"


class InvalidTransition(QueueError):
    """Action does not apply to the entry's current status."""

    code = "invalid_transition"


class NotFound(QueueError):
    """Referenced queue entry does not exist."""

    code = "not_found"


class StoreFailure(QueueError):
    """The record store failed (connection, permission, constraint)."""

    code = "store_failure"


class PositionConflict(StoreFailure):
    """Another request took the queue position being inserted."""

    code = "position_conflict"

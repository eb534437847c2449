"""Queue errors and the shared error envelope.

The controller raises `QueueError` subclasses; the request surface turns them
into `ErrorResponse` messages so every reply has the same shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str
    status: int = 400

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {
            "type": "error",
            "code": self.code,
            "message": self.message,
            "status": self.status,
        }
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class QueueError(Exception):
    """Base class for errors surfaced by the queue engine."""

    code = "queue_error"
    status = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, self.message, self.status)


class NotFound(QueueError):
    code = "not_found"
    status = 404


class InvalidTransition(QueueError):
    code = "invalid_transition"
    status = 400


class ValidationError(QueueError):
    code = "validation_error"
    status = 400


class DuplicateId(QueueError):
    code = "duplicate_id"
    status = 409

"""Shared error types and the error envelope.

Every desk operation fails in one of three ways:
- validation: required input missing or malformed
- conflict: the operation is not valid in the current queue state
- not found: unknown station or ticket

The HTTP API and the MQTT service both turn these into the same body shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class QueueError(Exception):
    """Base class for errors raised by queue operations.

    Raising one never leaves a partial state change behind.
    """

    code = "error"
    status_code = 500

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, self.message)


class ValidationError(QueueError):
    code = "bad_request"
    status_code = 400


class ConflictError(QueueError):
    code = "conflict"
    status_code = 409


class NotFoundError(QueueError):
    code = "not_found"
    status_code = 404

"""
Error taxonomy for the task board.

Request-facing errors (validation, not-found, conflict, authorization) carry an
HTTP status and structured details and are rendered by `taskboard_error_handler`.
Delivery errors belong to the webhook dispatcher: they are recorded on the
delivery row and never reach the request that triggered the dispatch.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class TaskBoardError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "status": self.status_code,
                **self.details,
            }
        }


class ValidationError(TaskBoardError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)


class AuthorizationError(TaskBoardError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(TaskBoardError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(TaskBoardError):
    """Cyclic/duplicate edges and guarded status transitions.

    Details carry the offending entities (``blockers``, ``incomplete_subtasks``)
    so callers know what to resolve first.
    """

    status_code = 409
    code = "CONFLICT"


# ---------------------------------------------------------------------------
# Webhook delivery (internal to the dispatcher)
# ---------------------------------------------------------------------------


class DeliveryError(Exception):
    """Base for webhook delivery failures."""


class TransientDeliveryError(DeliveryError):
    """Non-2xx response or network failure; the delivery will be retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TerminalDeliveryError(DeliveryError):
    """Retries exhausted; recorded on the delivery row as its final error."""

    def __init__(self, cause: TransientDeliveryError, attempts: int):
        super().__init__(f"{cause} after {attempts} attempts")
        self.status_code = cause.status_code
        self.attempts = attempts


async def taskboard_error_handler(request: Request, exc: TaskBoardError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

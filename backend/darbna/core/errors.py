"""Error taxonomy for the SOS subsystem and the FastAPI handlers that render it.

Every state-changing operation either succeeds or raises one of the
``DarbnaError`` subclasses below; the handlers turn them into JSON responses.
``DeliveryError`` is the exception: notification failures are logged at the
fan-out boundary and never reach a request.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DarbnaError(Exception):
    """Base exception for all application errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def body(self) -> dict[str, Any]:
        return {"detail": self.message}


class ValidationError(DarbnaError):
    """Bad input. No state was changed."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DarbnaError):
    """Unknown alert or user."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str) -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class AuthorizationError(DarbnaError):
    """The caller is not allowed to perform this transition."""

    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(DarbnaError):
    """Invalid state transition: double resolve, duplicate or self help."""

    status_code = status.HTTP_400_BAD_REQUEST


class RateLimitError(DarbnaError):
    """SOS cooldown still running for this user."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, seconds_remaining: int) -> None:
        minutes = max(1, -(-seconds_remaining // 60))
        super().__init__(f"Rate limit: {minutes} minute(s) remaining.")
        self.seconds_remaining = seconds_remaining

    def body(self) -> dict[str, Any]:
        return {"detail": self.message, "secondsRemaining": self.seconds_remaining}


class DeliveryError(DarbnaError):
    """A notification could not be delivered on one channel."""

    def __init__(self, channel: str, message: str) -> None:
        super().__init__(f"{channel} delivery failed: {message}")
        self.channel = channel


def register_error_handlers(app: FastAPI) -> None:
    """Register the exception handlers on the FastAPI app."""

    @app.exception_handler(DarbnaError)
    async def handle_darbna_error(request: Request, exc: DarbnaError) -> JSONResponse:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
        headers = None
        if isinstance(exc, RateLimitError):
            headers = {"Retry-After": str(exc.seconds_remaining)}
        return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=headers)

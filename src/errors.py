"""Error taxonomy and the FastAPI handlers that render it.

Services raise AppError subclasses close to where the problem is detected;
the handlers turn them into `{"success": false, "error": ...}` responses
with the status code carried by the class. Anything else becomes a generic
500 with the full traceback logged server-side.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base for errors that map to a client-visible response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class InvalidInput(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class InternalError(AppError):
    pass


class RateLimited(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests"

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


# ── Channel / provider errors ────────────────────────────────────────


class ChannelUnavailable(AppError):
    """The provider behind a channel is not configured."""

    default_message = "Notification channel not configured"


class InvalidRecipient(AppError):
    """The recipient has no usable contact information for the channel."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Recipient has no contact information"


class ProviderError(AppError):
    """An upstream provider rejected or failed a request.

    `code` is the provider's own error code when it supplied one. The
    message is user-facing by the time it reaches an HTTP response.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Provider request failed"

    def __init__(
        self,
        message: str | None = None,
        code: int | None = None,
        upstream_message: str | None = None,
    ) -> None:
        self.code = code
        self.upstream_message = upstream_message
        super().__init__(message)


# ── FastAPI wiring ───────────────────────────────────────────────────


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
        headers=headers,
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": InternalError.default_message},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Attach the AppError and catch-all handlers to an app."""
    app.add_exception_handler(AppError, _app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)

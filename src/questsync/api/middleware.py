"""API error handling -- consistent error responses.

Registers FastAPI exception handlers that convert domain exceptions into
``{"error": {"code": "...", "message": "..."}}`` JSON responses.

Status code mapping:
- ``NoConnectionError`` → 404 Not Found
- ``NoCalendarsSelectedError`` / ``TokenUnavailableError`` → 400 Bad Request
- ``ProviderRequestError`` → 400 when the provider rejected the token, else 502
- ``ValueError`` → 400 Bad Request
- ``HTTPException`` → its own status code
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from questsync.api.models import ErrorDetail, ErrorResponse
from questsync.errors import (
    NoCalendarsSelectedError,
    NoConnectionError,
    ProviderRequestError,
    TokenUnavailableError,
)

logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _handle_no_connection(request: Request, exc: NoConnectionError) -> JSONResponse:
    logger.info("No connection: %s", exc)
    return _error(404, "NO_CONNECTION", str(exc))


async def _handle_no_calendars(request: Request, exc: NoCalendarsSelectedError) -> JSONResponse:
    return _error(400, "NO_CALENDARS_SELECTED", str(exc))


async def _handle_token_unavailable(request: Request, exc: TokenUnavailableError) -> JSONResponse:
    logger.warning("Token unavailable: %s", exc)
    return _error(
        400,
        "TOKEN_UNAVAILABLE",
        "Failed to refresh access token. Please reconnect your calendar.",
    )


async def _handle_provider_error(request: Request, exc: ProviderRequestError) -> JSONResponse:
    logger.warning("Provider request failed (%s): %s", exc.status_code, exc.message)
    if exc.status_code == 401:
        return _error(400, "PROVIDER_AUTH_EXPIRED", "Calendar access expired. Please reconnect.")
    return _error(502, "PROVIDER_ERROR", "Failed to fetch calendars from provider")


async def _handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    logger.info("Validation error: %s", exc)
    return _error(400, "VALIDATION_ERROR", str(exc))


async def _handle_http_exception(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    code = _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return _error(exc.status_code, code, str(exc.detail))


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            return _error(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application."""
    app.add_exception_handler(NoConnectionError, _handle_no_connection)  # type: ignore[arg-type]
    app.add_exception_handler(NoCalendarsSelectedError, _handle_no_calendars)  # type: ignore[arg-type]
    app.add_exception_handler(TokenUnavailableError, _handle_token_unavailable)  # type: ignore[arg-type]
    app.add_exception_handler(ProviderRequestError, _handle_provider_error)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)

"""Error Handlers — the pipeline's error-handling stage.

Invariants:
    - Every error leaves as {"data": null, "error": {...}} with HTTP status = error status (default 500)
    - GeocodeToolError → its own error object, passed through unchanged
    - Starlette HTTPException (404 from router/static, 405, ...) → status/title/detail
    - RequestValidationError → 400 with per-field details
    - Nothing is written once response headers went out

Design Decisions:
    - No handler for bare Exception: uncaught errors must reach the
      fault-isolation stage, which calls send_error_response() itself
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import Receive, Scope, Send

from geocode_tool.api.middleware.access_log import request_url
from geocode_tool.api.responses import EnvelopeJSONResponse
from geocode_tool.core.envelope import failure
from geocode_tool.core.errors import (
    GeocodeToolError, RequestValidationFailed, build_error_body,
)

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register all typed error handlers on the FastAPI app."""
    _register_geocode_tool_error_handler(app)
    _register_http_error_handler(app)
    _register_validation_error_handler(app)


def error_response(exc: BaseException) -> EnvelopeJSONResponse:
    """Build the envelope response for any exception."""
    status, error = build_error_body(exc)
    headers = getattr(exc, "headers", None)
    return EnvelopeJSONResponse(
        status_code=status, content=failure(error), headers=headers,
    )


async def send_error_response(
    scope: Scope,
    receive: Receive,
    send: Send,
    exc: BaseException,
    response_started: bool = False,
) -> None:
    """Write the error envelope directly on an ASGI connection."""
    logger.error(
        f"Request failed on {request_url(scope)}: {exc!r}",
        extra={
            "path": scope.get("path"),
            "error_code": getattr(exc, "code", None),
        },
    )
    if response_started:
        logger.warning(
            f"Response already started for {request_url(scope)}, "
            "error envelope not sent",
        )
        return
    await error_response(exc)(scope, receive, send)


def _register_geocode_tool_error_handler(app: FastAPI) -> None:
    """Register domain/provider error handler."""

    @app.exception_handler(GeocodeToolError)
    async def geocode_tool_error_handler(request: Request, exc: GeocodeToolError):
        """Handle all typed application errors."""
        logger.error(
            f"GeocodeToolError: {exc.detail}",
            extra={"error_code": exc.code, "path": request.url.path},
        )
        return error_response(exc)


def _register_http_error_handler(app: FastAPI) -> None:
    """Register handler for router/static HTTP errors."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: Request, exc: StarletteHTTPException,
    ):
        """Handle 404/405 and other framework HTTP errors."""
        logger.warning(
            f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}",
        )
        return error_response(exc)


def _register_validation_error_handler(app: FastAPI) -> None:
    """Register Pydantic validation error handler."""

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError,
    ):
        """Handle Pydantic validation errors."""
        logger.warning(
            f"Validation error on {request.url.path}: {exc.errors()}",
        )
        return error_response(_to_validation_failed(exc))


def _to_validation_failed(exc: RequestValidationError) -> RequestValidationFailed:
    """Build structured validation error."""
    return RequestValidationFailed([
        {
            "field": ".".join(str(loc) for loc in e["loc"]),
            "message": e["msg"],
            "type": e["type"],
        }
        for e in exc.errors()
    ])

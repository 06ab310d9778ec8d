"""Request logging middleware and error-to-response mapping."""

from __future__ import annotations

import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from ulid import ULID

from deckwatch.lib.errors import DeckwatchError, StateConflictError
from deckwatch.lib.logging_config import get_logger
from deckwatch.serve.models import ErrorResponse

logger = get_logger(__name__)

# Error code -> HTTP status. Anything unlisted maps to 500.
ERROR_CODE_TO_STATUS: dict[str, int] = {
    "StateConflict": 409,
    "UnknownService": 400,
    "ConfigError": 400,
    "InvalidRequest": 400,
    "PreflightFailed": 424,
}


def status_for_error_code(code: str) -> int:
    """Resolve an error code to an HTTP status, defaulting to 500."""
    return ERROR_CODE_TO_STATUS.get(code, 500)


def error_response(
    *,
    status: int,
    code: str,
    message: str,
    reason: str | None = None,
    details: list[dict] | None = None,
) -> JSONResponse:
    """Build the JSON body every failed request returns."""
    body = ErrorResponse(error=code, message=message, reason=reason, details=details)
    return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))


async def deckwatch_error_handler(
    request: Request, exc: DeckwatchError
) -> JSONResponse:
    """Map a DeckwatchError to its status and stable code."""
    status = status_for_error_code(exc.code)
    reason = exc.reason if isinstance(exc, StateConflictError) else None
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return error_response(
        status=status, code=exc.code, message=exc.message, reason=reason
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed bodies, query strings and path parameters as InvalidRequest.

    The message names the failing parts of the request, e.g. ``Request query
    failed validation`` for a bad ``limit``.
    """
    details = [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    # First loc element is the request part: body, query, path, header, cookie
    parts = sorted({d["loc"][0] for d in details if d["loc"]})
    return error_response(
        status=400,
        code="InvalidRequest",
        message=f"Request {', '.join(parts) or 'input'} failed validation",
        details=details,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log with traceback, return an opaque 500."""
    logger.error(
        f"Unhandled error in {request.method} {request.url.path}", exc_info=exc
    )
    return error_response(
        status=500, code="InternalError", message=f"Internal server error: {exc}"
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install every error handler on the application."""
    app.add_exception_handler(DeckwatchError, deckwatch_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its id, status and processing time."""

    def __init__(self, app, debug: bool = False) -> None:  # noqa: ANN001
        super().__init__(app)
        self.debug = debug

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(ULID())
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = str(elapsed_ms)
        message = (
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed_ms}ms)"
        )
        if self.debug:
            logger.info(f"[{request_id}] {message}")
        else:
            logger.debug(message)
        return response

"""JSON error responses shared by the gateway and dashboard apps."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from opsdeck.errors import (
    AuthError,
    CommandBlocked,
    ConfigError,
    ExecutionError,
    NotAllowlisted,
    OpsdeckError,
    UpstreamError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def status_for_error(exc: OpsdeckError) -> int:
    if isinstance(exc, NotAllowlisted | CommandBlocked):
        return 403
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, AuthError):
        return 502
    if isinstance(exc, UpstreamError):
        return exc.status_code if 400 <= exc.status_code < 600 else 502
    if isinstance(exc, ConfigError | ExecutionError):
        return 500
    return 500


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        del request
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _body_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        del request
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            message = f"invalid request: {location}: {first.get('msg')}"
        else:
            message = "invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limit(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        del request
        return JSONResponse(
            status_code=429,
            content={"error": "rate limit exceeded", "detail": str(exc.detail)},
        )

    @app.exception_handler(OpsdeckError)
    async def _opsdeck_error(request: Request, exc: OpsdeckError) -> JSONResponse:
        status_code = status_for_error(exc)
        if status_code >= 500:
            logger.error(
                "request failed",
                extra={"path": request.url.path, "error": str(exc), "kind": type(exc).__name__},
            )
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error", extra={"path": request.url.path})
        return JSONResponse(status_code=500, content={"error": "internal error"})

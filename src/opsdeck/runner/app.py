"""Execution gateway HTTP API.

Binds to a private address and exposes two liveness endpoints plus the
token-protected allowlist, named-operation and raw-shell endpoints.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from opsdeck import __version__
from opsdeck.config import Settings, get_settings
from opsdeck.errors import ValidationError
from opsdeck.exception_handlers import register_exception_handlers
from opsdeck.logging import log_context
from opsdeck.runner.allowlist import AllowlistConfig, AllowlistHolder, AllowlistStore, validate_request
from opsdeck.runner.operations import dispatch_operation, parse_operation_request
from opsdeck.runner.security import require_private_network, require_runner_token
from opsdeck.runner.shell import execute_shell

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


def _rate_limit() -> str:
    return f"{get_settings().runner_rate_limit_per_minute}/minute"


def _shell_rate_limit() -> str:
    return f"{get_settings().runner_shell_rate_limit_per_minute}/minute"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _holder(request: Request) -> AllowlistHolder:
    return request.app.state.allowlist


public = APIRouter(tags=["runner-public"])
protected = APIRouter(tags=["runner"], dependencies=[Depends(require_runner_token)])


@public.get("/health")
async def health() -> dict[str, object]:
    return {"status": "healthy", "version": __version__, "timestamp": _now_iso()}


@public.get("/status")
async def runner_status(request: Request) -> dict[str, object]:
    started_at: float = request.app.state.started_at
    return {
        "status": "running",
        "uptime": round(time.monotonic() - started_at, 3),
        "allowlist_count": _holder(request).get().counts(),
        "timestamp": _now_iso(),
    }


@protected.get("/allowlist")
async def get_allowlist(request: Request) -> dict[str, object]:
    return {"allowlist": _holder(request).get().to_dict()}


@protected.put("/allowlist")
async def put_allowlist(request: Request, payload: dict[str, object]) -> dict[str, object]:
    config = AllowlistConfig.from_dict(payload.get("allowlist"))
    updated = await asyncio.to_thread(_holder(request).replace, config)
    return {"success": True, "allowlist": updated.to_dict()}


@protected.post("/execute")
@limiter.limit(_rate_limit)
async def execute(request: Request, payload: dict[str, object]) -> JSONResponse:
    operation_request = parse_operation_request(payload)
    with log_context(operation=operation_request.operation, client=_client_host(request)):
        error = validate_request(operation_request, _holder(request).get())
        if error is not None:
            logger.warning("operation rejected", extra={"error": str(error)})
            raise error
        settings = get_settings()
        logger.info(
            "executing operation",
            extra={"target": operation_request.target.model_dump(exclude_none=True)},
        )
        result = await dispatch_operation(
            operation_request,
            timeout_s=settings.runner_operation_timeout_seconds,
            max_output_bytes=settings.runner_shell_max_output_bytes,
        )
        logger.info(
            "operation finished",
            extra={"success": result.success, "duration_ms": result.duration_ms},
        )
    return JSONResponse(status_code=200 if result.success else 500, content=result.as_dict())


@protected.post("/shell")
@limiter.limit(_shell_rate_limit)
async def shell(request: Request, payload: dict[str, object]) -> dict[str, object]:
    command = payload.get("command")
    if not isinstance(command, str) or not command.strip():
        raise ValidationError("command is required")
    cwd = payload.get("cwd")
    if cwd is not None and not isinstance(cwd, str):
        raise ValidationError("cwd must be a string")
    settings = get_settings()
    with log_context(client=_client_host(request)):
        result = await execute_shell(
            command,
            cwd=cwd,
            default_cwd=settings.runner_default_cwd,
            timeout_s=settings.runner_shell_timeout_seconds,
            max_output_bytes=settings.runner_shell_max_output_bytes,
        )
    return {**result.as_dict(), "timestamp": _now_iso()}


def create_app(
    settings: Settings | None = None,
    allowlist: AllowlistHolder | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="opsdeck runner",
        version=__version__,
        dependencies=[Depends(require_private_network)],
    )
    app.state.limiter = limiter
    app.state.started_at = time.monotonic()
    app.state.allowlist = allowlist or AllowlistHolder(
        AllowlistStore.in_dir(settings.runner_data_dir)
    )
    register_exception_handlers(app)
    app.include_router(public)
    app.include_router(protected)
    return app

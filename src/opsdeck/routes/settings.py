"""Settings routes: Portainer login, gateway allowlist proxy and connectivity checks."""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from opsdeck.auth.dependencies import require_session
from opsdeck.errors import AuthError, OpsdeckError, UpstreamError
from opsdeck.portainer.client import PortainerClient
from opsdeck.routes.clients import get_portainer, get_runner
from opsdeck.runner.client import RunnerClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"], dependencies=[Depends(require_session)])


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class AllowlistBody(BaseModel):
    allowlist: dict[str, Any]


@router.post("/portainer-token")
async def portainer_login(
    body: LoginRequest,
    portainer: PortainerClient = Depends(get_portainer),  # noqa: B008
) -> JSONResponse:
    if not body.username or not body.password:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Username and password are required"},
        )
    try:
        token, persisted = await portainer.login(body.username, body.password)
    except AuthError as exc:
        return JSONResponse(status_code=401, content={"success": False, "error": str(exc)})
    message = (
        "Token refreshed and saved successfully"
        if persisted
        else "Token refreshed (in-memory only; token file is not writable)"
    )
    return JSONResponse(
        content={
            "success": True,
            "message": message,
            "persisted": persisted,
            "expiresAt": token.expires_at.isoformat() if token.expires_at else None,
        }
    )


@router.get("/portainer-token")
async def portainer_token_status(
    portainer: PortainerClient = Depends(get_portainer),  # noqa: B008
) -> dict[str, Any]:
    tokens = portainer.tokens
    source = "none"
    current = None
    for candidate in tokens.sources:
        current = await candidate.fetch()
        if current is not None:
            source = candidate.name
            break
    expires_at = current.expires_at if current else None
    return {
        "success": True,
        "hasToken": current is not None,
        "source": source,
        "expiresAt": expires_at.isoformat() if expires_at else None,
        "isExpired": expires_at < datetime.now(UTC) if expires_at else None,
    }


@router.get("/runner-allowlist")
async def get_runner_allowlist(
    runner: RunnerClient = Depends(get_runner),  # noqa: B008
) -> dict[str, Any]:
    allowlist = await runner.get_allowlist()
    return {"success": True, "allowlist": allowlist}


@router.put("/runner-allowlist")
async def put_runner_allowlist(
    body: AllowlistBody,
    runner: RunnerClient = Depends(get_runner),  # noqa: B008
) -> dict[str, Any]:
    allowlist = await runner.put_allowlist(body.allowlist)
    return {"success": True, "allowlist": allowlist}


@router.api_route("/test-runner", methods=["GET", "POST"])
async def test_runner(
    runner: RunnerClient = Depends(get_runner),  # noqa: B008
) -> dict[str, Any]:
    if not runner.configured:
        return {"success": False, "error": "RUNNER_TOKEN not configured"}
    try:
        data = await runner.health()
    except UpstreamError as exc:
        return {"success": False, "error": str(exc)}
    return {"success": True, "version": data.get("version"), "status": data.get("status")}


@router.api_route("/test-portainer", methods=["GET", "POST"])
async def test_portainer(
    portainer: PortainerClient = Depends(get_portainer),  # noqa: B008
) -> dict[str, Any]:
    try:
        endpoints = await portainer.list_endpoints()
    except OpsdeckError as exc:
        logger.info("portainer connectivity check failed: %s", exc)
        return {"success": False, "error": str(exc)}
    return {"success": True, "endpoints": len(endpoints)}

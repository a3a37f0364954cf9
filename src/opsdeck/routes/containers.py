"""Container actions, logs, stats, inspect and exec."""

import logging
import re
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from opsdeck.auth.dependencies import require_session
from opsdeck.errors import AuthError, ConfigError, UpstreamError
from opsdeck.portainer.client import (
    ContainerAction,
    PortainerClient,
    container_status,
    health_color,
)
from opsdeck.routes.clients import get_portainer, get_runner
from opsdeck.runner.client import CONTAINER_NAME_RE, RunnerClient

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/containers", tags=["containers"], dependencies=[Depends(require_session)]
)

ROUTE_ACTIONS = frozenset({"start", "stop", "restart", "recreate"})

EXEC_BLOCKED_PATTERNS = (
    re.compile(r"rm\s+-rf?\s+/[^/]*", re.IGNORECASE),
    re.compile(r"mkfs", re.IGNORECASE),
    re.compile(r"dd\s+if=", re.IGNORECASE),
    re.compile(r":\(\)\s*\{.*\}\s*;?\s*:", re.IGNORECASE),
    re.compile(r">\s*/dev/(?!null\b)", re.IGNORECASE),
    re.compile(r"shutdown|reboot|halt", re.IGNORECASE),
    re.compile(r"init\s+0", re.IGNORECASE),
)


class ContainerRef(BaseModel):
    endpoint_id: int = Field(alias="endpointId")
    container_id: str = Field(alias="containerId", min_length=1)


class ActionRequest(ContainerRef):
    action: str


class LogsRequest(ContainerRef):
    tail: int = Field(default=500, ge=1, le=100_000)


class ExecRequest(BaseModel):
    container_name: str = Field(alias="containerName", min_length=1)
    command: str = Field(min_length=1, max_length=1000)


def _summarize(container: dict[str, Any], endpoint: dict[str, Any]) -> dict[str, Any]:
    names = container.get("Names") or []
    name = names[0].lstrip("/") if names else str(container.get("Id", ""))[:12]
    ports: list[str] = []
    for port in container.get("Ports") or []:
        if port.get("PublicPort") and port.get("PrivatePort"):
            ports.append(f"{port['PublicPort']}:{port['PrivatePort']}/{port.get('Type')}")
        else:
            ports.append(f"{port.get('PrivatePort')}/{port.get('Type')}")
    labels = container.get("Labels") or {}
    status = container_status(container)
    return {
        "id": container.get("Id"),
        "name": name,
        "status": status,
        "color": health_color(status),
        "state": container.get("State"),
        "image": container.get("Image"),
        "ports": ports,
        "endpointId": endpoint.get("Id"),
        "endpointName": endpoint.get("Name"),
        "composeProject": labels.get("com.docker.compose.project"),
        "composeService": labels.get("com.docker.compose.service"),
        "labels": labels,
    }


@router.get("/list")
async def list_containers(
    portainer: PortainerClient = Depends(get_portainer),  # noqa: B008
) -> dict[str, Any]:
    endpoints = await portainer.list_endpoints()
    if not endpoints:
        return {"success": True, "data": [], "message": "No Docker endpoints found"}
    summaries: list[dict[str, Any]] = []
    for endpoint in endpoints:
        try:
            containers = await portainer.list_containers(int(endpoint["Id"]))
        except UpstreamError as exc:
            logger.warning(
                "failed to list containers", extra={"endpoint": endpoint.get("Name"), "error": str(exc)}
            )
            continue
        summaries.extend(_summarize(container, endpoint) for container in containers)
    summaries.sort(key=lambda item: item["name"])
    return {"success": True, "data": summaries}


@router.post("/action")
async def container_action(
    body: ActionRequest,
    portainer: PortainerClient = Depends(get_portainer),  # noqa: B008
) -> JSONResponse:
    if body.action not in ROUTE_ACTIONS:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid action"})
    result = await portainer.container_action(
        body.endpoint_id, body.container_id, ContainerAction(body.action)
    )
    return JSONResponse(status_code=200 if result["success"] else 500, content=result)


@router.post("/inspect")
async def inspect(
    body: ContainerRef,
    portainer: PortainerClient = Depends(get_portainer),  # noqa: B008
) -> JSONResponse:
    data = await portainer.inspect_container(body.endpoint_id, body.container_id)
    if data is None:
        return JSONResponse(
            status_code=404, content={"success": False, "error": "Container not found"}
        )
    return JSONResponse(content={"success": True, "data": data})


@router.post("/logs")
async def logs(
    body: LogsRequest,
    portainer: PortainerClient = Depends(get_portainer),  # noqa: B008
) -> JSONResponse:
    try:
        result = await portainer.get_logs(body.endpoint_id, body.container_id, body.tail)
    except UpstreamError as exc:
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={"error": "Container not found"})
        raise
    except AuthError:
        return JSONResponse(
            status_code=401, content={"error": "Portainer auth failed. Check token in Settings."}
        )
    except ConfigError as exc:
        return JSONResponse(status_code=500, content={"error": f"Portainer not configured: {exc}"})
    if not result["logs"]:
        result["logs"] = "No logs available"
    return JSONResponse(content=result)


@router.post("/stats")
async def stats(
    body: ContainerRef,
    portainer: PortainerClient = Depends(get_portainer),  # noqa: B008
) -> JSONResponse:
    result = await portainer.get_stats(body.endpoint_id, body.container_id)
    if result is None:
        return JSONResponse(
            status_code=502, content={"success": False, "error": "Stats unavailable"}
        )
    return JSONResponse(content={"success": True, "data": result.as_dict()})


@router.post("/exec")
async def exec_in_container(
    body: ExecRequest,
    runner: RunnerClient = Depends(get_runner),  # noqa: B008
) -> JSONResponse:
    if not CONTAINER_NAME_RE.fullmatch(body.container_name):
        return JSONResponse(
            status_code=400, content={"success": False, "error": "Invalid container name"}
        )
    for pattern in EXEC_BLOCKED_PATTERNS:
        if pattern.search(body.command):
            logger.warning(
                "blocked container exec",
                extra={"container": body.container_name, "command": body.command},
            )
            return JSONResponse(
                status_code=403,
                content={
                    "success": False,
                    "error": "This command is not allowed for security reasons",
                },
            )
    result = await runner.docker_exec(body.container_name, body.command)
    logger.info(
        "container exec",
        extra={"container": body.container_name, "success": result["success"]},
    )
    return JSONResponse(content=result)

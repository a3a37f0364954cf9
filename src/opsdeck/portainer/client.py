"""Typed client for the Portainer-proxied Docker API."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx

from opsdeck.config import Settings, get_settings, require_setting
from opsdeck.errors import AuthError, ConfigError, OpsdeckError, UpstreamError
from opsdeck.portainer.demux import demultiplex, strip_control_characters
from opsdeck.portainer.stats import ContainerStats, compute_stats
from opsdeck.portainer.tokens import (
    JsonFileTokenStore,
    StoreSource,
    Token,
    TokenManager,
    token_from_jwt,
)

logger = logging.getLogger(__name__)

DEFAULT_LOG_TAIL = 1000


class ContainerAction(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    KILL = "kill"
    PAUSE = "pause"
    UNPAUSE = "unpause"
    RECREATE = "recreate"
    REMOVE = "remove"


def _action_result(success: bool, text: str) -> dict[str, object]:
    if success:
        return {"success": True, "message": text}
    return {"success": False, "error": text}


def container_status(container: dict[str, Any]) -> str:
    """Collapse Docker's State/Status into running, unhealthy, stopped or unknown."""
    state = str(container.get("State") or "").lower()
    status = str(container.get("Status") or "").lower()
    if state == "running":
        return "unhealthy" if "unhealthy" in status else "running"
    if state in {"exited", "dead", "created", "paused"}:
        return "stopped"
    return "unknown"


def health_color(status: str) -> str:
    return {
        "running": "green",
        "unhealthy": "yellow",
        "stopped": "red",
    }.get(status, "gray")


class PortainerClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        username: str | None = None,
        password: str | None = None,
        tokens: TokenManager | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._settings = settings
        self._base_url = (base_url if base_url is not None else settings.portainer_url).rstrip("/")
        self._username = username if username is not None else settings.portainer_username
        self._password = password if password is not None else settings.portainer_password
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.portainer_http_timeout_seconds
        )
        self._transport = transport
        if tokens is None:
            tokens = TokenManager(
                store=StoreSource(
                    JsonFileTokenStore(settings.portainer_token_path),
                    ttl_seconds=settings.portainer_token_cache_ttl_seconds,
                ),
                static_token=settings.portainer_token,
            )
        if tokens.authenticate is None and self._username and self._password:
            tokens.authenticate = self.authenticate
        self.tokens = tokens

    def _url(self, path: str) -> str:
        base_url = require_setting(self._base_url, "PORTAINER_URL")
        return f"{base_url}/api{path}"

    async def authenticate(
        self, username: str | None = None, password: str | None = None
    ) -> Token:
        """POST /api/auth and return the issued JWT with its expiry."""
        username = username if username is not None else self._username
        password = password if password is not None else self._password
        if not username or not password:
            raise ConfigError("PORTAINER_USERNAME and PORTAINER_PASSWORD must be set")
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    self._url("/auth"), json={"username": username, "password": password}
                )
            except httpx.HTTPError as exc:
                raise UpstreamError(f"Portainer unreachable: {exc}", status_code=503) from exc
        if response.status_code in (401, 403, 422):
            raise AuthError(
                f"Portainer login failed: {response.status_code}", status_code=response.status_code
            )
        if response.status_code >= 400:
            raise UpstreamError(
                f"Portainer login failed: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )
        jwt = response.json().get("jwt")
        if not isinstance(jwt, str) or not jwt:
            raise AuthError("Portainer login response did not contain a token")
        return token_from_jwt(jwt, self._settings.portainer_token_validity_hours)

    async def login(self, username: str, password: str) -> tuple[Token, bool]:
        """Authenticate with explicit credentials and cache/persist the token."""
        token = await self.authenticate(username, password)
        persisted = await self.tokens.remember(token)
        return token, persisted

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        *,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                return await client.request(
                    method,
                    self._url(path),
                    json=json_body,
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.HTTPError as exc:
                raise UpstreamError(f"Portainer unreachable: {exc}", status_code=503) from exc

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        json_body: Any = None,
        params: dict[str, Any] | None = None,
        raw: bool = False,
    ) -> Any:
        """Call the API, refreshing the token and retrying once on a 401."""
        token = await self.tokens.get_token()
        response = await self._send(method, path, token.value, json_body=json_body, params=params)
        if response.status_code == 401:
            logger.info("Portainer returned 401, refreshing token", extra={"path": path})
            self.tokens.invalidate(token.value)
            try:
                fresh = await self.tokens.refresh(stale=token.value)
            except (AuthError, ConfigError) as exc:
                raise AuthError(f"Portainer rejected token and refresh failed: {exc}") from exc
            response = await self._send(
                method, path, fresh.value, json_body=json_body, params=params
            )
            if response.status_code == 401:
                raise AuthError("Portainer API error: 401 after token refresh")
        if response.status_code == 403:
            raise AuthError(f"Portainer API error: 403 - {response.text[:200]}", status_code=403)
        if response.status_code >= 400:
            raise UpstreamError(
                f"Portainer API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )
        if raw:
            return response.content
        if not response.content:
            return {}
        try:
            return response.json()
        except json.JSONDecodeError:
            return {}

    async def list_endpoints(self) -> list[dict[str, Any]]:
        return await self.request("/endpoints")

    async def get_endpoint(self, endpoint_id: int) -> dict[str, Any]:
        return await self.request(f"/endpoints/{endpoint_id}")

    async def list_containers(
        self, endpoint_id: int, *, all_containers: bool = True
    ) -> list[dict[str, Any]]:
        return await self.request(
            f"/endpoints/{endpoint_id}/docker/containers/json",
            params={"all": "true" if all_containers else "false"},
        )

    async def get_container(self, endpoint_id: int, container_id: str) -> dict[str, Any]:
        for container in await self.list_containers(endpoint_id):
            if str(container.get("Id", "")).startswith(container_id):
                return container
        raise UpstreamError(f"Container {container_id} not found", status_code=404)

    async def inspect_container(self, endpoint_id: int, container_id: str) -> dict[str, Any] | None:
        try:
            return await self.request(
                f"/endpoints/{endpoint_id}/docker/containers/{container_id}/json"
            )
        except (AuthError, UpstreamError) as exc:
            logger.warning("inspect failed for %s: %s", container_id, exc)
            return None

    async def get_logs(
        self, endpoint_id: int, container_id: str, tail: int = DEFAULT_LOG_TAIL
    ) -> dict[str, str]:
        body = await self.request(
            f"/endpoints/{endpoint_id}/docker/containers/{container_id}/logs",
            params={"stdout": "true", "stderr": "true", "tail": str(tail), "timestamps": "false"},
            raw=True,
        )
        text = strip_control_characters(demultiplex(body)).strip()
        return {"logs": text, "timestamp": datetime.now(UTC).isoformat()}

    async def get_stats(self, endpoint_id: int, container_id: str) -> ContainerStats | None:
        try:
            raw = await self.request(
                f"/endpoints/{endpoint_id}/docker/containers/{container_id}/stats",
                params={"stream": "false"},
            )
        except (AuthError, UpstreamError) as exc:
            logger.warning("stats failed for %s: %s", container_id, exc)
            return None
        return compute_stats(raw)

    async def container_action(
        self,
        endpoint_id: int,
        container_id: str,
        action: ContainerAction | str,
        *,
        force: bool = False,
    ) -> dict[str, object]:
        """Run a lifecycle action; failures come back as {success: False, error}."""
        try:
            action = ContainerAction(action)
        except ValueError:
            return _action_result(False, f"Unknown action: {action}")
        base = f"/endpoints/{endpoint_id}/docker/containers/{container_id}"
        try:
            if action is ContainerAction.REMOVE:
                await self.request(
                    base, method="DELETE", params={"force": "true" if force else "false"}
                )
            elif action is ContainerAction.RECREATE:
                await self.request(f"{base}/recreate", method="POST", json_body={"PullImage": True})
            else:
                await self.request(f"{base}/{action.value}", method="POST")
        except OpsdeckError as exc:
            logger.warning(
                "container action failed",
                extra={"container": container_id, "action": action.value, "error": str(exc)},
            )
            return _action_result(False, str(exc))
        logger.info("container action", extra={"container": container_id, "action": action.value})
        return _action_result(True, f"Container {action.value} successful")

    async def start(self, endpoint_id: int, container_id: str) -> dict[str, object]:
        return await self.container_action(endpoint_id, container_id, ContainerAction.START)

    async def stop(self, endpoint_id: int, container_id: str) -> dict[str, object]:
        return await self.container_action(endpoint_id, container_id, ContainerAction.STOP)

    async def restart(self, endpoint_id: int, container_id: str) -> dict[str, object]:
        return await self.container_action(endpoint_id, container_id, ContainerAction.RESTART)

    async def remove(
        self, endpoint_id: int, container_id: str, force: bool = False
    ) -> dict[str, object]:
        return await self.container_action(
            endpoint_id, container_id, ContainerAction.REMOVE, force=force
        )

    async def list_stacks(self, endpoint_id: int | None = None) -> list[dict[str, Any]]:
        params = None
        if endpoint_id is not None:
            params = {"filters": json.dumps({"EndpointID": endpoint_id})}
        return await self.request("/stacks", params=params)

    async def get_stack(self, stack_id: int) -> dict[str, Any]:
        return await self.request(f"/stacks/{stack_id}")

    async def redeploy_stack(
        self, stack_id: int, endpoint_id: int, *, pull_image: bool = True
    ) -> dict[str, object]:
        try:
            await self.request(
                f"/stacks/{stack_id}/git/redeploy",
                method="PUT",
                params={"endpointId": endpoint_id},
                json_body={"pullImage": pull_image, "prune": False},
            )
        except OpsdeckError as exc:
            return _action_result(False, str(exc))
        return _action_result(True, "Stack redeployed")

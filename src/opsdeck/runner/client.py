"""Dashboard-side client for the execution gateway."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from opsdeck.config import get_settings, require_setting
from opsdeck.errors import CommandBlocked, UpstreamError, ValidationError
from opsdeck.runner.operations import ExecutionResult, Operation
from opsdeck.runner.shell import ShellResult

logger = logging.getLogger(__name__)

CONTAINER_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
DeployStrategy = Literal["pull_restart", "pull_rebuild", "compose_up"]


@dataclass(slots=True)
class DeployOutcome:
    success: bool
    steps: list[ExecutionResult] = field(default_factory=list)
    commit_sha: str | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "success": self.success,
            "steps": [step.as_dict() for step in self.steps],
        }
        if self.commit_sha is not None:
            payload["commit_sha"] = self.commit_sha
        if self.error is not None:
            payload["error"] = self.error
        return payload


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.text or response.reason_phrase


class RunnerClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url if base_url is not None else settings.runner_url).rstrip("/")
        self._token = token if token is not None else settings.runner_token
        self._timeout = (
            timeout_seconds if timeout_seconds is not None else settings.runner_http_timeout_seconds
        )
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._base_url.strip() and self._token.strip())

    def _headers(self) -> dict[str, str]:
        token = require_setting(self._token, "RUNNER_TOKEN")
        return {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        base_url = require_setting(self._base_url, "RUNNER_URL")
        headers = self._headers() if authenticated else {}
        async with httpx.AsyncClient(
            timeout=timeout if timeout is not None else self._timeout,
            transport=self._transport,
        ) as client:
            try:
                return await client.request(method, f"{base_url}{path}", json=json, headers=headers)
            except httpx.HTTPError as exc:
                raise UpstreamError(f"Runner unreachable: {exc}", status_code=503) from exc

    async def health(self) -> dict[str, Any]:
        response = await self._request("GET", "/health", timeout=5.0, authenticated=False)
        if response.status_code != 200:
            raise UpstreamError(
                f"Runner returned {response.status_code}", status_code=response.status_code
            )
        return response.json()

    async def execute(
        self,
        operation: Operation | str,
        target: dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        op = operation.value if isinstance(operation, Operation) else operation
        body: dict[str, Any] = {
            "operation": op,
            "target": {key: value for key, value in target.items() if value is not None},
        }
        if options:
            body["options"] = options
        response = await self._request(
            "POST", "/execute", json=body, timeout=get_settings().runner_operation_timeout_seconds
        )
        payload: Any = None
        try:
            payload = response.json()
        except ValueError:
            payload = None
        # A failed operation still comes back as a structured result.
        if isinstance(payload, dict) and "operation" in payload and "success" in payload:
            return ExecutionResult.from_dict(payload)
        raise UpstreamError(
            f"Runner error: {response.status_code} - {_error_text(response)}",
            status_code=response.status_code,
        )

    async def shell(self, command: str, cwd: str | None = None) -> ShellResult:
        body: dict[str, Any] = {"command": command}
        if cwd:
            body["cwd"] = cwd
        # Leave headroom over the gateway's own shell timeout.
        timeout = get_settings().runner_shell_timeout_seconds + 5.0
        response = await self._request("POST", "/shell", json=body, timeout=timeout)
        if response.status_code == 403:
            raise CommandBlocked(_error_text(response))
        if response.status_code != 200:
            raise UpstreamError(
                f"Runner error: {response.status_code} - {_error_text(response)}",
                status_code=response.status_code,
            )
        return ShellResult.from_dict(response.json())

    async def get_allowlist(self) -> dict[str, list[str]]:
        response = await self._request("GET", "/allowlist", timeout=5.0)
        if response.status_code != 200:
            raise UpstreamError(
                f"Runner returned {response.status_code}", status_code=response.status_code
            )
        return response.json()["allowlist"]

    async def put_allowlist(self, allowlist: dict[str, list[str]]) -> dict[str, list[str]]:
        response = await self._request(
            "PUT", "/allowlist", json={"allowlist": allowlist}, timeout=5.0
        )
        if response.status_code != 200:
            raise UpstreamError(
                f"Runner error: {response.status_code} - {_error_text(response)}",
                status_code=response.status_code,
            )
        return response.json()["allowlist"]

    async def git_pull(self, repo_path: str) -> ExecutionResult:
        return await self.execute(Operation.GIT_PULL, {"repo_path": repo_path})

    async def docker_restart(self, container_name: str) -> ExecutionResult:
        return await self.execute(Operation.DOCKER_RESTART, {"container_name": container_name})

    async def docker_rebuild(
        self, compose_project: str, service_name: str | None = None
    ) -> ExecutionResult:
        return await self.execute(
            Operation.DOCKER_REBUILD,
            {"compose_project": compose_project, "service_name": service_name},
            {"build": True},
        )

    async def compose_up(self, compose_project: str, build: bool = True) -> ExecutionResult:
        return await self.execute(
            Operation.COMPOSE_UP, {"compose_project": compose_project}, {"build": build}
        )

    async def docker_logs(self, container_name: str, tail: int = 100) -> ExecutionResult:
        return await self.execute(
            Operation.DOCKER_LOGS, {"container_name": container_name}, {"tail": tail}
        )

    async def docker_status(self, container_name: str) -> ExecutionResult:
        return await self.execute(Operation.DOCKER_STATUS, {"container_name": container_name})

    async def docker_exec(self, container_name: str, command: str) -> dict[str, object]:
        """Run a command inside a container through the shell endpoint."""
        if not CONTAINER_NAME_RE.fullmatch(container_name):
            raise ValidationError("Invalid container name format")
        try:
            result = await self.shell(f"docker exec {container_name} {command}")
        except UpstreamError as exc:
            return {"success": False, "stdout": "", "stderr": "", "error": str(exc)}
        payload: dict[str, object] = {
            "success": result.exit_code == 0,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }
        if result.exit_code != 0:
            payload["error"] = f"Exit code: {result.exit_code}"
        return payload

    async def deploy(
        self,
        repo_path: str,
        compose_project: str,
        strategy: DeployStrategy,
    ) -> DeployOutcome:
        """git pull, then restart/rebuild/compose-up; stops at the first failed step."""
        outcome = DeployOutcome(success=False)
        try:
            pulled = await self.git_pull(repo_path)
            outcome.steps.append(pulled)
            if not pulled.success:
                outcome.error = pulled.error or "Git pull failed"
                return outcome
            if strategy == "pull_restart":
                step = await self.execute(
                    Operation.DOCKER_RESTART, {"compose_project": compose_project}
                )
            elif strategy == "pull_rebuild":
                step = await self.docker_rebuild(compose_project)
            elif strategy == "compose_up":
                step = await self.compose_up(compose_project)
            else:
                raise ValidationError(f"Unknown deploy strategy: {strategy}")
            outcome.steps.append(step)
            if not step.success:
                outcome.error = step.error or "Deploy failed"
                return outcome
        except UpstreamError as exc:
            logger.warning("deploy aborted", extra={"repo_path": repo_path, "error": str(exc)})
            outcome.error = str(exc)
            return outcome
        outcome.success = True
        outcome.commit_sha = pulled.commit_sha
        return outcome

"""Named gateway operations: request model, typed plans and dispatch."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from opsdeck.errors import ExecutionError, InvalidOperation, ValidationError
from opsdeck.runner.shell import ProcessOutcome, run_process

logger = logging.getLogger(__name__)

DEFAULT_LOG_TAIL = 100


class Operation(str, Enum):
    GIT_PULL = "git_pull"
    DOCKER_RESTART = "docker_restart"
    DOCKER_REBUILD = "docker_rebuild"
    COMPOSE_UP = "compose_up"
    DOCKER_LOGS = "docker_logs"
    DOCKER_STATUS = "docker_status"


VALID_OPERATIONS = frozenset(item.value for item in Operation)


class OperationTarget(BaseModel):
    repo_path: str | None = None
    compose_project: str | None = None
    container_name: str | None = None
    service_name: str | None = None


class OperationOptions(BaseModel):
    tail: int | None = Field(default=None, ge=1, le=100_000)
    build: bool | None = None


class OperationRequest(BaseModel):
    operation: str
    target: OperationTarget = Field(default_factory=OperationTarget)
    options: OperationOptions = Field(default_factory=OperationOptions)


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    success: bool
    operation: str
    duration_ms: int
    timestamp: str
    output: str | None = None
    commit_sha: str | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "success": self.success,
            "operation": self.operation,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp,
        }
        if self.output is not None:
            payload["output"] = self.output
        if self.commit_sha is not None:
            payload["commit_sha"] = self.commit_sha
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ExecutionResult:
        def _optional(key: str) -> str | None:
            value = payload.get(key)
            return None if value is None else str(value)

        return cls(
            success=bool(payload.get("success", False)),
            operation=str(payload.get("operation", "")),
            duration_ms=int(payload.get("duration_ms", 0) or 0),
            timestamp=str(payload.get("timestamp", "")),
            output=_optional("output"),
            commit_sha=_optional("commit_sha"),
            error=_optional("error"),
        )


def parse_operation_request(payload: Any) -> OperationRequest:
    """Parse a raw JSON body, mapping schema failures onto ValidationError."""
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    try:
        request = OperationRequest.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"invalid request: {location}: {first.get('msg')}") from exc
    if request.operation not in VALID_OPERATIONS:
        raise InvalidOperation(f"Invalid operation: {request.operation}")
    return request


# Typed plans. Each knows its required targets and the argv it runs.


class OperationPlan(Protocol):
    operation: Operation

    def commands(self) -> list[list[str]]: ...

    def cwd(self) -> str | None: ...


@dataclass(frozen=True, slots=True)
class GitPull:
    repo_path: str
    operation: Operation = Operation.GIT_PULL

    def commands(self) -> list[list[str]]:
        return [["git", "pull"], ["git", "rev-parse", "HEAD"]]

    def cwd(self) -> str | None:
        return self.repo_path


@dataclass(frozen=True, slots=True)
class DockerRestart:
    name: str
    operation: Operation = Operation.DOCKER_RESTART

    def commands(self) -> list[list[str]]:
        return [["docker", "restart", self.name]]

    def cwd(self) -> str | None:
        return None


@dataclass(frozen=True, slots=True)
class DockerRebuild:
    compose_project: str
    service_name: str | None = None
    operation: Operation = Operation.DOCKER_REBUILD

    def commands(self) -> list[list[str]]:
        argv = ["docker", "compose", "-p", self.compose_project, "up", "-d", "--build"]
        if self.service_name:
            argv.append(self.service_name)
        return [argv]

    def cwd(self) -> str | None:
        return None


@dataclass(frozen=True, slots=True)
class ComposeUp:
    compose_project: str
    build: bool = False
    operation: Operation = Operation.COMPOSE_UP

    def commands(self) -> list[list[str]]:
        argv = ["docker", "compose", "-p", self.compose_project, "up", "-d"]
        if self.build:
            argv.append("--build")
        return [argv]

    def cwd(self) -> str | None:
        return None


@dataclass(frozen=True, slots=True)
class DockerLogs:
    name: str
    tail: int = DEFAULT_LOG_TAIL
    operation: Operation = Operation.DOCKER_LOGS

    def commands(self) -> list[list[str]]:
        return [["docker", "logs", "--tail", str(self.tail), self.name]]

    def cwd(self) -> str | None:
        return None


@dataclass(frozen=True, slots=True)
class DockerStatus:
    name: str
    operation: Operation = Operation.DOCKER_STATUS

    def commands(self) -> list[list[str]]:
        return [["docker", "ps", "-a", "--filter", f"name={self.name}", "--format", "{{.Status}}"]]

    def cwd(self) -> str | None:
        return None


def _container_or_project(target: OperationTarget) -> str:
    name = target.container_name or target.compose_project
    if not name:
        raise ExecutionError("container_name or compose_project required")
    return name


def plan_operation(request: OperationRequest) -> OperationPlan:
    """Turn a validated request into its typed plan; missing targets raise ExecutionError."""
    try:
        operation = Operation(request.operation)
    except ValueError as exc:
        raise InvalidOperation(f"Invalid operation: {request.operation}") from exc
    target = request.target
    options = request.options
    if operation is Operation.GIT_PULL:
        if not target.repo_path:
            raise ExecutionError("repo_path required")
        return GitPull(repo_path=target.repo_path)
    if operation is Operation.DOCKER_RESTART:
        return DockerRestart(name=_container_or_project(target))
    if operation is Operation.DOCKER_REBUILD:
        if not target.compose_project:
            raise ExecutionError("compose_project required")
        return DockerRebuild(
            compose_project=target.compose_project, service_name=target.service_name
        )
    if operation is Operation.COMPOSE_UP:
        if not target.compose_project:
            raise ExecutionError("compose_project required")
        return ComposeUp(compose_project=target.compose_project, build=bool(options.build))
    if operation is Operation.DOCKER_LOGS:
        return DockerLogs(name=_container_or_project(target), tail=options.tail or DEFAULT_LOG_TAIL)
    return DockerStatus(name=_container_or_project(target))


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _failure_text(outcome: ProcessOutcome) -> str:
    text = (outcome.stderr or outcome.stdout).strip()
    if text:
        return text
    return f"command exited with code {outcome.exit_code}"


async def dispatch_operation(
    request: OperationRequest,
    *,
    timeout_s: float,
    max_output_bytes: int,
) -> ExecutionResult:
    """Execute a validated request and wrap the outcome; never retries."""
    started = time.perf_counter()
    operation = request.operation
    try:
        plan = plan_operation(request)
        outputs: list[ProcessOutcome] = []
        for argv in plan.commands():
            outcome = await run_process(
                argv,
                cwd=plan.cwd(),
                timeout_s=timeout_s,
                max_output_bytes=max_output_bytes,
            )
            if outcome.exit_code != 0:
                raise ExecutionError(_failure_text(outcome))
            outputs.append(outcome)
        commit_sha: str | None = None
        if isinstance(plan, GitPull):
            commit_sha = outputs[-1].stdout.strip()
            output = outputs[0].stdout + outputs[0].stderr
        elif isinstance(plan, DockerStatus):
            output = outputs[0].stdout.strip()
        else:
            output = outputs[0].stdout + outputs[0].stderr
    except ExecutionError as exc:
        logger.warning("operation failed", extra={"operation": operation, "error": str(exc)})
        return ExecutionResult(
            success=False,
            operation=operation,
            error=str(exc),
            duration_ms=int((time.perf_counter() - started) * 1000),
            timestamp=_now_iso(),
        )
    return ExecutionResult(
        success=True,
        operation=operation,
        output=output,
        commit_sha=commit_sha,
        duration_ms=int((time.perf_counter() - started) * 1000),
        timestamp=_now_iso(),
    )

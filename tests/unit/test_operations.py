import pytest

from opsdeck.errors import ExecutionError, InvalidOperation, ValidationError
from opsdeck.runner import operations
from opsdeck.runner.operations import (
    ComposeUp,
    DockerLogs,
    DockerRebuild,
    DockerStatus,
    GitPull,
    dispatch_operation,
    parse_operation_request,
    plan_operation,
)
from opsdeck.runner.shell import ProcessOutcome


def test_parse_rejects_unknown_operation() -> None:
    with pytest.raises(InvalidOperation, match="Invalid operation: format_disk"):
        parse_operation_request({"operation": "format_disk"})


def test_parse_rejects_malformed_body() -> None:
    with pytest.raises(ValidationError):
        parse_operation_request(["not", "an", "object"])
    with pytest.raises(ValidationError):
        parse_operation_request({"operation": "docker_logs", "options": {"tail": 0}})


def test_plans_build_argv_lists() -> None:
    pull = plan_operation(parse_operation_request({"operation": "git_pull", "target": {"repo_path": "/srv/app"}}))
    assert isinstance(pull, GitPull)
    assert pull.commands() == [["git", "pull"], ["git", "rev-parse", "HEAD"]]
    assert pull.cwd() == "/srv/app"

    rebuild = plan_operation(
        parse_operation_request(
            {"operation": "docker_rebuild", "target": {"compose_project": "app", "service_name": "web"}}
        )
    )
    assert isinstance(rebuild, DockerRebuild)
    assert rebuild.commands() == [["docker", "compose", "-p", "app", "up", "-d", "--build", "web"]]

    up = plan_operation(
        parse_operation_request(
            {"operation": "compose_up", "target": {"compose_project": "app"}, "options": {"build": True}}
        )
    )
    assert isinstance(up, ComposeUp)
    assert up.commands()[0][-1] == "--build"

    logs = plan_operation(parse_operation_request({"operation": "docker_logs", "target": {"container_name": "web"}}))
    assert isinstance(logs, DockerLogs)
    assert logs.commands() == [["docker", "logs", "--tail", "100", "web"]]

    status = plan_operation(parse_operation_request({"operation": "docker_status", "target": {"compose_project": "app"}}))
    assert isinstance(status, DockerStatus)
    assert "name=app" in status.commands()[0]


def test_missing_target_is_execution_error() -> None:
    with pytest.raises(ExecutionError, match="repo_path required"):
        plan_operation(parse_operation_request({"operation": "git_pull"}))
    with pytest.raises(ExecutionError, match="container_name or compose_project required"):
        plan_operation(parse_operation_request({"operation": "docker_restart"}))


@pytest.mark.asyncio
async def test_dispatch_git_pull_reports_commit(monkeypatch) -> None:
    calls: list[list[str]] = []

    async def _fake(argv, **kwargs):
        calls.append(argv)
        stdout = "abc123\n" if argv[1] == "rev-parse" else "Already up to date.\n"
        return ProcessOutcome(exit_code=0, stdout=stdout, stderr="", duration_ms=1)

    monkeypatch.setattr(operations, "run_process", _fake)
    request = parse_operation_request({"operation": "git_pull", "target": {"repo_path": "/srv/app"}})
    result = await dispatch_operation(request, timeout_s=5, max_output_bytes=1024)
    assert result.success is True
    assert result.commit_sha == "abc123"
    assert result.output == "Already up to date.\n"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_dispatch_failure_is_not_retried(monkeypatch) -> None:
    calls = 0

    async def _fake(argv, **kwargs):
        nonlocal calls
        calls += 1
        return ProcessOutcome(exit_code=1, stdout="", stderr="No such container: web", duration_ms=1)

    monkeypatch.setattr(operations, "run_process", _fake)
    request = parse_operation_request({"operation": "docker_restart", "target": {"container_name": "web"}})
    result = await dispatch_operation(request, timeout_s=5, max_output_bytes=1024)
    assert result.success is False
    assert result.error == "No such container: web"
    assert calls == 1
    assert "output" not in result.as_dict()

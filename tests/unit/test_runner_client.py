import json

import httpx
import pytest

from opsdeck.errors import CommandBlocked, ConfigError, UpstreamError, ValidationError
from opsdeck.runner.client import RunnerClient


def _client(handler) -> RunnerClient:
    return RunnerClient(transport=httpx.MockTransport(handler))


def _result(operation: str, success: bool = True, **extra) -> dict[str, object]:
    return {"success": success, "operation": operation, "duration_ms": 5, "timestamp": "t", **extra}


@pytest.mark.asyncio
async def test_execute_sends_bearer_and_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_result("docker_logs", output="hello"))

    result = await _client(handler).docker_logs("web", tail=50)
    assert result.output == "hello"
    assert seen[0].url == "http://runner.test/execute"
    assert seen[0].headers["Authorization"] == "Bearer test-runner-token"
    assert json.loads(seen[0].content) == {
        "operation": "docker_logs",
        "target": {"container_name": "web"},
        "options": {"tail": 50},
    }


@pytest.mark.asyncio
async def test_failed_operation_is_a_result_not_an_exception() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json=_result("git_pull", success=False, error="conflict"))

    result = await _client(handler).git_pull("/srv/app")
    assert result.success is False
    assert result.error == "conflict"


@pytest.mark.asyncio
async def test_rejections_raise() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/shell":
            return httpx.Response(403, json={"error": "Command blocked for security reasons"})
        return httpx.Response(403, json={"error": "Container name not in allowlist: db"})

    client = _client(handler)
    with pytest.raises(CommandBlocked):
        await client.shell("reboot")
    with pytest.raises(UpstreamError, match="not in allowlist"):
        await client.docker_restart("db")


@pytest.mark.asyncio
async def test_unreachable_runner_is_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UpstreamError) as exc_info:
        await _client(handler).health()
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_missing_token_is_config_error() -> None:
    client = RunnerClient(token="", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    assert client.configured is False
    with pytest.raises(ConfigError, match="RUNNER_TOKEN"):
        await client.shell("ls")


@pytest.mark.asyncio
async def test_docker_exec_validates_name() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content)["command"])
        return httpx.Response(
            200, json={"success": False, "stdout": "", "stderr": "nope", "exit_code": 2, "duration_ms": 1}
        )

    client = _client(handler)
    with pytest.raises(ValidationError):
        await client.docker_exec("web; reboot", "ls")
    result = await client.docker_exec("web", "ls /app")
    assert seen == ["docker exec web ls /app"]
    assert result == {"success": False, "stdout": "", "stderr": "nope", "error": "Exit code: 2"}


@pytest.mark.asyncio
async def test_deploy_stops_at_first_failure() -> None:
    operations: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        op = json.loads(request.content)["operation"]
        operations.append(op)
        if op == "git_pull":
            return httpx.Response(500, json=_result(op, success=False, error="merge conflict"))
        return httpx.Response(200, json=_result(op))

    outcome = await _client(handler).deploy("/srv/app", "app", "pull_rebuild")
    assert outcome.success is False
    assert outcome.error == "merge conflict"
    assert operations == ["git_pull"]


@pytest.mark.asyncio
async def test_deploy_success_records_commit() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        op = json.loads(request.content)["operation"]
        extra = {"commit_sha": "abc123"} if op == "git_pull" else {}
        return httpx.Response(200, json=_result(op, **extra))

    outcome = await _client(handler).deploy("/srv/app", "app", "compose_up")
    assert outcome.success is True
    assert outcome.commit_sha == "abc123"
    assert [step["operation"] for step in outcome.as_dict()["steps"]] == ["git_pull", "compose_up"]

import pytest

from opsdeck.errors import CommandBlocked
from opsdeck.runner import shell
from opsdeck.runner.shell import (
    OVERFLOW_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    ShellResult,
    decode_output,
    execute_shell,
    find_blocked_pattern,
    run_process,
)


@pytest.mark.parametrize(
    "command",
    [
        "rm -rf /",
        "RM -RF /",
        "sudo rm -fr /*",
        "mkfs.ext4 /dev/sda1",
        "dd if=/dev/zero of=/tmp/x",
        "echo hi > /dev/sda",
        "shutdown -h now",
        "Reboot",
        "passwd root",
        "useradd mallory",
        "userdel bob",
    ],
)
def test_blocklist_matches(command: str) -> None:
    assert find_blocked_pattern(command) is not None


@pytest.mark.parametrize(
    "command",
    [
        "ls -la",
        "rm -rf ./build",
        'pgrep -f "[d]ocker compose.*up.*build" > /dev/null && echo RUNNING',
        "cat /tmp/deploy-1.log 2>/dev/null || true",
        "docker ps",
    ],
)
def test_blocklist_allows_routine_commands(command: str) -> None:
    assert find_blocked_pattern(command) is None


@pytest.mark.asyncio
async def test_blocked_command_never_spawns(monkeypatch) -> None:
    async def _fail(*args, **kwargs):
        raise AssertionError("process spawned")

    monkeypatch.setattr(shell, "run_process", _fail)
    with pytest.raises(CommandBlocked):
        await execute_shell("rm -rf /")


@pytest.mark.asyncio
async def test_execute_shell_captures_output(tmp_path) -> None:
    result = await execute_shell("echo hello; echo oops >&2", cwd=str(tmp_path))
    assert result.success is True
    assert result.exit_code == 0
    assert result.stdout.strip() == "hello"
    assert result.stderr.strip() == "oops"
    assert result.cwd == str(tmp_path)


@pytest.mark.asyncio
async def test_execute_shell_reports_nonzero_exit(tmp_path) -> None:
    result = await execute_shell("exit 3", cwd=str(tmp_path))
    assert result.success is False
    assert result.exit_code == 3


@pytest.mark.asyncio
async def test_timeout_returns_synthetic_exit_code() -> None:
    outcome = await run_process(["sleep", "5"], timeout_s=0.2, max_output_bytes=1024)
    assert outcome.timed_out is True
    assert outcome.exit_code == TIMEOUT_EXIT_CODE
    assert outcome.duration_ms < 4000


@pytest.mark.asyncio
async def test_output_cap_kills_process() -> None:
    outcome = await run_process(["yes"], timeout_s=10, max_output_bytes=4096)
    assert outcome.truncated is True
    assert outcome.exit_code == OVERFLOW_EXIT_CODE
    assert len(outcome.stdout.encode()) <= 4096


@pytest.mark.asyncio
async def test_spawn_failure_is_reported() -> None:
    outcome = await run_process(["/nonexistent/binary"], timeout_s=1, max_output_bytes=1024)
    assert outcome.exit_code == 127
    assert "failed to start process" in outcome.stderr


@pytest.mark.parametrize(
    ("data", "text", "consumed"),
    [
        (b"plain", "plain", 5),
        (b"A\xc3", "A", 1),
        (b"\xe2\x82", "", 0),
        (b"A\xffB", "A\ufffdB", 3),
        ("é€".encode(), "é€", 5),
    ],
)
def test_decode_output_holds_back_partial_character(data: bytes, text: str, consumed: int) -> None:
    assert decode_output(data) == (text, consumed)


@pytest.mark.asyncio
async def test_execute_shell_counts_raw_stdout_bytes(tmp_path) -> None:
    target = tmp_path / "partial.log"
    target.write_bytes(b"caf\xc3\xa9 A\xc3")
    result = await execute_shell(f"cat {target}", cwd=str(tmp_path))
    assert result.stdout == "café A"
    assert result.stdout_bytes == 7


def test_shell_result_from_dict_without_byte_count() -> None:
    result = ShellResult.from_dict({"success": True, "stdout": "é", "exit_code": 0})
    assert result.stdout_bytes == 2
    assert ShellResult.from_dict({"stdout": "é", "stdout_bytes": 1}).stdout_bytes == 1

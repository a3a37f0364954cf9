"""Raw shell execution with a destructive-command blocklist."""

import asyncio
import codecs
import logging
import os
import re
import signal
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from opsdeck.errors import CommandBlocked

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
OVERFLOW_EXIT_CODE = 125
SPAWN_FAILURE_EXIT_CODE = 127
_READ_CHUNK_BYTES = 64 * 1024

# /dev/null and the std streams stay usable as redirection targets.
BLOCKED_PATTERNS = (
    re.compile(
        r"\brm\s+-(?:[a-z]*r[a-z]*f|[a-z]*f[a-z]*r)[a-z]*\s+(?:--no-preserve-root\s+)?/\*?(?=\s|$|[;&|])",
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:mkfs|mke2fs|mkswap|wipefs|fdisk|sfdisk|parted)\b", re.IGNORECASE),
    re.compile(r"\bdd\s+if=", re.IGNORECASE),
    re.compile(r"\bdd\b[^;&|]*\bof=/dev/", re.IGNORECASE),
    re.compile(r">\s*/dev/(?!null\b|stdout\b|stderr\b|fd/)", re.IGNORECASE),
    re.compile(r"\b(?:shutdown|reboot|halt|poweroff)\b", re.IGNORECASE),
    re.compile(r"\b(?:passwd|chpasswd|useradd|userdel|usermod|adduser|deluser)\b", re.IGNORECASE),
)


@dataclass(frozen=True, slots=True)
class ShellResult:
    """Outcome of a raw shell command.

    ``stdout_bytes`` is how many raw output bytes ``stdout`` was decoded from.
    A trailing incomplete UTF-8 sequence is left out of both, so a caller
    reading a growing file by byte offset picks it up on the next read.
    """

    success: bool
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    stdout_bytes: int
    cwd: str = ""
    truncated: bool = False
    timed_out: bool = False

    def as_dict(self) -> dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "ShellResult":
        stdout = str(payload.get("stdout") or "")
        exit_code = int(payload.get("exit_code", 1) or 0)  # type: ignore[arg-type]
        return cls(
            success=bool(payload.get("success", exit_code == 0)),
            stdout=stdout,
            stderr=str(payload.get("stderr") or ""),
            exit_code=exit_code,
            duration_ms=int(payload.get("duration_ms", 0) or 0),  # type: ignore[arg-type]
            stdout_bytes=_reported_stdout_bytes(payload.get("stdout_bytes"), stdout),
            cwd=str(payload.get("cwd") or ""),
            truncated=bool(payload.get("truncated", False)),
            timed_out=bool(payload.get("timed_out", False)),
        )


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    stdout_bytes: int = 0
    timed_out: bool = False
    truncated: bool = False


def decode_output(data: bytes) -> tuple[str, int]:
    """Decode UTF-8 output, holding back a trailing incomplete sequence.

    Returns the text and the number of input bytes it covers. Invalid bytes
    elsewhere become U+FFFD and still count as consumed.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    text = decoder.decode(data, final=False)
    pending, _ = decoder.getstate()
    return text, len(data) - len(pending)


def _reported_stdout_bytes(value: object, stdout: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return len(stdout.encode("utf-8"))


class _OutputBudget:
    def __init__(self, limit: int) -> None:
        self.limit = max(0, int(limit))
        self.used = 0
        self.overflowed = False

    def take(self, size: int) -> int:
        allowed = max(0, min(size, self.limit - self.used))
        self.used += allowed
        if allowed < size:
            self.overflowed = True
        return allowed


def find_blocked_pattern(command: str) -> str | None:
    """Return the first blocklist pattern the command matches, if any."""
    for pattern in BLOCKED_PATTERNS:
        if pattern.search(command):
            return pattern.pattern
    return None


def ensure_command_allowed(command: str) -> None:
    matched = find_blocked_pattern(command)
    if matched is not None:
        logger.warning("blocked shell command", extra={"command": command, "pattern": matched})
        raise CommandBlocked("Command blocked for security reasons")


def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        proc.kill()


async def _pump(
    stream: asyncio.StreamReader,
    sink: bytearray,
    budget: _OutputBudget,
    proc: asyncio.subprocess.Process,
) -> None:
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return
        allowed = budget.take(len(chunk))
        sink.extend(chunk[:allowed])
        if budget.overflowed:
            _kill_process_group(proc)
            return


async def run_process(
    argv: list[str],
    *,
    timeout_s: float,
    max_output_bytes: int,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
) -> ProcessOutcome:
    """Run argv with a wall-clock timeout and a combined stdout+stderr byte cap.

    Exceeding the timeout yields exit code 124, exceeding the cap yields 125;
    in both cases the process group is killed and whatever was captured so far
    is returned.
    """
    started = time.perf_counter()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        return ProcessOutcome(
            exit_code=SPAWN_FAILURE_EXIT_CODE,
            stdout="",
            stderr=f"failed to start process: {exc}",
            duration_ms=int((time.perf_counter() - started) * 1000),
        )

    assert proc.stdout is not None
    assert proc.stderr is not None
    out = bytearray()
    err = bytearray()
    budget = _OutputBudget(max_output_bytes)

    async def _drain() -> None:
        await asyncio.gather(
            _pump(proc.stdout, out, budget, proc),
            _pump(proc.stderr, err, budget, proc),
        )
        await proc.wait()

    timed_out = False
    try:
        await asyncio.wait_for(_drain(), timeout=timeout_s)
    except TimeoutError:
        timed_out = True
    finally:
        _kill_process_group(proc)
        await proc.wait()

    if timed_out:
        exit_code = TIMEOUT_EXIT_CODE
    elif budget.overflowed:
        exit_code = OVERFLOW_EXIT_CODE
    else:
        returncode = proc.returncode if proc.returncode is not None else 1
        exit_code = 128 - returncode if returncode < 0 else returncode

    stderr = err.decode("utf-8", errors="replace")
    if timed_out:
        stderr = f"{stderr}\ncommand timed out after {timeout_s:g}s".strip()
    elif budget.overflowed:
        stderr = f"{stderr}\noutput exceeded {budget.limit} bytes".strip()
    stdout, stdout_bytes = decode_output(bytes(out))
    return ProcessOutcome(
        exit_code=exit_code,
        stdout=stdout,
        stdout_bytes=stdout_bytes,
        stderr=stderr,
        duration_ms=int((time.perf_counter() - started) * 1000),
        timed_out=timed_out,
        truncated=budget.overflowed,
    )


def _shell_env(home: str) -> dict[str, str]:
    env = dict(os.environ)
    env["TERM"] = "xterm-256color"
    env["HOME"] = home
    return env


def resolve_working_dir(cwd: str | None, default_cwd: str = "") -> str:
    home = os.environ.get("HOME") or str(Path.home())
    candidate = (cwd or "").strip() or default_cwd.strip() or home
    return str(Path(candidate).expanduser())


async def execute_shell(
    command: str,
    *,
    cwd: str | None = None,
    default_cwd: str = "",
    timeout_s: float = 60.0,
    max_output_bytes: int = 5 * 1024 * 1024,
) -> ShellResult:
    """Run a command through bash after checking it against the blocklist.

    Raises CommandBlocked before anything is spawned if the command matches a
    destructive pattern.
    """
    ensure_command_allowed(command)
    working_dir = resolve_working_dir(cwd, default_cwd)
    home = os.environ.get("HOME") or str(Path.home())
    outcome = await run_process(
        ["/bin/bash", "-c", command],
        cwd=working_dir,
        env=_shell_env(home),
        timeout_s=timeout_s,
        max_output_bytes=max_output_bytes,
    )
    logger.info(
        "shell command finished",
        extra={"command": command, "exit_code": outcome.exit_code, "ms": outcome.duration_ms},
    )
    return ShellResult(
        success=outcome.exit_code == 0,
        stdout=outcome.stdout,
        stderr=outcome.stderr,
        exit_code=outcome.exit_code,
        duration_ms=outcome.duration_ms,
        stdout_bytes=outcome.stdout_bytes,
        cwd=working_dir,
        truncated=outcome.truncated,
        timed_out=outcome.timed_out,
    )

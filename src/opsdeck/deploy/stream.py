"""Server-Sent Events relay for deploy build logs.

The build writes to a log file on the host. Each connected client gets its
own polling loop that asks the execution gateway whether the build is still
running, reads the bytes appended since the last poll and forwards them as
``log``/``status`` events, then ends with a single ``complete`` event.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shlex
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass

from opsdeck.config import Settings, get_settings
from opsdeck.errors import OpsdeckError, StreamTimeoutError, ValidationError
from opsdeck.runner.client import RunnerClient

logger = logging.getLogger(__name__)

_LOG_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+\.log$")

Sleep = Callable[[float], Awaitable[None]]
DisconnectCheck = Callable[[], Awaitable[bool]]


@dataclass(slots=True)
class StreamSession:
    log_file: str
    offset: int = 0
    polls: int = 0
    complete: bool = False
    closed: bool = False

    def completion(self, timeout: StreamTimeoutError | None = None) -> dict[str, object]:
        payload: dict[str, object] = {
            "success": True,
            "totalBytes": self.offset,
            "timedOut": timeout is not None,
        }
        if timeout is not None:
            payload["reason"] = str(timeout)
        return payload


def format_sse(event: str, data: object) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def validate_log_path(log_file: str | None, settings: Settings | None = None) -> str:
    """Accept only ``<DEPLOY_LOG_DIR>/<DEPLOY_LOG_PREFIX>*.log`` with a plain file name."""
    settings = settings or get_settings()
    if not log_file:
        raise ValidationError("logFile parameter required")
    directory = settings.deploy_log_dir.rstrip("/")
    prefix = f"{directory}/{settings.deploy_log_prefix}"
    if not log_file.startswith(prefix) or not log_file.endswith(".log"):
        raise ValidationError("Invalid log file path")
    name = log_file[len(directory) + 1 :]
    if ".." in name or not _LOG_NAME_RE.fullmatch(name):
        raise ValidationError("Invalid log file path")
    return log_file


def liveness_command(pattern: str) -> str:
    # Bracketing the first character keeps pgrep from matching the probing shell itself.
    if pattern and pattern[0].isalnum():
        pattern = f"[{pattern[0]}]{pattern[1:]}"
    return f'pgrep -f {shlex.quote(pattern)} > /dev/null && echo "RUNNING" || echo "COMPLETE"'


def read_command(log_file: str, offset: int) -> str:
    quoted = shlex.quote(log_file)
    if offset == 0:
        return f"cat {quoted} 2>/dev/null || true"
    return f"tail -c +{offset + 1} {quoted} 2>/dev/null || true"


async def stream_deploy_logs(
    session: StreamSession,
    runner: RunnerClient,
    *,
    is_disconnected: DisconnectCheck,
    settings: Settings | None = None,
    sleep: Sleep = asyncio.sleep,
) -> AsyncIterator[str]:
    """Yield SSE frames until the build finishes, the poll budget runs out or the client leaves.

    The disconnect check runs before every frame; once it reports True no
    further gateway calls are made and nothing else is yielded.
    """
    settings = settings or get_settings()
    max_polls = settings.deploy_stream_max_polls
    probe = liveness_command(settings.deploy_build_process_pattern)

    async def still_open() -> bool:
        if session.closed:
            return False
        if await is_disconnected():
            session.closed = True
            logger.info(
                "deploy log client disconnected",
                extra={"log_file": session.log_file, "offset": session.offset},
            )
            return False
        return True

    try:
        while not session.complete and session.polls < max_polls and not session.closed:
            try:
                status = await runner.shell(probe)
                session.complete = "COMPLETE" in status.stdout
                chunk = await runner.shell(read_command(session.log_file, session.offset))
            except OpsdeckError as exc:
                logger.warning(
                    "deploy log poll failed",
                    extra={"log_file": session.log_file, "error": str(exc)},
                )
                if not await still_open():
                    break
                yield format_sse("error", {"message": "Failed to read logs"})
                session.polls += 1
                await sleep(settings.deploy_stream_error_backoff_seconds)
                continue

            content = chunk.stdout
            if content:
                if not await still_open():
                    break
                yield format_sse("log", {"content": content})
                session.offset += chunk.stdout_bytes

            if not await still_open():
                break
            yield format_sse("status", {"running": not session.complete, "offset": session.offset})

            if not session.complete:
                await sleep(settings.deploy_stream_poll_seconds)
                session.polls += 1

        timeout = None
        if not session.complete and session.polls >= max_polls:
            timeout = StreamTimeoutError(
                f"build still running after {max_polls} polls", total_bytes=session.offset
            )
            logger.warning(
                "deploy log stream timed out",
                extra={"log_file": session.log_file, "total_bytes": session.offset},
            )
        if await still_open():
            yield format_sse("complete", session.completion(timeout))
    finally:
        logger.debug(
            "deploy log stream finished",
            extra={"log_file": session.log_file, "offset": session.offset, "closed": session.closed},
        )

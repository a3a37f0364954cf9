import io
import json
import logging

import pytest
import structlog

from opsdeck.logging import configure_logging, log_context


@pytest.fixture
def json_events():
    configure_logging("INFO", json_output=True)
    # pytest closes the setup-phase stderr before the test body runs, so give
    # the installed handler a stream this fixture owns.
    buffer = io.StringIO()
    for handler in logging.getLogger().handlers:
        if isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter):
            handler.setStream(buffer)

    def _read() -> list[dict]:
        err = buffer.getvalue()
        buffer.seek(0)
        buffer.truncate()
        return [json.loads(line) for line in err.splitlines() if line.startswith("{")]

    yield _read
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler.formatter, structlog.stdlib.ProcessorFormatter):
            root.removeHandler(handler)
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.NOTSET)
    structlog.reset_defaults()


def test_extra_fields_are_rendered(json_events) -> None:
    logging.getLogger("opsdeck.runner.app").info(
        "operation finished", extra={"operation": "git_pull", "success": True, "duration_ms": 12}
    )
    event = json_events()[-1]
    assert event["event"] == "operation finished"
    assert event["operation"] == "git_pull"
    assert event["success"] is True
    assert event["duration_ms"] == 12
    assert event["logger"] == "opsdeck.runner.app"
    assert event["level"] == "info"


def test_log_context_applies_inside_block_only(json_events) -> None:
    log = logging.getLogger("opsdeck.runner.shell")
    with log_context(client="172.18.0.5"):
        log.info("shell command finished", extra={"exit_code": 0})
    log.info("outside")
    inside, outside = json_events()[-2:]
    assert inside["client"] == "172.18.0.5"
    assert inside["exit_code"] == 0
    assert "client" not in outside


def test_gateway_poll_requests_are_not_logged_at_info(json_events) -> None:
    logging.getLogger("httpx").info("HTTP Request: POST http://runner/shell")
    assert json_events() == []

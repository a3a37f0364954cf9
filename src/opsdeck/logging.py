"""structlog setup shared by the gateway, the dashboard and the CLI.

Modules keep logging through ``logging.getLogger(__name__)`` with
``extra={...}`` fields; the formatter installed here lifts those fields and
any bound context variables into the rendered event.
"""

import logging
import sys
from contextlib import AbstractContextManager

import structlog

from opsdeck.config import get_settings

# Loggers that would otherwise emit a line per gateway poll.
_CHATTY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str, json_output: bool | None = None) -> None:
    """Route stdlib and structlog output through one structlog formatter.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output. If None, JSON is used when APP_ENV is prod.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    if json_output is None:
        json_output = get_settings().app_env == "prod"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.ExtraAdder(),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(default=str)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)
    # uvicorn installs its own handlers; route them through ours instead.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers.clear()
        logging.getLogger(name).propagate = True
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def log_context(**fields: object) -> AbstractContextManager[None]:
    """Attach fields to every log event emitted inside the ``with`` block.

    Must be entered and exited in the same task.
    """
    return structlog.contextvars.bound_contextvars(**fields)

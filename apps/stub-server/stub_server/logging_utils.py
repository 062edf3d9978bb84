"""Structured logging helpers for the stub server."""

from __future__ import annotations

import logging
import sys
from io import StringIO
from typing import Any

import structlog
from rich.console import Console
from rich.text import Text

from .output_config import LogFormat, get_log_format

_HIDDEN_KEYS = ("color_message", "stack", "exception")


class RichConsoleRenderer:
    """structlog renderer printing aligned, colored key=value lines via Rich."""

    level_styles = {
        "debug": "dim cyan",
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "critical": "bold white on red",
    }

    def __init__(self, width: int = 200) -> None:
        self.width = width

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info")
        event = event_dict.pop("event", "")
        exception = event_dict.pop("exception", None)

        text = Text()
        text.append(timestamp, style="dim white")
        text.append(" ")
        text.append(f"[{level:<8}]", style=self.level_styles.get(level, "white"))
        text.append(" ")
        text.append(event, style="bold white")

        # pad so key=value pairs of short events line up
        padding = max(0, 32 - len(event))
        if padding and event_dict:
            text.append(" " * padding)

        items = [(key, value) for key, value in sorted(event_dict.items()) if key not in _HIDDEN_KEYS]
        for index, (key, value) in enumerate(items):
            text.append(f"{key}=", style="dim white")
            text.append(str(value), style="bright_cyan")
            if index < len(items) - 1:
                text.append(" ")
        if exception:
            text.append("\n")
            text.append(str(exception), style="red")

        buffer = StringIO()
        Console(file=buffer, force_terminal=True, width=self.width, legacy_windows=False).print(text, end="")
        return buffer.getvalue()


_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def _renderer(log_format: LogFormat) -> Any:
    if log_format == "console":
        return RichConsoleRenderer()
    if log_format == "plain":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer()


def configure_logging(
    log_level: str = "info",
    log_format: LogFormat | None = None,
    **context: Any,
) -> structlog.stdlib.BoundLogger:
    """Route stub server events through structlog and return a bound logger.

    ``log_format`` defaults to whatever ``get_log_format`` resolves from the
    environment. JSON output keeps exceptions as structured dicts so request
    failures stay machine readable; the text formats render them inline.
    Loggers are not cached, so module-level loggers pick up a reconfiguration
    (``serve`` configures logging after the modules are imported).

    Raises:
        ValueError: ``log_level`` is not a known level name.
    """

    try:
        level = _LEVELS[log_level.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown log level {log_level!r}, expected one of {', '.join(_LEVELS)}") from None
    log_format = log_format or get_log_format()

    logging.basicConfig(level=level, stream=sys.stdout, format="%(message)s", force=True)

    exception_processor = (
        structlog.processors.dict_tracebacks if log_format == "json" else structlog.processors.format_exc_info
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            exception_processor,
            _renderer(log_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    return structlog.get_logger("stub_server").bind(**context)

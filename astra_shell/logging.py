"""Structured logging for AstraShell.

Events are rendered by structlog as ``console``, ``json`` or ``plain``
key=value lines, per the ``logging`` config section. While the terminal UI
is running, rendered lines are handed to its sink instead of stderr.

Request handling binds ``session_id`` and ``tool`` with :func:`log_context`,
so every event logged underneath (including inside tool tasks) carries them.
"""

import logging
import sys
from typing import Any, Callable, ContextManager

import structlog

from astra_shell.config import get_config

CONTEXT_KEYS = ("session_id", "tool")

_system_log_sink: Callable[[str], None] | None = None


class _SinkLogger:
    """structlog logger that hands each rendered line to a callback."""

    def __init__(self, sink: Callable[[str], None]):
        self._sink = sink

    def msg(self, message: str) -> None:
        for line in str(message).splitlines():
            if line.strip():
                self._sink(line)

    log = debug = info = warning = warn = error = critical = exception = fatal = msg


def set_system_log_sink(sink: Callable[[str], None] | None) -> None:
    """Route log lines to a callback instead of stderr (used by the terminal UI)."""
    global _system_log_sink
    _system_log_sink = sink


def log_context(**values: Any) -> ContextManager[Any]:
    """Bind values such as ``session_id`` or ``tool`` to events logged inside the block."""
    return structlog.contextvars.bound_contextvars(
        **{key: value for key, value in values.items() if value is not None}
    )


def clip_long_values(limit: int) -> Callable[[Any, str, dict[str, Any]], dict[str, Any]]:
    """Processor that shortens oversized string fields (command output, file content)."""

    def processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        if limit <= 0:
            return event_dict
        for key, value in event_dict.items():
            if key != "event" and isinstance(value, str) and len(value) > limit:
                event_dict[key] = f"{value[:limit]}... [{len(value)} chars]"
        return event_dict

    return processor


def _renderer(fmt: str, colors: bool) -> Callable[..., Any]:
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    if fmt == "plain":
        return structlog.processors.KeyValueRenderer(
            key_order=["timestamp", "level", "event", *CONTEXT_KEYS],
            drop_missing=True,
        )
    return structlog.dev.ConsoleRenderer(colors=colors)


def configure_logging(level: str | None = None) -> None:
    """Configure structlog from the ``logging`` config section.

    Args:
        level: Optional level overriding the configured one (``-v`` passes DEBUG)
    """
    settings = get_config().logging
    log_level = getattr(logging, (level or settings.level).upper(), logging.WARNING)
    sink = _system_log_sink

    structlog.configure(
        processors=[
            clip_long_values(settings.max_value_chars),
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(settings.format, colors=sink is not None or sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=(
            (lambda *args: _SinkLogger(sink))
            if sink is not None
            else structlog.PrintLoggerFactory(file=sys.stderr)
        ),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name) if name else structlog.get_logger()


log = get_logger(__name__)

"""
Structured logging for curve-spine.

Engine modules emit key/value events through structlog (``instance.created``,
``freshness.group_opened``, ``merge.completed``), which gives supersessions
and merges an audit trail. Callers scope their identity onto those events
with :class:`LogContext`.

JSON output uses ECS field names so the lines can be shipped as-is::

    {"event": "instance.created", "instance_id": "01HX", "version": "v2",
     "@timestamp": "2025-04-01T12:00:00Z", "log.level": "info",
     "service.name": "curve-spine"}
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_ECS_RENAMES = (("timestamp", "@timestamp"), ("level", "log.level"))


class _EcsFields:
    """Rename structlog's default keys to their ECS names and stamp the service."""

    def __init__(self, service: str, rename: bool) -> None:
        self.service = service
        self.rename = rename

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", self.service)
        if self.rename:
            for old, new in _ECS_RENAMES:
                if old in event_dict:
                    event_dict[new] = event_dict.pop(old)
        return event_dict


def _processor_chain(service: str, json_format: bool, add_timestamp: bool) -> list[Processor]:
    chain: list[Processor] = []
    if add_timestamp:
        chain.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    chain += [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _EcsFields(service, rename=json_format),
    ]
    if json_format:
        chain += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=True))
    return chain


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "curve-spine",
    add_timestamp: bool = True,
    stream: Any = None,
    cache_loggers: bool = True,
) -> None:
    """Install the structlog pipeline.

    ``json_format=None`` picks JSON whenever stdout is not a terminal. Lines go
    to ``stream`` (stdout by default); the CLI passes stderr so ``--json``
    output stays parseable. Tests pass ``cache_loggers=False`` because
    module-level loggers are created before each test reconfigures.
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")
    if json_format is None:
        json_format = not sys.stdout.isatty()
    target = stream or sys.stdout

    structlog.configure(
        processors=_processor_chain(service, json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=target),
        cache_logger_on_first_use=cache_loggers,
    )
    # SQLAlchemy warnings
    logging.basicConfig(format="%(name)s %(levelname)s %(message)s", stream=target, level=numeric)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


class LogContext:
    """Bind key/values to every event logged inside the ``with`` block.

    ``None`` values are skipped. Nested blocks may rebind a key; the outer
    value comes back when the inner block exits.
    """

    def __init__(self, **values: Any) -> None:
        self.values = {k: v for k, v in values.items() if v is not None}
        self._tokens: Any = None

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self.values)
        return self

    def __exit__(self, *exc: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)


__all__ = ["LogContext", "configure_logging", "get_logger"]

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.contextvars import bound_contextvars

__all__ = [
    "dispatch_context",
    "get_logger",
    "redact_secrets",
    "setup_logging",
]

_BOT_AUTH_RE = re.compile(r"(Bot\s+)[A-Za-z0-9_.\-]{20,}")
_TOKEN_RE = re.compile(
    r"[A-Za-z0-9_\-]{20,}\.[A-Za-z0-9_\-]{4,}\.[A-Za-z0-9_\-]{20,}"
)


def _redact_text(value: str) -> str:
    value = _BOT_AUTH_RE.sub(r"\1[REDACTED]", value)
    return _TOKEN_RE.sub("[REDACTED]", value)


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return _redact_text(value)
    if isinstance(value, dict):
        return {key: _redact_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(item) for item in value)
    return value


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key, value in list(event_dict.items()):
        event_dict[key] = _redact_value(value)
    return event_dict


def setup_logging(*, debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False),
            structlog.processors.StackInfoRenderer(),
            redact_secrets,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


@contextmanager
def dispatch_context(**fields: Any) -> Iterator[None]:
    """Bind fields for the duration of one dispatch.

    Previous values are restored on exit, per task.
    """
    with bound_contextvars(
        **{key: value for key, value in fields.items() if value is not None}
    ):
        yield

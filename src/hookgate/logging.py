"""Structured logging for Hookgate.

Log records are structlog event dicts rendered through the standard library,
as JSON lines in production and as colored console lines in development.
Signing secrets and raw API keys never reach the output: any field named
like one is masked before rendering.

Request handlers and the dispatcher attach their scope (``key_id``,
``event_type`` and so on) with :func:`log_context` or :func:`bind_context`,
so every record emitted underneath carries it without repeating it at each
call site.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TextIO

import structlog

if TYPE_CHECKING:
    from structlog.typing import Processor

REDACTED = "[redacted]"
SENSITIVE_FIELDS = frozenset({"secret", "raw_key", "api_key", "authorization", "signature"})

# Client libraries that log every outbound request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore")

_configured = False


def redact_sensitive_fields(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask values of fields that hold secrets or credentials."""
    for key in SENSITIVE_FIELDS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    level: str = "INFO",
    format: str = "json",
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and the standard library for Hookgate.

    Safe to call more than once; the last call wins for loggers that have
    not emitted yet.

    Args:
        level: Log level name. Unknown names fall back to INFO.
        format: ``"json"`` for one JSON object per line, ``"text"`` for console output.
        stream: Where records are written. Defaults to stdout.
    """
    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=log_level,
    )
    logging.getLogger("hookgate").setLevel(log_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive_fields,
        structlog.processors.StackInfoRenderer(),
    ]
    if format.lower() == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=stream is None))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: object) -> None:
    """Attach fields to every record logged from the current task onwards."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Drop all fields bound in the current context."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**kwargs: object) -> Iterator[None]:
    """Bind fields for the duration of a block, restoring the previous values after.

    Tasks started inside the block (e.g. by ``asyncio.gather``) inherit the
    fields.

    Example:
        ```python
        with log_context(event_type="goal.achieved"):
            await dispatcher.dispatch_event(event)
        ```
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield

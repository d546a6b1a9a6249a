"""Structured logging for blocksync.

Every module logs through ``logging.getLogger(__name__)``; the handlers
installed here render those records with structlog, either as console text
or as JSON lines. Records written while an account is bound with
``account_context()`` carry that account, and records written inside the
pass span carry its trace ids.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

# ---------------------------------------------------------------------------
# Account context (asyncio-safe via ContextVar)
# ---------------------------------------------------------------------------

_account_context: ContextVar[str | None] = ContextVar("blocksync_account", default=None)


@contextmanager
def account_context(name: str) -> Iterator[None]:
    """Bind *name* as the current account for the duration of the block."""
    token = _account_context.set(name)
    try:
        yield
    finally:
        _account_context.reset(token)


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_account_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Tag the record with the account being read or written, if any."""
    account = _account_context.get()
    if account is not None:
        event_dict.setdefault("account", account)
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Tag the record with the ids of the enclosing pass span.

    Records emitted outside any span carry no trace ids.
    """
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

# Per-request lines from the HTTP client drown out the pass summary.
_NOISE_LOGGERS = ("httpx", "httpcore")

LOG_FILE_NAME = "blocksync.log"

_CONSOLE_TIME_FORMAT = "%H:%M:%S"


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_account_context,
        add_otel_context,
    ]


def _with_renderer(
    handler: logging.Handler,
    renderer: structlog.types.Processor,
    *,
    time_fmt: str,
) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=_pre_chain(time_fmt),
        )
    )
    return handler


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
) -> None:
    """Route all stdlib logging through structlog renderers.

    Parameters
    ----------
    level:
        Root log level name; unknown names fall back to INFO.
    fmt:
        ``"text"`` for colored console lines, ``"json"`` for JSON lines on
        stderr.
    log_root:
        Directory for ``blocksync.log``, a JSON file receiving every record
        the root level lets through. Created if missing.

    Calling this again replaces the handlers installed by a previous call.
    """
    if fmt == "json":
        console = _with_renderer(
            logging.StreamHandler(sys.stderr), structlog.processors.JSONRenderer(), time_fmt="iso"
        )
    else:
        console = _with_renderer(
            logging.StreamHandler(sys.stderr),
            structlog.dev.ConsoleRenderer(),
            time_fmt=_CONSOLE_TIME_FORMAT,
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        directory = Path(log_root)
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = _with_renderer(
            logging.FileHandler(directory / LOG_FILE_NAME),
            structlog.processors.JSONRenderer(),
            time_fmt="iso",
        )
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)

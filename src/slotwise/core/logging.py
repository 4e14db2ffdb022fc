"""Structured logging for slotwise.

Every module logs through ``logging.getLogger(__name__)``; this module routes
those records through structlog's ``ProcessorFormatter`` so they come out as
console text or JSON lines carrying the acting user, the OpenTelemetry trace
ids and with OAuth secrets masked.

With ``log_root`` set, JSON copies are written to::

    {log_root}/app/slotwise.log    # everything reaching the root logger
    {log_root}/http/slotwise.log   # uvicorn and httpx/httpcore transport
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_user_context: ContextVar[int | None] = ContextVar("user_id", default=None)


def set_user_context(user_id: int | None) -> None:
    """Record the acting user for log lines emitted in this async context."""
    _user_context.set(user_id)


def get_user_context() -> int | None:
    return _user_context.get()


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------

SECRET_KEYS = frozenset(
    {"access_token", "refresh_token", "client_secret", "authorization"}
)


def add_user_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Add ``user_id`` (``None`` outside a request)."""
    event_dict["user_id"] = _user_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Add ``trace_id``/``span_id`` hex ids, zero-filled when no span is active."""
    span_context = trace.get_current_span().get_span_context()
    trace_id = span_context.trace_id if span_context.is_valid else 0
    span_id = span_context.span_id if span_context.is_valid else 0
    event_dict["trace_id"] = f"{trace_id:032x}"
    event_dict["span_id"] = f"{span_id:016x}"
    return event_dict


def redact_secrets(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Mask OAuth credentials passed as structured fields or ``extra=``."""
    for key in SECRET_KEYS & event_dict.keys():
        if event_dict[key]:
            event_dict[key] = "[REDACTED]"
    return event_dict


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

# Third-party loggers kept at WARNING on the console and mirrored to http/.
_NOISE_LOGGERS = (
    "uvicorn.access",
    "uvicorn.error",
    "httpx",
    "httpcore",
)

_APP_DIR = "app"
_HTTP_DIR = "http"


def _pre_chain(timestamp_format: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_format),
        add_user_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
        redact_secrets,
    ]


def _formatter(
    renderer: structlog.types.Processor, pre_chain: list[structlog.types.Processor]
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def _json_file_handler(path: Path) -> logging.FileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), _pre_chain("iso")))
    return handler


def _attach(handler: logging.Handler, logger_names: Iterable[str]) -> None:
    for name in logger_names:
        logging.getLogger(name).addHandler(handler)


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
    app_name: str = "slotwise",
) -> None:
    """Install the console handler (and optional JSON files) on the root logger.

    Safe to call more than once; earlier root handlers are replaced.

    Parameters
    ----------
    level:
        Root level name, case-insensitive; unknown names fall back to INFO.
    fmt:
        ``"text"`` for the colored console renderer, ``"json"`` for JSON lines.
    log_root:
        Directory for the ``app/`` and ``http/`` JSON log files.
    app_name:
        Stem of the log file names.
    """
    if fmt == "json":
        pre_chain = _pre_chain("iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, pre_chain))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.handlers.clear()
        noisy.setLevel(logging.WARNING)

    if log_root is not None:
        log_root = Path(log_root)
        root.addHandler(_json_file_handler(log_root / _APP_DIR / f"{app_name}.log"))
        _attach(_json_file_handler(log_root / _HTTP_DIR / f"{app_name}.log"), _NOISE_LOGGERS)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

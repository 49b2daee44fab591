"""Structured logging for questsync.

Stdlib ``logging.getLogger(__name__)`` call sites are rendered through
structlog's ProcessorFormatter, either as colored console text or as
JSON lines. Every record gets the user of the active sync run and the
current trace/span ids; OAuth secrets are masked before rendering.

With ``log_root`` set, JSON copies are also written to::

    {log_root}/questsync/{log_name}.log   application records
    {log_root}/http/{log_name}.log        uvicorn and httpx records
"""

from __future__ import annotations

import logging
import re
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_current_user: ContextVar[str | None] = ContextVar("sync_user_id", default=None)


def set_sync_context(user_id: object | None) -> None:
    """Bind (or clear, with None) the user the current task syncs for."""
    _current_user.set(None if user_id is None else str(user_id))


def get_sync_context() -> str | None:
    return _current_user.get()


def add_sync_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    user_id = _current_user.get()
    if user_id is not None:
        event_dict["user_id"] = user_id
    return event_dict


def add_otel_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    """Attach hex ``trace_id``/``span_id``; all zeros outside a span."""
    span_context = trace.get_current_span().get_span_context()
    valid = span_context is not None and span_context.trace_id != 0
    event_dict["trace_id"] = format(span_context.trace_id if valid else 0, "032x")
    event_dict["span_id"] = format(span_context.span_id if valid else 0, "016x")
    return event_dict


_REDACTED = "<REDACTED>"
_SECRET_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+"),
    # key=value, key: value and "key": "value" forms
    re.compile(
        r"(?i)(\b(?:access_token|refresh_token|client_secret|code)[\"']?\s*[=:]\s*[\"']?)"
        r"[^\s&\"',}]+"
    ),
)


def redact_secret_text(text: str) -> str:
    """Mask bearer tokens and OAuth secrets embedded in *text*."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(rf"\1{_REDACTED}", text)
    return text


def redact_secrets(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = redact_secret_text(value)
    return event_dict


# Transport loggers: kept at WARNING on the console, mirrored to http/ on disk.
TRANSPORT_LOGGERS = ("uvicorn.access", "uvicorn.error", "httpx", "httpcore")


def _pre_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt),
        add_sync_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
        redact_secrets,
    ]


def _formatter(renderer, pre_chain: list) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def _json_file(path: Path) -> logging.FileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), _pre_chain("iso")))
    return handler


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    log_name: str = "questsync",
) -> None:
    """(Re)configure process-wide logging.

    Args:
        level: Root level name, e.g. ``"DEBUG"``.
        fmt: ``"text"`` for the dev console renderer, ``"json"`` for JSON lines.
        log_root: Directory for JSON log files; console only when None.
        log_name: File stem of both log files.
    """
    if fmt == "json":
        pre_chain = _pre_chain("iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, pre_chain))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    transport_file = None
    if log_root is not None:
        log_root = Path(log_root)
        root.addHandler(_json_file(log_root / "questsync" / f"{log_name}.log"))
        transport_file = _json_file(log_root / "http" / f"{log_name}.log")

    for name in TRANSPORT_LOGGERS:
        transport = logging.getLogger(name)
        transport.setLevel(logging.WARNING)
        if transport_file is not None:
            transport.addHandler(transport_file)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

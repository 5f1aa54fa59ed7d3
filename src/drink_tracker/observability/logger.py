"""structlog rendering for every log line the tracker (and uvicorn) emits.

Modules log through plain ``logging.getLogger(__name__)``.
``setup_logging`` installs one root handler whose formatter runs those
records through structlog, rendering JSON lines for a log shipper or
colored console output for the laptop behind the bar.

Each HTTP request gets a short trace id (see the API middleware) that is
stamped on every line logged while it is handled.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any

import structlog

_request_trace: ContextVar[str] = ContextVar("drink_tracker_trace_id", default="")


def get_trace_id() -> str:
    return _request_trace.get()


def set_trace_id(trace_id: str) -> None:
    _request_trace.set(trace_id)


def new_trace_id() -> str:
    """Start a fresh trace for the current request and return its id."""
    trace_id = uuid.uuid4().hex[:16]
    set_trace_id(trace_id)
    return trace_id


def _stamp_trace_id(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    trace_id = get_trace_id()
    if trace_id:
        event_dict.setdefault("trace_id", trace_id)
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        _stamp_trace_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def setup_logging(level: str = "INFO", format: str = "console") -> None:
    """Route all logging through structlog.

    Args:
        level: Root level name; unknown names fall back to INFO.
        format: ``"json"`` or ``"console"``.
    """
    pre_chain = _pre_chain()
    if format == "json":
        tail: list[Any] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        tail = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *tail],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # uvicorn installs its own handlers unless told otherwise; send them to root.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv = logging.getLogger(name)
        uv.handlers.clear()
        uv.propagate = True

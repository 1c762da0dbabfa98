"""Propmarket logging configuration.

Call ``configure_logging()`` once at process startup (e.g. in ``__main__``).
Every other module must define its own logger at module scope:

    import logging
    logger = logging.getLogger(__name__)

Supported environment variables (read at call time):
    LOG_LEVEL   DEBUG | INFO | WARNING | ERROR   (default: INFO)
    LOG_FORMAT  text | json                      (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "configure_logging",
    "new_request_id",
    "JsonFormatter",
    "REQUEST_ID_CTX",
    "RequestContextFilter",
]

# ---------------------------------------------------------------------------
# Operation-scoped context variable
# ---------------------------------------------------------------------------

#: Async-safe context variable holding the correlation id of the operation in
#: flight (a reconciliation run, a status change, a CLI command).  Set via
#: :func:`new_request_id`; defaults to ``"-"`` outside any operation.
REQUEST_ID_CTX: ContextVar[str] = ContextVar("request_id", default="-")

logger = logging.getLogger(__name__)

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_FORMATS = {"text", "json"}

# ``%(request_id)s`` is injected by :class:`RequestContextFilter`.
_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def new_request_id(request_id: str | None = None) -> str:
    """Bind a correlation id to the current async context and return it.

    Args:
        request_id: Caller-supplied id (e.g. an ``X-Request-Id`` header).
            Blank values are ignored and a fresh 8-char hex id is generated.

    Returns:
        The id now visible to every log record emitted from this context.
    """
    rid = (request_id or "").strip() or uuid.uuid4().hex[:8]
    REQUEST_ID_CTX.set(rid)
    return rid


class RequestContextFilter(logging.Filter):
    """Inject the current correlation id into every log record.

    Installed on the handler by :func:`configure_logging`, so it runs just
    before formatting and the text format's ``%(request_id)s`` token always
    resolves.  JSON lines carry it as a top-level ``"request_id"`` key.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.request_id = REQUEST_ID_CTX.get("-")
        return True


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Configure the root logger for the entire process.

    Args:
        level: Logging level string (DEBUG/INFO/WARNING/ERROR/CRITICAL).
            Falls back to ``$LOG_LEVEL`` env var, then "INFO".
        fmt: Output format ("text" or "json").
            Falls back to ``$LOG_FORMAT`` env var, then "text".
        force: If True, reconfigure even if logging has already been set up.
            Useful in tests and CLI entry-points.

    Raises:
        ValueError: If *level* or *fmt* contain an unrecognised value.
    """
    resolved_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    resolved_fmt = (fmt or os.environ.get("LOG_FORMAT", "text")).lower()

    if resolved_level not in _VALID_LEVELS:
        raise ValueError(
            f"Unknown LOG_LEVEL {resolved_level!r}. "
            f"Must be one of: {', '.join(sorted(_VALID_LEVELS))}"
        )
    if resolved_fmt not in _VALID_FORMATS:
        raise ValueError(
            f"Unknown LOG_FORMAT {resolved_fmt!r}. "
            f"Must be one of: {', '.join(sorted(_VALID_FORMATS))}"
        )

    root = logging.getLogger()

    if root.handlers and not force:
        # Already configured (e.g. by pytest's log_cli); only apply the level.
        root.setLevel(resolved_level)
        return

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved_level)
    handler.addFilter(RequestContextFilter())

    if resolved_fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT))

    root.setLevel(resolved_level)
    root.addHandler(handler)

    if resolved_level != "DEBUG":
        for noisy in ("httpx", "httpcore", "asyncio", "aiosqlite"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

#: Attributes every LogRecord carries; anything else was passed via ``extra``.
_STANDARD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

#: ``extra`` keys promoted to the top level of a JSON line.
_PROMOTED: tuple[str, ...] = ("event", "request_id")


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per log record.

    Output shape::

        {
            "ts":         "2026-02-28T12:34:56.789Z",
            "level":      "INFO",
            "logger":     "propmarket.media.reconciler",
            "message":    "reconcile (live) — scanned=3 orphans=1 deleted=1",
            "event":      "RECONCILE_COMPLETE",
            "request_id": "a3f2b1c0",
            "extra":      {}
        }

    ``event`` is ``null`` for records logged without one.  ``exc_info`` is
    added only when the record carries an exception.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        stamp = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": stamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _PROMOTED:
            payload[key] = getattr(record, key, None)
        payload["extra"] = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and key not in _PROMOTED
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)

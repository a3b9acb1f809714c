"""APATIT logging configuration.

Call ``configure_logging()`` once at process startup (e.g. in ``__main__``).
Every other module must define its own logger at module scope:

    import logging
    logger = logging.getLogger(__name__)

Supported environment variables (read at call time):
    LOG_LEVEL   DEBUG | INFO | WARNING | ERROR   (default: INFO)
    LOG_FORMAT  text | json                      (default: text)

The upstream API authenticates with an ``api_key`` query parameter, so any
URL that reaches a log line would leak it.  :class:`ApiKeyRedactionFilter` is
installed on the handler and rewrites every rendered message and traceback
through :func:`mask_api_key`, including records emitted by ``httpx`` itself.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
import traceback
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "configure_logging",
    "mask_api_key",
    "JsonFormatter",
    "CYCLE_ID_CTX",
    "CycleContextFilter",
    "ApiKeyRedactionFilter",
]

# ---------------------------------------------------------------------------
# Cycle-scoped context variable
# ---------------------------------------------------------------------------

#: Async-safe context variable that holds the current scheduler-cycle id.
#: Set to ``uuid4().hex[:8]`` at the start of every metrics / stats cycle and
#: inherited by every per-task coroutine spawned via ``asyncio.gather``.
#: Defaults to ``"-"`` outside of any cycle (startup, teardown, tests).
CYCLE_ID_CTX: ContextVar[str] = ContextVar("cycle_id", default="-")

logger = logging.getLogger(__name__)

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_FORMATS = {"text", "json"}

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(cycle_id)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_API_KEY_RE: re.Pattern[str] = re.compile(r"(api_key=)([^&\s'\"]+)")


def mask_api_key(text: str) -> str:
    """Replace the value of every ``api_key=`` parameter in *text* with ``***``.

    Examples::

        mask_api_key("https://ping-admin.com/?a=api&api_key=abc123&id=1")
        # → "https://ping-admin.com/?a=api&api_key=***&id=1"
    """
    return _API_KEY_RE.sub(r"\1***", text)


class CycleContextFilter(logging.Filter):
    """Inject the current scheduler-cycle id into every log record.

    Reads :data:`CYCLE_ID_CTX` and sets ``record.cycle_id`` before the record
    reaches any formatter, so both the text format and the JSON ``extra``
    object carry the correlation id.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.cycle_id = CYCLE_ID_CTX.get("-")
        return True


class ApiKeyRedactionFilter(logging.Filter):
    """Mask ``api_key=<value>`` in the rendered message and traceback text.

    The message is rendered eagerly (``record.getMessage()``) and the args are
    dropped, so formatters downstream only ever see the masked string.  The
    traceback, if any, is pre-rendered into ``record.exc_text``, which both
    :class:`logging.Formatter` and :class:`JsonFormatter` prefer over
    re-formatting ``exc_info``.
    """

    _tb_formatter = logging.Formatter()

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        try:
            message = record.getMessage()
        except Exception:  # noqa: BLE001
            return True
        record.msg = mask_api_key(message)
        record.args = None
        if record.exc_info and not record.exc_text:
            record.exc_text = self._tb_formatter.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = mask_api_key(record.exc_text)
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
        root.setLevel(resolved_level)
        return

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved_level)
    handler.addFilter(CycleContextFilter())
    handler.addFilter(ApiKeyRedactionFilter())

    if resolved_fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT))

    root.setLevel(resolved_level)
    root.addHandler(handler)

    # httpx logs full request URLs (api_key included) at INFO.
    if resolved_level != "DEBUG":
        for noisy in ("httpx", "httpcore", "asyncio", "uvicorn.access"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per log record.

    Output shape (all fields always present)::

        {
            "ts":      "2026-02-28T12:34:56.789Z",
            "level":   "INFO",
            "logger":  "apatit.orchestrator.scheduler",
            "message": "Metrics cycle finished",
            "extra":   {"cycle_id": "a3f2b1c0", "event": "CYCLE_COMPLETE"}
        }

    Optional fields (present only when applicable)::

        "exc_info": "<traceback string>"
    """

    _RECORD_ATTRS: frozenset[str] = frozenset(
        {
            "args",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "taskName",
            "thread",
            "threadName",
        }
    )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        """Serialise *record* to a JSON string."""
        record.message = record.getMessage()

        ts = (
            datetime.fromtimestamp(record.created, tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.")
            + f"{int(record.msecs):03d}Z"
        )

        payload: dict[str, Any] = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        extra = {k: v for k, v in record.__dict__.items() if k not in self._RECORD_ATTRS}
        payload["extra"] = extra

        if record.exc_text:
            payload["exc_info"] = record.exc_text
        elif record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)

        try:
            return json.dumps(payload, default=str)
        except Exception:  # pragma: no cover — safety net
            return json.dumps(
                {
                    "ts": ts,
                    "level": "ERROR",
                    "logger": __name__,
                    "message": "JsonFormatter serialisation error",
                    "exc_info": traceback.format_exc(),
                    "extra": {},
                }
            )

"""Root logger setup shared by the meshinit CLIs.

The ``plain`` format prints bare messages so the initialization banner reads
like a console transcript. ``json`` emits one object per record, carrying any
``extra`` fields with credential-like keys redacted.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, Literal

LogFormat = Literal["plain", "text", "json"]
LogDestination = Literal["auto", "stdout", "stderr"]

REDACTED = "***"
_SECRET_KEY_MARKERS = ("password", "secret", "pwd")
_TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        payload.update(
            (key, REDACTED if _is_secret_key(key) else value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        )
        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(
    *,
    level: str | int = "INFO",
    fmt: LogFormat = "plain",
    destination: LogDestination = "auto",
) -> logging.Logger:
    """Replace the root logger's handlers; ``auto`` sends WARNING and above to stderr."""

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(_resolve_level(level))

    formatter = _FORMATTERS[fmt]()
    for handler in _handlers_for(destination):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    logging.captureWarnings(True)
    return root


_FORMATTERS = {
    "plain": lambda: logging.Formatter("%(message)s"),
    "text": lambda: logging.Formatter(_TEXT_FORMAT),
    "json": JsonFormatter,
}


def _resolve_level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    try:
        return logging.getLevelNamesMapping()[value.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {value}") from None


def _handlers_for(destination: LogDestination) -> list[logging.Handler]:
    if destination != "auto":
        stream = sys.stdout if destination == "stdout" else sys.stderr
        return [logging.StreamHandler(stream)]

    progress = logging.StreamHandler(sys.stdout)
    progress.addFilter(lambda record: record.levelno < logging.WARNING)
    problems = logging.StreamHandler(sys.stderr)
    problems.setLevel(logging.WARNING)
    return [progress, problems]


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_KEY_MARKERS)


__all__ = ["JsonFormatter", "LogDestination", "LogFormat", "REDACTED", "configure_logging"]

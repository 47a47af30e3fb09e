"""
jsonlog.py — JSON-lines logging shared by every prerecord module.

Each record becomes one JSON object per line. Structured context goes in the
standard ``extra=`` keyword so log shippers can index it without parsing the
message text::

    log = build_logger("prerecord.buffer")
    log.info("Segment evicted", extra={"position": 42})

    {"time": "2025-10-19T12:00:00.123Z", "level": "INFO",
     "logger": "prerecord.buffer", "event": "Segment evicted", "position": 42}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

# Attributes every LogRecord carries; anything else came from ``extra=``.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render a record as a single-line JSON object with a UTC timestamp.

    Args:
        static_fields: Key/value pairs stamped onto every line, e.g.
            ``{"recorder_id": "front_door"}``.
    """

    def __init__(self, static_fields: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self.static_fields = dict(static_fields or {})

    @staticmethod
    def _utc_time(record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return stamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}Z"

    def format(self, record: logging.LogRecord) -> str:
        line: Dict[str, Any] = {
            "time": self._utc_time(record),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            **self.static_fields,
        }
        line.update(
            (key, value) for key, value in vars(record).items() if key not in _STANDARD_ATTRS
        )
        if record.exc_info:
            line["traceback"] = self.formatException(record.exc_info)
        elif record.stack_info:
            line["stack"] = self.formatStack(record.stack_info)
        return json.dumps(line, default=str)


def build_logger(name: str) -> logging.Logger:
    """Named logger for a prerecord module.

    No handler is attached here. Library modules propagate to the root so
    tests and embedding applications decide where output goes.
    """
    return logging.getLogger(name)


def configure_root_logger(
    level: Union[int, str] = logging.DEBUG,
    static_fields: Optional[Dict[str, Any]] = None,
) -> logging.Logger:
    """Send JSON lines to stdout from the root logger.

    Calling it again only updates the level, and the static fields when the
    existing handler is ours; handlers installed by someone else are left
    alone.

    Args:
        level: Level number or name (``"INFO"``).
        static_fields: Passed to :class:`JsonFormatter`.

    Returns:
        The root :class:`logging.Logger`.
    """
    if isinstance(level, str):
        name = level
        level = logging.getLevelName(name.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {name}")

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter(static_fields))
        root.addHandler(handler)
    elif static_fields:
        for handler in root.handlers:
            if isinstance(handler.formatter, JsonFormatter):
                handler.formatter.static_fields.update(static_fields)
    root.setLevel(level)
    return root

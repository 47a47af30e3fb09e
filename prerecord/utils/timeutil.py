"""
timeutil.py — Timezone-aware timestamps for clip and trigger filenames.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import pytz

from ..core.jsonlog import build_logger

log = build_logger("prerecord.time")

FILENAME_TS_FORMAT = "%Y%m%dT%H%M%S%f"


def resolve_pytz(tz_name: str, fallback_log: Optional[logging.Logger] = None) -> pytz.BaseTzInfo:
    """Resolve an IANA timezone name to a :mod:`pytz` timezone object.

    ``pytz`` bundles its own copy of the IANA database, so this works on
    devices without system zone files.  Unknown names fall back to UTC with
    a structured warning.

    Args:
        tz_name: IANA timezone name (e.g. ``"Europe/London"``).
        fallback_log: Logger used for the warning; defaults to this module's.

    Returns:
        A :mod:`pytz` timezone object.  Never raises.
    """
    try:
        return pytz.timezone(tz_name)
    except pytz.exceptions.UnknownTimeZoneError:
        (fallback_log or log).warning(
            "Unknown IANA timezone name; falling back to UTC",
            extra={"timezone": tz_name},
        )
        return pytz.utc


def filename_timestamp(epoch: float, tz: pytz.BaseTzInfo) -> str:
    """Format ``epoch`` as ``YYYYmmddTHHMMSSffffff`` in ``tz``."""
    return datetime.fromtimestamp(epoch, tz=tz).strftime(FILENAME_TS_FORMAT)

"""
hot_folder.py — Trigger the recorder by dropping JSON files in a directory.

Any process that can write a file can request a flush, without importing
this package.  Files are named ``trigger_<timestamp>_<id>.json`` and must
contain at least::

    {
      "trigger_id":      "3f2a9c...",
      "action":          "flush",
      "event_timestamp": 1760880000.0
    }

``action`` may be ``"flush"`` or its alias ``"start"``.  Writers must create
the file under a ``.tmp`` name and rename it into place (see
:func:`write_trigger_file`) so the poller never reads a partial file.

Every file is deleted after it has been processed, including invalid ones.
A file that cannot be deleted is processed once and then ignored.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Set

from ..core.event_monitor import PollingMonitor
from ..core.jsonlog import build_logger
from ..core.trigger import TriggerWait
from ..utils.timeutil import filename_timestamp, resolve_pytz

log = build_logger("prerecord.triggers.hot_folder")

REQUIRED_FIELDS = frozenset({"trigger_id", "action", "event_timestamp"})
FLUSH_ACTIONS = frozenset({"flush", "start"})


class HotFolderTrigger(PollingMonitor):
    """Poll ``trigger_dir`` for trigger files and fire ``trigger`` for each.

    Args:
        trigger_dir: Directory to poll.  Created if absent.
        trigger: :class:`TriggerWait` to fire.
        poll_interval: Seconds between directory scans (2–5 recommended).
        source: Label passed to ``trigger.fire``.
    """

    def __init__(
        self,
        trigger_dir: str | Path,
        trigger: TriggerWait,
        poll_interval: float = 2.0,
        source: str = "hot_folder",
    ) -> None:
        super().__init__(poll_interval, name="HotFolderTrigger")
        self.trigger_dir = Path(trigger_dir)
        self.trigger = trigger
        self.source = source
        self.processed = 0
        self.rejected = 0
        self._undeletable: Set[Path] = set()
        self.trigger_dir.mkdir(parents=True, exist_ok=True)

    def _poll(self) -> None:
        self.scan()

    def scan(self) -> int:
        """Collect, sort, and process all pending trigger files.

        Files are processed oldest-first (by ``st_ctime``). A file that could
        not be deleted is remembered and skipped on later scans, so it fires
        at most once.

        Returns:
            Number of files that fired the trigger.
        """
        candidates = []
        for path in self.trigger_dir.glob("trigger_*.json"):
            try:
                candidates.append((path.stat().st_ctime, path))
            except FileNotFoundError:
                continue
        candidates.sort()
        self._undeletable.intersection_update(path for _ctime, path in candidates)

        fired = 0
        for _ctime, path in candidates:
            if path in self._undeletable:
                continue
            try:
                trigger = read_trigger_file(path)
            except (json.JSONDecodeError, OSError, KeyError, ValueError) as exc:
                self.rejected += 1
                log.error(
                    "Invalid trigger file — skipping",
                    extra={"path": str(path), "error": str(exc)},
                )
                self._delete(path)
                continue

            action = trigger.get("action", "")
            if action in FLUSH_ACTIONS:
                log.info(
                    "Trigger file accepted",
                    extra={"trigger_id": trigger["trigger_id"], "path": str(path)},
                )
                self.trigger.fire(self.source)
                fired += 1
            else:
                self.rejected += 1
                log.warning(
                    "Unknown trigger action",
                    extra={"action": action, "trigger_id": trigger.get("trigger_id")},
                )

            self.processed += 1
            self._delete(path)
        return fired

    def _delete(self, path: Path) -> None:
        if not _safe_delete(path):
            self._undeletable.add(path)


def read_trigger_file(path: Path) -> Dict[str, Any]:
    """Read and parse a JSON trigger file.

    Raises:
        json.JSONDecodeError: If the file is not valid JSON.
        KeyError: If mandatory fields are absent.
        ValueError: If the top level is not a JSON object.
    """
    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)

    if not isinstance(data, dict):
        raise ValueError("Trigger file must contain a JSON object")

    missing = REQUIRED_FIELDS - data.keys()
    if missing:
        raise KeyError(f"Trigger missing required fields: {sorted(missing)}")
    return data


def write_trigger_file(
    trigger_dir: str | Path,
    action: str = "flush",
    timezone_name: str = "UTC",
    event_ts: Optional[float] = None,
    **extra: Any,
) -> Path:
    """Atomically drop a trigger file into ``trigger_dir``.

    The payload is written to a ``.tmp`` path first and renamed to ``.json``
    so a concurrent poller never sees a partial file.

    Args:
        trigger_dir: Hot folder directory.
        action: Trigger action, normally ``"flush"``.
        timezone_name: IANA zone used for the filename timestamp.
        event_ts: Unix timestamp of the event; defaults to now.
        **extra: Additional payload fields (e.g. ``reason``).

    Returns:
        Path of the written ``.json`` file.

    Raises:
        OSError: If the file cannot be written.
    """
    trigger_dir = Path(trigger_dir)
    event_ts = time.time() if event_ts is None else event_ts
    trigger_id = uuid.uuid4().hex

    stem = f"trigger_{filename_timestamp(event_ts, resolve_pytz(timezone_name))}_{trigger_id[:8]}"
    tmp_path = trigger_dir / f"{stem}.tmp"
    json_path = trigger_dir / f"{stem}.json"

    payload = {
        "trigger_id": trigger_id,
        "action": action,
        "event_timestamp": event_ts,
        "timezone": timezone_name,
    }
    payload.update(extra)

    trigger_dir.mkdir(parents=True, exist_ok=True)
    try:
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, json_path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    return json_path


def _safe_delete(path: Path) -> bool:
    """Delete a trigger file, tolerating it already being gone.

    Returns:
        ``False`` if the file is still there.
    """
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        log.error(
            "Could not delete trigger file — it will be ignored",
            extra={"path": str(path), "error": str(exc)},
        )
        return False
    return True

"""
config_manager.py — Recorder configuration loading and validation.

All runtime code obtains its settings through the ``ConfigProvider``
interface, so a recorder can be driven from a commissioning JSON file today
and another backing store later without changes to the recorder itself.

────────────────────────────────────────────────────────────────────────────
Expected JSON schema (``JsonFileConfigProvider``)
────────────────────────────────────────────────────────────────────────────

A single JSON file may contain **one or more** recorder blocks, keyed by
``recorder_id``.  Example:

.. code-block:: json

    {
      "front_door": {
        "recorder_id": "front_door",
        "description": "Porch camera, doorbell button on GPIO17",
        "timezone": "Europe/London",
        "retention_sec": 20,
        "bitrate_bps": 10000000,
        "post_roll_sec": 0,
        "stop_on_trigger": true,
        "output_dir": "./clips",
        "clip_prefix": "front_door",
        "min_free_disk_mb": 100,
        "source": {
          "type": "command",
          "command": ["rpicam-vid", "-t", "0", "--inline", "-o", "-"],
          "fps": 30
        },
        "triggers": {
          "input": {
            "path": "/sys/class/gpio/gpio17/value",
            "active_low": true,
            "poll_interval_sec": 0.02
          },
          "hot_folder": {"dir": "./trigger_queue", "poll_interval_sec": 2.0},
          "web_ui": {"host": "0.0.0.0", "port": 5000}
        }
      }
    }

────────────────────────────────────────────────────────────────────────────
Field reference
────────────────────────────────────────────────────────────────────────────

Top-level recorder fields
~~~~~~~~~~~~~~~~~~~~~~~~~
``recorder_id``       str   — Canonical ID matching the key.
``description``       str   — Human-readable label (optional).
``timezone``          str   — IANA zone for clip filenames (default ``"UTC"``).
``retention_sec``     float — Seconds of pre-trigger video to keep in RAM.
``bitrate_bps``       int   — Nominal encoder bitrate, used for capacity
                              estimates before data arrives (optional).
``post_roll_sec``     float — Seconds to keep recording after the trigger.
``stop_on_trigger``   bool  — Stop the source before flushing (default).
                              ``false`` flushes while recording continues.
``output_dir``        str   — Directory for flushed clips.
``clip_prefix``       str   — Filename prefix (default ``"clip"``).
``clip_extension``    str   — Filename extension; defaults by source type.
``min_free_disk_mb``  float — Refuse to flush below this free space.
``chunk_size``        int   — Write size in bytes for flushes.
``max_clips``         int   — Stop after this many clips (optional).

source (one of)
~~~~~~~~~~~~~~~
``{"type": "command", "command": [...], "fps": 30}``
``{"type": "stdin", "fps": 30}``
``{"type": "opencv", "device": 0, "fps_fallback": 30, "jpeg_quality": 85}``

triggers (all optional)
~~~~~~~~~~~~~~~~~~~~~~~
``input``       — ``path``, ``active_low``, ``poll_interval_sec``
``hot_folder``  — ``dir``, ``poll_interval_sec``
``web_ui``      — ``host``, ``port``
"""

from __future__ import annotations

import copy
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..core.jsonlog import build_logger

log = build_logger("prerecord.config")


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------

@dataclass
class RecorderConfig:
    """All tunables for a single PreEventRecorder.

    Args:
        retention_sec: Seconds of video the circular buffer keeps.
        output_dir: Directory where flushed clips are written.
        bitrate_bps: Nominal encoder bitrate (capacity estimate only).
        post_roll_sec: Seconds of recording to keep after a trigger.
        stop_on_trigger: Stop the source before flushing.
        clip_prefix: Filename prefix for clips.
        clip_extension: Filename extension for clips.
        timezone: IANA zone for clip filename timestamps.
        min_free_disk_mb: Abort a flush below this free space.
        chunk_size: Write size for flushes.
        clear_after_flush: Drop the flushed window so clips do not overlap.
        max_clips: Stop after this many successful clips; ``None`` runs forever.
        recorder_id: Identifier used in logs and the clip log.
    """

    retention_sec: float = 20.0
    output_dir: str = "./clips"
    bitrate_bps: Optional[int] = None
    post_roll_sec: float = 0.0
    stop_on_trigger: bool = True
    clip_prefix: str = "clip"
    clip_extension: str = "h264"
    timezone: str = "UTC"
    min_free_disk_mb: float = 50.0
    chunk_size: int = 64 * 1024
    clear_after_flush: bool = True
    max_clips: Optional[int] = None
    recorder_id: str = "recorder"

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "RecorderConfig":
        """Build from a validated recorder block."""
        source_type = cfg.get("source", {}).get("type", "command")
        default_ext = "mjpeg" if source_type == "opencv" else "h264"
        max_clips = cfg.get("max_clips")
        bitrate = cfg.get("bitrate_bps")
        return cls(
            retention_sec=float(cfg["retention_sec"]),
            output_dir=str(cfg["output_dir"]),
            bitrate_bps=int(bitrate) if bitrate is not None else None,
            post_roll_sec=float(cfg.get("post_roll_sec", 0.0)),
            stop_on_trigger=bool(cfg.get("stop_on_trigger", True)),
            clip_prefix=str(cfg.get("clip_prefix", "clip")),
            clip_extension=str(cfg.get("clip_extension", default_ext)),
            timezone=str(cfg.get("timezone", "UTC")),
            min_free_disk_mb=float(cfg.get("min_free_disk_mb", 50.0)),
            chunk_size=int(cfg.get("chunk_size", 64 * 1024)),
            clear_after_flush=bool(cfg.get("clear_after_flush", True)),
            max_clips=int(max_clips) if max_clips is not None else None,
            recorder_id=str(cfg.get("recorder_id", "recorder")),
        )


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class ConfigProvider(ABC):
    """Abstract interface for recorder configuration retrieval."""

    @abstractmethod
    def get_recorder_config(self, recorder_id: str) -> dict:
        """Return the full configuration block for a single recorder.

        Returns:
            A deep copy; callers may mutate it freely.

        Raises:
            KeyError: If ``recorder_id`` is not found.
            ConfigProviderError: If the backing store cannot be read or
                the stored data fails validation.
        """

    @abstractmethod
    def list_recorder_ids(self) -> list[str]:
        """Return all recorder IDs known to this provider, sorted."""

    def get_source_config(self, recorder_id: str) -> dict:
        """Convenience accessor for a recorder's ``source`` block."""
        return self.get_recorder_config(recorder_id)["source"]

    def get_trigger_config(self, recorder_id: str, kind: str) -> Optional[dict]:
        """Return one trigger block (``"input"``, ``"hot_folder"``, ``"web_ui"``) or ``None``."""
        return self.get_recorder_config(recorder_id).get("triggers", {}).get(kind)


# ---------------------------------------------------------------------------
# Custom exception
# ---------------------------------------------------------------------------

class ConfigProviderError(RuntimeError):
    """Configuration could not be read, or a recorder block is invalid.

    ``label`` is the backing store (usually the file path) and
    ``recorder_id`` the offending block, when one is known; both are folded
    into the message.
    """

    def __init__(
        self,
        message: str,
        label: Optional[str] = None,
        recorder_id: Optional[str] = None,
    ) -> None:
        self.label = label
        self.recorder_id = recorder_id
        prefix = f"[{label}] " if label else ""
        if recorder_id is not None:
            prefix += f"recorder '{recorder_id}': "
        super().__init__(prefix + message)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

_REQUIRED_TOP_LEVEL = {"recorder_id", "retention_sec", "output_dir", "source"}
_SOURCE_REQUIRED = {
    "command": {"command"},
    "stdin": set(),
    "opencv": {"device"},
}
_VALID_TRIGGERS = {"input", "hot_folder", "web_ui"}
_MIN_RETENTION_SEC = 1.0


def _validate_recorder(cfg: dict, label: str) -> None:
    """Check one recorder block.

    Structural problems raise; a very short retention only logs a warning.

    Raises:
        ConfigProviderError: On a missing field or an unusable value.
    """
    rid = cfg.get("recorder_id", "<unknown>")

    def fail(message: str) -> ConfigProviderError:
        return ConfigProviderError(message, label=label, recorder_id=rid)

    absent = sorted(_REQUIRED_TOP_LEVEL.difference(cfg))
    if absent:
        raise fail(f"missing required fields {absent}")

    try:
        retention = float(cfg["retention_sec"])
    except (TypeError, ValueError) as exc:
        raise fail(f"retention_sec is not a number: {cfg['retention_sec']!r}") from exc
    if retention <= 0:
        raise fail("retention_sec must be positive")
    if retention < _MIN_RETENTION_SEC:
        log.warning(
            "Very short retention window",
            extra={"recorder_id": rid, "retention_sec": retention, "minimum": _MIN_RETENTION_SEC},
        )

    source = cfg["source"]
    if not isinstance(source, dict):
        raise fail("source must be an object")
    kind = source.get("type", "")
    if kind not in _SOURCE_REQUIRED:
        raise fail(f"source type {kind!r} is not one of {sorted(_SOURCE_REQUIRED)}")
    absent = sorted(_SOURCE_REQUIRED[kind].difference(source))
    if absent:
        raise fail(f"{kind} source is missing {absent}")
    if kind == "command":
        command = source["command"]
        if not isinstance(command, list) or not command:
            raise fail("command must be a non-empty list")

    triggers = cfg.get("triggers", {})
    unknown = sorted(set(triggers) - _VALID_TRIGGERS)
    if unknown:
        raise fail(f"unknown triggers {unknown}")
    if "input" in triggers and "path" not in triggers["input"]:
        raise fail("input trigger needs a 'path'")


# ---------------------------------------------------------------------------
# JsonFileConfigProvider
# ---------------------------------------------------------------------------

class JsonFileConfigProvider(ConfigProvider):
    """Recorder blocks from a local JSON file, keyed by ``recorder_id``.

    The file is parsed on construction and cached. :meth:`reload` re-reads
    it unconditionally; :meth:`reload_if_changed` only when its mtime moved.
    A failed reload leaves the previous configuration in effect.

    Example::

        provider = JsonFileConfigProvider("/etc/prerecord/recorders.json")
        cfg = RecorderConfig.from_dict(provider.get_recorder_config("front_door"))
    """

    def __init__(self, config_path: str | Path, validate: bool = True) -> None:
        self._path = Path(config_path)
        self._validate = validate
        self._recorders: Dict[str, dict] = {}
        self._mtime: Optional[float] = None
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def get_recorder_config(self, recorder_id: str) -> dict:
        try:
            block = self._recorders[recorder_id]
        except KeyError:
            raise KeyError(f"Recorder '{recorder_id}' not found in '{self._path}'.") from None
        return copy.deepcopy(block)

    def list_recorder_ids(self) -> list[str]:
        return sorted(self._recorders)

    def reload(self) -> None:
        """Re-read the file now.

        Raises:
            ConfigProviderError: If the new contents are unusable.
        """
        self._load()
        log.info("Config reloaded", extra={"path": str(self._path)})

    def reload_if_changed(self) -> bool:
        """Reload when the file's mtime differs from the last load.

        Returns:
            ``True`` if the file was re-read.
        """
        try:
            mtime = self._path.stat().st_mtime
        except OSError:
            return False
        if mtime == self._mtime:
            return False
        self.reload()
        return True

    def _read_json(self) -> Tuple[Dict[str, Any], float]:
        label = str(self._path)
        try:
            stat = self._path.stat()
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ConfigProviderError("configuration file not found", label=label) from exc
        except OSError as exc:
            raise ConfigProviderError(f"cannot read file: {exc}", label=label) from exc

        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigProviderError(f"invalid JSON: {exc}", label=label) from exc

        if not isinstance(document, dict):
            raise ConfigProviderError(
                "top level must be a JSON object keyed by recorder_id", label=label
            )
        return document, stat.st_mtime

    def _load(self) -> None:
        document, mtime = self._read_json()
        if self._validate:
            for key, block in document.items():
                if not isinstance(block, dict):
                    raise ConfigProviderError(
                        "recorder block must be a JSON object",
                        label=str(self._path),
                        recorder_id=key,
                    )
                _validate_recorder(block, label=str(self._path))

        self._recorders = document
        self._mtime = mtime
        log.info(
            "Configuration loaded",
            extra={"path": str(self._path), "recorders": sorted(document)},
        )

"""
main.py — Pre-event recorder: record, wait for a trigger, flush, repeat.

The recorder owns one :class:`CircularBuffer` per :meth:`PreEventRecorder.run`
call.  The buffer is opened before the source starts and closed on every exit
path, including errors raised while flushing.

Cycle:
  1. the source appends segments to the buffer in its capture thread;
  2. the recorder blocks in :meth:`TriggerWait.wait`;
  3. optionally keeps recording for ``post_roll_sec``;
  4. stops the source (unless ``stop_on_trigger`` is off);
  5. flushes the buffer from its earliest keyframe to a new clip file;
  6. restarts the source and waits again.

A failed flush leaves the buffer intact so the next trigger retries with the
same (and newer) data.  Triggers that arrive while a flush is in progress are
discarded before the next wait.

Usage:
    recorder = PreEventRecorder(RecorderConfig(retention_sec=20), source, trigger)
    recorder.run(max_clips=1)   # blocks
    recorder.stop()             # from a signal handler or another thread
"""

from __future__ import annotations

import csv
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core.circular_buffer import CircularBuffer
from .core.data_models import FlushResult, RecorderState
from .core.event_monitor import (
    EventEmitter, EVENT_TRIGGER, EVENT_STATE_CHANGE, EVENT_FLUSH_COMPLETE, EVENT_FLUSH_FAILED,
    EVENT_ERROR,
)
from .core.flush import FlushError, check_disk_space, flush_to_disk
from .core.jsonlog import build_logger
from .core.trigger import TriggerWait
from .sources.base import SegmentSource
from .utils.config_manager import RecorderConfig
from .utils.timeutil import filename_timestamp, resolve_pytz

CLIP_LOG_NAME = "clips_log.csv"


class PreEventRecorder(EventEmitter):
    """Orchestrates the source, the circular buffer, triggers and flushes.

    Args:
        config: Recorder tunables.
        source: Live segment source feeding the buffer.
        trigger: Shared :class:`TriggerWait`; one is created if omitted.
    """

    def __init__(
        self,
        config: RecorderConfig,
        source: SegmentSource,
        trigger: Optional[TriggerWait] = None,
    ) -> None:
        super().__init__()
        self.config = config
        self.source = source
        self.trigger = trigger or TriggerWait(name=config.recorder_id)
        self.buffer: Optional[CircularBuffer] = None

        self._log = build_logger(f"prerecord.recorder.{config.recorder_id}")
        self._tz = resolve_pytz(config.timezone, self._log)
        self._state = RecorderState.IDLE
        self._state_lock = threading.Lock()
        self._stop_requested = threading.Event()
        self._clip_counter = 0

        self.clips_written = 0
        self.failed_flushes = 0
        self.last_result: Optional[FlushResult] = None
        self.last_error: Optional[str] = None

        self._output_dir = Path(config.output_dir)
        self._output_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self, max_clips: Optional[int] = None) -> List[FlushResult]:
        """Record and flush until ``max_clips`` clips are written or :meth:`stop`.

        Args:
            max_clips: Overrides ``config.max_clips`` when given.

        Returns:
            The results of every successful flush, in order.
        """
        limit = max_clips if max_clips is not None else self.config.max_clips
        results: List[FlushResult] = []

        self._stop_requested.clear()
        self.trigger.reset()
        self.trigger.discard_pending()

        buffer = CircularBuffer(
            retention_sec=self.config.retention_sec,
            bitrate_bps=self.config.bitrate_bps,
            name=self.config.recorder_id,
        )
        with buffer:
            self.buffer = buffer
            try:
                self._start_recording()
                while not self._stop_requested.is_set():
                    if not self.trigger.wait():
                        break
                    result = self._handle_trigger(self.trigger.last_source)
                    if result is not None:
                        results.append(result)
                        if limit is not None and len(results) >= limit:
                            break
                    if self._stop_requested.is_set():
                        break
                    if not self.source.is_running():
                        self._start_recording()
            finally:
                self._stop_recording()
                self.buffer = None
                self._set_state(RecorderState.STOPPED)

        self._log.info(
            "Recorder finished",
            extra={
                "recorder_id": self.config.recorder_id,
                "clips_written": self.clips_written,
                "failed_flushes": self.failed_flushes,
            },
        )
        return results

    def stop(self) -> None:
        """Ask :meth:`run` to return.  Safe from signal handlers and threads."""
        self._stop_requested.set()
        self.trigger.cancel()

    # ------------------------------------------------------------------
    # Trigger handling
    # ------------------------------------------------------------------

    def _handle_trigger(self, source: Optional[str]) -> Optional[FlushResult]:
        self.emit(EVENT_TRIGGER, source)
        self._log.info(
            "Trigger received",
            extra={
                "recorder_id": self.config.recorder_id,
                "source": source,
                "buffered_sec": round(self.buffer.duration, 3),
            },
        )

        if self.config.post_roll_sec > 0:
            self._set_state(RecorderState.POST_ROLL)
            self._stop_requested.wait(self.config.post_roll_sec)

        if self.config.stop_on_trigger:
            self._stop_recording()

        result = self._flush(source)

        # Triggers that fired during the flush are not honoured.
        self.trigger.discard_pending()
        if self.source.is_running():
            self._set_state(RecorderState.RECORDING)
        return result

    def _flush(self, source: Optional[str]) -> Optional[FlushResult]:
        self._set_state(RecorderState.FLUSHING)
        path = self._next_clip_path()
        try:
            check_disk_space(self._output_dir, self.config.min_free_disk_mb)
            result = flush_to_disk(
                self.buffer,
                path,
                chunk_size=self.config.chunk_size,
                source=source,
            )
        except FlushError as exc:
            self.failed_flushes += 1
            self.last_error = str(exc)
            self._log.error(
                "Flush failed, buffer kept for retry",
                extra={
                    "recorder_id": self.config.recorder_id,
                    "path": str(path),
                    "error": str(exc),
                },
            )
            self.emit(EVENT_FLUSH_FAILED, path, exc)
            return None

        self.clips_written += 1
        self.last_result = result
        self.last_error = None
        if self.config.clear_after_flush:
            self.buffer.clear()
        self._log_clip_to_csv(result)
        self.emit(EVENT_FLUSH_COMPLETE, result)
        return result

    # ------------------------------------------------------------------
    # Source control
    # ------------------------------------------------------------------

    def _start_recording(self) -> None:
        try:
            self.source.start(self.buffer.append)
        except OSError as exc:
            self._log.error(
                "Failed to start source",
                extra={"recorder_id": self.config.recorder_id, "error": str(exc)},
            )
            self.emit(EVENT_ERROR, exc)
            raise
        self._set_state(RecorderState.RECORDING)

    def _stop_recording(self) -> None:
        self.source.stop()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, new_state: RecorderState) -> None:
        with self._state_lock:
            old_state, self._state = self._state, new_state
        if old_state != new_state:
            self.emit(EVENT_STATE_CHANGE, old_state, new_state)

    @property
    def state(self) -> RecorderState:
        return self._state

    def _next_clip_path(self) -> Path:
        self._clip_counter += 1
        stamp = filename_timestamp(time.time(), self._tz)
        name = (
            f"{self.config.clip_prefix}_{stamp}_{self._clip_counter:04d}"
            f".{self.config.clip_extension}"
        )
        return self._output_dir / name

    def _log_clip_to_csv(self, result: FlushResult) -> None:
        """Append a row for ``result`` to the clip log in the output directory.

        A failure here is logged but does not fail the flush: the clip itself
        is already on disk.
        """
        csv_path = self._output_dir / CLIP_LOG_NAME
        write_header = not csv_path.exists()

        row = {
            "Local_Timestamp": datetime.now(tz=self._tz).strftime("%Y-%m-%d %H:%M:%S %Z"),
            "Recorder_ID": self.config.recorder_id,
            "Clip_Filename": result.path.name,
            "Bytes": result.bytes_written,
            "Segments": result.segments_written,
            "Duration_Sec": round(result.duration, 3),
            "Starts_At_Keyframe": result.starts_at_keyframe,
            "Trigger_Source": result.source or "",
        }

        try:
            with csv_path.open("a", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=list(row.keys()))
                if write_header:
                    writer.writeheader()
                writer.writerow(row)
        except OSError as exc:
            self._log.error(
                "Failed to write clip log",
                extra={"error": str(exc), "clip": result.path.name},
            )

    def list_clips(self) -> List[Dict[str, Any]]:
        """Clip files in the output directory, newest first."""
        ext = f".{self.config.clip_extension}"
        clips = []
        for path in self._output_dir.glob(f"*{ext}"):
            try:
                st = path.stat()
            except FileNotFoundError:
                continue
            clips.append({"name": path.name, "bytes": st.st_size, "mtime": st.st_mtime})
        clips.sort(key=lambda c: c["mtime"], reverse=True)
        return clips

    def status(self) -> Dict[str, Any]:
        """JSON-safe snapshot for the web UI and logs."""
        buffer = self.buffer
        return {
            "recorder_id": self.config.recorder_id,
            "state": self._state.name,
            "clips_written": self.clips_written,
            "failed_flushes": self.failed_flushes,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "last_error": self.last_error,
            "buffer": buffer.stats() if buffer is not None else None,
            "source": self.source.stats(),
            "trigger": self.trigger.stats(),
        }

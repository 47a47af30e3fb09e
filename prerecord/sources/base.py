"""
Segment source base class

A segment source runs a background capture thread that hands encoded
:class:`~prerecord.core.data_models.StreamSegment` objects to a sink,
normally :meth:`CircularBuffer.append`.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from ..core.circular_buffer import BufferClosedError
from ..core.data_models import StreamSegment
from ..core.jsonlog import build_logger

Sink = Callable[[StreamSegment], Any]


class SegmentSource(ABC):
    """Start/stop lifecycle around a daemon capture thread.

    Once :meth:`stop` has returned the sink is never called again, even if
    the capture thread is still blocked in a read and outlives the join
    timeout.

    Args:
        name: Identifier used for the thread name and log records.
    """

    def __init__(self, name: str = "source") -> None:
        self.name = name
        self._sink: Optional[Sink] = None
        self._running = False
        self._stop_event = threading.Event()
        self._emit_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._log = build_logger(f"prerecord.source.{name}")

        self.segments_produced = 0
        self.bytes_produced = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, sink: Sink) -> None:
        """Launch the capture thread, delivering segments to ``sink``."""
        if self._running:
            self._log.warning("Source already running", extra={"source": self.name})
            return
        self._sink = sink
        self._stop_event.clear()
        thread = threading.Thread(
            target=self._run,
            name=f"capture-{self.name}",
            daemon=True,
        )
        with self._emit_lock:
            self._running = True
            self._thread = thread
        try:
            self._on_start()
        except Exception:
            self._running = False
            raise
        thread.start()
        self._log.info("Source started", extra={"source": self.name})

    def stop(self, timeout: float = 5.0) -> None:
        """Stop delivering segments and wait for the capture thread."""
        with self._emit_lock:
            was_running = self._running
            self._running = False
        self._stop_event.set()
        self._on_stop()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                self._log.warning(
                    "Capture thread did not exit within timeout",
                    extra={"source": self.name, "timeout": timeout},
                )
        if was_running:
            self._log.info(
                "Source stopped",
                extra={
                    "source": self.name,
                    "segments": self.segments_produced,
                    "bytes": self.bytes_produced,
                },
            )

    def is_running(self) -> bool:
        return self._running

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "running": self._running,
            "segments": self.segments_produced,
            "bytes": self.bytes_produced,
        }

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def _on_start(self) -> None:
        """Acquire resources before the capture thread starts."""

    def _on_stop(self) -> None:
        """Release resources that may be blocking the capture thread."""

    @abstractmethod
    def _capture_loop(self) -> None:
        """Produce segments via :meth:`_emit` until :meth:`stop` is called."""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run(self) -> None:
        try:
            self._capture_loop()
        except Exception:  # noqa: BLE001
            self._log.exception("Capture loop crashed", extra={"source": self.name})
        finally:
            # Only the current capture thread may end the run; a thread that
            # outlived stop() must not switch off a restarted source.
            with self._emit_lock:
                if threading.current_thread() is self._thread:
                    self._running = False

    def _emit(self, segment: StreamSegment) -> bool:
        """Deliver ``segment`` to the sink.

        Returns:
            ``False`` once the source has been stopped or the sink has been
            closed; the capture loop should then exit.
        """
        with self._emit_lock:
            if not self._running or self._sink is None:
                return False
            # A thread left over from before a restart must not feed the sink.
            if threading.current_thread() is not self._thread:
                return False
            try:
                self._sink(segment)
            except BufferClosedError:
                self._log.warning("Sink closed — stopping capture", extra={"source": self.name})
                self._running = False
                self._stop_event.set()
                return False
            self.segments_produced += 1
            self.bytes_produced += len(segment.data)
            return True

"""
h264_source.py — Buffer an encoded H.264 stream produced by a camera tool.

``H264StreamSource`` reads Annex-B bytes from any binary file object (a pipe,
a FIFO, a socket file) and cuts them into one segment per access unit.
``CommandSource`` spawns the camera command itself, e.g.::

    CommandSource(["rpicam-vid", "-t", "0", "--inline", "-o", "-"], fps=30)

and terminates it when stopped.
"""

from __future__ import annotations

import subprocess
import time
from typing import BinaryIO, List, Optional, Sequence

from ..core.data_models import StreamSegment
from ..core.h264 import H264Splitter
from .base import SegmentSource

DEFAULT_READ_SIZE = 16 * 1024


class H264StreamSource(SegmentSource):
    """Split an Annex-B byte stream into access-unit segments.

    Each access unit is assumed to hold one frame, so segment duration is
    ``1 / fps``.  End of stream flushes the last partial unit and stops the
    source.

    Args:
        stream: Binary file object to read from.  May be ``None`` for
            subclasses that open the stream in :meth:`_on_start`.
        fps: Nominal frame rate of the encoded stream.
        read_size: Bytes requested per read.
        name: Identifier for logs and the capture thread.
    """

    def __init__(
        self,
        stream: Optional[BinaryIO] = None,
        fps: float = 30.0,
        read_size: int = DEFAULT_READ_SIZE,
        name: str = "h264",
    ) -> None:
        super().__init__(name=name)
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps!r}")
        self.stream = stream
        self.fps = fps
        self.read_size = read_size

    def _capture_loop(self) -> None:
        if self.stream is None:
            self._log.error("No input stream", extra={"source": self.name})
            return

        splitter = H264Splitter()
        read = getattr(self.stream, "read1", self.stream.read)
        frame_duration = 1.0 / self.fps

        while self._running:
            try:
                data = read(self.read_size)
            except (OSError, ValueError) as exc:
                # ValueError: the stream was closed under us by stop().
                if self._running:
                    self._log.error(
                        "Stream read failed",
                        extra={"source": self.name, "error": str(exc)},
                    )
                return

            units = splitter.feed(data) if data else splitter.flush()
            for payload, keyframe in units:
                segment = StreamSegment(
                    data=payload,
                    keyframe=keyframe,
                    duration=frame_duration,
                    timestamp=time.monotonic(),
                )
                if not self._emit(segment):
                    return

            if not data:
                self._log.info("End of stream", extra={"source": self.name})
                return


class CommandSource(H264StreamSource):
    """Run a camera command and buffer the H.264 it writes to stdout.

    Args:
        command: Argument vector, e.g. ``["rpicam-vid", "-t", "0", "--inline",
            "-o", "-"]``.
        fps: Frame rate the command is configured for.
        read_size: Bytes requested per read.
        name: Identifier for logs and the capture thread.
    """

    def __init__(
        self,
        command: Sequence[str],
        fps: float = 30.0,
        read_size: int = DEFAULT_READ_SIZE,
        name: str = "command",
    ) -> None:
        super().__init__(stream=None, fps=fps, read_size=read_size, name=name)
        self.command: List[str] = list(command)
        self._proc: Optional[subprocess.Popen] = None

    def _on_start(self) -> None:
        self._proc = subprocess.Popen(
            self.command,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            bufsize=0,
        )
        self.stream = self._proc.stdout
        self._log.info(
            "Camera command launched",
            extra={"source": self.name, "command": self.command, "pid": self._proc.pid},
        )

    def _on_stop(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=5.0)
            except subprocess.TimeoutExpired:
                self._log.warning("Camera command ignored SIGTERM — killing", extra={"pid": proc.pid})
                proc.kill()
                proc.wait()
        self._log.info(
            "Camera command exited",
            extra={"source": self.name, "returncode": proc.returncode},
        )

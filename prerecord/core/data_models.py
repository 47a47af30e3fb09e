"""
Data models for buffered video and flush results
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class RecorderState(Enum):
    """Lifecycle state of a PreEventRecorder."""
    IDLE = 0
    RECORDING = 1
    POST_ROLL = 2
    FLUSHING = 3
    STOPPED = 4


@dataclass(frozen=True)
class StreamSegment:
    """A contiguous chunk of encoded video produced by a live source.

    ``position`` is ``None`` until the segment is appended to a
    :class:`~prerecord.core.circular_buffer.CircularBuffer`, which stamps
    the sequence position it was stored under.
    """
    data: bytes
    keyframe: bool = False
    duration: float = 0.0
    timestamp: float = field(default_factory=time.monotonic)
    position: Optional[int] = None

    def __len__(self):
        return len(self.data)

    def __str__(self):
        kind = "keyframe" if self.keyframe else "delta"
        return f"Segment {self.position}: {len(self.data)} bytes ({kind}, {self.duration:.3f}s)"


@dataclass
class FlushResult:
    """Outcome of writing a buffer's pre-trigger window to disk."""
    path: Path
    bytes_written: int
    segments_written: int
    start_position: int
    starts_at_keyframe: bool
    duration: float
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "bytes_written": self.bytes_written,
            "segments_written": self.segments_written,
            "start_position": self.start_position,
            "starts_at_keyframe": self.starts_at_keyframe,
            "duration": round(self.duration, 3),
            "source": self.source,
        }

    def __str__(self):
        return f"{self.path.name}: {self.bytes_written} bytes, {self.duration:.1f}s"

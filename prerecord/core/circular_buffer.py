"""
circular_buffer.py — Time-windowed ring of encoded video segments.

Responsibilities:
  - Hold at least the most recent ``retention_sec`` seconds of encoded video,
    evicting oldest-first as new segments arrive.
  - Never evict the most recent keyframe-boundary segment (or anything after
    it) so the retained data stays decodable from some retained point.
  - Hand out non-destructive readers that pin their start position against
    eviction, so a flush may run while the producer keeps appending.

Positions are absolute sequence numbers assigned on append. They increase
monotonically for the lifetime of the buffer, so a position computed by
:meth:`CircularBuffer.find_earliest_replay_point` stays meaningful until the
segment it names is evicted.

Usage:
    with CircularBuffer(retention_sec=20.0) as buf:
        buf.append(StreamSegment(data=b"...", keyframe=True, duration=0.033))
        start = buf.find_earliest_replay_point()
        for chunk in buf.read_from(start):
            ...
"""

from __future__ import annotations

import collections
import dataclasses
import threading
from typing import Any, Deque, Dict, Optional, Tuple, Union

from .data_models import StreamSegment
from .jsonlog import build_logger

log = build_logger("prerecord.buffer")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class CircularBufferError(RuntimeError):
    """Base class for misuse of a :class:`CircularBuffer`."""


class BufferClosedError(CircularBufferError):
    """Raised when a closed (or never opened) buffer is appended to or read."""


class PositionEvictedError(CircularBufferError):
    """Raised when a read starts at, or reaches, a position already evicted."""


# ---------------------------------------------------------------------------
# BufferReader — pinned, lazy, single-pass iterator
# ---------------------------------------------------------------------------

class BufferReader:
    """Iterate buffered segments from ``start`` through a fixed end position.

    The reader pins ``start`` in its buffer as soon as it is created and
    releases the pin when it is exhausted, closed, or garbage collected.
    It is single-pass: once consumed it keeps raising ``StopIteration``.

    Args:
        buffer: The owning :class:`CircularBuffer`.
        start: First position to yield.
        end: One past the last position to yield (the tail at creation time).
        payloads: Yield raw ``bytes`` when ``True``, :class:`StreamSegment`
            objects when ``False``.
    """

    def __init__(
        self,
        buffer: "CircularBuffer",
        start: int,
        end: int,
        payloads: bool = True,
    ) -> None:
        self._buffer = buffer
        self._cursor = start
        self._end = end
        self._payloads = payloads
        self._pinned = start
        self.start = start
        self.end = end

    def __iter__(self) -> "BufferReader":
        return self

    def __next__(self) -> Union[bytes, StreamSegment]:
        if self._pinned is None:
            raise StopIteration
        segment = self._buffer._segment_at(self._cursor, self._end)  # noqa: SLF001
        if segment is None:
            self.close()
            raise StopIteration
        self._cursor += 1
        return segment.data if self._payloads else segment

    def __enter__(self) -> "BufferReader":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Release the pin. Further iteration yields nothing."""
        if self._pinned is not None:
            self._buffer._unpin(self._pinned)  # noqa: SLF001
            self._pinned = None

    @property
    def remaining(self) -> int:
        """Number of positions not yet yielded."""
        if self._pinned is None:
            return 0
        return max(0, self._end - self._cursor)

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:  # noqa: BLE001  interpreter shutdown
            pass


# ---------------------------------------------------------------------------
# CircularBuffer
# ---------------------------------------------------------------------------

class CircularBuffer:
    """Bounded rolling window of :class:`StreamSegment` objects.

    Eviction runs inside :meth:`append` and is O(1) amortised: every segment
    is popped from the head at most once, and running totals for duration
    and size are maintained incrementally.

    Args:
        retention_sec: Seconds of most-recent video the buffer guarantees to
            keep available.
        bitrate_bps: Nominal encoder bitrate, used to estimate capacity before
            any data has been observed.  Optional.
        name: Label used in structured log records.

    Raises:
        ValueError: If ``retention_sec`` is not positive.
    """

    def __init__(
        self,
        retention_sec: float,
        bitrate_bps: Optional[int] = None,
        name: str = "buffer",
    ) -> None:
        if retention_sec <= 0:
            raise ValueError(f"retention_sec must be positive, got {retention_sec!r}")
        self.retention_sec = float(retention_sec)
        self.bitrate_bps = bitrate_bps
        self.name = name

        self._segments: Deque[StreamSegment] = collections.deque()
        self._keyframes: Deque[int] = collections.deque()
        self._pins: collections.Counter = collections.Counter()
        self._next_position = 0
        self._head = 0
        self._duration = 0.0
        self._size = 0
        self._evicted = 0

        # Re-entrant: BufferReader.__del__ may run from a GC pass triggered
        # while this thread already holds the lock.
        self._lock = threading.RLock()
        self._open = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> "CircularBuffer":
        """Make the buffer ready to accept segments."""
        with self._lock:
            if self._open:
                return self
            self._open = True
        log.info(
            "Circular buffer opened",
            extra={
                "buffer": self.name,
                "retention_sec": self.retention_sec,
                "bitrate_bps": self.bitrate_bps,
            },
        )
        return self

    def close(self) -> None:
        """Release every retained segment. Idempotent."""
        with self._lock:
            if not self._open:
                return
            self._open = False
            dropped = len(self._segments)
            self._reset_contents()
        log.info(
            "Circular buffer closed",
            extra={"buffer": self.name, "segments_released": dropped},
        )

    def __enter__(self) -> "CircularBuffer":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return not self._open

    def clear(self) -> None:
        """Drop all retained segments but keep the buffer open.

        Positions keep increasing across a clear, so stale positions are
        reported as evicted rather than silently aliasing new data.
        """
        with self._lock:
            self._reset_contents()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def append(self, segment: StreamSegment) -> int:
        """Add ``segment`` at the tail and evict from the head as needed.

        Args:
            segment: Segment produced by the live encoder.  Its ``position``
                field is ignored and replaced.

        Returns:
            The sequence position the segment was stored under.

        Raises:
            BufferClosedError: If the buffer is not open.
        """
        with self._lock:
            if not self._open:
                raise BufferClosedError(f"Buffer '{self.name}' is not open")

            position = self._next_position
            stored = dataclasses.replace(segment, position=position)
            self._next_position += 1

            if not self._segments:
                self._head = position
            self._segments.append(stored)
            self._duration += stored.duration
            self._size += len(stored.data)

            if stored.keyframe:
                if not self._keyframes:
                    log.debug(
                        "First keyframe buffered",
                        extra={"buffer": self.name, "position": position},
                    )
                self._keyframes.append(position)

            self._evict()
            return position

    def _evict(self) -> None:
        limit = self._eviction_limit()
        segments = self._segments
        while segments:
            head = segments[0]
            if head.position >= limit:
                break
            if self._duration - head.duration < self.retention_sec:
                break
            segments.popleft()
            self._duration -= head.duration
            self._size -= len(head.data)
            if self._keyframes and self._keyframes[0] == head.position:
                self._keyframes.popleft()
            self._evicted += 1

        if segments:
            self._head = segments[0].position
        else:
            self._head = self._next_position
            self._duration = 0.0

    def _eviction_limit(self) -> int:
        """First position that eviction must not remove."""
        limit = self._next_position
        if self._keyframes:
            limit = self._keyframes[-1]
        if self._pins:
            limit = min(limit, min(self._pins))
        return limit

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def find_earliest_replay_point(self) -> int:
        """Return the position of the first retained keyframe boundary.

        When no keyframe has been retained yet (buffer still warming up) the
        head position is returned instead; reading from it may produce a
        stream that is not decodable at its start.
        """
        with self._lock:
            if self._keyframes:
                return self._keyframes[0]
            return self._head

    def read_from_replay_point(self, payloads: bool = True) -> Tuple[int, BufferReader]:
        """Find the earliest replay point and start reading there atomically.

        The replay point is pinned in the same lock hold that finds it, so a
        producer appending concurrently cannot evict it before the read
        begins.

        Returns:
            ``(start_position, reader)``.

        Raises:
            BufferClosedError: If the buffer is not open.
        """
        with self._lock:
            start = self.find_earliest_replay_point()
            return start, self._reader(start, payloads=payloads)

    def read_from(self, position: int) -> BufferReader:
        """Return a lazy iterator of segment payloads from ``position``.

        The iterator ends at the tail as it stood when this method was called
        and does not advance eviction state.  Until it is exhausted or closed,
        ``position`` is pinned against eviction.

        Raises:
            BufferClosedError: If the buffer is not open.
            PositionEvictedError: If ``position`` is older than the head.
        """
        return self._reader(position, payloads=True)

    def read_segments_from(self, position: int) -> BufferReader:
        """Like :meth:`read_from` but yields :class:`StreamSegment` objects."""
        return self._reader(position, payloads=False)

    def _reader(self, position: int, payloads: bool) -> BufferReader:
        with self._lock:
            if not self._open:
                raise BufferClosedError(f"Buffer '{self.name}' is not open")
            if position < self._head:
                raise PositionEvictedError(
                    f"Position {position} evicted from buffer '{self.name}' "
                    f"(head is {self._head})"
                )
            start = min(position, self._next_position)
            self._pins[start] += 1
            return BufferReader(self, start, self._next_position, payloads=payloads)

    def _segment_at(self, position: int, end: int) -> Optional[StreamSegment]:
        with self._lock:
            if not self._open:
                raise BufferClosedError(f"Buffer '{self.name}' closed during read")
            if position >= end or position >= self._next_position:
                return None
            offset = position - self._head
            if offset < 0:
                raise PositionEvictedError(
                    f"Position {position} evicted from buffer '{self.name}' during read"
                )
            return self._segments[offset]

    def _unpin(self, position: int) -> None:
        with self._lock:
            self._pins[position] -= 1
            if self._pins[position] <= 0:
                del self._pins[position]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._segments)

    @property
    def duration(self) -> float:
        """Seconds of video currently retained."""
        return self._duration

    @property
    def size_bytes(self) -> int:
        return self._size

    @property
    def head_position(self) -> int:
        """Position of the oldest retained segment (next position when empty)."""
        return self._head

    @property
    def tail_position(self) -> int:
        """Position the next appended segment will receive."""
        return self._next_position

    @property
    def keyframe_count(self) -> int:
        return len(self._keyframes)

    @property
    def estimated_bitrate_bps(self) -> Optional[float]:
        """Bitrate observed over retained data, else the configured bitrate."""
        with self._lock:
            if self._duration > 0 and self._size:
                return self._size * 8 / self._duration
        return float(self.bitrate_bps) if self.bitrate_bps else None

    @property
    def capacity_bytes(self) -> int:
        """Estimated bytes needed to hold ``retention_sec`` of video.

        Tracks the observed bitrate, so the estimate grows and shrinks as the
        encoder's output rate varies.
        """
        bitrate = self.estimated_bitrate_bps
        if not bitrate:
            return 0
        return int(bitrate / 8 * self.retention_sec)

    def stats(self) -> Dict[str, Any]:
        """JSON-safe snapshot of the buffer's occupancy."""
        with self._lock:
            return {
                "name": self.name,
                "open": self._open,
                "retention_sec": self.retention_sec,
                "duration_sec": round(self._duration, 3),
                "segments": len(self._segments),
                "size_bytes": self._size,
                "capacity_bytes": self.capacity_bytes,
                "keyframes": len(self._keyframes),
                "head_position": self._head,
                "tail_position": self._next_position,
                "evicted": self._evicted,
                "active_readers": sum(self._pins.values()),
            }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _reset_contents(self) -> None:
        self._segments.clear()
        self._keyframes.clear()
        self._duration = 0.0
        self._size = 0
        self._head = self._next_position


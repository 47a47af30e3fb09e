# tests/test_circular_buffer.py
import threading

import pytest

from prerecord.core.circular_buffer import (
    BufferClosedError,
    CircularBuffer,
    PositionEvictedError,
)
from prerecord.core.data_models import StreamSegment


def seg(tag: int, keyframe: bool = False, duration: float = 1.0, size: int = 10) -> StreamSegment:
    """Segment whose payload identifies it by ``tag``."""
    return StreamSegment(data=bytes([tag % 256]) * size, keyframe=keyframe, duration=duration)


@pytest.fixture
def buf():
    with CircularBuffer(retention_sec=20.0, name="test") as b:
        yield b


def test_retention_window_keeps_last_keyframe(buf):
    # 25 one-second segments, only the 5th is a keyframe boundary.
    for i in range(25):
        buf.append(seg(i, keyframe=(i == 4)))

    assert buf.find_earliest_replay_point() == 4
    assert buf.head_position == 4
    assert buf.duration == pytest.approx(21.0)

    payloads = list(buf.read_from(buf.find_earliest_replay_point()))
    assert payloads[0] == seg(4).data
    assert len(payloads) == 21


def test_evicts_down_to_retention_when_keyframes_are_frequent(buf):
    for i in range(100):
        buf.append(seg(i, keyframe=True))
        assert buf.duration >= min(i + 1, 20.0)

    assert buf.duration == pytest.approx(20.0)
    assert len(buf) == 20
    assert buf.head_position == 80
    assert buf.find_earliest_replay_point() == 80


def test_duration_never_drops_below_retention(buf):
    for i in range(60):
        buf.append(seg(i, keyframe=(i % 7 == 0), duration=0.4))
        retained = buf.duration
        appended = (i + 1) * 0.4
        assert retained >= min(appended, 20.0) - 1e-9


def test_never_evicts_most_recent_keyframe():
    with CircularBuffer(retention_sec=2.0) as b:
        b.append(seg(0, keyframe=True))
        for i in range(1, 50):
            b.append(seg(i))
        # No newer keyframe has arrived, so the only replay point survives.
        assert b.find_earliest_replay_point() == 0
        assert b.head_position == 0
        assert b.duration == pytest.approx(50.0)

        b.append(seg(50, keyframe=True))
        b.append(seg(51))
        assert b.find_earliest_replay_point() == 50
        assert b.head_position == 50


def test_replay_point_is_idempotent(buf):
    for i in range(30):
        buf.append(seg(i, keyframe=(i % 10 == 3)))
    first = buf.find_earliest_replay_point()
    assert buf.find_earliest_replay_point() == first
    list(buf.read_from(first))
    assert buf.find_earliest_replay_point() == first


def test_replay_point_without_keyframe_is_head(buf):
    for i in range(5):
        buf.append(seg(i))
    assert buf.keyframe_count == 0
    assert buf.find_earliest_replay_point() == buf.head_position == 0


def test_empty_buffer_reads_nothing(buf):
    assert len(buf) == 0
    assert buf.duration == 0.0
    start = buf.find_earliest_replay_point()
    assert list(buf.read_from(start)) == []


def test_append_returns_increasing_positions(buf):
    positions = [buf.append(seg(i, keyframe=True)) for i in range(5)]
    assert positions == [0, 1, 2, 3, 4]
    segments = list(buf.read_segments_from(0))
    assert [s.position for s in segments] == positions


def test_read_from_evicted_position_raises(buf):
    for i in range(40):
        buf.append(seg(i, keyframe=True))
    with pytest.raises(PositionEvictedError):
        buf.read_from(0)


def test_closed_buffer_rejects_append_and_read():
    b = CircularBuffer(retention_sec=5.0)
    with pytest.raises(BufferClosedError):
        b.append(seg(0))
    b.open()
    b.append(seg(0, keyframe=True))
    b.close()
    assert b.closed
    assert len(b) == 0
    with pytest.raises(BufferClosedError):
        b.append(seg(1))
    with pytest.raises(BufferClosedError):
        b.read_from(0)


def test_close_is_idempotent():
    b = CircularBuffer(retention_sec=5.0).open()
    b.close()
    b.close()
    assert b.closed


def test_invalid_retention_rejected():
    with pytest.raises(ValueError):
        CircularBuffer(retention_sec=0)


def test_reader_pins_start_against_eviction(buf):
    for i in range(20):
        buf.append(seg(i, keyframe=True))
    start = buf.find_earliest_replay_point()
    reader = buf.read_from(start)
    assert reader.remaining == 20

    # The producer keeps going while the reader is open.
    for i in range(20, 60):
        buf.append(seg(i, keyframe=True))
    assert buf.head_position == start

    payloads = list(reader)
    assert payloads == [seg(i).data for i in range(20)]

    # Pin released on exhaustion: the next append evicts the backlog.
    buf.append(seg(60, keyframe=True))
    assert buf.head_position > start
    assert buf.duration == pytest.approx(20.0)


def test_reader_close_releases_pin(buf):
    for i in range(20):
        buf.append(seg(i, keyframe=True))
    with buf.read_from(0) as reader:
        next(reader)
        assert buf.stats()["active_readers"] == 1
    assert buf.stats()["active_readers"] == 0
    assert list(reader) == []


def test_reader_stops_at_tail_of_creation(buf):
    for i in range(3):
        buf.append(seg(i, keyframe=True))
    reader = buf.read_from(0)
    buf.append(seg(3, keyframe=True))
    assert len(list(reader)) == 3


def test_concurrent_appends_during_read(buf):
    for i in range(20):
        buf.append(seg(i, keyframe=(i % 5 == 0)))
    start = buf.find_earliest_replay_point()
    expected = [s.data for s in buf.read_segments_from(start)]

    stop = threading.Event()

    def produce():
        n = 20
        while not stop.is_set() and n < 5000:
            buf.append(seg(n, keyframe=(n % 5 == 0)))
            n += 1

    producer = threading.Thread(target=produce)
    reader = buf.read_from(start)
    producer.start()
    try:
        got = list(reader)
    finally:
        stop.set()
        producer.join()
    assert got == expected


def test_clear_keeps_positions_monotonic(buf):
    for i in range(5):
        buf.append(seg(i, keyframe=True))
    buf.clear()
    assert len(buf) == 0
    assert buf.size_bytes == 0
    assert buf.head_position == 5
    assert buf.append(seg(5, keyframe=True)) == 5
    with pytest.raises(PositionEvictedError):
        buf.read_from(2)


def test_capacity_tracks_observed_bitrate():
    with CircularBuffer(retention_sec=10.0, bitrate_bps=8000) as b:
        # Nothing observed yet: the configured bitrate is used.
        assert b.capacity_bytes == 10000
        for i in range(4):
            b.append(seg(i, keyframe=True, duration=1.0, size=2000))
        assert b.estimated_bitrate_bps == pytest.approx(16000.0)
        assert b.capacity_bytes == 20000


def test_capacity_unknown_without_bitrate():
    with CircularBuffer(retention_sec=10.0) as b:
        assert b.estimated_bitrate_bps is None
        assert b.capacity_bytes == 0


def test_stats_snapshot(buf):
    for i in range(3):
        buf.append(seg(i, keyframe=(i == 0)))
    stats = buf.stats()
    assert stats["segments"] == 3
    assert stats["keyframes"] == 1
    assert stats["size_bytes"] == 30
    assert stats["tail_position"] == 3
    assert stats["open"] is True


def test_read_from_replay_point_pins_keyframe(buf):
    for i in range(25):
        buf.append(seg(i, keyframe=(i == 4)))

    start, reader = buf.read_from_replay_point(payloads=False)
    assert start == 4
    assert buf.stats()["active_readers"] == 1

    # A newer keyframe would normally let the window advance past 4.
    for i in range(25, 40):
        buf.append(seg(i, keyframe=(i == 30)))
    assert buf.head_position <= 4

    segments = list(reader)
    assert [s.data[0] for s in segments] == list(range(4, 25))
    assert buf.stats()["active_readers"] == 0


def test_read_from_replay_point_on_closed_buffer():
    buf = CircularBuffer(retention_sec=5.0)
    with pytest.raises(BufferClosedError):
        buf.read_from_replay_point()

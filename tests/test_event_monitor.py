# tests/test_event_monitor.py
import time

from prerecord.core.event_monitor import EVENT_ERROR, EventEmitter, PollingMonitor


def test_emit_reaches_subscribers_in_order():
    emitter = EventEmitter()
    seen = []
    emitter.on("tick", lambda n: seen.append(("a", n)))
    emitter.on("tick", lambda n: seen.append(("b", n)))
    assert emitter.emit("tick", 1) == 2
    assert seen == [("a", 1), ("b", 1)]
    assert emitter.emit("unknown") == 0


def test_raising_subscriber_does_not_block_others():
    emitter = EventEmitter()
    seen = []

    def boom():
        raise RuntimeError("subscriber bug")

    emitter.on("tick", boom)
    emitter.on("tick", lambda: seen.append("ok"))
    assert emitter.emit("tick") == 1
    assert seen == ["ok"]


def test_off_and_once():
    emitter = EventEmitter()
    seen = []
    handler = emitter.on("tick", seen.append)
    emitter.once("tick", lambda v: seen.append(("once", v)))
    assert emitter.listener_count("tick") == 2

    emitter.emit("tick", 1)
    emitter.emit("tick", 2)
    assert seen == [1, ("once", 1), 2]

    assert emitter.off("tick", handler) is True
    assert emitter.off("tick", handler) is False
    assert emitter.listener_count("tick") == 0

    emitter.on("tick", seen.append)
    emitter.clear_all()
    assert emitter.emit("tick", 3) == 0


class CountingMonitor(PollingMonitor):
    def __init__(self, fail_every=0):
        super().__init__(poll_interval=0.01, name="counting")
        self.samples = 0
        self.fail_every = fail_every

    def _poll(self):
        self.samples += 1
        if self.fail_every and self.samples % self.fail_every == 0:
            raise ValueError("bad sample")


def test_poll_once_reports_errors():
    monitor = CountingMonitor(fail_every=2)
    errors = []
    monitor.on(EVENT_ERROR, errors.append)
    for _ in range(4):
        monitor.poll_once()
    assert monitor.polls == 4
    assert monitor.poll_errors == 2
    assert [str(e) for e in errors] == ["bad sample", "bad sample"]


def test_start_stop_lifecycle():
    monitor = CountingMonitor()
    monitor.start()
    try:
        assert monitor.is_running()
        deadline = time.monotonic() + 2.0
        while monitor.samples < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert monitor.samples >= 3
    finally:
        monitor.stop()
    assert not monitor.is_running()
    count = monitor.samples
    time.sleep(0.05)
    assert monitor.samples == count

    # Restartable.
    monitor.start()
    monitor.stop()
    monitor.stop()

# tests/test_trigger.py
import threading
import time

from prerecord.core.trigger import TriggerWait


def test_fire_then_wait_consumes():
    trig = TriggerWait()
    assert trig.fire("button") is True
    assert trig.pending
    assert trig.wait(timeout=1.0) is True
    assert trig.last_source == "button"
    assert not trig.pending
    # Consumed: the next wait times out.
    assert trig.wait(timeout=0.05) is False


def test_wait_times_out_without_trigger():
    trig = TriggerWait()
    started = time.monotonic()
    assert trig.wait(timeout=0.1) is False
    assert time.monotonic() - started >= 0.09


def test_wait_wakes_on_fire_from_other_thread():
    trig = TriggerWait()
    timer = threading.Timer(0.05, trig.fire, args=("gpio",))
    timer.start()
    try:
        assert trig.wait(timeout=5.0) is True
    finally:
        timer.cancel()
    assert trig.last_source == "gpio"


def test_extra_fires_are_coalesced():
    trig = TriggerWait()
    assert trig.fire("a") is True
    assert trig.fire("b") is False
    assert trig.fire("c") is False
    assert trig.wait(timeout=0.1) is True
    assert trig.last_source == "a"
    assert trig.wait(timeout=0.05) is False
    assert (trig.fired, trig.consumed, trig.dropped) == (3, 1, 2)


def test_discard_pending():
    trig = TriggerWait()
    assert trig.discard_pending() is None
    trig.fire("stale")
    assert trig.discard_pending() == "stale"
    assert trig.wait(timeout=0.05) is False
    assert trig.dropped == 1


def test_cancel_wakes_waiter_and_reset_rearms():
    trig = TriggerWait()
    results = []
    waiter = threading.Thread(target=lambda: results.append(trig.wait()))
    waiter.start()
    time.sleep(0.05)
    trig.cancel()
    waiter.join(timeout=2.0)
    assert not waiter.is_alive()
    assert results == [False]
    assert trig.cancelled
    assert trig.wait(timeout=0.5) is False

    trig.reset()
    trig.fire("after-reset")
    assert trig.wait(timeout=0.5) is True


def test_stats():
    trig = TriggerWait(name="door")
    trig.fire("web")
    stats = trig.stats()
    assert stats["name"] == "door"
    assert stats["pending"] is True
    assert stats["fired"] == 1

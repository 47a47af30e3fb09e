# tests/test_input_monitor.py
import time

from prerecord.core.event_monitor import (
    EVENT_INPUT_ACTIVE,
    EVENT_INPUT_CHANGE,
    EVENT_INPUT_INACTIVE,
)
from prerecord.core.trigger import TriggerWait
from prerecord.triggers import InputTrigger, file_input_reader


def scripted(states):
    """read_state callable that replays ``states`` then holds the last one."""
    states = list(states)

    def read_state():
        if len(states) > 1:
            return states.pop(0)
        return states[0]

    return read_state


def test_fires_once_per_rising_edge():
    trig = TriggerWait()
    monitor = InputTrigger(scripted([False, True, True, False, True]), trig)
    events = []
    monitor.on(EVENT_INPUT_CHANGE, lambda old, new: events.append((old, new)))
    monitor.on(EVENT_INPUT_ACTIVE, lambda: events.append("active"))
    monitor.on(EVENT_INPUT_INACTIVE, lambda: events.append("inactive"))

    for _ in range(5):
        monitor.poll_once()

    assert monitor.activations == 2
    assert trig.fired == 2
    assert trig.dropped == 1  # second press coalesced, nobody waited
    assert events == [
        (False, True), "active",
        (True, False), "inactive",
        (False, True), "active",
    ]
    assert trig.wait(timeout=0.1)
    assert trig.last_source == "input"


def test_active_at_startup_is_baseline_only():
    trig = TriggerWait()
    monitor = InputTrigger(scripted([True, True, False, True]), trig)
    monitor.poll_once()
    monitor.poll_once()
    assert monitor.get_current_state() is True
    assert trig.fired == 0
    monitor.poll_once()
    monitor.poll_once()
    assert trig.fired == 1


def test_file_input_reader(tmp_path):
    value = tmp_path / "value"
    value.write_text("0\n")
    active_high = file_input_reader(value)
    active_low = file_input_reader(str(value), active_low=True)
    assert active_high() is False
    assert active_low() is True

    value.write_text("1\n")
    assert active_high() is True
    assert active_low() is False


def test_background_polling_fires_trigger(tmp_path):
    value = tmp_path / "value"
    value.write_text("0")
    trig = TriggerWait()
    monitor = InputTrigger(file_input_reader(value), trig, poll_interval=0.01, source="gpio17")
    monitor.start()
    try:
        time.sleep(0.05)
        value.write_text("1")
        assert trig.wait(timeout=2.0)
    finally:
        monitor.stop()
    assert trig.last_source == "gpio17"
    assert not monitor.is_running()


def test_read_errors_do_not_kill_the_monitor(tmp_path):
    errors = []
    trig = TriggerWait()
    monitor = InputTrigger(file_input_reader(tmp_path / "missing"), trig, poll_interval=0.01)
    monitor.on("error", errors.append)
    monitor.start()
    try:
        deadline = time.monotonic() + 2.0
        while len(errors) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        monitor.stop()
    assert len(errors) >= 2
    assert isinstance(errors[0], OSError)

"""
Input Monitor - Fires a trigger on each activation of an external input
"""

from pathlib import Path

from ..core.event_monitor import (
    PollingMonitor, EVENT_INPUT_CHANGE, EVENT_INPUT_ACTIVE, EVENT_INPUT_INACTIVE,
)
from ..core.jsonlog import build_logger

log = build_logger("prerecord.triggers.input")


def file_input_reader(path, active_low=False):
    """
    Build a ``read_state`` callable for a sysfs-style value file.

    The file holds ``"0"`` or ``"1"`` (e.g. ``/sys/class/gpio/gpio17/value``).
    Pull-ups, pull-downs and debounce are configured outside this process.

    Args:
        path: Path of the value file
        active_low: Treat ``"0"`` as active (button wired to ground)

    Returns:
        Callable returning ``True`` while the input is active
    """
    path = Path(path)

    def read_state():
        raw = path.read_text().strip()
        level = raw not in ("", "0")
        return not level if active_low else level

    return read_state


class InputTrigger(PollingMonitor):
    """
    Watch an external input and fire a trigger on each inactive→active edge.

    Emits events:
    - 'input_change': (old_state, new_state)
    - 'input_active': ()
    - 'input_inactive': ()

    The first sample only establishes the baseline; an input that is already
    active at start-up does not fire until it has been released and pressed.

    Example usage:
        trigger = TriggerWait()
        monitor = InputTrigger(file_input_reader('/sys/class/gpio/gpio17/value',
                                                 active_low=True), trigger)
        monitor.start()
        trigger.wait()
    """

    def __init__(self, read_state, trigger, poll_interval=0.02, source='input'):
        """
        Args:
            read_state: Callable returning the current input state as a bool
            trigger: TriggerWait to fire on each activation
            poll_interval: Seconds between samples (default 0.02 = 50Hz)
            source: Label passed to ``trigger.fire``
        """
        super().__init__(poll_interval, name="InputTrigger")

        self.read_state = read_state
        self.trigger = trigger
        self.source = source

        self._last_state = None
        self.activations = 0

    def _poll(self):
        """Sample the input and fire on a rising edge."""
        new_state = bool(self.read_state())
        old_state = self._last_state
        if old_state == new_state:
            return

        self._last_state = new_state
        if old_state is None:
            log.debug("Input baseline", extra={"source": self.source, "state": new_state})
            return

        self.emit(EVENT_INPUT_CHANGE, old_state, new_state)
        if new_state:
            self.activations += 1
            self.emit(EVENT_INPUT_ACTIVE)
            self.trigger.fire(self.source)
        else:
            self.emit(EVENT_INPUT_INACTIVE)

    def get_current_state(self):
        """Last sampled state, or None before the first sample."""
        return self._last_state

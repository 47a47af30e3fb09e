"""
Event plumbing shared by the recorder and its trigger sources

``EventEmitter`` is a small synchronous pub/sub mix-in; ``PollingMonitor``
adds a daemon thread that samples something on a fixed interval.
"""

import collections
import threading
from abc import ABC, abstractmethod
from typing import Callable, DefaultDict, List

from .jsonlog import build_logger

log = build_logger("prerecord.events")


class EventEmitter:
    """
    Synchronous pub/sub mix-in.

    Callbacks run on the emitting thread, in subscription order.
    """

    def __init__(self):
        self._subscribers: DefaultDict[str, List[Callable]] = collections.defaultdict(list)
        self._subscribers_lock = threading.Lock()

    def on(self, event_name: str, callback: Callable) -> Callable:
        """
        Subscribe ``callback`` to ``event_name``.

        Returns the callback, so a lambda can be kept for a later :meth:`off`:

            handler = recorder.on('flush_complete', lambda result: print(result.path))
        """
        with self._subscribers_lock:
            self._subscribers[event_name].append(callback)
        return callback

    def once(self, event_name: str, callback: Callable) -> Callable:
        """Subscribe ``callback`` for a single delivery."""
        def _wrapper(*args, **kwargs):
            self.off(event_name, _wrapper)
            callback(*args, **kwargs)

        return self.on(event_name, _wrapper)

    def off(self, event_name: str, callback: Callable) -> bool:
        """Unsubscribe. Returns False if ``callback`` was not subscribed."""
        with self._subscribers_lock:
            subscribers = self._subscribers.get(event_name)
            if not subscribers or callback not in subscribers:
                return False
            subscribers.remove(callback)
            return True

    def emit(self, event_name: str, *args, **kwargs) -> int:
        """
        Deliver an event to every subscriber.

        A subscriber that raises is logged and skipped; the rest still run.

        Returns:
            Number of subscribers that ran without raising.
        """
        with self._subscribers_lock:
            subscribers = list(self._subscribers.get(event_name, ()))

        delivered = 0
        for callback in subscribers:
            try:
                callback(*args, **kwargs)
            except Exception:  # noqa: BLE001
                log.exception("Event subscriber raised", extra={"event": event_name})
            else:
                delivered += 1
        return delivered

    def listener_count(self, event_name: str) -> int:
        with self._subscribers_lock:
            return len(self._subscribers.get(event_name, ()))

    def clear_all(self):
        """Drop every subscription."""
        with self._subscribers_lock:
            self._subscribers.clear()


class PollingMonitor(ABC, EventEmitter):
    """
    Base class for trigger sources that sample on an interval.

    Subclasses implement :meth:`_poll`. An exception from ``_poll`` is logged,
    emitted as ``'error'`` and counted; polling continues on the next tick.
    The wait between ticks is interruptible, so :meth:`stop` returns promptly
    even with long intervals.
    """

    def __init__(self, poll_interval=0.05, name="Monitor"):
        EventEmitter.__init__(self)

        self.poll_interval = poll_interval
        self.name = name
        self.polls = 0
        self.poll_errors = 0

        self._wake = threading.Event()
        self._thread = None

    def start(self):
        """Begin polling on a daemon thread. No-op if already running."""
        if self.is_running():
            log.warning("Monitor already running", extra={"monitor": self.name})
            return

        self._wake.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name=self.name)
        self._thread.start()
        log.info("Monitor started", extra={"monitor": self.name, "poll_interval": self.poll_interval})

    def stop(self, timeout=5.0):
        """Stop polling and join the thread."""
        thread, self._thread = self._thread, None
        if thread is None:
            return

        self._wake.set()
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
        log.info(
            "Monitor stopped",
            extra={"monitor": self.name, "polls": self.polls, "poll_errors": self.poll_errors},
        )

    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def poll_once(self):
        """Run a single sample on the calling thread, with the loop's error handling."""
        self.polls += 1
        try:
            self._poll()
        except Exception as exc:  # noqa: BLE001
            self.poll_errors += 1
            log.exception("Poll failed", extra={"monitor": self.name})
            self.emit(EVENT_ERROR, exc)

    def _run_loop(self):
        while not self._wake.is_set():
            self.poll_once()
            self._wake.wait(self.poll_interval)

    @abstractmethod
    def _poll(self):
        """Take one sample and emit/fire as appropriate."""


# ============================================================================
# EVENT NAMES
# ============================================================================

# Input events
EVENT_INPUT_CHANGE = 'input_change'           # (old_state, new_state)
EVENT_INPUT_ACTIVE = 'input_active'           # ()
EVENT_INPUT_INACTIVE = 'input_inactive'       # ()

# Recorder events
EVENT_TRIGGER = 'trigger'                     # (source)
EVENT_STATE_CHANGE = 'state_change'           # (old_state, new_state)
EVENT_FLUSH_COMPLETE = 'flush_complete'       # (FlushResult)
EVENT_FLUSH_FAILED = 'flush_failed'           # (path, exception)

# System events
EVENT_ERROR = 'error'                         # (exception)

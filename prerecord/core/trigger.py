"""
trigger.py — Single-slot blocking trigger shared by every trigger source.

Trigger sources (an input monitor, the hot folder, the web UI, or a GPIO
library callback such as ``button.when_pressed = trigger.fire``) call
:meth:`TriggerWait.fire`; the recorder blocks in :meth:`TriggerWait.wait`.

The slot holds at most one pending trigger.  A firing while one is already
pending is coalesced into it and counted in ``dropped``.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Optional

from .jsonlog import build_logger

log = build_logger("prerecord.trigger")


class TriggerWait:
    """Blocking receive on a single-slot trigger signal.

    Args:
        name: Label used in structured log records.
    """

    def __init__(self, name: str = "trigger") -> None:
        self.name = name
        self._cond = threading.Condition()
        self._pending: Optional[str] = None
        self._pending_at: Optional[float] = None
        self._cancelled = False
        self._last_source: Optional[str] = None

        self.fired = 0
        self.consumed = 0
        self.dropped = 0

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def fire(self, source: str = "manual") -> bool:
        """Signal a trigger.

        Args:
            source: Free-form label identifying where the trigger came from.

        Returns:
            ``True`` if the trigger occupied the empty slot, ``False`` if it
            was coalesced into one already pending.
        """
        with self._cond:
            self.fired += 1
            if self._pending is not None:
                self.dropped += 1
                log.warning(
                    "Trigger already pending — coalesced",
                    extra={"trigger": self.name, "source": source, "pending_source": self._pending},
                )
                return False
            self._pending = source
            self._pending_at = time.time()
            self._cond.notify_all()
        log.info("Trigger fired", extra={"trigger": self.name, "source": source})
        return True

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until a trigger fires, then consume it.

        Args:
            timeout: Seconds to wait, or ``None`` to wait indefinitely.

        Returns:
            ``True`` if a trigger was consumed; ``False`` on timeout or
            cancellation.
        """
        with self._cond:
            fired = self._cond.wait_for(
                lambda: self._pending is not None or self._cancelled,
                timeout=timeout,
            )
            if not fired or self._pending is None:
                return False
            self._last_source = self._pending
            self._pending = None
            self._pending_at = None
            self.consumed += 1
            return True

    def discard_pending(self) -> Optional[str]:
        """Drop a trigger that fired while nobody was waiting.

        Returns:
            The discarded trigger's source label, or ``None``.
        """
        with self._cond:
            source = self._pending
            if source is not None:
                self._pending = None
                self._pending_at = None
                self.dropped += 1
        if source is not None:
            log.warning(
                "Discarding trigger received while not armed",
                extra={"trigger": self.name, "source": source},
            )
        return source

    def cancel(self) -> None:
        """Wake every waiter; subsequent waits return ``False`` immediately."""
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    def reset(self) -> None:
        """Re-arm after :meth:`cancel`."""
        with self._cond:
            self._cancelled = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> bool:
        return self._pending is not None

    @property
    def last_source(self) -> Optional[str]:
        """Source label of the most recently consumed trigger."""
        return self._last_source

    def stats(self) -> Dict[str, Any]:
        with self._cond:
            return {
                "name": self.name,
                "pending": self._pending is not None,
                "cancelled": self._cancelled,
                "fired": self.fired,
                "consumed": self.consumed,
                "dropped": self.dropped,
                "last_source": self._last_source,
            }

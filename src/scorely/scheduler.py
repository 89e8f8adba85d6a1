"""Cancelable, keyed one-shot timers (one active job per key)."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Hashable
    from logging import Logger


class ExpiryScheduler:
    """Schedules `fn` to run once after a delay, keyed so it can be replaced or cancelled.

    Scheduling a key that already has a pending job cancels the old job first.
    A job that fires removes itself before running `fn`.
    """

    def __init__(self) -> None:
        self._log: Logger = logging.getLogger("Scheduler")
        self._timers: dict[Hashable, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, key: Hashable, delay_s: float, fn: Callable[[], None]) -> None:
        timer = threading.Timer(max(0.0, delay_s), self._fire, args=(key, fn))
        timer.daemon = True

        with self._lock:
            old = self._timers.pop(key, None)
            if old is not None:
                old.cancel()
            self._timers[key] = timer

        timer.start()
        self._log.debug("Scheduled job [bright_green]%s[/] in %.2fs", key, delay_s)

    def cancel(self, key: Hashable) -> bool:
        """Cancel the pending job for `key`. Return True if one was pending."""
        with self._lock:
            timer = self._timers.pop(key, None)

        if timer is None:
            return False

        timer.cancel()
        self._log.debug("Cancelled job [bright_green]%s[/]", key)
        return True

    def pending(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._timers

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()

        for timer in timers:
            timer.cancel()

    def _fire(self, key: Hashable, fn: Callable[[], None]) -> None:
        with self._lock:
            # Replaced or cancelled while the timer thread was waking up
            if self._timers.get(key) is not threading.current_thread():
                return
            del self._timers[key]

        try:
            fn()
        except Exception:
            self._log.exception("Scheduled job %s failed", key)

"""Dedup + rate-limit gate for inbound score events.

Runs before any state logic. Drops are terminal and silent on the wire: the
sender gets no response, only a log line and a counter bump here.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from scorely.misc.utils import time_now_ms

if TYPE_CHECKING:
    from collections.abc import Callable
    from logging import Logger

    from scorely.models import ScoreEvent

DEDUP_TTL_MS: Final = 5_000
RATE_WINDOW_MS: Final = 1_000
MAX_EVENTS_PER_WINDOW: Final = 10


class Admission(StrEnum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    RATE_LIMITED = "rate_limited"


@dataclass
class _RateWindow:
    window_start: int
    count: int = 1


class AdmissionFilter:
    """
    Per-device sliding-window rate limiter and `deviceId_timestamp` dedup cache.

    Both tables are evicted lazily on each `admit` call, so memory is bounded by
    the traffic of the last few seconds.
    """

    def __init__(
        self,
        now: Callable[[], int] = time_now_ms,
        *,
        dedup_ttl_ms: int = DEDUP_TTL_MS,
        rate_window_ms: int = RATE_WINDOW_MS,
        max_per_window: int = MAX_EVENTS_PER_WINDOW,
    ) -> None:
        self._now = now
        self.dedup_ttl_ms = dedup_ttl_ms
        self.rate_window_ms = rate_window_ms
        self.max_per_window = max_per_window

        self._log: Logger = logging.getLogger("Admission")
        self._seen: dict[str, int] = {}  # dedup key -> expiry (ms)
        self._windows: dict[str, _RateWindow] = {}
        self.stats: Counter[Admission] = Counter()

    def admit(self, event: ScoreEvent) -> Admission:
        """Classify `event` as accepted, duplicate or rate-limited."""
        now = self._now()
        self._evict(now)

        result = self._check(event, now)
        self.stats[result] += 1

        if result is not Admission.ACCEPTED:
            self._log.warning(
                "[bright_yellow on grey30][DROPPED][/] %s event from [bright_green]%s[/] (ts=%d)",
                result.value,
                event.device_id,
                event.timestamp,
            )

        return result

    def _check(self, event: ScoreEvent, now: int) -> Admission:
        key = event.dedup_key
        if key in self._seen:
            return Admission.DUPLICATE

        if self._rate_limited(event.device_id, now):
            return Admission.RATE_LIMITED

        # Not refreshed by later duplicates
        self._seen[key] = now + self.dedup_ttl_ms
        return Admission.ACCEPTED

    def _rate_limited(self, device_id: str, now: int) -> bool:
        window = self._windows.get(device_id)

        if window is None or now - window.window_start > self.rate_window_ms:
            self._windows[device_id] = _RateWindow(window_start=now)
            return False

        window.count += 1
        return window.count > self.max_per_window

    def _evict(self, now: int) -> None:
        expired = [key for key, expiry in self._seen.items() if now > expiry]
        for key in expired:
            del self._seen[key]

        stale = [dev for dev, w in self._windows.items() if now - w.window_start > self.rate_window_ms]
        for dev in stale:
            del self._windows[dev]

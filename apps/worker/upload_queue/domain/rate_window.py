"""Per-lane rate window accounting over the durable attempt log.

Every answer is recomputed from ``upload_attempts`` on each call. Nothing is
cached in memory, so a restarted process (or a second one sharing the store)
sees exactly the same capacity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from upload_queue.core.clock import Clock, ms_between
from upload_queue.schemas.upload import Lane

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS
RATE_LIMIT_PER_MINUTE = 10
RATE_LIMIT_PER_HOUR = 60
SPACING_HIGH_WATER = 7
RATE_LIMIT_BUFFER_MS = 1_000
RATE_LIMIT_FALLBACK_MS = MINUTE_MS


@dataclass(frozen=True, slots=True)
class AttemptWindow:
    count: int
    oldest: datetime | None = None
    newest: datetime | None = None


class AttemptLog(Protocol):
    def attempt_window(self, lane: Lane, since: datetime) -> AttemptWindow: ...


@dataclass(frozen=True, slots=True)
class Capacity:
    at_limit: bool
    near_limit: bool
    wait_ms: int

    @property
    def must_defer(self) -> bool:
        return self.at_limit or self.near_limit


@dataclass(frozen=True, slots=True)
class _WindowRule:
    span_ms: int
    cap: int


_WINDOWS = (
    _WindowRule(span_ms=MINUTE_MS, cap=RATE_LIMIT_PER_MINUTE),
    _WindowRule(span_ms=HOUR_MS, cap=RATE_LIMIT_PER_HOUR),
)


class RateWindowAccountant:
    def __init__(self, attempts: AttemptLog, clock: Clock) -> None:
        self._attempts = attempts
        self._clock = clock

    def _window(self, lane: Lane, span_ms: int, now: datetime) -> AttemptWindow:
        return self._attempts.attempt_window(lane, now - timedelta(milliseconds=span_ms))

    @staticmethod
    def _expiry_wait_ms(window: AttemptWindow, span_ms: int, now: datetime) -> int:
        if window.oldest is None:
            return 0
        return max(0, span_ms - ms_between(window.oldest, now) + RATE_LIMIT_BUFFER_MS)

    def capacity(self, lane: Lane) -> Capacity:
        now = self._clock.now()
        at_limit = False
        near_limit = False
        wait_ms = 0
        for rule in _WINDOWS:
            window = self._window(lane, rule.span_ms, now)
            if window.count >= rule.cap:
                at_limit = True
            if window.count >= rule.cap - 1:
                near_limit = True
                wait_ms = max(wait_ms, self._expiry_wait_ms(window, rule.span_ms, now))
        return Capacity(at_limit=at_limit, near_limit=near_limit, wait_ms=wait_ms)

    def min_spacing_ms(self, lane: Lane) -> int:
        """Delay still owed before the next dispatch once the minute window runs hot."""
        now = self._clock.now()
        window = self._window(lane, MINUTE_MS, now)
        if window.count < SPACING_HIGH_WATER or window.newest is None:
            return 0
        interval_ms = MINUTE_MS // RATE_LIMIT_PER_MINUTE
        return max(0, interval_ms - ms_between(window.newest, now))

    def rate_limit_delay_ms(self, lane: Lane) -> int:
        """Deferral for a 429 that carried no usable ``Retry-After`` hint."""
        wait_ms = self.capacity(lane).wait_ms
        if wait_ms > 0:
            return wait_ms
        now = self._clock.now()
        window = self._window(lane, MINUTE_MS, now)
        wait_ms = self._expiry_wait_ms(window, MINUTE_MS, now)
        return wait_ms if wait_ms > 0 else RATE_LIMIT_FALLBACK_MS

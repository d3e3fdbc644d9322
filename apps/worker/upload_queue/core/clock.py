"""Time source shared by the processor, store and sweeps.

Timestamps are naive UTC datetimes everywhere so they compare correctly
against values read back from SQLite.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC).replace(tzinfo=None)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def ms_between(earlier: datetime, later: datetime) -> int:
    return int((later - earlier) / timedelta(milliseconds=1))


def add_ms(moment: datetime, milliseconds: int) -> datetime:
    return moment + timedelta(milliseconds=milliseconds)

# dosebot/core/clock.py
from __future__ import annotations

from datetime import datetime, time
from zoneinfo import ZoneInfo


class Clock:
    """Injectable, testable clock bound to the reference timezone."""

    def __init__(self, tz: ZoneInfo):
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today_str(self) -> str:
        return self.day_of(self.now())

    def day_of(self, dt: datetime) -> str:
        """Calendar-day key (YYYY-MM-DD) of an instant, in the reference timezone."""
        return dt.astimezone(self.tz).strftime("%Y-%m-%d")

    def combine(self, yyyy_mm_dd: str, t: time) -> datetime:
        """Aware datetime for a day key and a local time-of-day."""
        y, m, d = (int(x) for x in yyyy_mm_dd.split("-"))
        return datetime(y, m, d, t.hour, t.minute, tzinfo=self.tz)


__all__ = ["Clock"]

"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Single time source for the risk core.

- Daily P&L windows, hourly trade counts, position age and
  tick retention all read time from an injected clock
- Tests drive time with MockClock instead of patching datetime

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only, always timezone-aware
- A "trading day" is the UTC calendar day

============================================================
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
import threading


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the system clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    def today(self) -> date:
        """Get current UTC date."""
        return self.now().date()

    def start_of_day(self, day: Optional[date] = None) -> datetime:
        """Midnight UTC of the given day (default: today)."""
        day = day or self.today()
        return datetime.combine(day, time.min, tzinfo=timezone.utc)

    def since(self, **kwargs) -> datetime:
        """Point in time `timedelta(**kwargs)` before now."""
        return self.now() - timedelta(**kwargs)


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Production clock using actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Time only moves when set_time() or advance() is called.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = ensure_utc(initial_time or datetime.now(timezone.utc))
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        with self._lock:
            self._time = ensure_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)


# ============================================================
# TIMESTAMP UTILITIES
# ============================================================

def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an RFC 3339 timestamp as sent by market data venues.

    Venues send nanosecond precision ("2024-01-02T15:04:05.123456789Z");
    the fraction is truncated to microseconds.
    """
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"

    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        for ch in rest:
            if not ch.isdigit():
                break
            digits += ch
        tail = rest[len(digits):]
        text = f"{head}.{digits[:6].ljust(6, '0')}{tail}" if digits else head + tail

    return ensure_utc(datetime.fromisoformat(text))


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",
    "parse_timestamp",
]

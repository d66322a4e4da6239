"""
Clock - injectable time source

Services never call datetime.now() directly; they receive a Clock so return
windows, recurring due dates and budget periods can be tested deterministically.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Abstract time source"""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as a naive UTC datetime"""
        ...

    def today(self):
        return self.now().date()


class SystemClock(Clock):
    """Production clock backed by the system time"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock(Clock):
    """Test clock that only moves when told to"""

    def __init__(self, fixed_time: Optional[datetime] = None):
        self._fixed_time = fixed_time or datetime(2025, 1, 15, 12, 0, 0)

    def now(self) -> datetime:
        return self._fixed_time

    def set_time(self, time: datetime) -> None:
        self._fixed_time = time

    def advance(self, days: int = 0, seconds: int = 0) -> datetime:
        self._fixed_time = self._fixed_time + timedelta(days=days, seconds=seconds)
        return self._fixed_time


system_clock = SystemClock()

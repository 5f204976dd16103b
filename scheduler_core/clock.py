"""
时间来源。测试里注入 ManualClock，手动拨动时间。
"""
from __future__ import annotations
from datetime import datetime, timedelta
import threading


class SystemClock:
    def now(self) -> datetime:
        return datetime.now()


class ManualClock:
    """只在 advance / set 时前进的时钟"""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1, 8, 0, 0)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        with self._lock:
            self._now += timedelta(seconds=seconds, minutes=minutes)
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value


def elapsed_seconds(since: datetime, now: datetime) -> float:
    return (now - since).total_seconds()


def elapsed_minutes(since: datetime, now: datetime) -> float:
    return (now - since).total_seconds() / 60.0

"""
等候队列：按 (requested_at, sequence) 严格先进先出。
"""
from __future__ import annotations
from datetime import datetime
from typing import Iterable, List, Optional

from .models import QueueEntry


class AdmissionQueue:
    def __init__(self):
        self._entries: List[QueueEntry] = []
        self._next_seq = 0

    def push(self, user_id: str, spot_id: int, duration_minutes: float,
             requested_at: datetime) -> QueueEntry:
        entry = QueueEntry(
            user_id=user_id,
            spot_id=spot_id,
            requested_duration_minutes=duration_minutes,
            requested_at=requested_at,
            sequence=self._next_seq,
        )
        self._next_seq += 1
        self._insert(entry)
        return entry

    def _insert(self, entry: QueueEntry) -> None:
        # 时钟回拨或恢复旧数据时，不能简单 append
        idx = len(self._entries)
        while idx > 0 and self._entries[idx - 1].sort_key > entry.sort_key:
            idx -= 1
        self._entries.insert(idx, entry)

    def pop_head(self) -> Optional[QueueEntry]:
        if self._entries:
            return self._entries.pop(0)
        return None

    def peek_head(self) -> Optional[QueueEntry]:
        return self._entries[0] if self._entries else None

    def remove(self, user_id: str, spot_id: int) -> Optional[QueueEntry]:
        for i, entry in enumerate(self._entries):
            if entry.user_id == user_id and entry.spot_id == spot_id:
                return self._entries.pop(i)
        return None

    def position_of(self, spot_id: int) -> Optional[int]:
        """1 开始的排队位置"""
        for i, entry in enumerate(self._entries, start=1):
            if entry.spot_id == spot_id:
                return i
        return None

    def has_user(self, user_id: str) -> bool:
        return any(e.user_id == user_id for e in self._entries)

    def entries(self) -> List[QueueEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def load(self, entries: Iterable[QueueEntry]) -> None:
        self._entries = []
        for entry in entries:
            self._insert(entry)
        self._next_seq = max((e.sequence for e in self._entries), default=-1) + 1

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

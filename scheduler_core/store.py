"""
调度状态容器 —— 车位登记表 + 等候队列 + 事件总线。

由一个 Scheduler 实例独占，不再使用模块级全局变量。
"""
from __future__ import annotations
import threading
from collections import deque
from typing import Deque, Iterable, List

from .admission import AdmissionQueue
from .registry import SpotRegistry


class SchedulerState:
    def __init__(self, spot_ids: Iterable[int] = (), event_capacity: int = 100):
        self.registry = SpotRegistry(spot_ids)
        self.queue = AdmissionQueue()
        self._events: Deque[dict] = deque(maxlen=event_capacity)
        self._events_lock = threading.Lock()

    # -------------------------------------------------
    #                 事件总线 (内存)
    # -------------------------------------------------
    def push_event(self, event: dict) -> None:
        with self._events_lock:
            self._events.append(event)

    def pop_events(self) -> List[dict]:
        with self._events_lock:
            evts = list(self._events)
            self._events.clear()
            return evts

    # -------------------------------------------------
    #                 快照（测试 / 持久化）
    # -------------------------------------------------
    def snapshot(self) -> dict:
        return {
            "spots": [s.to_record() for s in self.registry.all()],
            "queue": [e.to_record() for e in self.queue],
        }

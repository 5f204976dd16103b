"""
scheduler_core/__init__.py

对外统一导出的类 / 数据模型
"""

from .clock import ManualClock, SystemClock
from .core import (
    CABLE_MOVE_SECONDS,
    FINISH_LINGER_SECONDS,
    Scheduler,
    format_duration,
)
from .errors import (
    DuplicateRequestError,
    InvalidArgumentError,
    NotFoundError,
    SchedulerError,
    SpotUnavailableError,
    UnknownSpotError,
)
from .estimator import WaitTimeEstimator
from .models import (
    STATE_LABELS,
    Cancelled,
    ChargingSpot,
    Dispatched,
    QueueEntry,
    QueueEntryView,
    Queued,
    SpotState,
    SpotView,
)
from .store import SchedulerState

__all__ = [
    # 调度
    "Scheduler",
    "SchedulerState",
    "WaitTimeEstimator",
    "CABLE_MOVE_SECONDS",
    "FINISH_LINGER_SECONDS",
    "format_duration",
    # 时钟
    "SystemClock",
    "ManualClock",
    # 异常
    "SchedulerError",
    "InvalidArgumentError",
    "DuplicateRequestError",
    "SpotUnavailableError",
    "UnknownSpotError",
    "NotFoundError",
    # 数据模型
    "SpotState",
    "STATE_LABELS",
    "ChargingSpot",
    "QueueEntry",
    "Dispatched",
    "Queued",
    "Cancelled",
    "SpotView",
    "QueueEntryView",
]

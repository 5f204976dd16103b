from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SpotState(str, Enum):
    IDLE     = "IDLE"
    QUEUED   = "QUEUED"     # 无人充电，但已有用户在队列中等这个车位
    MOVING   = "MOVING"     # 充电线正移往该车位
    CHARGING = "CHARGING"
    FINISHED = "FINISHED"


# 前端沿用的中文状态
STATE_LABELS = {
    SpotState.IDLE:     "空置中",
    SpotState.QUEUED:   "等待中",
    SpotState.MOVING:   "移動中",
    SpotState.CHARGING: "充電中",
    SpotState.FINISHED: "結束",
}

# 占用充电线的状态
CABLE_HOLDING_STATES = (SpotState.MOVING, SpotState.CHARGING, SpotState.FINISHED)

# 用户视角下「还有一个未完成请求」的状态
ACTIVE_STATES = (SpotState.QUEUED, SpotState.MOVING, SpotState.CHARGING)


@dataclass
class ChargingSpot:
    spot_id: int
    state: SpotState = SpotState.IDLE
    occupant: Optional[str] = None
    requested_duration_minutes: Optional[float] = None
    move_started_at: Optional[datetime] = None
    charge_started_at: Optional[datetime] = None
    waiting_eta_minutes: Optional[float] = None
    # 每次派线 / 复位 +1，用来识别过期的到位回调
    generation: int = 0

    def assign(self, user_id: str, duration_minutes: float) -> None:
        self.occupant = user_id
        self.requested_duration_minutes = duration_minutes

    def reset(self) -> None:
        """回到 IDLE 并清空所有占用信息"""
        self.state = SpotState.IDLE
        self.occupant = None
        self.requested_duration_minutes = None
        self.move_started_at = None
        self.charge_started_at = None
        self.waiting_eta_minutes = None
        self.generation += 1

    def to_record(self) -> dict:
        return {
            "spot_id": self.spot_id,
            "state": self.state.value,
            "occupant": self.occupant,
            "requested_duration_minutes": self.requested_duration_minutes,
            "move_started_at": self.move_started_at,
            "charge_started_at": self.charge_started_at,
            "waiting_eta_minutes": self.waiting_eta_minutes,
            "generation": self.generation,
        }

    @classmethod
    def from_record(cls, record: dict) -> "ChargingSpot":
        return cls(
            spot_id=int(record["spot_id"]),
            state=SpotState(record.get("state") or SpotState.IDLE.value),
            occupant=record.get("occupant"),
            requested_duration_minutes=record.get("requested_duration_minutes"),
            move_started_at=record.get("move_started_at"),
            charge_started_at=record.get("charge_started_at"),
            waiting_eta_minutes=record.get("waiting_eta_minutes"),
            generation=int(record.get("generation") or 0),
        )


@dataclass
class QueueEntry:
    user_id: str
    spot_id: int
    requested_duration_minutes: float
    requested_at: datetime
    sequence: int = 0

    @property
    def sort_key(self) -> tuple:
        return (self.requested_at, self.sequence)

    def to_record(self) -> dict:
        return {
            "user_id": self.user_id,
            "spot_id": self.spot_id,
            "requested_duration_minutes": self.requested_duration_minutes,
            "requested_at": self.requested_at,
            "sequence": self.sequence,
        }

    @classmethod
    def from_record(cls, record: dict) -> "QueueEntry":
        return cls(
            user_id=record["user_id"],
            spot_id=int(record["spot_id"]),
            requested_duration_minutes=float(record["requested_duration_minutes"]),
            requested_at=record["requested_at"],
            sequence=int(record.get("sequence") or 0),
        )


# ------------- 调用结果 ---------------------------------------------
@dataclass
class Dispatched:
    spot_id: int
    eta_seconds_until_charge_start: float
    generation: int
    status: str = field(default="dispatched", init=False)


@dataclass
class Queued:
    spot_id: int
    position_in_line: int
    eta_minutes: float
    status: str = field(default="queued", init=False)


@dataclass
class Cancelled:
    spot_id: int
    previous_state: SpotState
    promoted_spot_id: Optional[int] = None


# ------------- 快照 -------------------------------------------------
@dataclass
class SpotView:
    spot_id: int
    state: SpotState
    status_label: str
    occupant: Optional[str]
    requested_duration_minutes: Optional[float]
    move_started_at: Optional[datetime]
    charge_started_at: Optional[datetime]
    waiting_eta_minutes: Optional[float]
    remaining_seconds: float
    remaining_time: str
    estimated_wait_seconds: float
    estimated_wait_time: str

    def to_dict(self) -> dict:
        return {
            "spotId": self.spot_id,
            "state": self.state.value,
            "status": self.status_label,
            "userId": self.occupant,
            "chargingTime": self.requested_duration_minutes,
            "moveStartTime": _iso(self.move_started_at),
            "startTime": _iso(self.charge_started_at),
            "waitingTime": self.waiting_eta_minutes,
            "remainingSeconds": self.remaining_seconds,
            "chargingSpotRemainingTime": self.remaining_time,
            "estimatedWaitTimeSeconds": self.estimated_wait_seconds,
            "estimatedWaitTime": self.estimated_wait_time,
        }


@dataclass
class QueueEntryView:
    position: int
    user_id: str
    spot_id: int
    requested_duration_minutes: float
    requested_at: datetime
    waiting_eta_minutes: Optional[float]

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "userId": self.user_id,
            "spotId": self.spot_id,
            "chargingTime": self.requested_duration_minutes,
            "requestTime": _iso(self.requested_at),
            "waitingTime": self.waiting_eta_minutes,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None

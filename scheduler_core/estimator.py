"""
等待时间估算。

每个排队请求的预计等待 = 充电线当前任务剩余时间 + 排在它前面的每个请求
的充电时长 + 每次换位的移线时间。全部为浮点分钟，不做取整。
"""
from __future__ import annotations
from datetime import datetime

from .clock import elapsed_minutes, elapsed_seconds
from .models import SpotState
from .store import SchedulerState


class WaitTimeEstimator:
    def __init__(self, cable_move_seconds: float):
        self.cable_move_seconds = float(cable_move_seconds)

    @property
    def cable_move_minutes(self) -> float:
        return self.cable_move_seconds / 60.0

    def holder_remaining_minutes(self, state: SchedulerState, now: datetime) -> float:
        """充电线当前持有者还要占用多久（分钟）"""
        total = 0.0
        counted = set()

        moving = state.registry.first_in_state(SpotState.MOVING)
        if moving is not None and moving.charge_started_at is None:
            remaining_move = self.cable_move_seconds
            if moving.move_started_at is not None:
                remaining_move = max(
                    0.0, self.cable_move_seconds - elapsed_seconds(moving.move_started_at, now)
                )
            total += remaining_move / 60.0
            total += moving.requested_duration_minutes or 0.0
            counted.add(moving.spot_id)

        charging_like = [
            s for s in state.registry.in_state(SpotState.CHARGING, SpotState.MOVING)
            if s.charge_started_at is not None and s.spot_id not in counted
        ]
        for spot in charging_like:
            total += max(
                0.0,
                (spot.requested_duration_minutes or 0.0)
                - elapsed_minutes(spot.charge_started_at, now),
            )
        return total

    def recompute(self, state: SchedulerState, now: datetime) -> float:
        """
        重算所有排队车位的 waiting_eta_minutes，返回队尾之后再来一个请求时的等待分钟数。
        只写 waiting_eta_minutes，可重复调用。
        """
        cumulative = self.holder_remaining_minutes(state, now)

        for entry in state.queue:
            spot = state.registry.find(entry.spot_id)
            if spot is None or spot.state != SpotState.QUEUED:
                continue
            spot.waiting_eta_minutes = cumulative
            cumulative += entry.requested_duration_minutes + self.cable_move_minutes
        return cumulative

"""
调度 / 排队 / 移线 —— 纯业务逻辑，多线程安全。

整个站只有一根可移动的充电线：同一时刻最多一个车位 MOVING、最多一个车位
CHARGING。所有修改状态的入口都在同一把锁里执行。
"""
from __future__ import annotations
from datetime import datetime, timedelta
import logging
import math
import threading
from typing import Callable, Iterable, List, Optional

from .clock import SystemClock, elapsed_minutes, elapsed_seconds
from .errors import (
    DuplicateRequestError,
    InvalidArgumentError,
    NotFoundError,
    SpotUnavailableError,
)
from .estimator import WaitTimeEstimator
from .models import (
    ACTIVE_STATES,
    CABLE_HOLDING_STATES,
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

logger = logging.getLogger(__name__)

CABLE_MOVE_SECONDS = 30
FINISH_LINGER_SECONDS = 5

# (spot_id, generation, delay_seconds) -> None，由外壳接到真正的定时器上
ArrivalHook = Callable[[int, int, float], None]


def format_duration(seconds: float) -> str:
    """只在展示时取整"""
    seconds = max(0.0, seconds)
    return f"{int(seconds // 60)}分{int(seconds % 60)}秒"


class Scheduler:
    def __init__(
        self,
        spot_ids: Iterable[int],
        clock=None,
        cable_move_seconds: float = CABLE_MOVE_SECONDS,
        finish_linger_seconds: float = FINISH_LINGER_SECONDS,
        arrival_hook: Optional[ArrivalHook] = None,
    ):
        self.state = SchedulerState(spot_ids)
        self.clock = clock or SystemClock()
        self.cable_move_seconds = float(cable_move_seconds)
        self.finish_linger_seconds = float(finish_linger_seconds)
        self.arrival_hook = arrival_hook
        self.estimator = WaitTimeEstimator(self.cable_move_seconds)
        self._lock = threading.RLock()

    # ------------- 对外操作 ---------------------------------------------
    def request_charging(self, user_id: str, spot_id: int, duration_minutes: float):
        """
        提交充电请求。

        充电线空闲时直接派线到目标车位（IDLE -> MOVING），返回 Dispatched；
        否则目标车位进入 QUEUED 并追加到等候队列，返回 Queued。
        """
        user_id, spot_id, duration_minutes = _validate_request(user_id, spot_id, duration_minutes)

        with self._lock:
            now = self.clock.now()
            registry = self.state.registry

            if registry.active_for_user(user_id) or self.state.queue.has_user(user_id):
                raise DuplicateRequestError(f"用户 {user_id} 已有一个充电请求")

            spot = registry.get(spot_id)
            if spot.state != SpotState.IDLE:
                raise SpotUnavailableError(f"车位 {spot_id} 已被占用")

            spot.assign(user_id, duration_minutes)

            if self.cable_is_free():
                self._dispatch(spot, now)
                return Dispatched(
                    spot_id=spot.spot_id,
                    eta_seconds_until_charge_start=self.cable_move_seconds,
                    generation=spot.generation,
                )

            spot.state = SpotState.QUEUED
            entry = self.state.queue.push(user_id, spot_id, duration_minutes, now)
            self.estimator.recompute(self.state, now)
            position = self.state.queue.position_of(spot_id)
            logger.info("车位 %s 加入等候队列，第 %s 位，预计等待 %.2f 分钟",
                        spot_id, position, spot.waiting_eta_minutes)
            self.state.push_event({"type": "queued", "data": entry.to_record()})
            return Queued(
                spot_id=spot_id,
                position_in_line=position,
                eta_minutes=spot.waiting_eta_minutes,
            )

    def cancel_charging(self, user_id: str, spot_id: int) -> Cancelled:
        if user_id is None or not str(user_id).strip() or spot_id is None:
            raise InvalidArgumentError("缺少必要参数")
        user_id = str(user_id).strip()
        spot_id = _as_spot_id(spot_id)

        with self._lock:
            now = self.clock.now()
            spot = self.state.registry.find(spot_id)
            if spot is None or spot.occupant != user_id or spot.state not in ACTIVE_STATES:
                raise NotFoundError("找不到您的充电请求")

            previous = spot.state
            spot.reset()
            self.state.queue.remove(user_id, spot_id)
            logger.info("用户 %s 取消车位 %s 的充电请求（原状态 %s）", user_id, spot_id, previous.value)
            self.state.push_event({"type": "cancelled", "data": {"spot_id": spot_id, "user_id": user_id}})

            promoted = None
            if previous in (SpotState.MOVING, SpotState.CHARGING):
                promoted = self._promote_next(now)
            else:
                self.estimator.recompute(self.state, now)
            return Cancelled(spot_id=spot_id, previous_state=previous, promoted_spot_id=promoted)

    def on_cable_arrived(self, spot_id: int, expected_generation: Optional[int] = None) -> bool:
        """充电线到位回调，过期的回调安全地什么都不做"""
        try:
            with self._lock:
                return self._arrive(spot_id, expected_generation, self.clock.now())
        except Exception:
            logger.exception("处理车位 %s 的到位回调失败", spot_id)
            return False

    def on_charge_tick(self, now: Optional[datetime] = None) -> List[int]:
        """检测充电结束与结束车位的释放，返回被复位的车位编号"""
        with self._lock:
            return self._charge_tick(now or self.clock.now())

    def tick(self, now: Optional[datetime] = None) -> bool:
        """
        周期任务入口，宿主进程按固定节奏调用。

        依次处理：移线超时到位（兜底丢失的定时器）、充电结束、结束车位释放，
        最后刷新等待时间。内部异常只记录日志，不向外抛出。返回状态是否有变化。
        """
        with self._lock:
            now = now or self.clock.now()
            changed = False
            try:
                moving = self.state.registry.first_in_state(SpotState.MOVING)
                if moving is not None and moving.move_started_at is not None and \
                        elapsed_seconds(moving.move_started_at, now) >= self.cable_move_seconds:
                    changed = self._arrive(moving.spot_id, moving.generation, now) or changed
            except Exception:
                logger.exception("检查充电线移动状态失败")

            try:
                before = self._state_signature()
                self._charge_tick(now)
                changed = changed or before != self._state_signature()
            except Exception:
                logger.exception("检查充电状态失败")

            try:
                changed = self._resume_stalled_queue(now) or changed
            except Exception:
                logger.exception("恢复排队调度失败")

            try:
                self.estimator.recompute(self.state, now)
            except Exception:
                logger.exception("更新等待时间失败")
            return changed

    def recompute(self, now: Optional[datetime] = None) -> float:
        with self._lock:
            return self.estimator.recompute(self.state, now or self.clock.now())

    def reset_all(self) -> None:
        """所有车位复位为空置，清空队列"""
        with self._lock:
            for spot in self.state.registry.all():
                if spot.state != SpotState.IDLE or spot.occupant is not None:
                    spot.reset()
            self.state.queue.clear()
            logger.info("所有车位已重置为空置中")
            self.state.push_event({"type": "reset_all", "data": None})

    # ------------- 查询 --------------------------------------------------
    def cable_is_free(self) -> bool:
        # 队列非空时新请求也要排队，保证先到先得
        if self.state.registry.in_state(*CABLE_HOLDING_STATES):
            return False
        return len(self.state.queue) == 0

    def get_spot_view(self, spot_id: int) -> SpotView:
        with self._lock:
            now = self.clock.now()
            tail = self.estimator.recompute(self.state, now)
            return self._view(self.state.registry.get(_as_spot_id(spot_id)), now, tail)

    def get_all_spots(self) -> List[SpotView]:
        with self._lock:
            now = self.clock.now()
            tail = self.estimator.recompute(self.state, now)
            return [self._view(s, now, tail) for s in self.state.registry.all()]

    def get_queue_view(self) -> List[QueueEntryView]:
        with self._lock:
            self.estimator.recompute(self.state, self.clock.now())
            views = []
            for position, entry in enumerate(self.state.queue, start=1):
                spot = self.state.registry.find(entry.spot_id)
                views.append(QueueEntryView(
                    position=position,
                    user_id=entry.user_id,
                    spot_id=entry.spot_id,
                    requested_duration_minutes=entry.requested_duration_minutes,
                    requested_at=entry.requested_at,
                    waiting_eta_minutes=spot.waiting_eta_minutes if spot else None,
                ))
            return views

    def get_charging_spot(self) -> Optional[SpotView]:
        return self._holder_view(SpotState.CHARGING)

    def get_moving_spot(self) -> Optional[SpotView]:
        return self._holder_view(SpotState.MOVING)

    def pop_events(self) -> List[dict]:
        return self.state.pop_events()

    # ------------- 持久化 ------------------------------------------------
    def export_state(self) -> dict:
        with self._lock:
            return self.state.snapshot()

    def restore_state(self, spots: Iterable[dict], queue: Iterable[dict]) -> None:
        """
        用持久化记录恢复状态；恢复后仍在 MOVING 的车位按剩余时间重新挂到位回调。
        登记表里已有但记录缺失的车位保持空置。
        """
        with self._lock:
            now = self.clock.now()
            registry = self.state.registry
            for record in spots:
                restored = ChargingSpot.from_record(record)
                if restored.spot_id not in registry:
                    logger.warning("忽略未登记车位 %s 的持久化记录", restored.spot_id)
                    continue
                registry.put(restored)

            holders = registry.in_state(*CABLE_HOLDING_STATES)
            for extra in holders[1:]:
                logger.warning("车位 %s 与车位 %s 同时占用充电线，重置为空置",
                               extra.spot_id, holders[0].spot_id)
                extra.reset()

            entries = [QueueEntry.from_record(r) for r in queue]
            self.state.queue.load(
                e for e in entries
                if e.spot_id in registry
                and registry.get(e.spot_id).state == SpotState.QUEUED
                and registry.get(e.spot_id).occupant == e.user_id
            )
            queued_ids = {e.spot_id for e in self.state.queue}
            for spot in registry.in_state(SpotState.QUEUED):
                if spot.spot_id not in queued_ids:
                    logger.warning("车位 %s 处于等待中但不在队列里，重置为空置", spot.spot_id)
                    spot.reset()

            moving = registry.first_in_state(SpotState.MOVING)
            if moving is not None:
                if moving.move_started_at is None:
                    logger.warning("车位 %s 处于移动中但没有移动开始时间，重新计时", moving.spot_id)
                    moving.move_started_at = now
                remaining = max(0.0, self.cable_move_seconds - elapsed_seconds(moving.move_started_at, now))
                self._schedule_arrival(moving, remaining)
            if not self._resume_stalled_queue(now):
                self.estimator.recompute(self.state, now)
            logger.info("已恢复 %s 个车位、%s 个排队请求", len(registry), len(self.state.queue))

    # ------------- 内部 --------------------------------------------------
    def _dispatch(self, spot: ChargingSpot, now: datetime) -> None:
        spot.state = SpotState.MOVING
        spot.move_started_at = now
        spot.charge_started_at = None
        spot.waiting_eta_minutes = None
        spot.generation += 1
        logger.info("充电线移往车位 %s（用户 %s，%.1f 分钟）",
                    spot.spot_id, spot.occupant, spot.requested_duration_minutes)
        self.state.push_event({"type": "dispatch", "data": spot.to_record()})
        self._schedule_arrival(spot, self.cable_move_seconds)
        self.estimator.recompute(self.state, now)

    def _schedule_arrival(self, spot: ChargingSpot, delay_seconds: float) -> None:
        if self.arrival_hook is None:
            return
        try:
            self.arrival_hook(spot.spot_id, spot.generation, delay_seconds)
        except Exception:
            # 定时器挂不上时由 tick 兜底
            logger.exception("车位 %s 的到位定时器设置失败", spot.spot_id)

    def _arrive(self, spot_id: int, expected_generation: Optional[int], now: datetime) -> bool:
        spot = self.state.registry.find(spot_id)
        if spot is None:
            logger.warning("到位回调指向不存在的车位 %s", spot_id)
            return False
        if spot.state != SpotState.MOVING or spot.charge_started_at is not None:
            logger.debug("车位 %s 已不在移动中，忽略到位回调", spot_id)
            return False
        if expected_generation is not None and expected_generation != spot.generation:
            logger.debug("车位 %s 的到位回调已过期 (%s != %s)",
                         spot_id, expected_generation, spot.generation)
            return False

        spot.state = SpotState.CHARGING
        spot.charge_started_at = now
        logger.info("车位 %s 充电器移动完成，开始充电", spot_id)
        self.state.push_event({"type": "charging_started", "data": spot.to_record()})
        self.estimator.recompute(self.state, now)
        return True

    def _charge_tick(self, now: datetime) -> List[int]:
        charging = self.state.registry.first_in_state(SpotState.CHARGING)
        if charging is not None and charging.charge_started_at is not None and \
                charging.requested_duration_minutes is not None:
            if elapsed_minutes(charging.charge_started_at, now) >= charging.requested_duration_minutes:
                charging.state = SpotState.FINISHED
                logger.info("车位 %s 充电完成", charging.spot_id)
                self.state.push_event({"type": "charging_finished", "data": charging.to_record()})

        released = []
        for spot in self.state.registry.in_state(SpotState.FINISHED):
            if spot.charge_started_at is None or spot.requested_duration_minutes is None:
                logger.warning("车位 %s 处于结束状态但没有开始时间，直接复位", spot.spot_id)
            else:
                finish_time = spot.charge_started_at + timedelta(minutes=spot.requested_duration_minutes)
                if elapsed_seconds(finish_time, now) <= self.finish_linger_seconds:
                    continue
            spot.reset()
            released.append(spot.spot_id)
            logger.info("车位 %s 已重置为空置中", spot.spot_id)
            self.state.push_event({"type": "spot_reset", "data": spot.spot_id})

        if released:
            self._promote_next(now)
        return released

    def _promote_next(self, now: datetime) -> Optional[int]:
        registry = self.state.registry
        if registry.in_state(SpotState.MOVING, SpotState.CHARGING):
            logger.warning("充电线仍被占用，暂不调度下一个请求")
            return None

        while True:
            entry = self.state.queue.pop_head()
            if entry is None:
                self.estimator.recompute(self.state, now)
                return None
            spot = registry.find(entry.spot_id)
            if spot is None or spot.state != SpotState.QUEUED or spot.occupant != entry.user_id:
                logger.warning("丢弃状态不一致的排队请求：用户 %s 车位 %s", entry.user_id, entry.spot_id)
                continue
            self._dispatch(spot, now)
            return spot.spot_id

    def _resume_stalled_queue(self, now: datetime) -> bool:
        # 队列非空但没有车位占用充电线时，队首永远等不到释放
        if len(self.state.queue) == 0 or self.state.registry.in_state(*CABLE_HOLDING_STATES):
            return False
        logger.warning("充电线空闲但队列中仍有 %s 个请求，调度队首", len(self.state.queue))
        return self._promote_next(now) is not None

    def _holder_view(self, state: SpotState) -> Optional[SpotView]:
        with self._lock:
            spot = self.state.registry.first_in_state(state)
            if spot is None:
                return None
            now = self.clock.now()
            tail = self.estimator.recompute(self.state, now)
            return self._view(spot, now, tail)

    def _view(self, spot: ChargingSpot, now: datetime, tail_minutes: float) -> SpotView:
        remaining = self._cable_remaining_seconds(now)

        if spot.state == SpotState.QUEUED:
            wait_seconds = (spot.waiting_eta_minutes or 0.0) * 60
        elif spot.state == SpotState.IDLE:
            wait_seconds = tail_minutes * 60
        elif spot.state == SpotState.MOVING:
            wait_seconds = self._move_remaining_seconds(spot, now)
        else:
            wait_seconds = 0.0

        return SpotView(
            spot_id=spot.spot_id,
            state=spot.state,
            status_label=STATE_LABELS[spot.state],
            occupant=spot.occupant,
            requested_duration_minutes=spot.requested_duration_minutes,
            move_started_at=spot.move_started_at,
            charge_started_at=spot.charge_started_at,
            waiting_eta_minutes=spot.waiting_eta_minutes,
            remaining_seconds=remaining,
            remaining_time=format_duration(remaining) if remaining > 0 else "",
            estimated_wait_seconds=wait_seconds,
            estimated_wait_time=format_duration(wait_seconds) if wait_seconds > 0 else "",
        )

    def _cable_remaining_seconds(self, now: datetime) -> float:
        # 移线中优先显示移线剩余时间
        moving = self.state.registry.first_in_state(SpotState.MOVING)
        if moving is not None:
            remaining = self._move_remaining_seconds(moving, now)
            if remaining > 0:
                return remaining
        charging = self.state.registry.first_in_state(SpotState.CHARGING)
        if charging is not None and charging.charge_started_at is not None:
            return max(0.0, (charging.requested_duration_minutes or 0.0) * 60
                       - elapsed_seconds(charging.charge_started_at, now))
        return 0.0

    def _move_remaining_seconds(self, spot: ChargingSpot, now: datetime) -> float:
        if spot.move_started_at is None:
            return 0.0
        return max(0.0, self.cable_move_seconds - elapsed_seconds(spot.move_started_at, now))

    def _state_signature(self) -> tuple:
        return tuple((s.spot_id, s.state, s.generation) for s in self.state.registry.all())


def _as_spot_id(spot_id) -> int:
    if isinstance(spot_id, bool):
        raise InvalidArgumentError("车位编号必须是整数")
    try:
        return int(spot_id)
    except (TypeError, ValueError):
        raise InvalidArgumentError("车位编号必须是整数") from None


def _validate_request(user_id, spot_id, duration_minutes):
    if user_id is None or not str(user_id).strip() or spot_id is None or duration_minutes is None:
        raise InvalidArgumentError("缺少必要参数")
    if isinstance(duration_minutes, bool):
        raise InvalidArgumentError("充电时间必须是有效数字")
    try:
        duration = float(duration_minutes)
    except (TypeError, ValueError):
        raise InvalidArgumentError("充电时间必须是有效数字") from None
    if not math.isfinite(duration) or duration <= 0:
        raise InvalidArgumentError("充电时间必须大于0")
    return str(user_id).strip(), _as_spot_id(spot_id), duration

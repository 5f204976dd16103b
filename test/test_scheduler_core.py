import random
from datetime import timedelta

import pytest

from scheduler_core import (
    Dispatched,
    DuplicateRequestError,
    InvalidArgumentError,
    ManualClock,
    NotFoundError,
    Queued,
    Scheduler,
    SpotState,
    SpotUnavailableError,
    UnknownSpotError,
    format_duration,
)


def _snapshot_without_generation(scheduler):
    snap = scheduler.export_state()
    for spot in snap["spots"]:
        spot.pop("generation")
    for entry in snap["queue"]:
        entry.pop("sequence")
    return snap


def _start_charging(scheduler, clock, user_id, spot_id, minutes):
    scheduler.request_charging(user_id, spot_id, minutes)
    clock.advance(seconds=30)
    scheduler.tick()
    assert scheduler.state.registry.get(spot_id).state == SpotState.CHARGING


# ------------- 派线 / 到位 ---------------------------------------------
def test_free_cable_dispatches_then_charges_after_move_delay(clock):
    scheduler = Scheduler([7], clock=clock, cable_move_seconds=30)

    result = scheduler.request_charging("u1", 7, 10)

    assert isinstance(result, Dispatched)
    assert result.eta_seconds_until_charge_start == 30
    spot = scheduler.state.registry.get(7)
    assert spot.state == SpotState.MOVING
    assert spot.move_started_at == clock.now()
    assert spot.occupant == "u1"
    assert spot.requested_duration_minutes == 10
    assert spot.charge_started_at is None

    clock.advance(seconds=29)
    scheduler.tick()
    assert spot.state == SpotState.MOVING

    clock.advance(seconds=1)
    scheduler.tick()
    assert spot.state == SpotState.CHARGING
    assert spot.charge_started_at == clock.now()


def test_dispatch_schedules_exactly_one_arrival(scheduler, arrivals):
    result = scheduler.request_charging("u1", 3, 10)
    scheduler.request_charging("u2", 4, 5)

    assert arrivals == [(3, result.generation, 30.0)]


def test_cable_arrival_callback_starts_charging(scheduler, clock):
    result = scheduler.request_charging("u1", 3, 10)
    clock.advance(seconds=30)

    assert scheduler.on_cable_arrived(3, result.generation) is True
    spot = scheduler.state.registry.get(3)
    assert spot.state == SpotState.CHARGING
    # 第二次触发无效
    assert scheduler.on_cable_arrived(3, result.generation) is False


def test_stale_arrival_is_ignored_after_cancel_and_reuse(scheduler, clock, arrivals):
    first = scheduler.request_charging("u1", 1, 10)
    scheduler.cancel_charging("u1", 1)
    second = scheduler.request_charging("u2", 1, 10)
    assert second.generation != first.generation

    clock.advance(seconds=10)
    assert scheduler.on_cable_arrived(1, first.generation) is False
    assert scheduler.state.registry.get(1).state == SpotState.MOVING

    assert scheduler.on_cable_arrived(1, second.generation) is True
    assert scheduler.state.registry.get(1).state == SpotState.CHARGING
    assert len(arrivals) == 2


def test_arrival_for_cancelled_spot_is_noop(scheduler):
    result = scheduler.request_charging("u1", 1, 10)
    scheduler.cancel_charging("u1", 1)

    assert scheduler.on_cable_arrived(1, result.generation) is False
    assert scheduler.state.registry.get(1).state == SpotState.IDLE


def test_arrival_for_unknown_spot_does_not_raise(scheduler):
    assert scheduler.on_cable_arrived(99) is False


def test_broken_arrival_hook_does_not_break_request(clock):
    def hook(spot_id, generation, delay):
        raise RuntimeError("timer down")

    scheduler = Scheduler([1], clock=clock, arrival_hook=hook)
    assert isinstance(scheduler.request_charging("u1", 1, 5), Dispatched)

    clock.advance(seconds=30)
    scheduler.tick()
    assert scheduler.state.registry.get(1).state == SpotState.CHARGING


# ------------- 排队 --------------------------------------------------
def test_request_while_charging_is_queued_with_remaining_time(scheduler, clock):
    _start_charging(scheduler, clock, "u1", 7, 10)
    clock.advance(minutes=2)

    result = scheduler.request_charging("u2", 8, 5)

    assert isinstance(result, Queued)
    assert result.position_in_line == 1
    assert result.eta_minutes == pytest.approx(8.0)
    spot = scheduler.state.registry.get(8)
    assert spot.state == SpotState.QUEUED
    assert spot.occupant == "u2"
    assert spot.waiting_eta_minutes == pytest.approx(8.0)
    assert spot.move_started_at is None


def test_request_while_cable_moving_counts_move_and_full_charge(scheduler, clock):
    scheduler.request_charging("u1", 1, 10)
    clock.advance(seconds=10)

    result = scheduler.request_charging("u2", 2, 5)

    assert result.eta_minutes == pytest.approx(20 / 60 + 10)


def test_finished_spot_is_released_after_linger_and_next_promoted(scheduler, clock, check_invariants):
    _start_charging(scheduler, clock, "u1", 7, 10)
    scheduler.request_charging("u2", 8, 5)

    clock.advance(minutes=10)
    scheduler.tick()
    assert scheduler.state.registry.get(7).state == SpotState.FINISHED
    assert scheduler.state.registry.get(8).state == SpotState.QUEUED

    clock.advance(seconds=5)
    scheduler.tick()
    assert scheduler.state.registry.get(7).state == SpotState.FINISHED

    clock.advance(seconds=1)
    scheduler.tick()
    spot7 = scheduler.state.registry.get(7)
    spot8 = scheduler.state.registry.get(8)
    assert spot7.state == SpotState.IDLE
    assert spot7.occupant is None
    assert spot7.charge_started_at is None
    assert spot8.state == SpotState.MOVING
    assert spot8.move_started_at == clock.now()
    assert len(scheduler.state.queue) == 0
    check_invariants(scheduler)


def test_finished_spot_still_holds_cable(scheduler, clock):
    _start_charging(scheduler, clock, "u1", 1, 1)
    clock.advance(minutes=1)
    scheduler.tick()
    assert scheduler.state.registry.get(1).state == SpotState.FINISHED

    result = scheduler.request_charging("u2", 2, 5)
    assert isinstance(result, Queued)

    clock.advance(seconds=6)
    scheduler.tick()
    assert scheduler.state.registry.get(2).state == SpotState.MOVING


def test_finished_spot_without_start_time_is_reset_immediately(scheduler):
    scheduler.restore_state(
        [{"spot_id": 5, "state": "FINISHED", "occupant": "ghost", "requested_duration_minutes": 10}],
        [],
    )

    released = scheduler.on_charge_tick()

    assert released == [5]
    assert scheduler.state.registry.get(5).state == SpotState.IDLE


def test_queue_is_fifo_and_promotion_pops_head(scheduler, clock):
    scheduler.request_charging("u1", 1, 10)
    scheduler.request_charging("u2", 2, 5)
    scheduler.request_charging("u3", 3, 5)
    clock.advance(seconds=1)
    scheduler.request_charging("u4", 4, 5)

    assert [e.user_id for e in scheduler.state.queue] == ["u2", "u3", "u4"]

    scheduler.cancel_charging("u1", 1)

    assert scheduler.state.registry.get(2).state == SpotState.MOVING
    assert [e.user_id for e in scheduler.state.queue] == ["u3", "u4"]
    assert scheduler.state.queue.position_of(3) == 1


# ------------- 取消 --------------------------------------------------
def test_cancel_queued_leaves_holder_and_shrinks_later_etas(scheduler, clock):
    _start_charging(scheduler, clock, "u1", 1, 10)
    scheduler.request_charging("u2", 2, 5)
    scheduler.request_charging("u3", 3, 7)
    scheduler.request_charging("u4", 4, 3)

    registry = scheduler.state.registry
    assert registry.get(2).waiting_eta_minutes == pytest.approx(10)
    assert registry.get(3).waiting_eta_minutes == pytest.approx(15.5)
    assert registry.get(4).waiting_eta_minutes == pytest.approx(23)

    result = scheduler.cancel_charging("u2", 2)

    assert result.previous_state == SpotState.QUEUED
    assert result.promoted_spot_id is None
    assert registry.get(1).state == SpotState.CHARGING
    assert registry.get(1).occupant == "u1"
    assert registry.get(2).state == SpotState.IDLE
    assert registry.get(3).waiting_eta_minutes == pytest.approx(10)
    assert registry.get(4).waiting_eta_minutes == pytest.approx(17.5)


def test_cancel_charging_holder_promotes_next(scheduler, clock):
    _start_charging(scheduler, clock, "u1", 1, 10)
    scheduler.request_charging("u2", 2, 5)

    result = scheduler.cancel_charging("u1", 1)

    assert result.previous_state == SpotState.CHARGING
    assert result.promoted_spot_id == 2
    assert scheduler.state.registry.get(2).state == SpotState.MOVING
    assert scheduler.state.registry.get(2).waiting_eta_minutes is None


def test_cancel_moving_with_empty_queue_frees_cable(scheduler):
    scheduler.request_charging("u1", 1, 10)

    result = scheduler.cancel_charging("u1", 1)

    assert result.promoted_spot_id is None
    assert scheduler.cable_is_free()


def test_request_then_cancel_restores_snapshot(scheduler, clock):
    _start_charging(scheduler, clock, "u1", 1, 10)
    scheduler.request_charging("u2", 2, 5)
    scheduler.recompute()
    before = _snapshot_without_generation(scheduler)

    scheduler.request_charging("u3", 5, 8)
    scheduler.cancel_charging("u3", 5)

    assert _snapshot_without_generation(scheduler) == before


def test_dispatch_then_cancel_restores_snapshot(scheduler):
    before = _snapshot_without_generation(scheduler)

    scheduler.request_charging("u1", 4, 8)
    scheduler.cancel_charging("u1", 4)

    assert _snapshot_without_generation(scheduler) == before


# ------------- 错误 --------------------------------------------------
@pytest.mark.parametrize("duration", [0, -3, "abc", float("nan"), float("inf"), None, True])
def test_invalid_duration_rejected(scheduler, duration):
    with pytest.raises(InvalidArgumentError):
        scheduler.request_charging("u1", 1, duration)
    assert scheduler.state.registry.get(1).state == SpotState.IDLE


@pytest.mark.parametrize("user_id", [None, "", "   "])
def test_missing_user_rejected(scheduler, user_id):
    with pytest.raises(InvalidArgumentError):
        scheduler.request_charging(user_id, 1, 10)


def test_duplicate_request_rejected_for_active_and_queued_user(scheduler):
    scheduler.request_charging("u1", 1, 10)
    scheduler.request_charging("u2", 2, 10)

    with pytest.raises(DuplicateRequestError):
        scheduler.request_charging("u1", 3, 10)
    with pytest.raises(DuplicateRequestError):
        scheduler.request_charging("u2", 3, 10)
    assert scheduler.state.registry.get(3).state == SpotState.IDLE


def test_user_may_request_again_after_finishing(scheduler, clock):
    _start_charging(scheduler, clock, "u1", 1, 1)
    clock.advance(minutes=1)
    scheduler.tick()

    result = scheduler.request_charging("u1", 2, 5)
    assert isinstance(result, Queued)


def test_busy_spot_unavailable(scheduler):
    scheduler.request_charging("u1", 1, 10)
    scheduler.request_charging("u2", 2, 10)

    with pytest.raises(SpotUnavailableError):
        scheduler.request_charging("u3", 1, 10)
    with pytest.raises(SpotUnavailableError):
        scheduler.request_charging("u3", 2, 10)


def test_unknown_spot(scheduler):
    with pytest.raises(UnknownSpotError) as exc_info:
        scheduler.request_charging("u1", 42, 10)
    assert isinstance(exc_info.value, SpotUnavailableError)
    assert exc_info.value.code == 404


def test_cancel_requires_matching_owner(scheduler, clock):
    scheduler.request_charging("u1", 1, 10)

    with pytest.raises(NotFoundError):
        scheduler.cancel_charging("someone-else", 1)
    with pytest.raises(NotFoundError):
        scheduler.cancel_charging("u1", 2)
    with pytest.raises(NotFoundError):
        scheduler.cancel_charging("u1", 99)


def test_cancel_finished_spot_not_found(scheduler, clock):
    _start_charging(scheduler, clock, "u1", 1, 1)
    clock.advance(minutes=1)
    scheduler.tick()

    with pytest.raises(NotFoundError):
        scheduler.cancel_charging("u1", 1)


@pytest.mark.parametrize("requested_as, cancelled_as", [(" u1 ", " u1 "), (" u1 ", "u1"), (5, 5), (5, "5")])
def test_cancel_matches_user_id_normalized_like_request(scheduler, requested_as, cancelled_as):
    before = _snapshot_without_generation(scheduler)
    scheduler.request_charging(requested_as, 1, 10)

    result = scheduler.cancel_charging(cancelled_as, 1)

    assert result.previous_state == SpotState.MOVING
    assert _snapshot_without_generation(scheduler) == before


# ------------- 查询 --------------------------------------------------
def test_spot_views(scheduler, clock):
    _start_charging(scheduler, clock, "u1", 1, 10)
    scheduler.request_charging("u2", 2, 5)
    clock.advance(minutes=1, seconds=15)

    charging = scheduler.get_spot_view(1)
    assert charging.status_label == "充電中"
    assert charging.remaining_seconds == pytest.approx(8 * 60 + 45)
    assert charging.remaining_time == "8分45秒"
    assert charging.estimated_wait_seconds == 0

    queued = scheduler.get_spot_view(2)
    assert queued.status_label == "等待中"
    assert queued.estimated_wait_seconds == pytest.approx(8 * 60 + 45)

    idle = scheduler.get_spot_view(3)
    assert idle.state == SpotState.IDLE
    assert idle.estimated_wait_seconds == pytest.approx((8.75 + 5 + 0.5) * 60)

    assert [v.spot_id for v in scheduler.get_all_spots()] == list(range(1, 12))
    assert scheduler.get_charging_spot().spot_id == 1
    assert scheduler.get_moving_spot() is None

    queue = scheduler.get_queue_view()
    assert [(q.position, q.user_id, q.spot_id) for q in queue] == [(1, "u2", 2)]


def test_moving_view_shows_move_countdown(scheduler, clock):
    scheduler.request_charging("u1", 1, 10)
    clock.advance(seconds=12)

    view = scheduler.get_moving_spot()
    assert view.status_label == "移動中"
    assert view.remaining_seconds == pytest.approx(18)
    assert view.estimated_wait_seconds == pytest.approx(18)


def test_format_duration():
    assert format_duration(75) == "1分15秒"
    assert format_duration(59.9) == "0分59秒"
    assert format_duration(-5) == "0分0秒"


def test_reset_all(scheduler, clock):
    _start_charging(scheduler, clock, "u1", 1, 10)
    scheduler.request_charging("u2", 2, 5)

    scheduler.reset_all()

    assert all(s.state == SpotState.IDLE for s in scheduler.state.registry.all())
    assert len(scheduler.state.queue) == 0
    assert scheduler.cable_is_free()


def test_events_are_recorded(scheduler, clock):
    _start_charging(scheduler, clock, "u1", 1, 10)
    scheduler.request_charging("u2", 2, 5)

    types = [e["type"] for e in scheduler.pop_events()]
    assert types == ["dispatch", "charging_started", "queued"]
    assert scheduler.pop_events() == []


# ------------- 持久化恢复 ----------------------------------------------
def test_restore_rearms_moving_spot(clock):
    arrivals = []
    source = Scheduler(range(1, 4), clock=clock)
    source.request_charging("u1", 1, 10)
    source.request_charging("u2", 2, 5)
    snapshot = source.export_state()

    clock.advance(seconds=10)
    restored = Scheduler(
        range(1, 4), clock=clock,
        arrival_hook=lambda spot_id, gen, delay: arrivals.append((spot_id, gen, delay)),
    )
    restored.restore_state(snapshot["spots"], snapshot["queue"])

    assert restored.state.registry.get(1).state == SpotState.MOVING
    assert restored.state.registry.get(2).state == SpotState.QUEUED
    assert [e.user_id for e in restored.state.queue] == ["u2"]
    assert arrivals == [(1, restored.state.registry.get(1).generation, pytest.approx(20))]

    with pytest.raises(DuplicateRequestError):
        restored.request_charging("u2", 3, 5)


def test_restore_queue_without_holder_dispatches_head(clock, arrivals):
    restored = Scheduler(
        range(1, 4), clock=clock,
        arrival_hook=lambda spot_id, gen, delay: arrivals.append((spot_id, gen, delay)),
    )
    restored.restore_state(
        [{"spot_id": 2, "state": "QUEUED", "occupant": "u2", "requested_duration_minutes": 5}],
        [{"user_id": "u2", "spot_id": 2, "requested_duration_minutes": 5,
          "requested_at": clock.now(), "sequence": 0}],
    )

    spot2 = restored.state.registry.get(2)
    assert spot2.state == SpotState.MOVING
    assert len(restored.state.queue) == 0
    assert arrivals == [(2, spot2.generation, 30)]

    assert isinstance(restored.request_charging("u3", 3, 5), Queued)
    clock.advance(seconds=30)
    restored.tick()
    assert spot2.state == SpotState.CHARGING


def test_tick_dispatches_queue_head_when_no_spot_holds_cable(scheduler, clock, check_invariants):
    scheduler.request_charging("u1", 1, 10)
    scheduler.request_charging("u2", 2, 5)
    scheduler.state.registry.get(1).reset()

    assert scheduler.tick() is True

    assert scheduler.state.registry.get(2).state == SpotState.MOVING
    assert len(scheduler.state.queue) == 0
    check_invariants(scheduler)


def test_restore_keeps_only_first_cable_holder(clock):
    restored = Scheduler(range(1, 5), clock=clock)
    restored.restore_state(
        [
            {"spot_id": 1, "state": "CHARGING", "occupant": "u1", "requested_duration_minutes": 10,
             "move_started_at": clock.now() - timedelta(minutes=2),
             "charge_started_at": clock.now() - timedelta(minutes=1)},
            {"spot_id": 3, "state": "MOVING", "occupant": "u3", "requested_duration_minutes": 5,
             "move_started_at": clock.now()},
            {"spot_id": 4, "state": "CHARGING", "occupant": "u4", "requested_duration_minutes": 5,
             "charge_started_at": clock.now()},
        ],
        [],
    )

    states = {s.spot_id: s.state for s in restored.state.registry.all()}
    assert states == {1: SpotState.CHARGING, 2: SpotState.IDLE, 3: SpotState.IDLE, 4: SpotState.IDLE}
    assert restored.state.registry.get(3).occupant is None


# ------------- 随机操作下的不变量 ------------------------------------------
def test_invariants_hold_under_random_operations(check_invariants):
    rng = random.Random(20240501)
    clock = ManualClock()
    scheduler = Scheduler(range(1, 6), clock=clock, cable_move_seconds=30, finish_linger_seconds=5)
    users = [f"u{i}" for i in range(8)]

    for _ in range(400):
        op = rng.random()
        user = rng.choice(users)
        spot_id = rng.randint(1, 5)
        if op < 0.35:
            try:
                scheduler.request_charging(user, spot_id, rng.choice([0.5, 1, 2.5]))
            except (DuplicateRequestError, SpotUnavailableError):
                pass
        elif op < 0.5:
            try:
                scheduler.cancel_charging(user, spot_id)
            except NotFoundError:
                pass
        else:
            clock.advance(seconds=rng.choice([1, 5, 15, 30, 45]))
            scheduler.tick()
        check_invariants(scheduler)

    # 时间足够长后所有请求都能完成
    for _ in range(200):
        clock.advance(seconds=30)
        scheduler.tick()
    assert all(s.state == SpotState.IDLE for s in scheduler.state.registry.all())
    assert len(scheduler.state.queue) == 0

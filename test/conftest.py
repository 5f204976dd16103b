from datetime import datetime

import pytest

from app import create_app
from scheduler_core import ManualClock, Scheduler, SpotState


@pytest.fixture
def clock():
    return ManualClock(datetime(2024, 5, 1, 9, 0, 0))


@pytest.fixture
def arrivals():
    """记录调度引擎发出的到位定时请求"""
    return []


@pytest.fixture
def scheduler(clock, arrivals):
    return Scheduler(
        range(1, 12),
        clock=clock,
        cable_move_seconds=30,
        finish_linger_seconds=5,
        arrival_hook=lambda spot_id, gen, delay: arrivals.append((spot_id, gen, delay)),
    )


@pytest.fixture
def app(clock):
    app, _socketio = create_app('testing', clock=clock)
    yield app
    app.extensions['charging_schedule_service'].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def service(app):
    return app.extensions['charging_schedule_service']


@pytest.fixture
def check_invariants():
    return _assert_single_cable


def _assert_single_cable(scheduler):
    spots = scheduler.state.registry.all()
    assert sum(1 for s in spots if s.state == SpotState.MOVING) <= 1
    assert sum(1 for s in spots if s.state == SpotState.CHARGING) <= 1
    for s in spots:
        if s.state == SpotState.MOVING:
            assert s.charge_started_at is None
        if s.state == SpotState.CHARGING:
            assert s.charge_started_at is not None
    queue = scheduler.state.queue.entries()
    assert [e.sort_key for e in queue] == sorted(e.sort_key for e in queue)
    for e in queue:
        assert scheduler.state.registry.get(e.spot_id).state == SpotState.QUEUED

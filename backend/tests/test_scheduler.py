from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import List

import pytest
from sqlalchemy import select

from pulsewatch.models import Monitor, MonitorCheck
from pulsewatch.services.checker import CheckResult
from pulsewatch.services.incidents import IncidentTracker
from pulsewatch.services.passive import PassiveIngestionService
from pulsewatch.services.scheduler import SchedulerService
from pulsewatch.services.state import MonitorStateStore


class FakeChecker:
    def __init__(self, status: str = "up") -> None:
        self.status = status
        self.checked: List[str] = []

    async def check(self, monitor) -> CheckResult:
        self.checked.append(monitor.name)
        return CheckResult(status=self.status, response_time_ms=12, status_code=200)


class SequenceRandom:
    """Returns queued values from randint, in order."""

    def __init__(self, values: List[int]) -> None:
        self.values = list(values)

    def randint(self, a: int, b: int) -> int:
        return self.values.pop(0)


def _random_monitor(**fields) -> Monitor:
    fields.setdefault("id", "m-1")
    fields.setdefault("name", "Jittered")
    fields.setdefault("check_type", "http")
    fields.setdefault("check_interval", 5)
    fields.setdefault("check_interval_max", 10)
    return Monitor(**fields)


def test_random_interval_stays_in_range_and_varies() -> None:
    scheduler = SchedulerService(state_store=MonitorStateStore(), rng=random.Random(1234))
    monitor = _random_monitor()
    now = datetime(2024, 1, 1, 12, 0)

    chosen = set()
    for _ in range(200):
        assert scheduler.select_if_due(monitor, None, now) is True
        chosen.add(scheduler.interval_for(monitor))

    assert chosen <= {5, 6, 7, 8, 9, 10}
    assert len(chosen) > 1


def test_interval_cached_until_probed() -> None:
    store = MonitorStateStore()
    scheduler = SchedulerService(state_store=store, rng=SequenceRandom([7, 9]))
    monitor = _random_monitor()
    now = datetime(2024, 1, 1, 12, 0)

    # First draw is cached and reused while the monitor is not due
    assert scheduler.select_if_due(monitor, now - timedelta(minutes=6), now) is False
    assert store.get("m-1").next_interval == 7
    assert scheduler.select_if_due(monitor, now - timedelta(minutes=6, seconds=59), now) is False

    # Due: a fresh interval is drawn before the probe runs
    assert scheduler.select_if_due(monitor, now - timedelta(minutes=7), now) is True
    assert store.get("m-1").next_interval == 9


def test_invalid_random_range_uses_fixed_interval() -> None:
    store = MonitorStateStore()
    scheduler = SchedulerService(state_store=store, rng=SequenceRandom([]))
    now = datetime(2024, 1, 1, 12, 0)

    not_greater = _random_monitor(check_interval=5, check_interval_max=5)
    assert scheduler.interval_for(not_greater) == 5
    assert scheduler.select_if_due(not_greater, now - timedelta(minutes=5), now) is True

    tcp = _random_monitor(id="m-2", check_type="tcp", check_interval=3, check_interval_max=10)
    assert scheduler.interval_for(tcp) == 3
    assert scheduler.select_if_due(tcp, now - timedelta(minutes=2), now) is False
    assert "m-2" not in store


def test_never_checked_is_due_immediately() -> None:
    scheduler = SchedulerService(state_store=MonitorStateStore())
    monitor = _random_monitor(check_interval_max=None, check_interval=60)
    assert scheduler.select_if_due(monitor, None) is True


@pytest.mark.asyncio
async def test_run_due_probes_only_active_due_monitors(db, make_monitor) -> None:
    checker = FakeChecker()
    scheduler = SchedulerService(checker=checker)

    await make_monitor(name="fresh")
    await make_monitor(name="passive", check_type="passive_listen", url="")
    await make_monitor(name="paused", is_active=0)
    recent = await make_monitor(name="recent", check_interval=5)
    stale = await make_monitor(name="stale", check_type="tcp", check_interval=5)

    db.add(MonitorCheck(monitor_id=recent.id, status="up", checked_at=datetime.utcnow() - timedelta(minutes=1)))
    db.add(MonitorCheck(monitor_id=stale.id, status="up", checked_at=datetime.utcnow() - timedelta(minutes=6)))
    await db.commit()

    assert await scheduler.run_due() == 2
    assert sorted(checker.checked) == ["fresh", "stale"]

    # Both now have a fresh check, so nothing is due
    checker.checked.clear()
    assert await scheduler.run_due() == 0


@pytest.mark.asyncio
async def test_check_monitor_records_observation(db, make_monitor) -> None:
    scheduler = SchedulerService(checker=FakeChecker(status="down"))
    monitor = await make_monitor()

    check, transition = await scheduler.check_monitor(db, monitor)

    assert check.status == "down"
    assert check.response_time == 12
    assert transition is not None and transition.kind == "down"

    stored = (await db.execute(select(MonitorCheck).where(MonitorCheck.monitor_id == monitor.id))).scalars().all()
    assert len(stored) == 1


def test_services_keep_an_injected_empty_store() -> None:
    store = MonitorStateStore()
    assert len(store) == 0

    assert SchedulerService(state_store=store).state_store is store
    assert IncidentTracker(state_store=store).state_store is store
    assert PassiveIngestionService(state_store=store).state_store is store

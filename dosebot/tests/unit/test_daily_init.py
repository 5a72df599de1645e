# dosebot/tests/unit/test_daily_init.py
import pytest

from dosebot.core.dose_state import Status
from conftest import DAY


@pytest.mark.asyncio
async def test_run_creates_one_record_per_slot(services, store):
    user = await store.find_or_create_user("100", "王小明")

    created = await services.initializer.run()
    assert created == 4
    recs = await store.list_user_records(user.id, DAY)
    assert sorted(r.slot_id for r in recs) == sorted(s.slot_id for s in services.catalog)
    assert all(r.status == Status.PENDING and r.retry_count == 0 for r in recs)


@pytest.mark.asyncio
async def test_run_is_idempotent_and_keeps_existing_state(services, store):
    user = await store.find_or_create_user("100", "王小明")
    await services.initializer.run()
    lunch = await store.find_record("lunch", user.id, DAY)
    await store.update_record(lunch.id, Status.SNOOZED, retry_count=2)

    assert await services.initializer.run() == 0
    assert len(store.all_records()) == 4
    again = await store.find_record("lunch", user.id, DAY)
    assert (again.status, again.retry_count) == (Status.SNOOZED, 2)


@pytest.mark.asyncio
async def test_seed_user_only_fills_gaps(services, store):
    user = await store.find_or_create_user("100", "王小明")
    await store.find_or_create_record("dinner", user.id, DAY)

    assert await services.initializer.seed_user(user) == 3
    assert await services.initializer.seed_user(user) == 0


@pytest.mark.asyncio
async def test_ensure_today_runs_once_per_day(services, store, clock):
    await store.find_or_create_user("100", "王小明")
    assert await services.initializer.ensure_today() == 4

    # A user appearing later in the day is seeded by register, not by ensure_today
    await store.find_or_create_user("200", "李小華")
    assert await services.initializer.ensure_today() == 0

    clock.advance(24 * 60)
    assert await services.initializer.ensure_today() == 8
    assert len(await store.list_open_records(clock.today_str())) == 8


@pytest.mark.asyncio
async def test_new_day_leaves_yesterday_alone(services, store, clock):
    user = await store.find_or_create_user("100", "王小明")
    await services.initializer.run()
    lunch = await store.find_record("lunch", user.id, DAY)
    await store.update_record(lunch.id, Status.MISSED, retry_count=3)

    clock.advance(24 * 60)
    await services.initializer.run()
    tomorrow = clock.today_str()

    assert (await store.find_record("lunch", user.id, tomorrow)).status == Status.PENDING
    assert (await store.find_record("lunch", user.id, DAY)).status == Status.MISSED


@pytest.mark.asyncio
async def test_run_without_users_is_noop(services, store):
    assert await services.initializer.run() == 0
    assert store.all_records() == []


@pytest.mark.asyncio
async def test_failed_seed_is_retried_by_next_tick(services, store, port, make_user, clock):
    await make_user()
    clock.advance(24 * 60)
    real = store.find_or_create_record
    calls = {"n": 0}

    async def flaky(*a, **k):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ConnectionError("db hiccup")
        return await real(*a, **k)

    store.find_or_create_record = flaky

    await services.engine.tick()
    assert await store.list_open_records(clock.today_str()) == []

    clock.set("08:00")
    report = await services.engine.tick()
    assert report.reminded == 1
    assert len(await store.list_open_records(clock.today_str())) == 4

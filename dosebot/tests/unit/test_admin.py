# dosebot/tests/unit/test_admin.py
import pytest

from dosebot.core.admin import SlotStatus
from dosebot.core.dose_state import Status
from dosebot.core.errors import NotFound
from dosebot.core.i18n import fmt
from dosebot.core.reminder_engine import Outcome


@pytest.mark.asyncio
async def test_register_is_idempotent(services, store):
    user, created = await services.admin.register("100", "王小明")
    assert created == 4
    again, created_again = await services.admin.register("100", "王小明")
    assert again.id == user.id
    assert created_again == 0
    assert len(store.all_records()) == 4


@pytest.mark.asyncio
async def test_today_status_in_catalog_order(services, make_user):
    user = await make_user()
    lunch = await services.store.find_record("lunch", user.id, services.clock.today_str())
    await services.store.update_record(lunch.id, Status.SNOOZED, retry_count=2)

    rows = await services.admin.today_status("100")
    assert [r.slot_id for r in rows] == ["breakfast_west", "breakfast_herbal", "lunch", "dinner"]
    assert rows[2] == SlotStatus("lunch", "午餐後", "13:00", "SNOOZED", 2)
    assert rows[0].status == "PENDING"


@pytest.mark.asyncio
async def test_today_status_unknown_user(services):
    with pytest.raises(NotFound):
        await services.admin.today_status("404")


def test_render_status_marks_missing_records(services):
    rows = [
        SlotStatus("lunch", "午餐後", "13:00", "TAKEN", 1),
        SlotStatus("dinner", "晚餐後", "19:00", None, 0),
    ]
    lines = services.admin.render_status(rows).splitlines()
    assert lines[0] == fmt("status_header", day=services.clock.today_str())
    assert lines[1] == fmt(
        "status_line", emoji="✅", meal_label="午餐後", time="13:00", status="已服用", count=1, max=3
    )
    assert lines[2].startswith("❔ 晚餐後 19:00: N/A")


def test_render_schedule_lists_every_slot(services):
    text = services.admin.render_schedule()
    assert "• 早餐後（西藥） 08:00 - 高血壓（西藥）" in text
    assert "• 晚餐後 19:00 - 高血壓（中藥）" in text


def test_render_help_uses_settings(services):
    assert services.admin.render_help() == fmt("help_text", cooldown=30, max=3)


@pytest.mark.asyncio
async def test_force_fire(services, port, make_user):
    await make_user()
    assert await services.admin.force_fire("100", "lunch") == Outcome.REMINDED
    assert [r.slot_id for r in port.reminders("100")] == ["lunch"]


@pytest.mark.asyncio
async def test_force_fire_unknown_slot_or_user(services, make_user):
    with pytest.raises(NotFound):
        await services.admin.force_fire("100", "lunch")
    await make_user()
    with pytest.raises(NotFound):
        await services.admin.force_fire("100", "supper")

# dosebot/tests/unit/test_adapter.py
from unittest.mock import AsyncMock, Mock

import pytest
from aiogram.exceptions import TelegramAPIError

from dosebot.adapters.telegram_adapter import (
    TelegramAdapter,
    build_reminder_keyboard,
    render_reminder,
)
from dosebot.app import build_services
from dosebot.core.dose_state import Status
from dosebot.core.i18n import MESSAGES, fmt
from dosebot.core.reminder_messaging import Reminder
from conftest import DAY, Cfg


class DummyBot:
    def __init__(self, *a, **k):
        self.sent = []
        self.fail = False

    async def send_message(self, chat_id, text, reply_markup=None, **k):
        if self.fail:
            raise TelegramAPIError(method=Mock(), message="Forbidden: bot was blocked")
        self.sent.append((chat_id, text, reply_markup))
        return type("M", (), {"message_id": 1})()


class DummyDispatcher:
    def __init__(self):
        self.message = Mock()
        self.callback_query = Mock()

    async def start_polling(self, bot): ...


@pytest.fixture
def adapter(monkeypatch):
    monkeypatch.setattr("dosebot.adapters.telegram_adapter.Bot", DummyBot)
    monkeypatch.setattr("dosebot.adapters.telegram_adapter.Dispatcher", DummyDispatcher)
    return TelegramAdapter("dummy")


@pytest.fixture
def wired(adapter, catalog, store, clock):
    services = build_services(Cfg, catalog, store, adapter, clock)
    adapter.attach(actions=services.actions, admin=services.admin)
    return adapter, services


class _User:
    id = 100
    full_name = "王小明"


class _Chat:
    id = 100


class _Msg:
    chat = _Chat()
    from_user = _User()

    def __init__(self, text=""):
        self.text = text


class _CB:
    from_user = _User()
    message = _Msg()

    def __init__(self, data):
        self.data = data
        self.answered = False
        self.toast = None

    async def answer(self, text=None):
        self.answered = True
        self.toast = text


def _reminder(retry=0):
    return Reminder(
        meal_label="午餐後", drugs=("高血壓（中藥）",), slot_id="lunch", day=DAY, retry_count=retry
    )


def test_render_reminder_first_and_retry():
    first = render_reminder(_reminder())
    assert first.splitlines() == [
        fmt("reminder_title", meal_label="午餐後"),
        MESSAGES["reminder_intro"],
        "• 高血壓（中藥）",
    ]
    assert render_reminder(_reminder(2)).splitlines()[-1] == fmt("reminder_retry", n=2)


def test_keyboard_carries_attempt_number():
    kb = build_reminder_keyboard(_reminder(1))
    [row] = kb.inline_keyboard
    assert [b.callback_data for b in row] == [
        f"dose:taken:lunch:{DAY}:2",
        f"dose:snooze:lunch:{DAY}:2",
    ]
    assert [b.text for b in row] == [MESSAGES["btn_taken"], MESSAGES["btn_snooze"]]


@pytest.mark.asyncio
async def test_send_reminder_and_notice(adapter):
    assert await adapter.send_reminder("100", _reminder()) is True
    assert await adapter.send_notice("100", "hi") is True
    (cid, text, kb), (cid2, text2, kb2) = adapter.bot.sent
    assert cid == 100 and kb is not None
    assert (cid2, text2, kb2) == (100, "hi", None)


@pytest.mark.asyncio
async def test_send_failure_reports_false(adapter):
    adapter.bot.fail = True
    assert await adapter.send_reminder("100", _reminder()) is False
    assert await adapter.send_notice("100", "hi") is False


@pytest.mark.asyncio
async def test_on_callback_answers_spinner_and_routes(adapter):
    actions = AsyncMock()
    adapter.attach(actions=actions, admin=Mock())

    cb = _CB(f"dose:taken:lunch:{DAY}:1")
    await adapter.on_callback(cb)

    assert cb.answered is True
    assert cb.toast is None
    event = actions.handle.await_args.args[0]
    assert (event.user_external_id, event.action, event.slot_id) == ("100", "taken", "lunch")
    assert event.reported_retry_count == 1
    assert event.display_name == "王小明"


@pytest.mark.asyncio
async def test_on_callback_bad_data_still_answers(adapter):
    actions = AsyncMock()
    adapter.attach(actions=actions, admin=Mock())

    cb = _CB(f"dose:eat:lunch:{DAY}:1")
    await adapter.on_callback(cb)

    assert cb.answered is True
    assert cb.toast == fmt("unknown_slot")
    actions.handle.assert_not_awaited()


@pytest.mark.asyncio
async def test_on_callback_store_error_still_answers(adapter):
    actions = AsyncMock()
    actions.handle.side_effect = ConnectionError("db gone")
    adapter.attach(actions=actions, admin=Mock())

    cb = _CB(f"dose:taken:lunch:{DAY}:1")
    await adapter.on_callback(cb)

    assert cb.answered is True
    actions.handle.assert_awaited_once()


@pytest.mark.asyncio
async def test_callback_end_to_end(wired):
    adapter, services = wired
    await adapter.on_setup(_Msg("/setup"))

    cb = _CB(f"dose:taken:lunch:{DAY}:1")
    await adapter.on_callback(cb)
    user = await services.store.find_user("100")
    rec = await services.store.find_record("lunch", user.id, services.clock.today_str())
    assert rec.status == Status.TAKEN
    assert adapter.bot.sent[-1][1] == fmt("taken_ack")


@pytest.mark.asyncio
async def test_unknown_slot_callback_toasts(wired):
    adapter, _ = wired
    cb = _CB(f"dose:taken:supper:{DAY}:1")
    await adapter.on_callback(cb)
    assert cb.toast == fmt("unknown_slot")


@pytest.mark.asyncio
async def test_setup_registers_and_lists_schedule(wired):
    adapter, services = wired
    await adapter.on_setup(_Msg("/setup"))

    assert await services.store.find_user("100") is not None
    assert len(services.store.all_records()) == 4
    assert adapter.bot.sent[-1][1] == services.admin.render_schedule()


@pytest.mark.asyncio
async def test_status_before_setup(wired):
    adapter, _ = wired
    await adapter.on_status(_Msg("/status"))
    assert adapter.bot.sent[-1][1] == fmt("status_unregistered")


@pytest.mark.asyncio
async def test_text_alias_routes_to_status(wired):
    adapter, services = wired
    await adapter.on_setup(_Msg("/setup"))
    await adapter.on_text(_Msg("查詢提醒"))

    rows = await services.admin.today_status("100")
    assert adapter.bot.sent[-1][1] == services.admin.render_status(rows)


@pytest.mark.asyncio
async def test_unknown_text_gets_welcome(wired):
    adapter, _ = wired
    await adapter.on_text(_Msg("hello"))
    assert adapter.bot.sent[-1][1] == MESSAGES["welcome"]


@pytest.mark.asyncio
async def test_fire_command(wired):
    adapter, _ = wired
    command = type("C", (), {"args": "dinner"})()

    await adapter.on_fire(_Msg("/fire dinner"), command)
    texts = [t for _, t, _ in adapter.bot.sent]
    assert texts[-1] == fmt("fire_sent", meal_label="晚餐後")
    assert render_reminder(
        Reminder(
            meal_label="晚餐後", drugs=("高血壓（中藥）",), slot_id="dinner", day=DAY, retry_count=0
        )
    ) in texts


@pytest.mark.asyncio
async def test_fire_without_slot_shows_usage(wired):
    adapter, _ = wired
    await adapter.on_fire(_Msg("測試"), None)
    assert adapter.bot.sent[-1][1] == fmt(
        "fire_usage", slots="breakfast_west, breakfast_herbal, lunch, dinner"
    )


@pytest.mark.asyncio
async def test_fire_on_taken_slot_is_skipped(wired):
    adapter, services = wired
    await adapter.on_setup(_Msg("/setup"))
    await adapter.on_callback(_CB(f"dose:taken:dinner:{DAY}:1"))

    command = type("C", (), {"args": "dinner"})()
    await adapter.on_fire(_Msg("/fire dinner"), command)
    assert adapter.bot.sent[-1][1] == fmt("fire_skipped", meal_label="晚餐後", status="已服用")

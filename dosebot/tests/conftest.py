# dosebot/tests/conftest.py
import sys
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

# This file is at <project_root>/dosebot/tests/conftest.py
# Project root is two levels up from here.
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dosebot.app import build_services  # noqa: E402
from dosebot.core.catalog import ScheduleCatalog  # noqa: E402
from dosebot.core.clock import Clock  # noqa: E402
from dosebot.core.store import InMemoryDoseStore  # noqa: E402

TZ = ZoneInfo("Asia/Taipei")
DAY = "2026-10-19"

SLOTS = [
    {"slot_id": "breakfast_west", "meal_label": "早餐後（西藥）", "time": "08:00", "drugs": ["高血壓（西藥）"]},
    {
        "slot_id": "breakfast_herbal",
        "meal_label": "早餐後（中藥）",
        "time": "09:00",
        "drugs": ["高血壓（中藥）"],
        "prerequisite": {"slot_id": "breakfast_west", "delay_min": 60},
    },
    {"slot_id": "lunch", "meal_label": "午餐後", "time": "13:00", "drugs": ["高血壓（中藥）"]},
    {"slot_id": "dinner", "meal_label": "晚餐後", "time": "19:00", "drugs": ["高血壓（中藥）"]},
]


class Cfg:
    TZ = TZ
    TIMEZONE = "Asia/Taipei"
    TICK_SECONDS = 60
    REMIND_COOLDOWN_MIN = 30
    MAX_RETRY_ATTEMPTS = 3
    DISPATCH_TIMEOUT_S = 1


class FakeClock(Clock):
    """Clock frozen at a settable instant (starts 2026-10-19 07:00 Taipei)."""

    def __init__(self, tz=TZ, start=None):
        super().__init__(tz)
        self._now = start or datetime(2026, 10, 19, 7, 0, tzinfo=tz)

    def now(self):
        return self._now

    def set(self, hhmm: str):
        hh, mm = (int(x) for x in hhmm.split(":"))
        self._now = self._now.replace(hour=hh, minute=mm, second=0, microsecond=0)
        return self._now

    def advance(self, minutes: float):
        self._now += timedelta(minutes=minutes)
        return self._now


class FakePort:
    """Dispatch port that records everything; `fail_for` chat ids get False."""

    def __init__(self):
        self.sent = []  # ("reminder", chat_id, Reminder) | ("notice", chat_id, text)
        self.fail_for = set()
        self.fail_all = False

    async def send_reminder(self, chat_id, reminder):
        if self.fail_all or chat_id in self.fail_for:
            return False
        self.sent.append(("reminder", chat_id, reminder))
        return True

    async def send_notice(self, chat_id, text):
        if self.fail_all or chat_id in self.fail_for:
            return False
        self.sent.append(("notice", chat_id, text))
        return True

    def reminders(self, chat_id=None):
        return [r for k, c, r in self.sent if k == "reminder" and (chat_id is None or c == chat_id)]

    def notices(self, chat_id=None):
        return [t for k, c, t in self.sent if k == "notice" and (chat_id is None or c == chat_id)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def port():
    return FakePort()


@pytest.fixture
def store():
    return InMemoryDoseStore()


@pytest.fixture
def catalog():
    return ScheduleCatalog.from_entries(SLOTS)


@pytest.fixture
def services(catalog, store, port, clock):
    return build_services(Cfg, catalog, store, port, clock)


@pytest.fixture
def make_user(services):
    """Register a user and seed today's records, like /setup does."""

    async def _make(external_id="100", name="王小明"):
        user, _ = await services.admin.register(external_id, name)
        return user

    return _make

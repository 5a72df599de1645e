# dosebot/core/admin.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from dosebot.core.catalog import ScheduleCatalog
from dosebot.core.clock import Clock
from dosebot.core.daily_init import DailyInitializer
from dosebot.core.dose_state import User
from dosebot.core.errors import NotFound
from dosebot.core.i18n import STATUS_EMOJI, STATUS_LABEL, fmt
from dosebot.core.logging_utils import kv
from dosebot.core.reminder_engine import Outcome, ReminderEngine


@dataclass
class SlotStatus:
    slot_id: str
    meal_label: str
    time: str
    status: Optional[str]  # None when no record exists for today
    retry_count: int


class AdminService:
    """Register / status / force-fire; thin calls into the initializer and engine."""

    def __init__(
        self,
        catalog: ScheduleCatalog,
        store,
        engine: ReminderEngine,
        initializer: DailyInitializer,
        clock: Clock,
        *,
        max_attempts: int,
        cooldown_min: int,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.engine = engine
        self.initializer = initializer
        self.clock = clock
        self.max_attempts = max_attempts
        self.cooldown_min = cooldown_min
        self.log = logging.getLogger("dosebot.admin")

    async def register(self, external_id: str, display_name: str = "") -> Tuple[User, int]:
        user = await self.store.find_or_create_user(external_id, display_name or external_id)
        created = await self.initializer.seed_user(user)
        self.log.info("admin.register " + kv(user=external_id, seeded=created))
        return user, created

    async def _user(self, external_id: str) -> User:
        user = await self.store.find_user(external_id)
        if user is None:
            raise NotFound("user", external_id)
        return user

    async def today_status(self, external_id: str) -> List[SlotStatus]:
        user = await self._user(external_id)
        day = self.clock.today_str()
        by_slot = {r.slot_id: r for r in await self.store.list_user_records(user.id, day)}
        result: List[SlotStatus] = []
        for slot in self.catalog:
            rec = by_slot.get(slot.slot_id)
            result.append(
                SlotStatus(
                    slot_id=slot.slot_id,
                    meal_label=slot.meal_label,
                    time=slot.time_str,
                    status=rec.status.value if rec else None,
                    retry_count=rec.retry_count if rec else 0,
                )
            )
        return result

    async def force_fire(self, external_id: str, slot_id: str) -> Outcome:
        user = await self._user(external_id)
        return await self.engine.fire(user, slot_id)

    # ---- rendering --------------------------------------------------------------------
    def render_schedule(self) -> str:
        lines = "\n".join(
            fmt(
                "setup_line",
                meal_label=s.meal_label,
                time=s.time_str,
                drugs="、".join(s.drugs),
            )
            for s in self.catalog
        )
        return fmt("setup_done", lines=lines)

    def render_status(self, rows: List[SlotStatus]) -> str:
        out = [fmt("status_header", day=self.clock.today_str())]
        for r in rows:
            key = r.status or "N/A"
            out.append(
                fmt(
                    "status_line",
                    emoji=STATUS_EMOJI.get(key, "❔"),
                    meal_label=r.meal_label,
                    time=r.time,
                    status=STATUS_LABEL.get(key, key),
                    count=r.retry_count,
                    max=self.max_attempts,
                )
            )
        return "\n".join(out)

    def render_help(self) -> str:
        return fmt("help_text", cooldown=self.cooldown_min, max=self.max_attempts)


__all__ = ["AdminService", "SlotStatus"]

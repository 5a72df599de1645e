# dosebot/core/daily_init.py
from __future__ import annotations

import logging
from typing import Optional

from dosebot.core.catalog import ScheduleCatalog
from dosebot.core.clock import Clock
from dosebot.core.dose_state import DoseStateMachine, User
from dosebot.core.errors import DuplicateRecord
from dosebot.core.logging_utils import kv


class DailyInitializer:
    """
    Guarantees exactly one DoseRecord per (user, slot) for the current day.
    Find-or-create only; an existing record is never touched.
    """

    def __init__(
        self,
        catalog: ScheduleCatalog,
        store,
        clock: Clock,
        machine: Optional[DoseStateMachine] = None,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.clock = clock
        self.machine = machine
        self.log = logging.getLogger("dosebot.init")
        self._seeded_day: Optional[str] = None

    async def seed_user(self, user: User, day: Optional[str] = None) -> int:
        """Create today's missing records for one user; returns how many were new."""
        day = day or self.clock.today_str()
        created = 0
        for slot in self.catalog:
            before = await self.store.find_record(slot.slot_id, user.id, day)
            if before is None:
                await self.store.find_or_create_record(slot.slot_id, user.id, day)
                created += 1
        if created:
            self.log.debug(
                "init.user " + kv(user=user.external_id, day=day, created=created)
            )
        return created

    async def run(self, day: Optional[str] = None) -> int:
        """Seed every known user for `day` (default: today). Idempotent."""
        day = day or self.clock.today_str()
        users = await self.store.list_users()
        created = 0
        failed = 0
        for user in users:
            try:
                created += await self.seed_user(user, day)
            except DuplicateRecord:
                raise
            except Exception as e:
                failed += 1
                self.log.error(
                    "init.user.error " + kv(user=user.external_id, day=day, err=str(e))
                )
        # Only a clean pass counts; otherwise the next ensure_today() retries
        if not failed:
            self._seeded_day = day
        if self.machine is not None:
            self.machine.prune_locks(day)
        self.log.info(
            "init.day "
            + kv(
                day=day,
                users=len(users),
                slots=len(self.catalog),
                created=created,
                failed=failed,
            )
        )
        return created

    async def ensure_today(self) -> int:
        """Run once per calendar day; later calls the same day are free."""
        today = self.clock.today_str()
        if self._seeded_day == today:
            return 0
        return await self.run(today)


__all__ = ["DailyInitializer"]

# dosebot/core/reminder_engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from dosebot.core.catalog import ScheduleCatalog, ScheduleSlot
from dosebot.core.clock import Clock
from dosebot.core.daily_init import DailyInitializer
from dosebot.core.dose_state import DoseRecord, DoseStateMachine, Status, User
from dosebot.core.errors import DuplicateRecord
from dosebot.core.logging_utils import kv, record_kv
from dosebot.core.reminder_messaging import Reminder, ReminderMessenger


class Outcome(str, Enum):
    REMINDED = "reminded"
    MISSED = "missed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class TickReport:
    day: str
    reminded: int = 0
    missed: int = 0
    skipped: int = 0
    failed: int = 0

    def count(self, outcome: Outcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)


class ReminderEngine:
    """
    Timer-driven side of the dose lifecycle.

    One recurring tick evaluates every open record of today and decides from
    stored timestamps whether it is due:
      - never before the slot's time of day;
      - never while a prerequisite dose is not TAKEN (plus its delay);
      - at most once per cooldown interval;
      - after the retry budget is spent, one last due-check marks MISSED.

    Regular reminders are send-then-update: a failed delivery commits nothing
    and the next tick tries again. The MISSED notice is sent first and the
    MISSED state is persisted whether or not it was delivered.
    """

    def __init__(
        self,
        catalog: ScheduleCatalog,
        store,
        messenger: ReminderMessenger,
        clock: Clock,
        machine: DoseStateMachine,
        initializer: DailyInitializer,
        *,
        cooldown_min: int = 30,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.messenger = messenger
        self.clock = clock
        self.machine = machine
        self.initializer = initializer
        self.cooldown = timedelta(minutes=cooldown_min)
        self.log = logging.getLogger("dosebot.engine")

    # ---- recurring tick ---------------------------------------------------------------
    async def tick(self) -> TickReport:
        await self.initializer.ensure_today()

        now = self.clock.now()
        day = self.clock.day_of(now)
        report = TickReport(day=day)

        records = await self.store.list_open_records(day)
        users: Dict[str, User] = {u.id: u for u in await self.store.list_users()}

        for rec in records:
            try:
                outcome = await self._evaluate(rec, users.get(rec.user_id), now)
            except DuplicateRecord:
                raise
            except Exception as e:
                self.log.error("tick.record.error " + record_kv(rec, err=str(e)))
                outcome = Outcome.FAILED
            report.count(outcome)

        if report.reminded or report.missed or report.failed:
            self.log.info(
                "tick.done "
                + kv(
                    day=day,
                    reminded=report.reminded,
                    missed=report.missed,
                    failed=report.failed,
                    skipped=report.skipped,
                )
            )
        return report

    async def _evaluate(self, rec: DoseRecord, user: Optional[User], now: datetime) -> Outcome:
        if user is None or rec.slot_id not in self.catalog:
            self.log.debug(
                "tick.skip " + kv(reason="orphan record", user_id=rec.user_id, slot=rec.slot_id)
            )
            return Outcome.SKIPPED
        slot = self.catalog.get(rec.slot_id)

        async with self.machine.locked(*rec.key):
            # Re-read under the lock: a user action may have landed since listing
            cur = await self.store.find_record(rec.slot_id, rec.user_id, rec.day)
            if cur is None or cur.is_terminal:
                return Outcome.SKIPPED

            eligible_at = await self._eligible_at(slot, cur)
            if eligible_at is None or now < eligible_at:
                return Outcome.SKIPPED
            if not self._cooled_down(cur, now):
                return Outcome.SKIPPED

            if self.machine.exhausted(cur):
                return await self._mark_missed(user, slot, cur)
            return await self._remind(user, slot, cur, now)

    # ---- admin force-fire -------------------------------------------------------------
    async def fire(self, user: User, slot_id: str) -> Outcome:
        """
        Send a slot's reminder right now, ignoring time, cooldown and
        prerequisite gates. Terminal records and the retry ceiling still apply.
        """
        slot = self.catalog.get(slot_id)
        now = self.clock.now()
        day = self.clock.day_of(now)
        await self.store.find_or_create_record(slot.slot_id, user.id, day)

        async with self.machine.locked(user.id, slot.slot_id, day):
            cur = await self.store.find_record(slot.slot_id, user.id, day)
            if cur is None or cur.is_terminal:
                return Outcome.SKIPPED
            self.log.info("engine.fire " + kv(user=user.external_id, slot=slot.slot_id))
            if self.machine.exhausted(cur):
                return await self._mark_missed(user, slot, cur)
            return await self._remind(user, slot, cur, now)

    # ---- gates ------------------------------------------------------------------------
    async def _eligible_at(self, slot: ScheduleSlot, rec: DoseRecord) -> Optional[datetime]:
        """Earliest reminder time for today's record, or None while gated."""
        scheduled = self.clock.combine(rec.day, slot.time)
        pre = slot.prerequisite
        if pre is None:
            return scheduled

        pre_rec = await self.store.find_record(pre.slot_id, rec.user_id, rec.day)
        if pre_rec is None or pre_rec.status != Status.TAKEN:
            return None
        if pre_rec.taken_at is None:
            return scheduled
        return max(scheduled, pre_rec.taken_at + timedelta(minutes=pre.delay_min))

    def _cooled_down(self, rec: DoseRecord, now: datetime) -> bool:
        if rec.last_reminded_at is None:
            return True
        return now - rec.last_reminded_at >= self.cooldown

    # ---- actions ----------------------------------------------------------------------
    async def _remind(
        self, user: User, slot: ScheduleSlot, rec: DoseRecord, now: datetime
    ) -> Outcome:
        tr = self.machine.remind(rec, now)
        if tr is None:
            return Outcome.SKIPPED

        delivered = await self.messenger.send_reminder(
            user.external_id, Reminder.for_slot(slot, rec.day, rec.retry_count)
        )
        if not delivered:
            # Nothing committed: the record stays due for the next tick
            return Outcome.FAILED

        await self.machine.apply(rec, tr)
        self.log.info(
            "reminder.sent "
            + kv(
                user=user.external_id,
                slot=slot.slot_id,
                day=rec.day,
                attempt=tr.retry_count,
                max=self.machine.max_attempts,
            )
        )
        return Outcome.REMINDED

    async def _mark_missed(self, user: User, slot: ScheduleSlot, rec: DoseRecord) -> Outcome:
        tr = self.machine.miss(rec)
        if tr is None:
            return Outcome.SKIPPED

        delivered = await self.messenger.send_template(
            user.external_id, "exceeded", max=self.machine.max_attempts
        )
        await self.machine.apply(rec, tr)
        self.log.info(
            "dose.missed "
            + kv(
                user=user.external_id,
                slot=slot.slot_id,
                day=rec.day,
                retry=rec.retry_count,
                notified=delivered,
            )
        )
        return Outcome.MISSED


__all__ = ["ReminderEngine", "TickReport", "Outcome"]

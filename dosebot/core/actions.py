# dosebot/core/actions.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from dosebot.core.catalog import ScheduleCatalog, ScheduleSlot
from dosebot.core.clock import Clock
from dosebot.core.daily_init import DailyInitializer
from dosebot.core.dose_state import DoseRecord, DoseStateMachine, Status, User
from dosebot.core.errors import StaleActionEvent
from dosebot.core.logging_utils import kv
from dosebot.core.reminder_messaging import ReminderMessenger

ACTION_TAKEN = "taken"
ACTION_SNOOZE = "snooze"
ACTIONS = (ACTION_TAKEN, ACTION_SNOOZE)

CALLBACK_PREFIX = "dose"
_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class ActionEvent:
    """A user pressed 'taken' or 'snooze' on a reminder card."""

    user_external_id: str
    action: str
    slot_id: str
    reported_retry_count: Optional[int] = None  # advisory only
    display_name: str = ""
    at: Optional[datetime] = None
    day: Optional[str] = None  # day of the card; None means today


@dataclass
class ActionOutcome:
    record: Optional[DoseRecord]  # None when the card was for another day
    changed: bool
    notice: str  # i18n key of the follow-up message


def callback_data(action: str, slot_id: str, day: str, attempt: int) -> str:
    """dose:<action>:<slot_id>:<day>:<attempt> (fits Telegram's 64-byte limit)."""
    return f"{CALLBACK_PREFIX}:{action}:{slot_id}:{day}:{attempt}"


def parse_callback(data: str, user_external_id: str, display_name: str = "") -> ActionEvent:
    parts = (data or "").split(":")
    if len(parts) != 5 or parts[0] != CALLBACK_PREFIX:
        raise ValueError(f"not a dose callback: {data!r}")
    _, action, slot_id, day, attempt = parts
    if action not in ACTIONS:
        raise ValueError(f"unknown action {action!r}")
    if not _DAY_RE.match(day):
        raise ValueError(f"bad day {day!r}")
    return ActionEvent(
        user_external_id=user_external_id,
        action=action,
        slot_id=slot_id,
        reported_retry_count=int(attempt),
        display_name=display_name,
        day=day,
    )


def ensure_current(event: ActionEvent, rec: DoseRecord) -> None:
    if event.reported_retry_count is None:
        return
    if event.reported_retry_count != rec.retry_count:
        raise StaleActionEvent(event.reported_retry_count, rec.retry_count)


class UserActionHandler:
    """
    Applies inbound 'taken' / 'snooze' actions to the stored record.
    The store's retry counter is authoritative; the count carried by the event
    is only compared and logged.
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
        self.cooldown_min = cooldown_min
        self.log = logging.getLogger("dosebot.actions")

    async def handle(self, event: ActionEvent) -> ActionOutcome:
        if event.action not in ACTIONS:
            raise ValueError(f"unknown action {event.action!r}")
        slot = self.catalog.get(event.slot_id)

        at = event.at or self.clock.now()
        day = self.clock.day_of(at)
        if event.day is not None and event.day != day:
            # A card from another day never touches today's record
            self.log.warning(
                "action.expired "
                + kv(user=event.user_external_id, slot=slot.slot_id, card_day=event.day, today=day)
            )
            await self.messenger.send_template(
                event.user_external_id, "card_expired", meal_label=slot.meal_label, day=event.day
            )
            return ActionOutcome(record=None, changed=False, notice="card_expired")

        user = await self._ensure_user(event, day)

        self.log.info(
            "action.in "
            + kv(
                user=user.external_id,
                action=event.action,
                slot=slot.slot_id,
                reported=event.reported_retry_count,
            )
        )

        await self.store.find_or_create_record(slot.slot_id, user.id, day)
        async with self.machine.locked(user.id, slot.slot_id, day):
            rec = await self.store.find_record(slot.slot_id, user.id, day)
            try:
                ensure_current(event, rec)
            except StaleActionEvent as e:
                self.log.warning(
                    "action.stale "
                    + kv(user=user.external_id, slot=slot.slot_id, reported=e.reported, actual=e.actual)
                )

            if event.action == ACTION_TAKEN:
                return await self._taken(user, slot, rec, at)
            return await self._snooze(user, slot, rec, at)

    # ---- helpers ----------------------------------------------------------------------
    async def _ensure_user(self, event: ActionEvent, day: str) -> User:
        user = await self.store.find_user(event.user_external_id)
        if user is not None:
            return user
        user = await self.store.find_or_create_user(
            event.user_external_id, event.display_name or event.user_external_id
        )
        created = await self.initializer.seed_user(user, day)
        self.log.info("user.new " + kv(user=user.external_id, seeded=created))
        return user

    async def _already(self, user: User, slot: ScheduleSlot, rec: DoseRecord) -> ActionOutcome:
        key = "already_taken" if rec.status == Status.TAKEN else "already_missed"
        await self.messenger.send_template(user.external_id, key, meal_label=slot.meal_label)
        return ActionOutcome(record=rec, changed=False, notice=key)

    async def _taken(
        self, user: User, slot: ScheduleSlot, rec: DoseRecord, at: datetime
    ) -> ActionOutcome:
        tr = self.machine.acknowledge(rec, at)
        if tr is None:
            return await self._already(user, slot, rec)

        rec = await self.machine.apply(rec, tr)
        self.log.info(
            "dose.taken "
            + kv(user=user.external_id, slot=slot.slot_id, day=rec.day, retry=rec.retry_count)
        )
        await self.messenger.send_template(user.external_id, "taken_ack")
        await self._hint_dependents(user, slot, rec, at)
        return ActionOutcome(record=rec, changed=True, notice="taken_ack")

    async def _hint_dependents(
        self, user: User, slot: ScheduleSlot, rec: DoseRecord, at: datetime
    ) -> None:
        for dep in self.catalog.dependents_of(slot.slot_id):
            dep_rec = await self.store.find_record(dep.slot_id, user.id, rec.day)
            if dep_rec is not None and dep_rec.is_terminal:
                continue
            delay = dep.prerequisite.delay_min if dep.prerequisite else 0
            due = max(self.clock.combine(rec.day, dep.time), at + timedelta(minutes=delay))
            minutes = max(0, int((due - at).total_seconds() // 60))
            await self.messenger.send_template(
                user.external_id,
                "dependent_hint",
                delay=minutes,
                at=due.astimezone(self.clock.tz).strftime("%H:%M"),
                meal_label=dep.meal_label,
            )

    async def _snooze(
        self, user: User, slot: ScheduleSlot, rec: DoseRecord, at: datetime
    ) -> ActionOutcome:
        if rec.is_terminal:
            return await self._already(user, slot, rec)

        tr = self.machine.snooze(rec, at)
        if tr is None:
            # Budget already spent; the engine marks MISSED on its next due-check
            await self.messenger.send_template(
                user.external_id, "exceeded", max=self.machine.max_attempts
            )
            return ActionOutcome(record=rec, changed=False, notice="exceeded")

        rec = await self.machine.apply(rec, tr)
        key = "snooze_last" if self.machine.exhausted(rec) else "snooze_ack"
        self.log.info(
            "dose.snooze "
            + kv(user=user.external_id, slot=slot.slot_id, day=rec.day, retry=rec.retry_count)
        )
        await self.messenger.send_template(
            user.external_id,
            key,
            cooldown=self.cooldown_min,
            count=rec.retry_count,
            max=self.machine.max_attempts,
        )
        return ActionOutcome(record=rec, changed=True, notice=key)


__all__ = [
    "ACTION_TAKEN",
    "ACTION_SNOOZE",
    "ActionEvent",
    "ActionOutcome",
    "UserActionHandler",
    "callback_data",
    "parse_callback",
]

# dosebot/core/reminder_messaging.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol

from dosebot.core.catalog import ScheduleSlot
from dosebot.core.errors import DispatchFailure
from dosebot.core.i18n import fmt
from dosebot.core.logging_utils import kv


@dataclass(frozen=True)
class Reminder:
    """Payload of one reminder card."""

    meal_label: str
    drugs: tuple[str, ...]
    slot_id: str
    day: str  # YYYY-MM-DD of the record the card belongs to
    retry_count: int

    @classmethod
    def for_slot(cls, slot: ScheduleSlot, day: str, retry_count: int) -> "Reminder":
        return cls(
            meal_label=slot.meal_label,
            drugs=slot.drugs,
            slot_id=slot.slot_id,
            day=day,
            retry_count=retry_count,
        )


class DispatchPort(Protocol):
    """Transport-side delivery. Both calls report success as a boolean."""

    async def send_reminder(self, chat_id: str, reminder: Reminder) -> bool: ...

    async def send_notice(self, chat_id: str, text: str) -> bool: ...


class ReminderMessenger:
    """
    Core-side wrapper around the dispatch port:
    - bounds every delivery by a timeout,
    - turns transport errors into a logged DispatchFailure and a False result,
    - resolves i18n templates for notices.
    Never raises on delivery problems; callers decide what a failure means.
    """

    def __init__(self, port: Any, log: Any, *, timeout_s: float = 10) -> None:
        self.port = port
        self.log = log
        self.timeout_s = timeout_s

    async def send_reminder(self, chat_id: str, reminder: Reminder) -> bool:
        return await self._deliver(
            "reminder",
            chat_id,
            self.port.send_reminder(chat_id, reminder),
            slot=reminder.slot_id,
            retry=reminder.retry_count,
        )

    async def send_text(self, chat_id: str, text: str) -> bool:
        return await self._deliver("notice", chat_id, self.port.send_notice(chat_id, text))

    async def send_template(self, chat_id: str, key: str, **kwargs: Any) -> bool:
        return await self.send_text(chat_id, fmt(key, **kwargs))

    async def _deliver(
        self, kind: str, chat_id: str, call: Awaitable[bool], **ctx: Any
    ) -> bool:
        try:
            ok = await asyncio.wait_for(call, timeout=self.timeout_s)
            if not ok:
                raise DispatchFailure(f"{kind} rejected by transport")
        except asyncio.TimeoutError:
            self.log.warning(
                "dispatch.fail " + kv(kind=kind, chat_id=chat_id, err="timeout", **ctx)
            )
            return False
        except DispatchFailure as e:
            self.log.warning(
                "dispatch.fail " + kv(kind=kind, chat_id=chat_id, err=str(e), **ctx)
            )
            return False
        except Exception as e:
            self.log.error(
                "dispatch.error "
                + kv(kind=kind, chat_id=chat_id, err=f"{type(e).__name__}: {e}", **ctx)
            )
            return False
        self.log.debug("dispatch.ok " + kv(kind=kind, chat_id=chat_id, **ctx))
        return True


__all__ = ["Reminder", "DispatchPort", "ReminderMessenger"]

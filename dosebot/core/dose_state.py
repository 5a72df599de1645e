# dosebot/core/dose_state.py
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Dict, Optional, Tuple

from dosebot.core.logging_utils import record_kv


class Status(str, Enum):
    PENDING = "PENDING"
    SNOOZED = "SNOOZED"
    TAKEN = "TAKEN"
    MISSED = "MISSED"


OPEN_STATUSES = (Status.PENDING, Status.SNOOZED)
TERMINAL_STATUSES = (Status.TAKEN, Status.MISSED)


@dataclass
class User:
    id: str
    external_id: str  # chat id issued by the transport
    display_name: str
    created_at: datetime


@dataclass
class DoseRecord:
    """Per-day, per-slot, per-user adherence entry."""

    id: str
    user_id: str
    slot_id: str
    day: str  # YYYY-MM-DD, reference timezone
    status: Status = Status.PENDING
    retry_count: int = 0
    last_reminded_at: Optional[datetime] = None
    taken_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.user_id, self.slot_id, self.day)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class Transition:
    """Field values to persist for one state change."""

    status: Status
    retry_count: int
    last_reminded_at: Optional[datetime] = None
    taken_at: Optional[datetime] = None


class DoseStateMachine:
    """
    Lifecycle of one dose record: PENDING -> SNOOZED -> TAKEN | MISSED.

    Decision methods are pure: they look at a freshly read record and return the
    Transition to persist, or None when the event does not apply (terminal
    record, exhausted budget). `apply` writes a transition through the store.

    Callers must hold `locked(...)` for the record across read -> decide ->
    dispatch -> apply so the trigger engine and user actions never interleave
    on the same (user, slot, day).
    """

    def __init__(self, store, max_attempts: int) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.log = logging.getLogger("dosebot.state")
        self._locks: Dict[Tuple[str, str, str], asyncio.Lock] = {}
        # holders plus waiters per key; a key in use is never pruned
        self._users: Dict[Tuple[str, str, str], int] = {}

    # -- serialization --------------------------------------------------
    @contextlib.asynccontextmanager
    async def locked(self, user_id: str, slot_id: str, day: str) -> AsyncIterator[None]:
        key = (user_id, slot_id, day)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]

    def prune_locks(self, keep_day: str) -> int:
        """Drop idle locks of days other than `keep_day`; returns how many were dropped.

        A lock that is held or still has a task queued on it stays, so a waiter
        never ends up on a lock that a newcomer no longer sees.
        """
        stale = [k for k in self._locks if k[2] != keep_day and k not in self._users]
        for k in stale:
            del self._locks[k]
        return len(stale)

    # -- queries --------------------------------------------------------
    def exhausted(self, rec: DoseRecord) -> bool:
        return rec.retry_count >= self.max_attempts

    def remaining(self, rec: DoseRecord) -> int:
        return max(0, self.max_attempts - rec.retry_count)

    # -- decisions ------------------------------------------------------
    def acknowledge(self, rec: DoseRecord, at: datetime) -> Optional[Transition]:
        if rec.is_terminal:
            return None
        return Transition(
            status=Status.TAKEN,
            retry_count=rec.retry_count,
            last_reminded_at=rec.last_reminded_at,
            taken_at=at,
        )

    def snooze(self, rec: DoseRecord, at: datetime) -> Optional[Transition]:
        """User deferral; counts as a reminder round."""
        if rec.is_terminal or self.exhausted(rec):
            return None
        return Transition(
            status=Status.SNOOZED,
            retry_count=rec.retry_count + 1,
            last_reminded_at=at,
        )

    def remind(self, rec: DoseRecord, at: datetime) -> Optional[Transition]:
        """Automatic reminder dispatched by the engine."""
        if rec.is_terminal or self.exhausted(rec):
            return None
        return Transition(
            status=Status.SNOOZED,
            retry_count=rec.retry_count + 1,
            last_reminded_at=at,
        )

    def miss(self, rec: DoseRecord) -> Optional[Transition]:
        if rec.is_terminal or not self.exhausted(rec):
            return None
        return Transition(
            status=Status.MISSED,
            retry_count=rec.retry_count,
            last_reminded_at=rec.last_reminded_at,
        )

    # -- persistence ----------------------------------------------------
    async def apply(self, rec: DoseRecord, tr: Transition) -> DoseRecord:
        if tr.retry_count < rec.retry_count:
            raise ValueError(
                f"retry_count may not decrease ({rec.retry_count} -> {tr.retry_count})"
            )
        updated = await self.store.update_record(
            rec.id,
            tr.status,
            taken_at=tr.taken_at,
            retry_count=tr.retry_count,
            last_reminded_at=tr.last_reminded_at,
        )
        self.log.debug(
            "dose.transition "
            + record_kv(rec, frm=rec.status.value, to=tr.status.value, retry=tr.retry_count)
        )
        return updated


__all__ = [
    "Status",
    "OPEN_STATUSES",
    "TERMINAL_STATUSES",
    "User",
    "DoseRecord",
    "Transition",
    "DoseStateMachine",
]

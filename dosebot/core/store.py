# dosebot/core/store.py
from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from dosebot.core.dose_state import OPEN_STATUSES, DoseRecord, Status, User
from dosebot.core.errors import DuplicateRecord, NotFound


class DoseStore(Protocol):
    """
    Record store contract consumed by the core. The store owns all mutable
    record state; find-or-create must never insert a second record for the
    same (user, slot, day).
    """

    async def find_or_create_user(self, external_id: str, display_name: str) -> User: ...

    async def find_user(self, external_id: str) -> Optional[User]: ...

    async def list_users(self) -> List[User]: ...

    async def find_or_create_record(self, slot_id: str, user_id: str, day: str) -> DoseRecord: ...

    async def find_record(self, slot_id: str, user_id: str, day: str) -> Optional[DoseRecord]: ...

    async def update_record(
        self,
        record_id: str,
        status: Status,
        *,
        taken_at: Optional[datetime] = None,
        retry_count: Optional[int] = None,
        last_reminded_at: Optional[datetime] = None,
    ) -> DoseRecord: ...

    async def list_open_records(self, day: str) -> List[DoseRecord]: ...

    async def list_user_records(self, user_id: str, day: str) -> List[DoseRecord]: ...


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryDoseStore:
    """
    Process-local store (tests, dry runs). Hands out copies so callers can
    never mutate stored state behind the store's back.
    """

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}  # by external_id
        self._records: Dict[str, DoseRecord] = {}  # by record id

    # -- users ----------------------------------------------------------
    async def find_or_create_user(self, external_id: str, display_name: str) -> User:
        user = self._users.get(external_id)
        if user is None:
            user = User(
                id=new_id(),
                external_id=external_id,
                display_name=display_name or external_id,
                created_at=utcnow(),
            )
            self._users[external_id] = user
        return replace(user)

    async def find_user(self, external_id: str) -> Optional[User]:
        user = self._users.get(external_id)
        return replace(user) if user else None

    async def list_users(self) -> List[User]:
        return [replace(u) for u in self._users.values()]

    # -- records --------------------------------------------------------
    def _lookup(self, slot_id: str, user_id: str, day: str) -> Optional[DoseRecord]:
        found = [
            r
            for r in self._records.values()
            if r.slot_id == slot_id and r.user_id == user_id and r.day == day
        ]
        if len(found) > 1:
            raise DuplicateRecord(f"{len(found)} records for {(user_id, slot_id, day)!r}")
        return found[0] if found else None

    async def find_or_create_record(self, slot_id: str, user_id: str, day: str) -> DoseRecord:
        rec = self._lookup(slot_id, user_id, day)
        if rec is None:
            rec = DoseRecord(
                id=new_id(),
                user_id=user_id,
                slot_id=slot_id,
                day=day,
                created_at=utcnow(),
            )
            self._records[rec.id] = rec
        return replace(rec)

    async def find_record(self, slot_id: str, user_id: str, day: str) -> Optional[DoseRecord]:
        rec = self._lookup(slot_id, user_id, day)
        return replace(rec) if rec else None

    async def update_record(
        self,
        record_id: str,
        status: Status,
        *,
        taken_at: Optional[datetime] = None,
        retry_count: Optional[int] = None,
        last_reminded_at: Optional[datetime] = None,
    ) -> DoseRecord:
        rec = self._records.get(record_id)
        if rec is None:
            raise NotFound("record", record_id)
        rec.status = Status(status)
        if rec.status == Status.TAKEN and taken_at is not None:
            rec.taken_at = taken_at
        if retry_count is not None:
            rec.retry_count = retry_count
        if last_reminded_at is not None:
            rec.last_reminded_at = last_reminded_at
        return replace(rec)

    async def list_open_records(self, day: str) -> List[DoseRecord]:
        return [
            replace(r)
            for r in self._records.values()
            if r.day == day and r.status in OPEN_STATUSES
        ]

    async def list_user_records(self, user_id: str, day: str) -> List[DoseRecord]:
        return [
            replace(r)
            for r in self._records.values()
            if r.user_id == user_id and r.day == day
        ]

    # -- test helpers ---------------------------------------------------
    def all_records(self) -> List[DoseRecord]:
        return [replace(r) for r in self._records.values()]


__all__ = ["DoseStore", "InMemoryDoseStore", "new_id", "utcnow"]

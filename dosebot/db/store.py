# dosebot/db/store.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from dosebot.core.dose_state import OPEN_STATUSES, DoseRecord, Status, User
from dosebot.core.errors import DuplicateRecord, NotFound
from dosebot.core.logging_utils import kv
from dosebot.core.store import new_id, utcnow
from dosebot.db.models import dose_records, metadata, users


def _to_db(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware -> UTC naive (column contract)."""
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc)


def _user(row: Any) -> User:
    m = row._mapping
    return User(
        id=m["id"],
        external_id=m["external_id"],
        display_name=m["display_name"],
        created_at=_from_db(m["created_at"]),
    )


def _record(row: Any) -> DoseRecord:
    m = row._mapping
    return DoseRecord(
        id=m["id"],
        user_id=m["user_id"],
        slot_id=m["slot_id"],
        day=m["day"],
        status=Status(m["status"]),
        retry_count=m["retry_count"],
        last_reminded_at=_from_db(m["last_reminded_at"]),
        taken_at=_from_db(m["taken_at"]),
        created_at=_from_db(m["created_at"]),
    )


class SqlDoseStore:
    """
    SQLAlchemy Core implementation of the DoseStore contract.
    Uniqueness of (user, slot, day) is also enforced by the schema; an insert
    that loses a race falls back to reading the winner's row.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.log = logging.getLogger("dosebot.store")

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # -- users ----------------------------------------------------------
    async def find_user(self, external_id: str) -> Optional[User]:
        stmt = select(users).where(users.c.external_id == external_id).limit(1)
        async with self.engine.begin() as conn:
            row = (await conn.execute(stmt)).first()
            return _user(row) if row else None

    async def find_or_create_user(self, external_id: str, display_name: str) -> User:
        user = await self.find_user(external_id)
        if user is not None:
            return user
        values = {
            "id": new_id(),
            "external_id": external_id,
            "display_name": (display_name or external_id)[:100],
            "created_at": _to_db(utcnow()),
        }
        try:
            async with self.engine.begin() as conn:
                await conn.execute(insert(users).values(**values))
        except IntegrityError:
            self.log.debug("store.user.race " + kv(external_id=external_id))
            user = await self.find_user(external_id)
            if user is None:
                raise
            return user
        return User(
            id=values["id"],
            external_id=external_id,
            display_name=values["display_name"],
            created_at=_from_db(values["created_at"]),
        )

    async def list_users(self) -> List[User]:
        async with self.engine.begin() as conn:
            rows = (await conn.execute(select(users).order_by(users.c.created_at))).all()
            return [_user(r) for r in rows]

    # -- records --------------------------------------------------------
    async def find_record(self, slot_id: str, user_id: str, day: str) -> Optional[DoseRecord]:
        stmt = select(dose_records).where(
            and_(
                dose_records.c.slot_id == slot_id,
                dose_records.c.user_id == user_id,
                dose_records.c.day == day,
            )
        )
        async with self.engine.begin() as conn:
            rows = (await conn.execute(stmt)).all()
        if len(rows) > 1:
            raise DuplicateRecord(f"{len(rows)} records for {(user_id, slot_id, day)!r}")
        return _record(rows[0]) if rows else None

    async def find_or_create_record(self, slot_id: str, user_id: str, day: str) -> DoseRecord:
        rec = await self.find_record(slot_id, user_id, day)
        if rec is not None:
            return rec
        values = {
            "id": new_id(),
            "user_id": user_id,
            "slot_id": slot_id,
            "day": day,
            "status": Status.PENDING.value,
            "retry_count": 0,
            "last_reminded_at": None,
            "taken_at": None,
            "created_at": _to_db(utcnow()),
        }
        try:
            async with self.engine.begin() as conn:
                await conn.execute(insert(dose_records).values(**values))
        except IntegrityError:
            self.log.debug(
                "store.record.race " + kv(user_id=user_id, slot=slot_id, day=day)
            )
            rec = await self.find_record(slot_id, user_id, day)
            if rec is None:
                raise
            return rec
        return DoseRecord(
            id=values["id"],
            user_id=user_id,
            slot_id=slot_id,
            day=day,
            created_at=_from_db(values["created_at"]),
        )

    async def update_record(
        self,
        record_id: str,
        status: Status,
        *,
        taken_at: Optional[datetime] = None,
        retry_count: Optional[int] = None,
        last_reminded_at: Optional[datetime] = None,
    ) -> DoseRecord:
        status = Status(status)
        values: dict[str, Any] = {"status": status.value}
        if status == Status.TAKEN and taken_at is not None:
            values["taken_at"] = _to_db(taken_at)
        if retry_count is not None:
            values["retry_count"] = retry_count
        if last_reminded_at is not None:
            values["last_reminded_at"] = _to_db(last_reminded_at)

        async with self.engine.begin() as conn:
            await conn.execute(
                update(dose_records).where(dose_records.c.id == record_id).values(**values)
            )
            row = (
                await conn.execute(select(dose_records).where(dose_records.c.id == record_id))
            ).first()
        if row is None:
            raise NotFound("record", record_id)
        return _record(row)

    async def list_open_records(self, day: str) -> List[DoseRecord]:
        stmt = (
            select(dose_records)
            .where(
                and_(
                    dose_records.c.day == day,
                    dose_records.c.status.in_([s.value for s in OPEN_STATUSES]),
                )
            )
            .order_by(dose_records.c.created_at)
        )
        async with self.engine.begin() as conn:
            rows = (await conn.execute(stmt)).all()
            return [_record(r) for r in rows]

    async def list_user_records(self, user_id: str, day: str) -> List[DoseRecord]:
        stmt = select(dose_records).where(
            and_(dose_records.c.user_id == user_id, dose_records.c.day == day)
        )
        async with self.engine.begin() as conn:
            rows = (await conn.execute(stmt)).all()
            return [_record(r) for r in rows]


__all__ = ["SqlDoseStore"]

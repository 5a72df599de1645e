# dosebot/db/models.py
from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    MetaData,
    SmallInteger,
    String,
    Table,
    UniqueConstraint,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("external_id", String(64), nullable=False, unique=True),  # chat id
    Column("display_name", String(100), nullable=False),
    Column("created_at", DateTime, nullable=False),  # UTC naive
)

dose_records = Table(
    "dose_records",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), ForeignKey("users.id"), nullable=False),
    Column("slot_id", String(32), nullable=False),
    Column("day", String(10), nullable=False),  # YYYY-MM-DD, reference tz
    Column("status", String(10), nullable=False),  # PENDING|SNOOZED|TAKEN|MISSED
    Column("retry_count", SmallInteger, nullable=False, default=0),
    Column("last_reminded_at", DateTime, nullable=True),  # UTC naive
    Column("taken_at", DateTime, nullable=True),  # UTC naive
    Column("created_at", DateTime, nullable=False),  # UTC naive
    UniqueConstraint("user_id", "slot_id", "day", name="uq_dose_user_slot_day"),
)

"""
Runtime configuration for DoseBot.
All times for scheduling/logging are Asia/Taipei.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

# Load .env from project root (no-op when absent)
load_dotenv()

# --------------------------------------------------------------------------------------
# Core bot settings
# --------------------------------------------------------------------------------------
# IMPORTANT: no hardcoded token in repo; provide via env or explicit override
BOT_TOKEN: str | None = None
TIMEZONE = "Asia/Taipei"
TZ = ZoneInfo(TIMEZONE)

# Reminder cadence / retry policy
TICK_SECONDS = 60
REMIND_COOLDOWN_MIN = 30
MAX_RETRY_ATTEMPTS = 3
DISPATCH_TIMEOUT_S = 10

# --------------------------------------------------------------------------------------
# Schedule catalog (fixed at deployment)
# --------------------------------------------------------------------------------------
SCHEDULE_FILE = str(Path(__file__).resolve().parent / "schedule.yaml")

# --------------------------------------------------------------------------------------
# Storage
# --------------------------------------------------------------------------------------
# DB_URL (env) wins over the DB dict; "memory" keeps everything in-process.
DB: dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 3306,
    "user": "dosebot",
    "password": "",
    "db": "dosebot",
}

# --------------------------------------------------------------------------------------
# Logging
# --------------------------------------------------------------------------------------
AUDIT_LOG_FILE = "dosebot/logs/audit.log"
AUDIT_LOG_MAX_BYTES = 1_000_000
AUDIT_LOG_BACKUPS = 10
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def get_bot_token() -> str:
    token = BOT_TOKEN or os.getenv("BOT_TOKEN")
    if not token:
        raise RuntimeError(
            "Bot token is not set. Set env var BOT_TOKEN or override BOT_TOKEN in config.py."
        )
    return token


def get_db_url() -> str:
    url = os.getenv("DB_URL")
    if url:
        return url
    return (
        f"mysql+aiomysql://{DB['user']}:{DB['password']}"
        f"@{DB['host']}:{DB['port']}/{DB['db']}"
        f"?charset=utf8mb4"
    )

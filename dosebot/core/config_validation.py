# dosebot/core/config_validation.py
from __future__ import annotations

from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dosebot.core.catalog import ScheduleCatalog, load_catalog
from dosebot.core.errors import ConfigError


def _positive_number(cfg: Any, name: str) -> None:
    v = getattr(cfg, name, None)
    if isinstance(v, bool) or not isinstance(v, (int, float)) or v <= 0:
        raise ConfigError(f"{name} must be a positive number, got {v!r}")


def validate_config(cfg: Any) -> ScheduleCatalog:
    """Validate runtime configuration before starting the bot.

    Returns the loaded schedule catalog; a bad catalog is as fatal as a bad
    setting since there is no safe default schedule to fall back on.
    """
    tz_name = getattr(cfg, "TIMEZONE", None)
    if not isinstance(tz_name, str) or not tz_name:
        raise ConfigError("TIMEZONE must be a non-empty string")
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"unknown TIMEZONE {tz_name!r}") from e

    for name in ("TICK_SECONDS", "REMIND_COOLDOWN_MIN", "DISPATCH_TIMEOUT_S"):
        _positive_number(cfg, name)

    attempts = getattr(cfg, "MAX_RETRY_ATTEMPTS", None)
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        raise ConfigError(f"MAX_RETRY_ATTEMPTS must be an int >= 1, got {attempts!r}")

    # One dispatch must fit inside one tick
    if cfg.DISPATCH_TIMEOUT_S >= cfg.TICK_SECONDS:
        raise ConfigError("DISPATCH_TIMEOUT_S must be shorter than TICK_SECONDS")

    path = getattr(cfg, "SCHEDULE_FILE", None)
    if not path:
        raise ConfigError("SCHEDULE_FILE must be set")
    return load_catalog(path)

# dosebot/core/logging_utils.py
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers kept at WARNING so the console stays readable
_QUIET = ("aiogram", "apscheduler", "sqlalchemy.engine")


def setup_logging(cfg: Any) -> logging.Logger:
    """
    Configure the "dosebot" logger tree:
    - console at cfg.LOG_LEVEL (INFO unless overridden),
    - rotating audit file at DEBUG, so every dose transition is on disk.
    """
    path = cfg.AUDIT_LOG_FILE
    log_dir = os.path.dirname(path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    root = logging.getLogger("dosebot")
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    audit = RotatingFileHandler(
        path,
        maxBytes=getattr(cfg, "AUDIT_LOG_MAX_BYTES", 1_000_000),
        backupCount=getattr(cfg, "AUDIT_LOG_BACKUPS", 10),
        encoding="utf-8",
    )
    audit.setLevel(logging.DEBUG)
    audit.setFormatter(formatter)
    root.addHandler(audit)

    console = logging.StreamHandler()
    console.setLevel(getattr(cfg, "LOG_LEVEL", "INFO"))
    console.setFormatter(formatter)
    root.addHandler(console)

    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.debug("logging.ready " + kv(audit=path, console=logging.getLevelName(console.level)))
    return root


def kv(**kwargs: Any) -> str:
    """Key=value compact formatting (values repr()'d for clarity)."""
    return " ".join(f"{k}={v!r}" for k, v in kwargs.items())


def record_kv(rec: Any, **extra: Any) -> str:
    """kv() of a dose record's identity, plus any extra fields."""
    return kv(user_id=rec.user_id, slot=rec.slot_id, day=rec.day, **extra)


__all__ = ["setup_logging", "kv", "record_kv"]

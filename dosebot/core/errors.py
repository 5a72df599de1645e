# dosebot/core/errors.py
from __future__ import annotations


class DoseBotError(Exception):
    """Base class for all DoseBot errors."""


class NotFound(DoseBotError):
    """Referenced user, slot or record does not exist."""

    def __init__(self, kind: str, key: object) -> None:
        super().__init__(f"{kind} not found: {key!r}")
        self.kind = kind
        self.key = key


class DispatchFailure(DoseBotError):
    """Message delivery failed or timed out."""


class DuplicateRecord(DoseBotError):
    """More than one dose record exists for the same (user, slot, day)."""


class StaleActionEvent(DoseBotError):
    """An action event carries a retry count that disagrees with the store."""

    def __init__(self, reported: int, actual: int) -> None:
        super().__init__(f"reported retry_count={reported} but store has {actual}")
        self.reported = reported
        self.actual = actual


class ConfigError(DoseBotError, ValueError):
    """Invalid runtime configuration or schedule catalog."""


__all__ = [
    "DoseBotError",
    "NotFound",
    "DispatchFailure",
    "DuplicateRecord",
    "StaleActionEvent",
    "ConfigError",
]

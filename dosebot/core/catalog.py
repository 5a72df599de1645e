# dosebot/core/catalog.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import time
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

import yaml

from dosebot.core.errors import ConfigError, NotFound

logger = logging.getLogger("dosebot.catalog")

_TIME_RE = re.compile(r"^\d{2}:\d{2}$")
_SLOT_ID_RE = re.compile(r"^[a-z0-9_]{1,32}$")


def _parse_hhmm(s: str) -> Optional[time]:
    if not isinstance(s, str) or not _TIME_RE.match(s):
        return None
    hh, mm = (int(x) for x in s.split(":", 1))
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        return None
    return time(hh, mm)


@dataclass(frozen=True)
class Prerequisite:
    """Weak reference to the slot that must be TAKEN first."""

    slot_id: str
    delay_min: int


@dataclass(frozen=True)
class ScheduleSlot:
    slot_id: str
    meal_label: str
    time: time
    drugs: tuple[str, ...]
    prerequisite: Optional[Prerequisite] = None

    @property
    def time_str(self) -> str:
        return f"{self.time.hour:02d}:{self.time.minute:02d}"


class ScheduleCatalog:
    """
    The fixed, ordered list of dose slots. Built once at startup and passed to
    every component; lookups are by slot_id only, never by display label.
    """

    def __init__(self, slots: Iterable[ScheduleSlot]) -> None:
        self._slots: List[ScheduleSlot] = list(slots)
        self._by_id: Dict[str, ScheduleSlot] = {s.slot_id: s for s in self._slots}

    def __iter__(self) -> Iterator[ScheduleSlot]:
        return iter(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, slot_id: object) -> bool:
        return slot_id in self._by_id

    def get(self, slot_id: str) -> ScheduleSlot:
        slot = self._by_id.get(slot_id)
        if slot is None:
            raise NotFound("slot", slot_id)
        return slot

    def dependents_of(self, slot_id: str) -> List[ScheduleSlot]:
        """Slots that name `slot_id` as their prerequisite."""
        return [
            s
            for s in self._slots
            if s.prerequisite is not None and s.prerequisite.slot_id == slot_id
        ]

    # -- construction ---------------------------------------------------
    @classmethod
    def from_entries(cls, entries: List[Dict[str, Any]]) -> "ScheduleCatalog":
        """Validate raw slot dicts (YAML shape) and build the catalog."""
        if not isinstance(entries, list) or not entries:
            raise ConfigError("schedule must be a non-empty list of slots")

        slots: List[ScheduleSlot] = []
        seen: set[str] = set()
        for e in entries:
            if not isinstance(e, dict):
                raise ConfigError(f"slot entry must be a mapping, got {e!r}")
            for key in ("slot_id", "meal_label", "time", "drugs"):
                if key not in e:
                    raise ConfigError(f"slot missing required field: {key}")

            sid = e["slot_id"]
            if not isinstance(sid, str) or not _SLOT_ID_RE.match(sid):
                raise ConfigError(f"invalid slot_id {sid!r} (expected [a-z0-9_]{{1,32}})")
            if sid in seen:
                raise ConfigError(f"duplicate slot_id '{sid}'")
            seen.add(sid)

            t = _parse_hhmm(e["time"])
            if t is None:
                raise ConfigError(f"slot {sid}: invalid time {e['time']!r} (expected HH:MM)")

            label = str(e["meal_label"]).strip()
            if not label:
                raise ConfigError(f"slot {sid}: 'meal_label' must be non-empty")

            drugs = e["drugs"]
            if (
                not isinstance(drugs, list)
                or not drugs
                or not all(isinstance(d, str) and d.strip() for d in drugs)
            ):
                raise ConfigError(f"slot {sid}: 'drugs' must be a non-empty list of strings")

            prereq = None
            raw_pre = e.get("prerequisite")
            if raw_pre is not None:
                if not isinstance(raw_pre, dict) or "slot_id" not in raw_pre:
                    raise ConfigError(f"slot {sid}: prerequisite needs a 'slot_id'")
                delay = raw_pre.get("delay_min", 0)
                if not isinstance(delay, int) or delay < 0:
                    raise ConfigError(f"slot {sid}: prerequisite delay_min must be an int >= 0")
                prereq = Prerequisite(slot_id=raw_pre["slot_id"], delay_min=delay)

            slots.append(
                ScheduleSlot(
                    slot_id=sid,
                    meal_label=label,
                    time=t,
                    drugs=tuple(d.strip() for d in drugs),
                    prerequisite=prereq,
                )
            )

        catalog = cls(slots)
        catalog._check_prerequisites()
        return catalog

    def _check_prerequisites(self) -> None:
        for s in self._slots:
            if s.prerequisite is None:
                continue
            if s.prerequisite.slot_id not in self._by_id:
                raise ConfigError(
                    f"slot {s.slot_id}: unknown prerequisite '{s.prerequisite.slot_id}'"
                )
            # Walk the chain; a slot may not (transitively) depend on itself
            visited = {s.slot_id}
            cur = self._by_id[s.prerequisite.slot_id]
            while True:
                if cur.slot_id in visited:
                    raise ConfigError(f"slot {s.slot_id}: prerequisite cycle")
                visited.add(cur.slot_id)
                if cur.prerequisite is None:
                    break
                cur = self._by_id[cur.prerequisite.slot_id]


def load_catalog(path: str | Path) -> ScheduleCatalog:
    """Load the schedule YAML. Any problem here is fatal for startup."""
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        logger.error("catalog.missing path=%r", str(p))
        raise ConfigError(f"schedule file not found: {p}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"schedule file {p} is not valid YAML: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"schedule file {p} must contain a mapping with 'slots'")
    catalog = ScheduleCatalog.from_entries(raw.get("slots"))
    logger.info("catalog.loaded path=%r slots=%d", str(p), len(catalog))
    return catalog


__all__ = ["Prerequisite", "ScheduleSlot", "ScheduleCatalog", "load_catalog"]

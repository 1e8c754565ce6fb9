# src/pyaroma/core/schedule.py
"""Conversions shared by the schedule encoder and the telemetry decoder."""

import logging
from collections.abc import Iterable

from .constants import (
    DURATION_MULTIPLIERS,
    SLOT_MAX,
    SLOT_MIN,
    WEEKDAY_ORDER,
    DurationUnit,
    Weekday,
)
from .models import TimeOfDay

log = logging.getLogger(__name__)


def weekdays_to_bitmask(days: Iterable[Weekday]) -> int:
    """Bit 0 is Monday, bit 6 is Sunday."""
    mask = 0
    for day in days:
        mask |= 1 << Weekday(day).bit
    return mask


def bitmask_to_weekdays(mask: int) -> frozenset[Weekday]:
    return frozenset(day for day in WEEKDAY_ORDER if mask & (1 << day.bit))


def parse_weekdays(names: Iterable[str]) -> frozenset[Weekday]:
    """Accepts "Mon", "mon", "MONDAY", ... keyed on the first three letters."""
    lookup = {day.value.lower(): day for day in WEEKDAY_ORDER}
    days = set()
    for name in names:
        key = name.strip().lower()[:3]
        if key not in lookup:
            raise ValueError(f"Unknown weekday: {name!r}")
        days.add(lookup[key])
    return frozenset(days)


def duration_to_seconds(value: int, unit: DurationUnit | str) -> int:
    try:
        unit = DurationUnit(unit)
    except ValueError:
        raise ValueError(f"Unknown duration unit: {unit!r}") from None
    return value * DURATION_MULTIPLIERS[unit]


def parse_time(text: str) -> TimeOfDay:
    """Parse "HH:MM". Ranges are left to the encoder to enforce."""
    hour_str, sep, minute_str = text.strip().partition(":")
    if not sep:
        raise ValueError(f"Invalid time {text!r}, expected HH:MM")
    try:
        return TimeOfDay(hour=int(hour_str), minute=int(minute_str))
    except ValueError as e:
        raise ValueError(f"Invalid time {text!r}, expected HH:MM") from e


def format_time(t: TimeOfDay) -> str:
    return f"{t.hour:02d}:{t.minute:02d}"


def pick_next_slot(existing: Iterable[int]) -> int:
    """
    Lowest free slot in 1..5. When every slot is taken, slot 1 is returned
    and whatever schedule lives there gets overwritten, enabled or not.
    """
    taken = set(existing)
    for slot in range(SLOT_MIN, SLOT_MAX + 1):
        if slot not in taken:
            return slot
    log.warning(
        f"All {SLOT_MAX} schedule slots are occupied; slot {SLOT_MIN} will be overwritten"
    )
    return SLOT_MIN

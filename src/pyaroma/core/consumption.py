# src/pyaroma/core/consumption.py
from collections.abc import Iterable

from .constants import FanLevel
from .models import WorkMode


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def mode_contribution(mode: WorkMode, fan_level: FanLevel) -> int:
    total = mode.work_duration_s + mode.pause_duration_s
    if total <= 0:
        return 0
    # Always rounded up, never to nearest.
    return _ceil_div(fan_level.marginal_consumption * mode.work_duration_s, total)


def consumption_rate(active_modes: Iterable[WorkMode], fan_level: FanLevel) -> int:
    """Units per hour: the sum of each enabled mode's duty-cycled draw."""
    return sum(
        mode_contribution(mode, fan_level) for mode in active_modes if mode.enabled
    )


def hours_remaining(remaining: float, rate: int) -> float | None:
    if rate <= 0:
        return None
    return round(remaining / rate, 1)

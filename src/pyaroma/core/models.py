# src/pyaroma/core/models.py

from pydantic import BaseModel, ConfigDict, Field

from .constants import DurationUnit, FanLevel, LockState, Weekday


class TimeOfDay(BaseModel):
    model_config = ConfigDict(frozen=True)

    hour: int
    minute: int

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


class TimeWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: TimeOfDay
    end: TimeOfDay


class WorkMode(BaseModel):
    model_config = ConfigDict(frozen=True)

    slot: int
    enabled: bool
    label: str
    window: TimeWindow
    work_duration_s: int
    pause_duration_s: int
    active_days: frozenset[Weekday]

    @property
    def cycle_seconds(self) -> int:
        return self.work_duration_s + self.pause_duration_s


class SwitchState(BaseModel):
    model_config = ConfigDict(frozen=True)

    slot: int
    active: bool


class DeviceSnapshot(BaseModel):
    """Everything decoded from one telemetry record."""

    model_config = ConfigDict(frozen=True)

    device_id: str | None = None
    fan_level: FanLevel
    switch_states: list[SwitchState]
    # One entry per slot 1-5, aligned with switch_states; None for an empty slot
    work_modes: list[WorkMode | None]
    consumption_rate: int
    hours_remaining: float | None = None

    @property
    def occupied_slots(self) -> set[int]:
        return {mode.slot for mode in self.work_modes if mode is not None}

    def work_mode(self, slot: int) -> WorkMode | None:
        return next((m for m in self.work_modes if m is not None and m.slot == slot), None)


# --- API Argument Models ---


class ModeSwitchArgs(BaseModel):
    on: bool


class ScheduleArgs(BaseModel):
    slot: int | None = None
    days: list[str] = Field(default_factory=lambda: [d.value for d in Weekday])
    start: str = "08:00"
    end: str = "17:00"
    work: int
    work_unit: DurationUnit = DurationUnit.SECONDS
    pause: int
    pause_unit: DurationUnit = DurationUnit.SECONDS


class FanArgs(BaseModel):
    level: FanLevel


class LockArgs(BaseModel):
    locked: bool

    @property
    def state(self) -> LockState:
        return LockState.LOCKED if self.locked else LockState.UNLOCKED


class BatchScheduleArgs(BaseModel):
    device_ids: list[str] = Field(min_length=1)
    schedule: ScheduleArgs


class CommandResult(BaseModel):
    device_ids: list[str]
    slot: int | None = None
    frame: str
    sent: bool = True

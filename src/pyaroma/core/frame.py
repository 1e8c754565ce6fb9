# src/pyaroma/core/frame.py
from collections.abc import Iterable
from typing import Annotated, Any, Literal, Union

from construct import Byte, Bytes, Computed, Const, Flag, Int16ub, Struct, this
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import (
    ALL_DAYS_MASK,
    COMMAND_BYTE,
    DEVICE_COMMAND_FRAMES,
    FAN_FRAMES,
    FAN_FUNCTION,
    LOCK_FRAMES,
    LOCK_FUNCTION,
    MAX_DURATION_SECONDS,
    MODE_SWITCH_FUNCTION_BASE,
    MODE_SWITCH_PAYLOAD_SIZE,
    SCHEDULE_PAYLOAD_SIZE,
    SLOT_MAX,
    SLOT_MIN,
    START_BYTE,
    TYPE_BYTE,
    DeviceCommand,
    DurationUnit,
    FanLevel,
    LockState,
)
from .errors import InvalidDuration, InvalidSlot, InvalidTime
from .models import TimeOfDay, WorkMode
from .schedule import (
    duration_to_seconds,
    parse_time,
    parse_weekdays,
    weekdays_to_bitmask,
)


def checksum(data: Iterable[int]) -> int:
    """Low 8 bits of the byte sum. Callers pass everything after the start byte."""
    return sum(data) & 0xFF


FrameHeader = Struct(
    Const(bytes([START_BYTE])),
    "command" / Byte,
    "function" / Byte,
    "type" / Byte,
    "length" / Byte,
)

ModeSwitchPayload = Struct(
    "on" / Flag,
)

SchedulePayload = Struct(
    "active_days" / Byte,
    "start_hour" / Byte,
    "start_minute" / Byte,
    "end_hour" / Byte,
    "end_minute" / Byte,
    "work_s" / Int16ub,
    "pause_s" / Int16ub,
)

# Any complete frame: header, `length` payload bytes, trailing checksum.
FrameStruct = Struct(
    Const(bytes([START_BYTE])),
    "command" / Byte,
    "function" / Byte,
    "type" / Byte,
    "length" / Byte,
    "payload" / Bytes(this.length),
    "checksum" / Byte,
    "valid"
    / Computed(
        lambda ctx: checksum(
            bytes([ctx.command, ctx.function, ctx.type, ctx.length]) + ctx.payload
        )
        == ctx.checksum
    ),
)

assert SchedulePayload.sizeof() == SCHEDULE_PAYLOAD_SIZE


def _seal(function: int, payload: bytes) -> bytes:
    header = FrameHeader.build(
        {
            "command": COMMAND_BYTE,
            "function": function,
            "type": TYPE_BYTE,
            "length": len(payload),
        }
    )
    body = header + payload
    return body + bytes([checksum(body[1:])])


def to_hex(data: bytes) -> str:
    return data.hex().upper()


def parse_frame(data: bytes | str) -> Any:
    """Parse raw bytes or a hex string (with or without spaces) into frame fields."""
    if isinstance(data, str):
        data = bytes.fromhex(data)
    return FrameStruct.parse(data)


Slot = Annotated[int, Field(strict=True, ge=SLOT_MIN, le=SLOT_MAX)]
Duration = Annotated[int, Field(strict=True, gt=0, le=MAX_DURATION_SECONDS)]


class _Frame(BaseModel):
    model_config = ConfigDict(frozen=True)

    def to_bytes(self) -> bytes:
        raise NotImplementedError

    def to_hex(self) -> str:
        return to_hex(self.to_bytes())


class ModeSwitchFrame(_Frame):
    kind: Literal["mode_switch"] = "mode_switch"
    slot: Slot
    on: bool

    def to_bytes(self) -> bytes:
        payload = ModeSwitchPayload.build({"on": self.on})
        return _seal(MODE_SWITCH_FUNCTION_BASE + self.slot, payload)


class ScheduleFrame(_Frame):
    kind: Literal["schedule"] = "schedule"
    slot: Slot
    active_days: Annotated[int, Field(strict=True, ge=0, le=ALL_DAYS_MASK)]
    start: TimeOfDay
    end: TimeOfDay
    work_s: Duration
    pause_s: Duration

    @field_validator("start", "end")
    @classmethod
    def check_time(cls, t: TimeOfDay) -> TimeOfDay:
        _check_time(t)
        return t

    def to_bytes(self) -> bytes:
        payload = SchedulePayload.build(
            {
                "active_days": self.active_days,
                "start_hour": self.start.hour,
                "start_minute": self.start.minute,
                "end_hour": self.end.hour,
                "end_minute": self.end.minute,
                "work_s": self.work_s,
                "pause_s": self.pause_s,
            }
        )
        # Schedule frames carry the raw slot as the function code.
        return _seal(self.slot, payload)


class FixedFrame(_Frame):
    kind: Literal["fixed"] = "fixed"
    name: str
    hex: str

    def to_bytes(self) -> bytes:
        return bytes.fromhex(self.hex)

    def to_hex(self) -> str:
        # Legacy constants go out space-delimited, exactly as tabulated.
        return self.hex


CommandFrame = Annotated[
    Union[ModeSwitchFrame, ScheduleFrame, FixedFrame], Field(discriminator="kind")
]


def _check_slot(slot: int) -> None:
    if isinstance(slot, bool) or not isinstance(slot, int):
        raise InvalidSlot(slot)
    if not SLOT_MIN <= slot <= SLOT_MAX:
        raise InvalidSlot(slot)


def _check_duration(name: str, value: int) -> None:
    if value <= 0 or value > MAX_DURATION_SECONDS:
        raise InvalidDuration(name, value)


def _check_time(t: TimeOfDay) -> None:
    if not (0 <= t.hour <= 23 and 0 <= t.minute <= 59):
        raise InvalidTime(t.hour, t.minute)


def build_mode_switch_frame(slot: int, on: bool) -> ModeSwitchFrame:
    _check_slot(slot)
    return ModeSwitchFrame(slot=slot, on=on)


def build_schedule_frame(
    slot: int,
    active_days: int,
    start: TimeOfDay,
    end: TimeOfDay,
    work_s: int,
    pause_s: int,
) -> ScheduleFrame:
    _check_slot(slot)
    _check_duration("Work", work_s)
    _check_duration("Pause", pause_s)
    _check_time(start)
    _check_time(end)
    if not 0 <= active_days <= ALL_DAYS_MASK:
        raise ValueError(f"Active-day mask {active_days:#x} is out of range.")
    return ScheduleFrame(
        slot=slot,
        active_days=active_days,
        start=start,
        end=end,
        work_s=work_s,
        pause_s=pause_s,
    )


def build_work_mode_frame(mode: WorkMode) -> ScheduleFrame:
    return build_schedule_frame(
        slot=mode.slot,
        active_days=weekdays_to_bitmask(mode.active_days),
        start=mode.window.start,
        end=mode.window.end,
        work_s=mode.work_duration_s,
        pause_s=mode.pause_duration_s,
    )


def encode_schedule_intent(
    slot: int,
    days: Iterable[str],
    start: str,
    end: str,
    work: int,
    pause: int,
    work_unit: DurationUnit | str = DurationUnit.SECONDS,
    pause_unit: DurationUnit | str = DurationUnit.SECONDS,
) -> ScheduleFrame:
    """Build a schedule frame from operator input ("Mon", "08:00", 2 + "m", ...)."""
    return build_schedule_frame(
        slot=slot,
        active_days=weekdays_to_bitmask(parse_weekdays(days)),
        start=parse_time(start),
        end=parse_time(end),
        work_s=duration_to_seconds(work, work_unit),
        pause_s=duration_to_seconds(pause, pause_unit),
    )


def build_fixed_frame(intent: FanLevel | LockState | DeviceCommand) -> FixedFrame:
    if isinstance(intent, DeviceCommand):
        return FixedFrame(name=intent.value, hex=DEVICE_COMMAND_FRAMES[intent])
    if isinstance(intent, FanLevel):
        return FixedFrame(name=f"fan_{intent.name.lower()}", hex=FAN_FRAMES[intent])
    if isinstance(intent, LockState):
        return FixedFrame(name=intent.name.lower(), hex=LOCK_FRAMES[intent])
    raise ValueError(f"No fixed frame for intent: {intent!r}")


def _check_fixed_tables() -> None:
    for function, table in ((FAN_FUNCTION, FAN_FRAMES), (LOCK_FUNCTION, LOCK_FRAMES)):
        for hex_frame in table.values():
            parsed = parse_frame(hex_frame)
            assert parsed.valid, f"Fixed frame {hex_frame} violates the checksum rule"
            assert parsed.function == function, f"Fixed frame {hex_frame} has the wrong function"


_check_fixed_tables()

assert MODE_SWITCH_PAYLOAD_SIZE == ModeSwitchPayload.sizeof()

# src/pyaroma/core/constants.py
from enum import Enum

# Frame header
START_BYTE = 0x55
COMMAND_BYTE = 0x10
TYPE_BYTE = 0x05
HEADER_SIZE = 5

# Payload sizes per frame kind
MODE_SWITCH_PAYLOAD_SIZE = 1
SCHEDULE_PAYLOAD_SIZE = 9
SCHEDULE_FRAME_SIZE = HEADER_SIZE + SCHEDULE_PAYLOAD_SIZE + 1

# Mode-switch frames offset the slot; schedule frames use the raw slot number.
MODE_SWITCH_FUNCTION_BASE = 0x10
FAN_FUNCTION = 0x20
LOCK_FUNCTION = 0x30

# Hardware schedule slots
SLOT_MIN = 1
SLOT_MAX = 5
SLOTS = range(SLOT_MIN, SLOT_MAX + 1)

MAX_DURATION_SECONDS = 0xFFFF
ALL_DAYS_MASK = 0x7F

# Telemetry keys
MODE_SET_KEY = "MODE{slot}_SET"
MODE_SWITCH_KEY = "MODE{slot}_SWITCH"
SWITCH_STATE_INDEX = 5
REMAINING_OIL_KEY = "remainInfoCurrent"

# Consuming layers refresh snapshots on this cadence
DEFAULT_POLL_INTERVAL = 10


class Weekday(str, Enum):
    MON = "Mon"
    TUE = "Tue"
    WED = "Wed"
    THU = "Thu"
    FRI = "Fri"
    SAT = "Sat"
    SUN = "Sun"

    @property
    def bit(self) -> int:
        return WEEKDAY_ORDER.index(self)


WEEKDAY_ORDER = list(Weekday)


class DurationUnit(str, Enum):
    SECONDS = "s"
    MINUTES = "m"
    HOURS = "h"


DURATION_MULTIPLIERS = {
    DurationUnit.SECONDS: 1,
    DurationUnit.MINUTES: 60,
    DurationUnit.HOURS: 3600,
}


class FanLevel(str, Enum):
    OFF = "Off"
    L1 = "L1"
    L2 = "L2"

    @property
    def marginal_consumption(self) -> int:
        """Units per hour drawn at this level before duty-cycle scaling."""
        return FAN_CONSUMPTION[self]


FAN_CONSUMPTION = {
    FanLevel.OFF: 0,
    FanLevel.L1: 2,
    FanLevel.L2: 4,
}


class LockState(str, Enum):
    LOCKED = "Locked"
    UNLOCKED = "Unlocked"


# Pre-baked protocol constants, sent exactly as written.
FAN_FRAMES = {
    FanLevel.OFF: "55 10 20 05 01 00 36",
    FanLevel.L1: "55 10 20 05 01 01 37",
    FanLevel.L2: "55 10 20 05 01 02 38",
}

LOCK_FRAMES = {
    LockState.LOCKED: "55 10 30 05 01 01 47",
    LockState.UNLOCKED: "55 10 30 05 01 00 46",
}


class DeviceCommand(str, Enum):
    POWER_ON = "power_on"
    POWER_OFF = "power_off"
    INTENSITY_LOW = "intensity_low"
    INTENSITY_MEDIUM = "intensity_medium"
    INTENSITY_HIGH = "intensity_high"
    MODE_CONTINUOUS = "mode_continuous"
    MODE_INTERMITTENT = "mode_intermittent"
    RESET = "reset"


# Older firmware command set: AA 55 <code> FF, no checksum.
DEVICE_COMMAND_FRAMES = {
    DeviceCommand.POWER_ON: "AA5500FF",
    DeviceCommand.POWER_OFF: "AA5501FF",
    DeviceCommand.INTENSITY_LOW: "AA5502FF",
    DeviceCommand.INTENSITY_MEDIUM: "AA5503FF",
    DeviceCommand.INTENSITY_HIGH: "AA5504FF",
    DeviceCommand.MODE_CONTINUOUS: "AA5505FF",
    DeviceCommand.MODE_INTERMITTENT: "AA5506FF",
    DeviceCommand.RESET: "AA55FFFF",
}

# src/pyaroma/core/errors.py


class FrameError(ValueError):
    """An intent that cannot be encoded into a command frame."""


class InvalidSlot(FrameError):
    def __init__(self, slot: int):
        super().__init__(f"Slot {slot} is out of range (1-5).")
        self.slot = slot


class InvalidDuration(FrameError):
    def __init__(self, name: str, value: int):
        super().__init__(
            f"{name} duration must be between 1 and 65535 seconds, got {value}."
        )
        self.name = name
        self.value = value


class InvalidTime(FrameError):
    def __init__(self, hour: int, minute: int):
        super().__init__(f"Time {hour:02d}:{minute:02d} is not a valid time of day.")
        self.hour = hour
        self.minute = minute


class MalformedTelemetry(ValueError):
    """A telemetry hex string that cannot be split into byte values."""


class TransportError(OSError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CommandRejected(TransportError):
    """The device cloud accepted the request but refused the command."""

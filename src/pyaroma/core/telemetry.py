# src/pyaroma/core/telemetry.py
"""
Decoding of device telemetry records into work modes and switch states.

A telemetry record is a flat mapping of string keys to hex strings (or
None). The ``MODE{n}_SET`` and ``MODE{n}_SWITCH`` keys for slots 1-5 and
the remaining-oil counter are read; every other key is ignored. Decoding
never raises for bad data:
a missing or corrupt slot comes back empty or inactive and the other
slots are still decoded.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any

from construct import ConstructError

from .constants import (
    HEADER_SIZE,
    MODE_SET_KEY,
    MODE_SWITCH_KEY,
    REMAINING_OIL_KEY,
    SCHEDULE_FRAME_SIZE,
    SCHEDULE_PAYLOAD_SIZE,
    SLOTS,
    SWITCH_STATE_INDEX,
    FanLevel,
)
from .consumption import consumption_rate, hours_remaining
from .errors import MalformedTelemetry
from .frame import SchedulePayload, checksum
from .models import DeviceSnapshot, SwitchState, TimeOfDay, TimeWindow, WorkMode
from .schedule import bitmask_to_weekdays

log = logging.getLogger(__name__)

HEX_TOKEN = re.compile(r"[0-9A-Fa-f]{1,2}")


def split_hex(text: Any) -> list[int]:
    """
    Split a telemetry hex string into byte values.

    Tokens are whitespace separated ("55 10 02 ..."); a single unbroken
    token longer than one byte ("551002...") is read two digits at a time.
    """
    if not isinstance(text, str):
        raise MalformedTelemetry(f"Expected a hex string, got {type(text).__name__}")
    tokens = text.split()
    if len(tokens) == 1 and len(tokens[0]) > 2:
        packed = tokens[0]
        if len(packed) % 2:
            raise MalformedTelemetry(f"Odd number of hex digits in {packed!r}")
        tokens = [packed[i : i + 2] for i in range(0, len(packed), 2)]
    for token in tokens:
        if not HEX_TOKEN.fullmatch(token):
            raise MalformedTelemetry(f"Bad hex byte {token!r} in {text!r}")
    return [int(token, 16) for token in tokens]


def parse_switch_states(telemetry: Mapping[str, Any]) -> list[SwitchState]:
    states = []
    for slot in SLOTS:
        key = MODE_SWITCH_KEY.format(slot=slot)
        raw = telemetry.get(key)
        active = False
        if raw is None:
            log.debug(f"{key} missing from telemetry, treating slot {slot} as inactive")
        else:
            try:
                values = split_hex(raw)
                if len(values) > SWITCH_STATE_INDEX:
                    active = values[SWITCH_STATE_INDEX] == 1
                else:
                    log.warning(
                        f"{key} has {len(values)} bytes, expected at least "
                        f"{SWITCH_STATE_INDEX + 1}; treating slot {slot} as inactive"
                    )
            except MalformedTelemetry as e:
                log.warning(f"Unparsable {key}: {e}; treating slot {slot} as inactive")
        states.append(SwitchState(slot=slot, active=active))
    return states


def parse_work_mode(mode_data: Any, slot: int, is_active: bool) -> WorkMode | None:
    """Decode one ``MODE{n}_SET`` value, or None if the slot holds nothing usable."""
    try:
        values = split_hex(mode_data)
        if len(values) < SCHEDULE_FRAME_SIZE:
            log.warning(
                f"Slot {slot} schedule has {len(values)} bytes, "
                f"expected {SCHEDULE_FRAME_SIZE}; slot left empty"
            )
            return None
        data = bytes(values)
        fields = SchedulePayload.parse(
            data[HEADER_SIZE : HEADER_SIZE + SCHEDULE_PAYLOAD_SIZE]
        )
        if not any(
            (
                fields.active_days,
                fields.start_hour,
                fields.start_minute,
                fields.end_hour,
                fields.end_minute,
            )
        ):
            # Uninitialised hardware slot
            return None
        body_end = HEADER_SIZE + SCHEDULE_PAYLOAD_SIZE
        if checksum(data[1:body_end]) != data[body_end]:
            log.debug(f"Slot {slot} schedule checksum mismatch: {data.hex()}")
        return WorkMode(
            slot=slot,
            enabled=is_active,
            label=f"Setting {slot}",
            window=TimeWindow(
                start=TimeOfDay(hour=fields.start_hour, minute=fields.start_minute),
                end=TimeOfDay(hour=fields.end_hour, minute=fields.end_minute),
            ),
            work_duration_s=fields.work_s,
            pause_duration_s=fields.pause_s,
            active_days=bitmask_to_weekdays(fields.active_days),
        )
    except (MalformedTelemetry, ConstructError, ValueError) as e:
        log.warning(f"Could not decode schedule for slot {slot}: {e}")
        return None


def parse_remaining_oil(telemetry: Mapping[str, Any]) -> float | None:
    raw = telemetry.get(REMAINING_OIL_KEY)
    if raw is None:
        return None
    try:
        remaining = float(raw)
    except (TypeError, ValueError):
        log.warning(f"Unparsable {REMAINING_OIL_KEY}: {raw!r}")
        return None
    return remaining if remaining >= 0 else None


def decode_snapshot(
    telemetry: Mapping[str, Any],
    fan_level: FanLevel = FanLevel.L2,
    device_id: str | None = None,
) -> DeviceSnapshot:
    """Build a fresh snapshot from one telemetry record. Pure and repeatable."""
    switch_states = parse_switch_states(telemetry)
    work_modes: list[WorkMode | None] = []
    for state in switch_states:
        raw = telemetry.get(MODE_SET_KEY.format(slot=state.slot))
        work_modes.append(
            None if raw is None else parse_work_mode(raw, state.slot, state.active)
        )

    rate = consumption_rate([m for m in work_modes if m is not None], fan_level)
    remaining = parse_remaining_oil(telemetry)
    return DeviceSnapshot(
        device_id=device_id,
        fan_level=fan_level,
        switch_states=switch_states,
        work_modes=work_modes,
        consumption_rate=rate,
        hours_remaining=None if remaining is None else hours_remaining(remaining, rate),
    )

# src/pyaroma/api.py
import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable
from contextlib import asynccontextmanager
from typing import TypeVar

from fastapi import Depends, FastAPI, HTTPException
from tenacity import RetryError

from .config import settings
from .core.client import AromaClient, get_client, get_lock
from .core.constants import DeviceCommand
from .core.errors import CommandRejected, TransportError
from .core.frame import encode_schedule_intent
from .core.models import (
    BatchScheduleArgs,
    CommandResult,
    DeviceSnapshot,
    FanArgs,
    LockArgs,
    ModeSwitchArgs,
    ScheduleArgs,
)
from .core.schedule import pick_next_slot
from .poller import SnapshotPoller, get_poller

log = logging.getLogger(__name__)

T = TypeVar("T")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    log.info("Starting pyaroma API server...")
    if settings.POLLER_ENABLED:
        await get_poller().start()
    yield
    log.info("Shutting down pyaroma API server...")
    if settings.POLLER_ENABLED:
        await get_poller().stop()
    log.info("Shutdown complete.")


app = FastAPI(
    title="pyaroma API",
    description="Encode, send and decode aroma diffuser command frames.",
    version="1.0.0",
    lifespan=lifespan,
)


async def guarded(call: Awaitable[T]) -> T:
    """Await a device-cloud call, turning codec and transport failures into HTTP errors."""
    try:
        return await call
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except CommandRejected as e:
        log.error(f"Device cloud rejected the command: {e}")
        raise HTTPException(status_code=502, detail=f"Command rejected: {e}") from e
    except RetryError as e:
        log.error(f"Failed to reach the device cloud after multiple retries: {e}")
        raise HTTPException(
            status_code=504, detail="Could not communicate with the device cloud."
        ) from e
    except TransportError as e:
        log.error(f"Device cloud request failed: {e}")
        raise HTTPException(status_code=502, detail=str(e)) from e


async def resolve_slot(
    device_id: str, args: ScheduleArgs, poller: SnapshotPoller
) -> int:
    if args.slot is not None:
        return args.slot
    snapshot = await guarded(poller.get_snapshot(device_id, force_refresh=True))
    return pick_next_slot(snapshot.occupied_slots)


@app.get("/devices/{device_id}/status", response_model=DeviceSnapshot)
async def get_device_status(
    device_id: str,
    refresh: bool = False,
    poller: SnapshotPoller = Depends(get_poller),
) -> DeviceSnapshot:
    """Decoded work modes, switch states and consumption rate for one device."""
    return await guarded(poller.get_snapshot(device_id, force_refresh=refresh))


@app.get("/devices/{device_id}/snapshot")
async def get_stored_snapshot(
    device_id: str,
    poller: SnapshotPoller = Depends(get_poller),
) -> dict:
    """The poller's last snapshot and its age, without contacting the device cloud."""
    snapshot, meta = poller.get(device_id)
    return {
        "snapshot": snapshot.model_dump(mode="json") if snapshot is not None else None,
        "meta": meta.to_dict(),
    }


@app.post("/devices/{device_id}/modes/{slot}/switch", response_model=CommandResult)
async def switch_mode(
    device_id: str,
    slot: int,
    args: ModeSwitchArgs,
    client: AromaClient = Depends(get_client),
    lock: asyncio.Lock = Depends(get_lock),
) -> CommandResult:
    """Enable or disable the schedule held in one slot."""
    async with lock, client.connection():
        frame = await guarded(client.switch_mode(device_id, slot, args.on))
    return CommandResult(device_ids=[device_id], slot=slot, frame=frame.to_hex())


@app.post("/devices/{device_id}/modes", response_model=CommandResult)
async def set_schedule(
    device_id: str,
    args: ScheduleArgs,
    client: AromaClient = Depends(get_client),
    lock: asyncio.Lock = Depends(get_lock),
    poller: SnapshotPoller = Depends(get_poller),
) -> CommandResult:
    """
    Write a weekly schedule to a slot. Without an explicit slot the lowest
    free one is used; when all five are taken slot 1 is overwritten.
    """
    slot = await resolve_slot(device_id, args, poller)
    async with lock, client.connection():
        frame = await guarded(
            client.set_schedule(
                [device_id],
                slot,
                args.days,
                args.start,
                args.end,
                args.work,
                args.pause,
                work_unit=args.work_unit,
                pause_unit=args.pause_unit,
            )
        )
    return CommandResult(device_ids=[device_id], slot=slot, frame=frame.to_hex())


@app.post("/devices/{device_id}/fan", response_model=CommandResult)
async def set_fan(
    device_id: str,
    args: FanArgs,
    client: AromaClient = Depends(get_client),
    lock: asyncio.Lock = Depends(get_lock),
    poller: SnapshotPoller = Depends(get_poller),
) -> CommandResult:
    async with lock, client.connection():
        frame = await guarded(client.set_fan(device_id, args.level))
    poller.remember_fan_level(device_id, args.level)
    return CommandResult(device_ids=[device_id], frame=frame.to_hex())


@app.post("/devices/{device_id}/lock", response_model=CommandResult)
async def set_lock(
    device_id: str,
    args: LockArgs,
    client: AromaClient = Depends(get_client),
    lock: asyncio.Lock = Depends(get_lock),
) -> CommandResult:
    async with lock, client.connection():
        frame = await guarded(client.set_lock(device_id, args.state))
    return CommandResult(device_ids=[device_id], frame=frame.to_hex())


@app.post("/devices/{device_id}/commands/{command}", response_model=CommandResult)
async def send_command(
    device_id: str,
    command: DeviceCommand,
    client: AromaClient = Depends(get_client),
    lock: asyncio.Lock = Depends(get_lock),
) -> CommandResult:
    """Send a fixed power, intensity, mode or reset command."""
    async with lock, client.connection():
        frame = await guarded(client.send_command(device_id, command))
    return CommandResult(device_ids=[device_id], frame=frame.to_hex())


@app.post("/batch/schedule", response_model=CommandResult)
async def set_batch_schedule(
    args: BatchScheduleArgs,
    client: AromaClient = Depends(get_client),
    lock: asyncio.Lock = Depends(get_lock),
    poller: SnapshotPoller = Depends(get_poller),
) -> CommandResult:
    """
    Apply one schedule to several devices in a single batch request. The
    slot is allocated from the first device when none is given.
    """
    schedule = args.schedule
    slot = await resolve_slot(args.device_ids[0], schedule, poller)
    async with lock, client.connection():
        frame = await guarded(
            client.set_schedule(
                args.device_ids,
                slot,
                schedule.days,
                schedule.start,
                schedule.end,
                schedule.work,
                schedule.pause,
                work_unit=schedule.work_unit,
                pause_unit=schedule.pause_unit,
            )
        )
    return CommandResult(device_ids=args.device_ids, slot=slot, frame=frame.to_hex())


@app.post("/frames/encode", response_model=CommandResult)
async def encode_schedule(args: ScheduleArgs) -> CommandResult:
    """Encode a schedule without sending it. A slot is required."""
    if args.slot is None:
        raise HTTPException(status_code=422, detail="A slot is required to encode a frame.")
    try:
        frame = encode_schedule_intent(
            args.slot,
            args.days,
            args.start,
            args.end,
            args.work,
            args.pause,
            work_unit=args.work_unit,
            pause_unit=args.pause_unit,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return CommandResult(device_ids=[], slot=args.slot, frame=frame.to_hex(), sent=False)

# src/pyaroma/cli.py
import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer
from construct import ConstructError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from tenacity import RetryError

from .config import settings
from .core.client import AromaClient
from .core.constants import DeviceCommand, DurationUnit, FanLevel, LockState, WEEKDAY_ORDER
from .core.errors import TransportError
from .core.frame import (
    build_fixed_frame,
    build_mode_switch_frame,
    encode_schedule_intent,
    parse_frame,
)
from .core.models import DeviceSnapshot
from .core.schedule import format_time, pick_next_slot
from .core.telemetry import decode_snapshot

app = typer.Typer(
    name="cli",
    help="Command-Line Interface for encoding, sending and decoding diffuser frames.",
    no_args_is_help=True,
)
console = Console()


async def get_client() -> AromaClient:
    """Async factory for the client."""
    return AromaClient(
        base_url=settings.AROMA_API_URL,
        token=settings.AROMA_TOKEN,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        retry_attempts=settings.SEND_RETRY_ATTEMPTS,
        retry_wait=settings.SEND_RETRY_WAIT_SECONDS,
    )


def run_async(coro):
    """Run an async command body, reporting codec and transport errors."""
    try:
        return asyncio.run(coro)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        raise typer.Exit(code=1)
    except (TransportError, RetryError, ConnectionError) as e:
        console.print(f"[red]Error:[/] could not reach the device cloud: {escape(str(e))}")
        raise typer.Exit(code=1)


def print_snapshot(snapshot: DeviceSnapshot):
    """Prints a snapshot in a human-readable format."""
    if snapshot.device_id:
        console.print(f"[bold]Device:[/] {snapshot.device_id}")
    console.print(
        f"[bold]Fan:[/] {snapshot.fan_level.value}\t"
        f"[bold]Consumption:[/] {snapshot.consumption_rate} units/hr"
    )
    if snapshot.hours_remaining is not None:
        console.print(f"[bold]Oil left:[/] ~{snapshot.hours_remaining}h at this rate")
    console.print()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Slot", style="dim")
    table.add_column("State")
    table.add_column("Window")
    table.add_column("Work / Pause")
    table.add_column("Days")

    for state in snapshot.switch_states:
        mode = snapshot.work_mode(state.slot)
        if mode is None:
            table.add_row(str(state.slot), "-", "not configured", "", "")
            continue
        days = " ".join(d.value for d in WEEKDAY_ORDER if d in mode.active_days)
        table.add_row(
            str(state.slot),
            "[green]ON[/]" if mode.enabled else "OFF",
            f"{format_time(mode.window.start)}-{format_time(mode.window.end)}",
            f"{mode.work_duration_s}s / {mode.pause_duration_s}s",
            days,
        )
    console.print(table)


@app.command()
def status(
    device: str = typer.Argument(..., help="Device id."),
    fan: FanLevel = typer.Option(
        settings.DEFAULT_FAN_LEVEL, "--fan", help="Fan level used for the consumption estimate."
    ),
):
    """Fetch telemetry for a device and print its work modes."""

    async def _status():
        client = await get_client()
        async with client:
            s = await client.get_snapshot(device, fan_level=fan)
            print_snapshot(s)

    run_async(_status())


@app.command()
def status_json(
    device: str = typer.Argument(..., help="Device id."),
    fan: FanLevel = typer.Option(settings.DEFAULT_FAN_LEVEL, "--fan"),
):
    """Print the decoded snapshot in JSON format."""

    async def _status_json():
        client = await get_client()
        async with client:
            s = await client.get_snapshot(device, fan_level=fan)
            console.print_json(s.model_dump_json(indent=2))

    run_async(_status_json())


@app.command()
def switch(
    device: str = typer.Argument(..., help="Device id."),
    slot: int = typer.Argument(..., help="Schedule slot (1-5)."),
    on: bool = typer.Option(..., "--on/--off", help="Enable or disable the slot."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the frame without sending."),
):
    """Enable or disable one schedule slot."""

    async def _switch():
        if dry_run:
            console.print(build_mode_switch_frame(slot, on).to_hex())
            return
        client = await get_client()
        async with client:
            frame = await client.switch_mode(device, slot, on)
            console.print(f"[green]Sent[/] {frame.to_hex()}")

    run_async(_switch())


@app.command()
def schedule(
    devices: List[str] = typer.Argument(..., help="One or more device ids."),
    days: str = typer.Option("Mon,Tue,Wed,Thu,Fri,Sat,Sun", "--days", help="Comma-separated weekdays."),
    start: str = typer.Option("08:00", "--start", help="Window start, HH:MM."),
    end: str = typer.Option("17:00", "--end", help="Window end, HH:MM."),
    work: int = typer.Option(..., "--work", help="Work duration."),
    pause: int = typer.Option(..., "--pause", help="Pause duration."),
    work_unit: DurationUnit = typer.Option(DurationUnit.SECONDS, "--work-unit"),
    pause_unit: DurationUnit = typer.Option(DurationUnit.SECONDS, "--pause-unit"),
    slot: Optional[int] = typer.Option(
        None,
        "--slot",
        help="Slot to write. Defaults to the first device's lowest free slot; required with --dry-run.",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the frame without sending."),
):
    """Write a weekly work/pause schedule to one or more devices."""
    day_names = [d for d in days.split(",") if d.strip()]

    async def _schedule():
        if dry_run:
            if slot is None:
                raise ValueError("--dry-run needs an explicit --slot.")
            frame = encode_schedule_intent(
                slot,
                day_names, start, end, work, pause,
                work_unit=work_unit, pause_unit=pause_unit,
            )
            console.print(frame.to_hex())
            return
        client = await get_client()
        async with client:
            target_slot = slot
            if target_slot is None:
                snapshot = await client.get_snapshot(devices[0])
                target_slot = pick_next_slot(snapshot.occupied_slots)
            frame = await client.set_schedule(
                devices, target_slot, day_names, start, end, work, pause,
                work_unit=work_unit, pause_unit=pause_unit,
            )
            console.print(
                f"[green]Sent[/] slot {target_slot} to {len(devices)} device(s): {frame.to_hex()}"
            )

    run_async(_schedule())


@app.command()
def fan(
    device: str = typer.Argument(..., help="Device id."),
    level: FanLevel = typer.Argument(..., help="Fan level."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the frame without sending."),
):
    """Set the fan level."""

    async def _fan():
        if dry_run:
            console.print(build_fixed_frame(level).to_hex())
            return
        client = await get_client()
        async with client:
            frame = await client.set_fan(device, level)
            console.print(f"[green]Sent[/] {frame.to_hex()}")

    run_async(_fan())


@app.command()
def lock(
    device: str = typer.Argument(..., help="Device id."),
    locked: bool = typer.Option(..., "--lock/--unlock", help="Lock or unlock the device panel."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the frame without sending."),
):
    """Lock or unlock the device."""
    state = LockState.LOCKED if locked else LockState.UNLOCKED

    async def _lock():
        if dry_run:
            console.print(build_fixed_frame(state).to_hex())
            return
        client = await get_client()
        async with client:
            frame = await client.set_lock(device, state)
            console.print(f"[green]Sent[/] {frame.to_hex()}")

    run_async(_lock())


@app.command(name="command")
def device_command(
    device: str = typer.Argument(..., help="Device id."),
    command: DeviceCommand = typer.Argument(..., help="Power, intensity, mode or reset command."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the frame without sending."),
):
    """Send one of the fixed power, intensity, mode or reset commands."""

    async def _command():
        if dry_run:
            console.print(build_fixed_frame(command).to_hex())
            return
        client = await get_client()
        async with client:
            frame = await client.send_command(device, command)
            console.print(f"[green]Sent[/] {command.value} {frame.to_hex()}")

    run_async(_command())


@app.command()
def decode(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON telemetry record."),
    fan: FanLevel = typer.Option(settings.DEFAULT_FAN_LEVEL, "--fan"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
):
    """Decode a saved telemetry record without contacting the device cloud."""
    try:
        record = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        console.print(f"[red]Error:[/] {path} is not valid JSON: {escape(str(e))}")
        raise typer.Exit(code=1)
    if isinstance(record, dict) and isinstance(record.get("data"), dict):
        record = record["data"]
    if not isinstance(record, dict):
        console.print("[red]Error:[/] telemetry must be a JSON object.")
        raise typer.Exit(code=1)

    s = decode_snapshot(record, fan_level=fan)
    if as_json:
        console.print_json(s.model_dump_json(indent=2))
    else:
        print_snapshot(s)


@app.command(name="inspect")
def inspect_frame(
    frame: str = typer.Argument(..., help="Frame as hex, spaces allowed."),
):
    """Parse a frame and check its checksum."""
    try:
        parsed = parse_frame(frame)
    except (ValueError, ConstructError) as e:
        console.print(f"[red]Error:[/] cannot parse frame: {escape(str(e))}")
        raise typer.Exit(code=1)
    console.print(
        f"command={parsed.command:#04x} function={parsed.function:#04x} "
        f"type={parsed.type:#04x} length={parsed.length}"
    )
    console.print(f"payload={parsed.payload.hex(' ').upper()}")
    if parsed.valid:
        console.print(f"checksum={parsed.checksum:#04x} [green]OK[/]")
    else:
        console.print(f"checksum={parsed.checksum:#04x} [red]MISMATCH[/]")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

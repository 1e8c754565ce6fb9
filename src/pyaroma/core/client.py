# src/pyaroma/core/client.py
import asyncio
import logging
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from functools import lru_cache
from types import TracebackType
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .constants import DeviceCommand, DurationUnit, FanLevel, LockState
from .errors import CommandRejected, TransportError
from .frame import (
    CommandFrame,
    FixedFrame,
    ModeSwitchFrame,
    ScheduleFrame,
    build_fixed_frame,
    build_mode_switch_frame,
    encode_schedule_intent,
)
from .models import DeviceSnapshot
from .telemetry import decode_snapshot

log = logging.getLogger(__name__)

CONTROL_PATH = "/device/control/"
BATCH_CONTROL_PATH = "/device/control-batch/"
DETAIL_PATH = "/device/detail/"
TOKEN_HEADER = "Aroma-Token"

# Failures that happen before a request leaves the client; only these are retried for sends.
UNDELIVERED_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


class AromaClient:
    """Sends command frames to devices and fetches their telemetry via the device cloud."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_wait: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_wait = retry_wait
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        if self.is_connected():
            return
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers[TOKEN_HEADER] = self.token
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )
        log.debug(f"HTTP session opened for {self.base_url}")

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            log.debug("HTTP session closed.")

    def is_connected(self) -> bool:
        return self._http is not None and not self._http.is_closed

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator["AromaClient", None]:
        await self.connect()
        try:
            yield self
        finally:
            await self.close()

    async def __aenter__(self) -> "AromaClient":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if self._http is None:
            raise ConnectionError("Not connected.")
        http = self._http

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_fixed(self.retry_wait),
            retry=retry_if_exception_type(
                httpx.TransportError if method == "GET" else UNDELIVERED_ERRORS
            ),
        ):
            with attempt:
                try:
                    response = await http.request(method, path, **kwargs)
                except httpx.TransportError as e:
                    if method == "GET" or isinstance(e, UNDELIVERED_ERRORS):
                        raise
                    # The command may already have reached the device
                    log.error(f"{method} {path} failed after sending: {e!r}")
                    raise TransportError(f"{method} {path} failed: {e!r}") from e

        if response.is_error:
            try:
                detail = response.json().get("detail")
            except (ValueError, AttributeError):
                detail = None
            message = detail or f"HTTP {response.status_code}: {response.reason_phrase}"
            log.error(f"{method} {path} failed: {message}")
            raise TransportError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(f"{method} {path} returned a non-JSON body") from e
        if isinstance(body, dict) and body.get("success") is False:
            reason = body.get("error") or body.get("msg") or "command refused"
            raise CommandRejected(reason, status_code=response.status_code)
        return body

    async def send_frame(self, target_id: str, frame: CommandFrame) -> None:
        hex_frame = frame.to_hex()
        log.info(f"Sending {frame.kind} frame to {target_id}: {hex_frame}")
        await self._request("POST", CONTROL_PATH, json={"id": target_id, "frame": hex_frame})

    async def send_batch(self, target_ids: Iterable[str], frame: CommandFrame) -> None:
        hex_frame = frame.to_hex()
        payload = [{"deviceId": target_id, "frame": hex_frame} for target_id in target_ids]
        log.info(f"Sending {frame.kind} frame to {len(payload)} devices: {hex_frame}")
        await self._request("POST", BATCH_CONTROL_PATH, json={"payload": payload})

    async def get_telemetry(self, target_id: str) -> dict[str, str | None]:
        body = await self._request("GET", DETAIL_PATH, params={"id": target_id})
        record = body.get("data", body) if isinstance(body, dict) else None
        if not isinstance(record, dict):
            raise TransportError(f"Unexpected telemetry payload for {target_id}")
        telemetry: dict[str, str | None] = {}
        for key, value in record.items():
            if value is None or isinstance(value, str):
                telemetry[key] = value
            elif isinstance(value, (int, float)) and not isinstance(value, bool):
                # Counters such as the remaining-oil level arrive as numbers
                telemetry[key] = str(value)
        return telemetry

    async def get_snapshot(
        self, target_id: str, fan_level: FanLevel = FanLevel.L2
    ) -> DeviceSnapshot:
        telemetry = await self.get_telemetry(target_id)
        return decode_snapshot(telemetry, fan_level=fan_level, device_id=target_id)

    async def switch_mode(self, target_id: str, slot: int, on: bool) -> ModeSwitchFrame:
        frame = build_mode_switch_frame(slot, on)
        await self.send_frame(target_id, frame)
        return frame

    async def set_schedule(
        self,
        target_ids: list[str],
        slot: int,
        days: Iterable[str],
        start: str,
        end: str,
        work: int,
        pause: int,
        work_unit: DurationUnit | str = DurationUnit.SECONDS,
        pause_unit: DurationUnit | str = DurationUnit.SECONDS,
    ) -> ScheduleFrame:
        if not target_ids:
            raise ValueError("At least one device id is required.")
        frame = encode_schedule_intent(
            slot, days, start, end, work, pause, work_unit=work_unit, pause_unit=pause_unit
        )
        if len(target_ids) == 1:
            await self.send_frame(target_ids[0], frame)
        else:
            await self.send_batch(target_ids, frame)
        return frame

    async def set_fan(self, target_id: str, level: FanLevel) -> FixedFrame:
        frame = build_fixed_frame(FanLevel(level))
        await self.send_frame(target_id, frame)
        return frame

    async def set_lock(self, target_id: str, state: LockState) -> FixedFrame:
        frame = build_fixed_frame(LockState(state))
        await self.send_frame(target_id, frame)
        return frame

    async def send_command(self, target_id: str, command: DeviceCommand) -> FixedFrame:
        frame = build_fixed_frame(DeviceCommand(command))
        await self.send_frame(target_id, frame)
        return frame


@lru_cache
def get_client() -> AromaClient:
    """Cached factory for the client."""
    from ..config import settings

    return AromaClient(
        base_url=settings.AROMA_API_URL,
        token=settings.AROMA_TOKEN,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        retry_attempts=settings.SEND_RETRY_ATTEMPTS,
        retry_wait=settings.SEND_RETRY_WAIT_SECONDS,
    )


@lru_cache
def get_lock() -> asyncio.Lock:
    """Serialises command and telemetry traffic through the shared client."""
    return asyncio.Lock()

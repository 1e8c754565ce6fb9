# src/pyaroma/poller.py
"""
Background telemetry polling with per-device snapshot storage.

Each successful refresh replaces the stored snapshot for that device
outright; snapshots are never patched in place.
"""
import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from functools import lru_cache

from .config import settings
from .core.client import AromaClient, get_client, get_lock
from .core.constants import FanLevel
from .core.models import DeviceSnapshot
from .core.telemetry import decode_snapshot

log = logging.getLogger(__name__)


@dataclass
class SnapshotMeta:
    """Metadata about a device's stored snapshot."""
    last_update_ts: float = 0
    stale_after_sec: int = 30
    source: str = "init"  # "poll", "fetch", "init"
    error: str | None = None
    consecutive_errors: int = 0

    def is_stale(self) -> bool:
        if self.last_update_ts == 0:
            return True
        return time.time() - self.last_update_ts > self.stale_after_sec

    def to_dict(self) -> dict:
        return {
            "last_update_ts": self.last_update_ts,
            "stale_after_sec": self.stale_after_sec,
            "source": self.source,
            "error": self.error,
            "consecutive_errors": self.consecutive_errors,
            "is_stale": self.is_stale(),
        }


class SnapshotPoller:
    def __init__(
        self,
        client: AromaClient,
        lock: asyncio.Lock,
        device_ids: list[str],
        interval: int = 10,
        stale_after_sec: int = 30,
        default_fan_level: FanLevel = FanLevel.L2,
    ):
        self._client = client
        self._lock = lock
        self.device_ids = list(device_ids)
        self.interval = interval
        self.stale_after_sec = stale_after_sec
        self.default_fan_level = default_fan_level
        self._snapshots: dict[str, DeviceSnapshot] = {}
        self._meta: dict[str, SnapshotMeta] = {}
        self._fan_levels: dict[str, FanLevel] = {}
        self._task: asyncio.Task | None = None

    def fan_level(self, device_id: str) -> FanLevel:
        """Last fan level commanded for the device, or the configured default."""
        return self._fan_levels.get(device_id, self.default_fan_level)

    def remember_fan_level(self, device_id: str, level: FanLevel) -> None:
        self._fan_levels[device_id] = level

    def get(self, device_id: str) -> tuple[DeviceSnapshot | None, SnapshotMeta]:
        meta = self._meta.get(device_id) or SnapshotMeta(stale_after_sec=self.stale_after_sec)
        return self._snapshots.get(device_id), meta

    async def refresh(self, device_id: str, source: str = "fetch") -> DeviceSnapshot:
        meta = self._meta.setdefault(
            device_id, SnapshotMeta(stale_after_sec=self.stale_after_sec)
        )
        try:
            async with self._lock, self._client.connection():
                telemetry = await self._client.get_telemetry(device_id)
        except Exception as e:
            meta.error = str(e)
            meta.consecutive_errors += 1
            raise

        snapshot = decode_snapshot(
            telemetry, fan_level=self.fan_level(device_id), device_id=device_id
        )
        self._snapshots[device_id] = snapshot
        meta.last_update_ts = time.time()
        meta.source = source
        meta.error = None
        meta.consecutive_errors = 0
        return snapshot

    async def get_snapshot(
        self, device_id: str, force_refresh: bool = False
    ) -> DeviceSnapshot:
        snapshot, meta = self.get(device_id)
        if snapshot is not None and not force_refresh and not meta.is_stale():
            log.debug(
                f"Returning stored snapshot for {device_id} "
                f"(age: {time.time() - meta.last_update_ts:.1f}s)"
            )
            return snapshot
        return await self.refresh(device_id)

    async def start(self) -> None:
        if self._task is None:
            log.info(
                f"Starting telemetry poller for {len(self.device_ids)} devices "
                f"every {self.interval}s"
            )
            self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._task:
            log.info("Stopping telemetry poller")
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def poll_once(self) -> None:
        for device_id in self.device_ids:
            try:
                await self.refresh(device_id, source="poll")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                meta = self._meta[device_id]
                log.error(
                    f"Telemetry refresh for {device_id} failed "
                    f"({meta.consecutive_errors} in a row): {e}"
                )

    async def _poll_loop(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval)


@lru_cache
def get_poller() -> SnapshotPoller:
    return SnapshotPoller(
        client=get_client(),
        lock=get_lock(),
        device_ids=settings.POLL_DEVICE_IDS,
        interval=settings.POLL_INTERVAL,
        stale_after_sec=settings.SNAPSHOT_STALE_SECONDS,
        default_fan_level=settings.DEFAULT_FAN_LEVEL,
    )

# tests/test_poller.py
import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from pyaroma.core.client import AromaClient
from pyaroma.core.constants import FanLevel
from pyaroma.core.errors import TransportError
from pyaroma.poller import SnapshotMeta, SnapshotPoller


@pytest.fixture
def mock_client(telemetry):
    client = AsyncMock(spec=AromaClient)
    client.connection.return_value.__aenter__ = AsyncMock(return_value=None)
    client.connection.return_value.__aexit__ = AsyncMock(return_value=None)
    client.get_telemetry.return_value = telemetry
    return client


@pytest.fixture
def poller(mock_client):
    return SnapshotPoller(
        client=mock_client,
        lock=asyncio.Lock(),
        device_ids=["dev-1", "dev-2"],
        interval=1,
        stale_after_sec=30,
    )


class TestSnapshotMeta:
    def test_never_updated_is_stale(self) -> None:
        assert SnapshotMeta().is_stale()

    def test_fresh_and_aged(self) -> None:
        meta = SnapshotMeta(last_update_ts=time.time(), stale_after_sec=30)
        assert not meta.is_stale()
        meta.last_update_ts -= 31
        assert meta.is_stale()

    def test_to_dict(self) -> None:
        data = SnapshotMeta(source="poll", error="boom", consecutive_errors=2).to_dict()
        assert data["source"] == "poll"
        assert data["error"] == "boom"
        assert data["consecutive_errors"] == 2
        assert data["is_stale"] is True


class TestSnapshotPoller:
    """Test cases for SnapshotPoller."""

    @pytest.mark.asyncio
    async def test_refresh_stores_snapshot(self, poller, mock_client) -> None:
        snapshot = await poller.refresh("dev-1")

        mock_client.get_telemetry.assert_awaited_once_with("dev-1")
        assert snapshot.device_id == "dev-1"
        assert snapshot.occupied_slots == {1, 2}
        stored, meta = poller.get("dev-1")
        assert stored == snapshot
        assert meta.source == "fetch"
        assert not meta.is_stale()

    @pytest.mark.asyncio
    async def test_refresh_replaces_snapshot_wholesale(self, poller, mock_client, telemetry) -> None:
        await poller.refresh("dev-1")
        mock_client.get_telemetry.return_value = {"MODE2_SET": telemetry["MODE2_SET"]}

        snapshot = await poller.refresh("dev-1")

        assert snapshot.occupied_slots == {2}
        assert poller.get("dev-1")[0].occupied_slots == {2}

    @pytest.mark.asyncio
    async def test_fresh_snapshot_served_without_fetch(self, poller, mock_client) -> None:
        first = await poller.get_snapshot("dev-1")
        second = await poller.get_snapshot("dev-1")

        assert first is second
        assert mock_client.get_telemetry.await_count == 1

    @pytest.mark.asyncio
    async def test_force_refresh(self, poller, mock_client) -> None:
        await poller.get_snapshot("dev-1")
        await poller.get_snapshot("dev-1", force_refresh=True)
        assert mock_client.get_telemetry.await_count == 2

    @pytest.mark.asyncio
    async def test_stale_snapshot_is_refetched(self, poller, mock_client) -> None:
        await poller.get_snapshot("dev-1")
        poller.get("dev-1")[1].last_update_ts -= 60
        await poller.get_snapshot("dev-1")
        assert mock_client.get_telemetry.await_count == 2

    @pytest.mark.asyncio
    async def test_fan_level_feeds_consumption(self, poller) -> None:
        assert poller.fan_level("dev-1") == FanLevel.L2
        poller.remember_fan_level("dev-1", FanLevel.OFF)

        snapshot = await poller.refresh("dev-1")

        assert snapshot.fan_level == FanLevel.OFF
        assert snapshot.consumption_rate == 0
        assert poller.fan_level("dev-2") == FanLevel.L2

    @pytest.mark.asyncio
    async def test_refresh_error_is_recorded_and_raised(self, poller, mock_client) -> None:
        mock_client.get_telemetry.side_effect = TransportError("HTTP 500", status_code=500)

        with pytest.raises(TransportError):
            await poller.refresh("dev-1")
        with pytest.raises(TransportError):
            await poller.refresh("dev-1")

        snapshot, meta = poller.get("dev-1")
        assert snapshot is None
        assert meta.error == "HTTP 500"
        assert meta.consecutive_errors == 2

    @pytest.mark.asyncio
    async def test_success_resets_error_count(self, poller, mock_client, telemetry) -> None:
        mock_client.get_telemetry.side_effect = [TransportError("down"), telemetry]

        with pytest.raises(TransportError):
            await poller.refresh("dev-1")
        await poller.refresh("dev-1")

        meta = poller.get("dev-1")[1]
        assert meta.error is None
        assert meta.consecutive_errors == 0

    @pytest.mark.asyncio
    async def test_poll_once_keeps_going_after_a_failure(self, poller, mock_client, telemetry) -> None:
        mock_client.get_telemetry.side_effect = [TransportError("down"), telemetry]

        await poller.poll_once()

        assert poller.get("dev-1")[0] is None
        assert poller.get("dev-1")[1].consecutive_errors == 1
        stored, meta = poller.get("dev-2")
        assert stored is not None
        assert meta.source == "poll"

    @pytest.mark.asyncio
    async def test_start_and_stop(self, poller, mock_client) -> None:
        await poller.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await poller.stop()

        assert poller._task is None
        mock_client.get_telemetry.assert_awaited()

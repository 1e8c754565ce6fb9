# tests/core/test_client.py
import json

import httpx
import pytest
from tenacity import RetryError

from pyaroma.core.client import AromaClient
from pyaroma.core.constants import DeviceCommand, FanLevel, LockState
from pyaroma.core.errors import CommandRejected, InvalidDuration, InvalidSlot, TransportError


class Recorder:
    """Collects requests and answers them from a handler."""

    def __init__(self, handler=None):
        self.requests: list[httpx.Request] = []
        self._handler = handler or (lambda request: httpx.Response(200, json={"success": True}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    @property
    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


def make_client(recorder: Recorder, **kwargs) -> AromaClient:
    return AromaClient(
        base_url="http://aroma.test/api/v1/",
        token=kwargs.pop("token", "secret"),
        retry_wait=0,
        transport=httpx.MockTransport(recorder),
        **kwargs,
    )


class TestAromaClient:
    """Test cases for AromaClient."""

    @pytest.mark.asyncio
    async def test_connection_lifecycle(self) -> None:
        client = make_client(Recorder())
        assert not client.is_connected()
        async with client.connection():
            assert client.is_connected()
        assert not client.is_connected()

    @pytest.mark.asyncio
    async def test_request_without_connection(self) -> None:
        client = make_client(Recorder())
        with pytest.raises(ConnectionError, match="Not connected"):
            await client.get_telemetry("dev-1")

    @pytest.mark.asyncio
    async def test_switch_mode_posts_frame(self) -> None:
        recorder = Recorder()
        async with make_client(recorder) as client:
            frame = await client.switch_mode("dev-1", 3, True)

        assert frame.to_hex() == "5510130501012A"
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/v1/device/control/"
        assert request.headers["Aroma-Token"] == "secret"
        assert recorder.bodies[0] == {"id": "dev-1", "frame": "5510130501012A"}

    @pytest.mark.asyncio
    async def test_no_token_header_without_token(self) -> None:
        recorder = Recorder()
        async with make_client(recorder, token=None) as client:
            await client.switch_mode("dev-1", 1, False)
        assert "Aroma-Token" not in recorder.requests[0].headers

    @pytest.mark.asyncio
    async def test_invalid_slot_never_reaches_the_wire(self) -> None:
        recorder = Recorder()
        async with make_client(recorder) as client:
            with pytest.raises(InvalidSlot):
                await client.switch_mode("dev-1", 6, True)
            with pytest.raises(InvalidDuration):
                await client.set_schedule(["dev-1"], 1, ["Mon"], "08:00", "09:00", 0, 10)
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_single_device_schedule(self) -> None:
        recorder = Recorder()
        async with make_client(recorder) as client:
            await client.set_schedule(
                ["dev-1"], 2, ["Mon", "Wed", "Fri"], "08:00", "17:00", 150, 30
            )
        assert recorder.requests[0].url.path.endswith("/device/control/")
        assert recorder.bodies[0]["frame"] == "551002050915080011000096001E02"

    @pytest.mark.asyncio
    async def test_multi_device_schedule_uses_batch(self) -> None:
        recorder = Recorder()
        async with make_client(recorder) as client:
            await client.set_schedule(
                ["dev-1", "dev-2"], 2, ["Mon", "Wed", "Fri"], "08:00", "17:00", 150, 30
            )
        assert recorder.requests[0].url.path.endswith("/device/control-batch/")
        assert recorder.bodies[0] == {
            "payload": [
                {"deviceId": "dev-1", "frame": "551002050915080011000096001E02"},
                {"deviceId": "dev-2", "frame": "551002050915080011000096001E02"},
            ]
        }

    @pytest.mark.asyncio
    async def test_schedule_needs_a_device(self) -> None:
        async with make_client(Recorder()) as client:
            with pytest.raises(ValueError):
                await client.set_schedule([], 1, ["Mon"], "08:00", "09:00", 10, 10)

    @pytest.mark.asyncio
    async def test_fixed_frames_sent_space_delimited(self) -> None:
        recorder = Recorder()
        async with make_client(recorder) as client:
            await client.set_fan("dev-1", FanLevel.L1)
            await client.set_lock("dev-1", LockState.LOCKED)
        assert recorder.bodies[0]["frame"] == "55 10 20 05 01 01 37"
        assert recorder.bodies[1]["frame"] == "55 10 30 05 01 01 47"

    @pytest.mark.asyncio
    async def test_get_telemetry_flattens_values(self, telemetry) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["id"] == "dev-1"
            return httpx.Response(
                200, json={"data": {**telemetry, "remainInfoCurrent": 42, "tags": ["a"]}}
            )

        async with make_client(Recorder(handler)) as client:
            record = await client.get_telemetry("dev-1")

        assert record["MODE1_SET"] == telemetry["MODE1_SET"]
        assert record["MODE4_SWITCH"] is None
        assert record["remainInfoCurrent"] == "42"
        assert "tags" not in record

    @pytest.mark.asyncio
    async def test_get_snapshot_decodes(self, telemetry) -> None:
        recorder = Recorder(lambda request: httpx.Response(200, json=telemetry))
        async with make_client(recorder) as client:
            snapshot = await client.get_snapshot("dev-1", fan_level=FanLevel.L2)

        assert snapshot.device_id == "dev-1"
        assert snapshot.occupied_slots == {1, 2}
        assert snapshot.consumption_rate == 4

    @pytest.mark.asyncio
    async def test_unexpected_telemetry_payload(self) -> None:
        recorder = Recorder(lambda request: httpx.Response(200, json=["not", "a", "record"]))
        async with make_client(recorder) as client:
            with pytest.raises(TransportError):
                await client.get_telemetry("dev-1")

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        recorder = Recorder(lambda request: httpx.Response(404, json={"detail": "Device not found"}))
        async with make_client(recorder) as client:
            with pytest.raises(TransportError, match="Device not found") as excinfo:
                await client.switch_mode("missing", 1, True)
        assert excinfo.value.status_code == 404

    @pytest.mark.asyncio
    async def test_rejected_command(self) -> None:
        recorder = Recorder(
            lambda request: httpx.Response(200, json={"success": False, "error": "device offline"})
        )
        async with make_client(recorder) as client:
            with pytest.raises(CommandRejected, match="device offline"):
                await client.switch_mode("dev-1", 1, True)

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self) -> None:
        calls = {"n": 0}

        def flaky(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"success": True})

        async with make_client(Recorder(flaky), retry_attempts=3) as client:
            await client.switch_mode("dev-1", 1, True)
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self) -> None:
        def down(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(Recorder(down), retry_attempts=2) as client:
            with pytest.raises(RetryError):
                await client.switch_mode("dev-1", 1, True)

    @pytest.mark.asyncio
    async def test_empty_body_is_success(self) -> None:
        recorder = Recorder(lambda request: httpx.Response(204))
        async with make_client(recorder) as client:
            await client.set_lock("dev-1", LockState.UNLOCKED)
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_send_read_timeout_is_not_retried(self) -> None:
        def lost_reply(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("no reply", request=request)

        recorder = Recorder(lost_reply)
        async with make_client(recorder, retry_attempts=3) as client:
            with pytest.raises(TransportError, match="POST"):
                await client.switch_mode("dev-1", 1, True)
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_telemetry_read_timeout_is_retried(self, telemetry) -> None:
        calls = {"n": 0}

        def slow(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ReadTimeout("no reply", request=request)
            return httpx.Response(200, json=telemetry)

        async with make_client(Recorder(slow), retry_attempts=3) as client:
            record = await client.get_telemetry("dev-1")
        assert calls["n"] == 2
        assert record["MODE1_SET"] == telemetry["MODE1_SET"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "command, expected",
        [(DeviceCommand.POWER_ON, "AA5500FF"), (DeviceCommand.RESET, "AA55FFFF")],
    )
    async def test_device_command_sent_verbatim(self, command, expected: str) -> None:
        recorder = Recorder()
        async with make_client(recorder) as client:
            frame = await client.send_command("dev-1", command)
        assert frame.to_hex() == expected
        assert recorder.bodies == [{"id": "dev-1", "frame": expected}]

    @pytest.mark.asyncio
    async def test_unknown_device_command(self) -> None:
        recorder = Recorder()
        async with make_client(recorder) as client:
            with pytest.raises(ValueError):
                await client.send_command("dev-1", "self_destruct")  # type: ignore[arg-type]
        assert recorder.requests == []

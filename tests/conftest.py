# tests/conftest.py
import os
import tempfile

import pytest

# Keep test logs out of the user's cache directory
test_log = tempfile.NamedTemporaryFile(suffix=".log", delete=False)
os.environ.setdefault("LOG_FILE_PATH", test_log.name)

# Ensure test-friendly settings: no background polling, no real cloud
os.environ.setdefault("POLLER_ENABLED", "false")
os.environ.setdefault("AROMA_API_URL", "http://aroma.test/api/v1")
os.environ.setdefault("SEND_RETRY_WAIT_SECONDS", "0")


@pytest.fixture(autouse=True)
def _isolation_env(monkeypatch):
    # Also patch settings directly in case module already loaded
    from pyaroma import config as cfg

    monkeypatch.setattr(cfg.settings, "POLLER_ENABLED", False, raising=False)
    yield


@pytest.fixture
def telemetry() -> dict[str, str | None]:
    """A device record with two configured slots, one empty, one corrupt."""
    return {
        "MODE1_SET": "55 10 01 05 09 7F 08 00 17 3B 00 96 00 05 93",
        "MODE1_SWITCH": "55 10 11 05 01 01 28",
        "MODE2_SET": "55 10 02 05 09 1F 08 1E 17 3B 00 14 00 14 DF",
        "MODE2_SWITCH": "55 10 12 05 01 00 28",
        "MODE3_SET": "55 10 03 05 09 00 00 00 00 00 00 96 00 1E D5",
        "MODE3_SWITCH": "55 10 13 05 01 01 2A",
        "MODE4_SET": "55 10 04 05 09 15",
        "MODE4_SWITCH": None,
        "sn": "AR-0001",
        "binVersion": "1.0.7",
        "iccid": None,
    }

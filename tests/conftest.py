"""Shared test fixtures for the chatguard tests."""

import json
from pathlib import Path
from typing import Dict, Optional

import pytest

from chatguard.config import GuardConfig, load_config


class FakeClock:
    """Manually advanced clock, injected instead of time.time()."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _make_config(tmp_path: Path, overrides: Optional[Dict] = None) -> str:
    """Write a small test config and return its path."""
    config = {
        "api": {"window_seconds": 60, "max_count": 5, "block_duration_seconds": 300},
        "auth": {"window_seconds": 900, "max_count": 2, "block_duration_seconds": 1800},
        "message": {"window_seconds": 60, "max_count": 3, "block_duration_seconds": 300},
        "wa_user": {
            "window_seconds": 60,
            "max_count": 5,
            "warn_threshold": 3,
            "auto_reply_throttle_seconds": 5,
        },
        "broadcast": {
            "window_seconds": 3600,
            "max_count": 2,
            "block_duration_seconds": 3600,
            "max_recipients_per_broadcast": 10,
            "delay_between_messages_seconds": 2,
        },
        "socket": {"max_connections_per_identity": 2},
        "whitelist": ["127.0.0.1"],
        # httpx ASGITransport reports 127.0.0.1, the websocket TestClient "testclient".
        "trusted_proxies": ["127.0.0.1", "testclient"],
        "log_file": str(tmp_path / "test.log"),
    }
    if overrides:
        config.update(overrides)

    path = tmp_path / "test_config.json"
    path.write_text(json.dumps(config))
    return str(path)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def test_config_path(tmp_path: Path) -> str:
    """Return the path to a temporary test config file."""
    return _make_config(tmp_path)


@pytest.fixture()
def test_config(test_config_path: str) -> GuardConfig:
    """Return a loaded test GuardConfig."""
    return load_config(test_config_path)

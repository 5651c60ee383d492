"""Shared fixtures for the spotr test suite."""

from pathlib import Path

import pytest

from spotr.store import Config

TEST_KEY = bytes(range(32))


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "config.json"


@pytest.fixture
def load_config(config_path: Path):
    """Load (or reload) the config at config_path with a fixed master key."""

    def _load(key: bytes = TEST_KEY) -> Config:
        return Config.load(config_path, key_provider=lambda: key)

    return _load

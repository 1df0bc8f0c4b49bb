"""Unit tests for Settings."""

import pytest
from core.config import Settings
from core.exceptions import ConfigError


def test_defaults():
    """Test defaults match the documented timings."""
    settings = Settings()
    assert settings.live_path == "/ws"
    assert settings.throttle_seconds == 2.0
    assert settings.reconnect_interval == 10.0
    assert settings.reconnect_attempts == 5


def test_from_env():
    """Test INVENTORY_* variables override defaults."""
    settings = Settings.from_env({
        "INVENTORY_PORT": "9000",
        "INVENTORY_THROTTLE_SECONDS": "0.5",
        "INVENTORY_LOG_LEVEL": "debug",
        "INVENTORY_SEED_SAMPLE_DATA": "no",
        "INVENTORY_CORS_ORIGINS": "http://a.local, http://b.local",
        "UNRELATED": "ignored"
    })
    assert settings.port == 9000
    assert settings.throttle_seconds == 0.5
    assert settings.log_level == "DEBUG"
    assert settings.seed_sample_data is False
    assert settings.cors_origins == ("http://a.local", "http://b.local")


def test_from_env_empty_uses_defaults():
    assert Settings.from_env({}) == Settings()


@pytest.mark.parametrize("environ", [
    {"INVENTORY_PORT": "eighty"},
    {"INVENTORY_SEED_SAMPLE_DATA": "maybe"},
    {"INVENTORY_THROTTLE_SECONDS": "-1"},
    {"INVENTORY_LIVE_PATH": "ws"},
])
def test_invalid_values(environ):
    """Test bad values raise ConfigError."""
    with pytest.raises(ConfigError):
        Settings.from_env(environ)


def test_settings_are_frozen():
    settings = Settings()
    with pytest.raises(Exception):
        settings.port = 1

"""Tests for environment based configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from scrobble_sync import config

ALL_KEYS = [
    "LASTFM_USERNAME",
    "LASTFM_HISTORY_USERNAME",
    "LASTFM_PASSWORD",
    "LASTFM_SESSION_KEY",
    "LASTFM_API_KEY",
    "LASTFM_API_SECRET",
    "POLL_INTERVAL",
    "SPEAKER_REDISCOVERY_INTERVAL",
    "MAX_POLL_RETRIES",
    "SCROBBLE_THRESHOLD_DURATION",
    "SCROBBLE_THRESHOLD_PERCENT",
    "CLOSE_POSITION_ABSOLUTE",
    "CLOSE_POSITION_PERCENT",
    "REPEAT_DURATION_ABSOLUTE",
    "REPEAT_DURATION_PERCENT",
    "ALLOWED_DRIFT",
    "PLAYER_STALE_INTERVAL",
    "PLAYER_ORPHANED_INTERVAL",
    "NOTIFY_WEBHOOK_URL",
    "NOTIFY_MIN_LEVEL",
    "DATA_DIR",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    """Start every test from an empty configuration."""
    for key in ALL_KEYS:
        monkeypatch.delenv(key, raising=False)


def _set_credentials(monkeypatch) -> None:
    monkeypatch.setenv("LASTFM_USERNAME", "user")
    monkeypatch.setenv("LASTFM_PASSWORD", "pass")
    monkeypatch.setenv("LASTFM_API_KEY", "key")
    monkeypatch.setenv("LASTFM_API_SECRET", "secret")


def test_missing_credentials_raise() -> None:
    """All required credentials are listed in the error."""
    with pytest.raises(ValueError, match="LASTFM_USERNAME") as exc_info:
        config.get_config()
    assert "LASTFM_PASSWORD" in str(exc_info.value)


def test_session_key_replaces_password(monkeypatch) -> None:
    """A session key is enough without a password."""
    _set_credentials(monkeypatch)
    monkeypatch.delenv("LASTFM_PASSWORD")
    monkeypatch.setenv("LASTFM_SESSION_KEY", "session")
    assert config.validate_config() is None
    assert config.get_config()["LASTFM_SESSION_KEY"] == "session"


def test_defaults(monkeypatch) -> None:
    """Unset values fall back to the package defaults."""
    _set_credentials(monkeypatch)
    values = config.get_config()
    assert values["POLL_INTERVAL"] == 10
    assert values["SCROBBLE_THRESHOLD_DURATION"] == 30
    assert values["SCROBBLE_THRESHOLD_PERCENT"] == 50
    assert values["CLOSE_POSITION_ABSOLUTE"] == 10
    assert values["REPEAT_DURATION_PERCENT"] == 50
    assert values["MAX_POLL_RETRIES"] == 5
    assert values["NOTIFY_WEBHOOK_URL"] is None
    assert values["NOTIFY_MIN_LEVEL"] == "WARNING"
    assert values["DATA_DIR"] == Path("./data")


def test_overrides(monkeypatch) -> None:
    """Environment values are parsed as numbers."""
    _set_credentials(monkeypatch)
    monkeypatch.setenv("SCROBBLE_THRESHOLD_PERCENT", "25")
    monkeypatch.setenv("POLL_INTERVAL", "2.5")
    monkeypatch.setenv("MAX_POLL_RETRIES", "3")
    monkeypatch.setenv("NOTIFY_MIN_LEVEL", "error")
    values = config.get_config()
    assert values["SCROBBLE_THRESHOLD_PERCENT"] == 25
    assert values["POLL_INTERVAL"] == 2.5
    assert values["MAX_POLL_RETRIES"] == 3
    assert values["NOTIFY_MIN_LEVEL"] == "ERROR"


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("SCROBBLE_THRESHOLD_PERCENT", "150", "at most 100"),
        ("CLOSE_POSITION_PERCENT", "-1", "at least 0"),
        ("SCROBBLE_THRESHOLD_DURATION", "soon", "must be a number"),
        ("NOTIFY_MIN_LEVEL", "LOUD", "NOTIFY_MIN_LEVEL"),
    ],
)
def test_invalid_values_raise(monkeypatch, key: str, value: str, message: str) -> None:
    """Invalid values are configuration errors."""
    _set_credentials(monkeypatch)
    monkeypatch.setenv(key, value)
    with pytest.raises(ValueError, match=message):
        config.get_config()


def test_credentials_optional_when_not_required() -> None:
    """Commands that do not talk to Last.fm can skip the credential check."""
    assert config.get_config(require_credentials=False)["LASTFM_USERNAME"] is None

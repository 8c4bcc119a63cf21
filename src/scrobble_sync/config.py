# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Configuration helpers for scrobble-sync."""

import os
from pathlib import Path
from typing import Final

from dotenv import load_dotenv

from .listen_range import DEFAULT_ALLOWED_DRIFT
from .notifier import LEVELS
from .pipeline import DEFAULT_MAX_POLL_RETRIES, DEFAULT_POLL_INTERVAL
from .player_state import DEFAULT_ORPHANED_INTERVAL, DEFAULT_STALE_INTERVAL
from .sources import DEFAULT_REDISCOVERY_INTERVAL
from .thresholds import (
    DEFAULT_CLOSE_POSITION_ABSOLUTE,
    DEFAULT_CLOSE_POSITION_PERCENT,
    DEFAULT_DURATION_REPEAT_ABSOLUTE,
    DEFAULT_DURATION_REPEAT_PERCENT,
    DEFAULT_SCROBBLE_DURATION_THRESHOLD,
    DEFAULT_SCROBBLE_PERCENT_THRESHOLD,
)

# Load environment variables from .env file
load_dotenv()

MIN_THRESHOLD_PERCENT: Final[float] = 0.0
MAX_THRESHOLD_PERCENT: Final[float] = 100.0
DEFAULT_DATA_DIR: Final[str] = "./data"

CREDENTIAL_VARS: Final[tuple[str, ...]] = (
    "LASTFM_USERNAME",
    "LASTFM_API_KEY",
    "LASTFM_API_SECRET",
)


def validate_config() -> list[str] | None:
    """Validate required environment variables.

    A Last.fm session key can stand in for the password.

    Returns:
        List of missing variables if any, None if all required vars are present
    """
    missing_vars = [var for var in CREDENTIAL_VARS if not os.getenv(var)]
    if not os.getenv("LASTFM_PASSWORD") and not os.getenv("LASTFM_SESSION_KEY"):
        missing_vars.append("LASTFM_PASSWORD")
    return missing_vars or None


def _number(
    name: str,
    default: float,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    """Read a numeric environment variable.

    Raises:
        ValueError: If the value is not a number or is out of range
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got {raw!r}"
        raise ValueError(msg) from None
    if minimum is not None and value < minimum:
        msg = f"{name} must be at least {minimum:g}, got {value:g}"
        raise ValueError(msg)
    if maximum is not None and value > maximum:
        msg = f"{name} must be at most {maximum:g}, got {value:g}"
        raise ValueError(msg)
    return value


def _percent(name: str, default: float) -> float:
    return _number(name, default, MIN_THRESHOLD_PERCENT, MAX_THRESHOLD_PERCENT)


def get_config(require_credentials: bool = True) -> dict[str, object]:
    """Get configuration values, validating them first.

    Args:
        require_credentials: Whether missing Last.fm credentials are an error

    Raises:
        ValueError: If required environment variables are missing or a value
            is invalid

    Returns:
        A dictionary containing validated configuration settings.
    """
    if require_credentials and (missing := validate_config()):
        missing_vars = ", ".join(missing)
        error_message = (
            "Missing required environment variables: "
            f"{missing_vars}\nPlease set them in your .env file"
        )
        raise ValueError(error_message)

    notify_min_level = (os.getenv("NOTIFY_MIN_LEVEL") or "WARNING").upper()
    if notify_min_level not in LEVELS:
        msg = f"NOTIFY_MIN_LEVEL must be one of {', '.join(LEVELS)}, got {notify_min_level!r}"
        raise ValueError(msg)

    return {
        # Last.fm API credentials
        "LASTFM_USERNAME": os.getenv("LASTFM_USERNAME"),
        "LASTFM_PASSWORD": os.getenv("LASTFM_PASSWORD"),
        "LASTFM_SESSION_KEY": os.getenv("LASTFM_SESSION_KEY"),
        "LASTFM_API_KEY": os.getenv("LASTFM_API_KEY"),
        "LASTFM_API_SECRET": os.getenv("LASTFM_API_SECRET"),
        "LASTFM_HISTORY_USERNAME": os.getenv("LASTFM_HISTORY_USERNAME") or None,
        # Polling
        "POLL_INTERVAL": _number("POLL_INTERVAL", DEFAULT_POLL_INTERVAL, minimum=0.1),
        "SPEAKER_REDISCOVERY_INTERVAL": _number(
            "SPEAKER_REDISCOVERY_INTERVAL", DEFAULT_REDISCOVERY_INTERVAL, minimum=1,
        ),
        "MAX_POLL_RETRIES": int(
            _number("MAX_POLL_RETRIES", DEFAULT_MAX_POLL_RETRIES, minimum=0),
        ),
        # Scrobble thresholds
        "SCROBBLE_THRESHOLD_DURATION": _number(
            "SCROBBLE_THRESHOLD_DURATION", DEFAULT_SCROBBLE_DURATION_THRESHOLD, minimum=0,
        ),
        "SCROBBLE_THRESHOLD_PERCENT": _percent(
            "SCROBBLE_THRESHOLD_PERCENT", DEFAULT_SCROBBLE_PERCENT_THRESHOLD,
        ),
        # Player session tuning
        "CLOSE_POSITION_ABSOLUTE": _number(
            "CLOSE_POSITION_ABSOLUTE", DEFAULT_CLOSE_POSITION_ABSOLUTE, minimum=0,
        ),
        "CLOSE_POSITION_PERCENT": _percent(
            "CLOSE_POSITION_PERCENT", DEFAULT_CLOSE_POSITION_PERCENT,
        ),
        "REPEAT_DURATION_ABSOLUTE": _number(
            "REPEAT_DURATION_ABSOLUTE", DEFAULT_DURATION_REPEAT_ABSOLUTE, minimum=0,
        ),
        "REPEAT_DURATION_PERCENT": _percent(
            "REPEAT_DURATION_PERCENT", DEFAULT_DURATION_REPEAT_PERCENT,
        ),
        "ALLOWED_DRIFT": _number("ALLOWED_DRIFT", DEFAULT_ALLOWED_DRIFT, minimum=0),
        "PLAYER_STALE_INTERVAL": _number(
            "PLAYER_STALE_INTERVAL", DEFAULT_STALE_INTERVAL, minimum=1,
        ),
        "PLAYER_ORPHANED_INTERVAL": _number(
            "PLAYER_ORPHANED_INTERVAL", DEFAULT_ORPHANED_INTERVAL, minimum=1,
        ),
        # Notifications
        "NOTIFY_WEBHOOK_URL": os.getenv("NOTIFY_WEBHOOK_URL") or None,
        "NOTIFY_MIN_LEVEL": notify_min_level,
        # Data storage paths
        "DATA_DIR": Path(os.getenv("DATA_DIR") or DEFAULT_DATA_DIR),
    }

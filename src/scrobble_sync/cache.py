# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""JSON persistence for state that should survive a restart."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, cast

from .models import PlayData, PlayMeta, PlayObject

logger = logging.getLogger(__name__)


def play_to_json(play: PlayObject) -> dict[str, Any]:
    """Serialize a play to JSON-compatible primitives.

    Listen ranges are not persisted.
    """
    data = play.data
    meta = play.meta
    return {
        "data": {
            "track": data.track,
            "artists": list(data.artists),
            "album": data.album,
            "duration": data.duration,
            "play_date": data.play_date.isoformat() if data.play_date else None,
            "listened_for": data.listened_for,
        },
        "meta": {
            "source": meta.source,
            "track_id": meta.track_id,
            "brainz": dict(meta.brainz),
            "device_id": meta.device_id,
            "user": meta.user,
        },
    }


def play_from_json(raw: dict[str, Any]) -> PlayObject:
    """Rebuild a play serialized by :func:`play_to_json`.

    Raises:
        KeyError: If the track title is missing
        ValueError: If the play date is not an ISO timestamp
    """
    data = raw.get("data", {})
    meta = raw.get("meta", {})
    play_date = data.get("play_date")
    return PlayObject(
        data=PlayData(
            track=data["track"],
            artists=list(data.get("artists") or []),
            album=data.get("album"),
            duration=data.get("duration"),
            play_date=datetime.fromisoformat(play_date) if play_date else None,
            listened_for=data.get("listened_for"),
        ),
        meta=PlayMeta(
            source=meta.get("source"),
            track_id=meta.get("track_id"),
            brainz=dict(meta.get("brainz") or {}),
            device_id=meta.get("device_id"),
            user=meta.get("user"),
        ),
    )


class JsonStateCache:
    """A single JSON document holding the last known history of each source."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.data: dict[str, Any] = self.load_json(path, {})

    @staticmethod
    def load_json(file_path: Path, default_value: dict[str, Any]) -> dict[str, Any]:
        """Load JSON data from file or return default value if file doesn't exist.

        Args:
            file_path: Path to the JSON file
            default_value: Value to return if file doesn't exist or is invalid

        Returns:
            The loaded JSON data or default value
        """
        try:
            if file_path.exists():
                with file_path.open(encoding="utf-8") as f:
                    data = json.load(f)
                    if not isinstance(data, dict):
                        logger.warning(
                            "Invalid JSON data in %s: not a dictionary", file_path,
                        )
                        return default_value
                    return cast("dict[str, Any]", data)
        except (json.JSONDecodeError, OSError):
            logger.exception("Error loading %s", file_path)
        return default_value

    @staticmethod
    def save_json(file_path: Path, data: dict[str, Any]) -> None:
        """Save data to JSON file, creating its directory if needed."""
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with file_path.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError:
            logger.exception("Error saving %s", file_path)

    def get_history(self, key: str) -> list[PlayObject] | None:
        """Cached history list for a source, or None if nothing usable is cached."""
        history = self.data.get("history")
        raw = history.get(key) if isinstance(history, dict) else None
        if not isinstance(raw, list):
            return None
        try:
            return [play_from_json(item) for item in raw]
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning("Ignoring unreadable cached history for %s", key)
            return None

    def set_history(self, key: str, plays: Sequence[PlayObject]) -> None:
        """Replace the cached history of a source and write the cache."""
        history = self.data.get("history")
        if not isinstance(history, dict):
            history = self.data["history"] = {}
        history[key] = [play_to_json(p) for p in plays]
        self.save_json(self.path, self.data)

"""Shared fixtures for the scrobble_sync test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from scrobble_sync.models import PlayData, PlayMeta, PlayObject

START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    """A fake clock starting at a fixed instant."""
    return FakeClock()


def make_play(
    track: str = "Song",
    artists: list[str] | None = None,
    album: str | None = "Album",
    duration: float | None = 200.0,
    play_date: datetime | None = None,
    position: float | None = None,
    **meta: Any,
) -> PlayObject:
    """Build a play with sensible defaults."""
    return PlayObject(
        data=PlayData(
            track=track,
            artists=artists if artists is not None else ["Artist"],
            album=album,
            duration=duration,
            play_date=play_date,
        ),
        meta=PlayMeta(track_progress_position=position, **meta),
    )


@pytest.fixture
def play_factory() -> Callable[..., PlayObject]:
    """Factory building plays, see :func:`make_play`."""
    return make_play

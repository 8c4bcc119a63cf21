# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Play, player and snapshot data types shared by the reconciliation engine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from .listen_range import ListenRange

NO_DEVICE: Final[str] = "NO_DEVICE"
NO_USER: Final[str] = "NO_USER"

PlatformId = tuple[str, str]

SINGLE_USER_PLATFORM_ID: Final[PlatformId] = (NO_DEVICE, NO_USER)


class MalformedPlayError(ValueError):
    """Raised when a play is missing required data or carries invalid values."""


class ReportedPlayerStatus(str, Enum):
    """Player status as reported by a source."""

    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class TemporalAccuracy(IntEnum):
    """How closely the timestamps of two plays line up."""

    EXACT = 1
    CLOSE = 2
    FUZZY = 3
    DURING = 4
    NONE = 99


DEFAULT_ACCEPTABLE_ACCURACY: Final[tuple[TemporalAccuracy, ...]] = (
    TemporalAccuracy.EXACT,
    TemporalAccuracy.CLOSE,
)


@dataclass
class PlayData:
    """What was played and when."""

    track: str
    artists: list[str] = field(default_factory=list)
    album: str | None = None
    duration: float | None = None
    play_date: datetime | None = None
    listened_for: float | None = None
    listen_ranges: list[ListenRange] | None = None

    def __post_init__(self) -> None:
        if self.artists is None:
            self.artists = []


@dataclass
class PlayMeta:
    """Where a play came from and how it was observed."""

    source: str | None = None
    track_id: str | None = None
    brainz: dict[str, str] = field(default_factory=dict)
    track_progress_position: float | None = None
    device_id: str | None = None
    user: str | None = None
    new_from_source: bool = False
    backfilled: bool = False


@dataclass
class PlayObject:
    """A single listening event."""

    data: PlayData
    meta: PlayMeta = field(default_factory=PlayMeta)

    def validate(self) -> PlayObject:
        """Check the invariants every play handed to the engine must hold.

        Returns:
            The play itself so calls can be chained

        Raises:
            MalformedPlayError: If the track is blank or duration is negative
        """
        track = self.data.track
        if not isinstance(track, str) or not track.strip():
            msg = f"Play is missing a track title: {self!r}"
            raise MalformedPlayError(msg)
        if self.data.duration is not None and self.data.duration < 0:
            msg = f"Play '{track}' has a negative duration ({self.data.duration})"
            raise MalformedPlayError(msg)
        return self

    def clone(self, **data_changes: Any) -> PlayObject:
        """Return a shallow copy with the given ``data`` fields replaced."""
        return PlayObject(data=replace(self.data, **data_changes), meta=self.meta)


@dataclass
class PlayerStateData:
    """One positional snapshot of a single player.

    ``status`` is None when the source does not report one.
    """

    platform_id: PlatformId
    status: ReportedPlayerStatus | None = None
    play: PlayObject | None = None
    position: float | None = None


@dataclass
class SourceSnapshot:
    """Everything one poll of a source returned.

    Positional sources fill ``players``; recently-played sources fill
    ``history`` (newest first).
    """

    players: list[PlayerStateData] = field(default_factory=list)
    history: list[PlayObject] | None = None

    def validate(self) -> SourceSnapshot:
        """Validate every play in the snapshot.

        Raises:
            MalformedPlayError: If any play in the snapshot is malformed
        """
        for state in self.players:
            if state.play is not None:
                state.play.validate()
        for play in self.history or []:
            play.validate()
        return self


def platform_id_str(platform_id: PlatformId) -> str:
    """Render a platform identity as a stable string key."""
    return f"{platform_id[0]}-{platform_id[1]}"


def platform_id_from_play(play: PlayObject) -> PlatformId:
    """Build the platform identity a play was observed on."""
    return (play.meta.device_id or NO_DEVICE, play.meta.user or NO_USER)

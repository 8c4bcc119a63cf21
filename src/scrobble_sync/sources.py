# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Sources that report what is (or was) playing.

A source is polled for a :class:`~scrobble_sync.models.SourceSnapshot`:
positional sources such as Sonos report one player state per device, history
sources such as Last.fm report their recently played list.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any, Final, Protocol

import pylast  # type: ignore[import-untyped]
import soco  # type: ignore[import-untyped]
from soco import SoCo  # type: ignore[import-untyped]
from soco import exceptions as soco_exceptions  # type: ignore[import-untyped]

from .clock import Clock, SystemClock
from .models import (
    NO_USER,
    PlayData,
    PlayerStateData,
    PlayMeta,
    PlayObject,
    ReportedPlayerStatus,
    SourceSnapshot,
)
from .utils import custom_print

logger = logging.getLogger(__name__)

TIME_FORMAT_HMS: Final[int] = 3  # Number of parts in H:MM:SS format
TIME_FORMAT_MS: Final[int] = 2  # Number of parts in MM:SS format
DEFAULT_REDISCOVERY_INTERVAL: Final[float] = 10.0  # seconds
DEFAULT_HISTORY_LIMIT: Final[int] = 20

TRANSPORT_STATUS: Final[dict[str, ReportedPlayerStatus]] = {
    "PLAYING": ReportedPlayerStatus.PLAYING,
    "TRANSITIONING": ReportedPlayerStatus.PLAYING,
    "PAUSED_PLAYBACK": ReportedPlayerStatus.PAUSED,
    "STOPPED": ReportedPlayerStatus.STOPPED,
}


class SourceError(RuntimeError):
    """Raised when a source cannot be read at all."""


class SnapshotProvider(Protocol):
    """Anything that can be polled for a snapshot."""

    name: str

    def fetch_snapshot(self) -> SourceSnapshot:
        """Read the current state of the source.

        Raises:
            SourceError: If the source could not be read
        """


def parse_time(raw: str | None) -> int | None:
    """Parse a Sonos ``H:MM:SS`` or ``MM:SS`` time into seconds.

    Args:
        raw: Time string as reported by the speaker

    Returns:
        Seconds, or None when the speaker does not report the value

    Raises:
        ValueError: If the value is present but not a time
    """
    if not raw or "NOT_IMPLEMENTED" in raw:
        return None
    parts = raw.split(":")
    if len(parts) == TIME_FORMAT_HMS:  # "H:MM:SS"
        return int(parts[0]) * 3600 + int(parts[1]) * 60 + int(parts[2])
    if len(parts) == TIME_FORMAT_MS:  # "MM:SS"
        return int(parts[0]) * 60 + int(parts[1])
    msg = f"Unrecognized time format: {raw!r}"
    raise ValueError(msg)


class SonosSource:
    """Positional source reading every Sonos speaker on the network."""

    def __init__(
        self,
        rediscovery_interval: float = DEFAULT_REDISCOVERY_INTERVAL,
        clock: Clock | None = None,
        discover: Callable[[], Iterable[SoCo] | None] = soco.discover,
        name: str = "sonos",
    ) -> None:
        """Create the source; speakers are discovered on the first fetch.

        Args:
            rediscovery_interval: Seconds between speaker discovery runs
            clock: Time source, defaults to the system clock
            discover: Discovery function returning speakers
            name: Source name stamped on plays
        """
        self.name = name
        self.rediscovery_interval = rediscovery_interval
        self.clock = clock or SystemClock()
        self._discover = discover
        self.speakers: list[SoCo] = []
        self.last_discovery_at: datetime | None = None

    def discover_speakers(self) -> None:
        """Discover Sonos speakers on the network."""
        self.last_discovery_at = self.clock.now()
        try:
            new_speakers: list[SoCo] = list(self._discover() or [])
        except (soco_exceptions.SoCoException, OSError, TypeError):
            custom_print("Error discovering speakers", "ERROR")
            logger.exception("Error discovering speakers")
            self.speakers = []
            return

        old_ids = {s.ip_address for s in self.speakers}
        new_ids = {s.ip_address for s in new_speakers}
        for speaker in new_speakers:
            if speaker.ip_address not in old_ids:
                custom_print(f"New speaker found: {speaker.player_name} ({speaker.ip_address})")
        for speaker in self.speakers:
            if speaker.ip_address not in new_ids:
                custom_print(f"Speaker removed: {speaker.player_name} ({speaker.ip_address})")
        if old_ids != new_ids:
            custom_print(f"Updated speaker count: {len(new_speakers)}")

        self.speakers = new_speakers
        if not self.speakers:
            custom_print("No Sonos speakers found", "WARNING")

    def _discovery_due(self) -> bool:
        if self.last_discovery_at is None:
            return True
        since = (self.clock.now() - self.last_discovery_at).total_seconds()
        return since >= self.rediscovery_interval

    def read_speaker(self, speaker: SoCo) -> PlayerStateData:
        """Read the current track and transport state of one speaker.

        Raises:
            ValueError: If the speaker reports a malformed time
        """
        track_info: dict[str, Any] = speaker.get_current_track_info()
        logger.debug("Raw track info from %s: %s", speaker.player_name, track_info)
        transport_info: dict[str, Any] = speaker.get_current_transport_info()
        state = transport_info.get("current_transport_state")
        status = TRANSPORT_STATUS.get(str(state), ReportedPlayerStatus.UNKNOWN)
        platform_id = (speaker.ip_address, NO_USER)

        title = track_info.get("title")
        if not title:
            return PlayerStateData(platform_id=platform_id, status=status)

        duration = parse_time(track_info.get("duration"))
        position = parse_time(track_info.get("position"))
        artist = track_info.get("artist")
        play = PlayObject(
            data=PlayData(
                track=title,
                artists=[artist] if artist else [],
                album=track_info.get("album") or None,
                duration=float(duration) if duration else None,
            ),
            meta=PlayMeta(
                source=self.name,
                track_id=track_info.get("uri") or None,
                track_progress_position=float(position) if position is not None else None,
                device_id=speaker.ip_address,
            ),
        )
        return PlayerStateData(
            platform_id=platform_id,
            status=status,
            play=play,
            position=play.meta.track_progress_position,
        )

    def fetch_snapshot(self) -> SourceSnapshot:
        """Read every known speaker, rediscovering speakers when due."""
        if self._discovery_due():
            self.discover_speakers()

        players: list[PlayerStateData] = []
        for speaker in self.speakers:
            try:
                players.append(self.read_speaker(speaker))
            except (
                soco_exceptions.SoCoException,
                OSError,
                ValueError,
                KeyError,
                TypeError,
            ):
                logger.exception("Error reading %s", speaker.player_name)
        return SourceSnapshot(players=players)

    def speaker_names(self) -> dict[str, str]:
        """Map of speaker IP address to player name."""
        return {s.ip_address: s.player_name for s in self.speakers}


def played_track_to_play(
    played: Any, source: str = "lastfm", user: str | None = None,
) -> PlayObject:
    """Convert a pylast ``PlayedTrack`` into a play listened to by ``user``."""
    track = played.track
    artist = getattr(getattr(track, "artist", None), "name", None)
    timestamp = getattr(played, "timestamp", None)
    return PlayObject(
        data=PlayData(
            track=str(track.title),
            artists=[str(artist)] if artist else [],
            album=played.album or None,
            play_date=(
                datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
                if timestamp
                else None
            ),
        ),
        meta=PlayMeta(source=source, user=user),
    )


class LastfmHistorySource:
    """History source reading a Last.fm user's recently played tracks."""

    def __init__(
        self,
        network: pylast.LastFMNetwork,
        username: str | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
        name: str = "lastfm",
    ) -> None:
        self.network = network
        self.username = username
        self.limit = limit
        self.name = name

    def fetch_snapshot(self) -> SourceSnapshot:
        """Fetch recently played tracks, newest first.

        Raises:
            SourceError: If Last.fm could not be queried
        """
        try:
            user = (
                self.network.get_user(self.username)
                if self.username
                else self.network.get_authenticated_user()
            )
            recent = user.get_recent_tracks(limit=self.limit)
        except (pylast.PyLastError, OSError) as exc:
            msg = f"Could not fetch recent tracks from Last.fm: {exc}"
            raise SourceError(msg) from exc
        return SourceSnapshot(
            history=[
                played_track_to_play(track, source=self.name, user=self.username)
                for track in recent
            ],
        )

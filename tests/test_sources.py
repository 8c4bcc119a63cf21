"""Tests for the Sonos and Last.fm history sources."""

from __future__ import annotations

from types import SimpleNamespace

import pylast
import pytest

from scrobble_sync.models import ReportedPlayerStatus
from scrobble_sync.sources import (
    LastfmHistorySource,
    SonosSource,
    SourceError,
    parse_time,
    played_track_to_play,
)


class FakeSpeaker:
    """Stands in for a ``soco.SoCo`` speaker."""

    def __init__(
        self,
        track_info: dict[str, str],
        state: str = "PLAYING",
        ip_address: str = "192.168.1.20",
        player_name: str = "Kitchen",
    ) -> None:
        self.track_info = track_info
        self.state = state
        self.ip_address = ip_address
        self.player_name = player_name

    def get_current_track_info(self) -> dict[str, str]:
        return self.track_info

    def get_current_transport_info(self) -> dict[str, str]:
        return {"current_transport_state": self.state}


TRACK_INFO = {
    "artist": "Artist",
    "title": "Title",
    "album": "Album",
    "duration": "1:02:03",
    "position": "0:05:06",
    "uri": "x-sonos-spotify:track1",
}


def test_parse_time_formats() -> None:
    """H:MM:SS and MM:SS values become seconds, placeholders become None."""
    assert parse_time("1:02:03") == 3723
    assert parse_time("4:32") == 272
    assert parse_time("NOT_IMPLEMENTED") is None
    assert parse_time("") is None
    with pytest.raises(ValueError, match="Unrecognized"):
        parse_time("12")


def test_sonos_snapshot_parses_speaker(clock) -> None:
    """Each speaker becomes one player state with a positional play."""
    source = SonosSource(clock=clock, discover=lambda: [FakeSpeaker(TRACK_INFO)])
    snapshot = source.fetch_snapshot()

    assert len(snapshot.players) == 1
    state = snapshot.players[0]
    assert state.platform_id == ("192.168.1.20", "NO_USER")
    assert state.status == ReportedPlayerStatus.PLAYING
    assert state.position == 306
    assert state.play is not None
    assert state.play.data.track == "Title"
    assert state.play.data.artists == ["Artist"]
    assert state.play.data.duration == 3723
    assert state.play.meta.source == "sonos"
    assert state.play.meta.track_id == "x-sonos-spotify:track1"
    assert source.speaker_names() == {"192.168.1.20": "Kitchen"}


def test_sonos_missing_times_are_optional(clock) -> None:
    """Streams without duration or position still produce a play."""
    info = {**TRACK_INFO, "duration": "NOT_IMPLEMENTED", "position": "NOT_IMPLEMENTED"}
    source = SonosSource(clock=clock, discover=lambda: [FakeSpeaker(info)])
    state = source.fetch_snapshot().players[0]
    assert state.play is not None
    assert state.play.data.duration is None
    assert state.position is None


def test_sonos_idle_speaker_has_no_play(clock) -> None:
    """A speaker with nothing loaded reports only its status."""
    info = {"title": "", "duration": "0:00:00", "position": "0:00:00"}
    speaker = FakeSpeaker(info, state="STOPPED")
    state = SonosSource(clock=clock, discover=lambda: [speaker]).fetch_snapshot().players[0]
    assert state.play is None
    assert state.status == ReportedPlayerStatus.STOPPED


def test_sonos_paused_state(clock) -> None:
    """Paused playback maps to the paused status."""
    speaker = FakeSpeaker(TRACK_INFO, state="PAUSED_PLAYBACK")
    state = SonosSource(clock=clock, discover=lambda: [speaker]).fetch_snapshot().players[0]
    assert state.status == ReportedPlayerStatus.PAUSED


def test_sonos_bad_speaker_is_skipped(clock) -> None:
    """A speaker reporting garbage does not break the snapshot."""
    bad = FakeSpeaker({**TRACK_INFO, "duration": "a:b"}, ip_address="192.168.1.21")
    good = FakeSpeaker(TRACK_INFO)
    snapshot = SonosSource(clock=clock, discover=lambda: [bad, good]).fetch_snapshot()
    assert [s.platform_id[0] for s in snapshot.players] == ["192.168.1.20"]


def test_sonos_discovery_failure_yields_empty_snapshot(clock) -> None:
    """Discovery errors are logged and leave no speakers."""

    def broken_discover():
        msg = "network down"
        raise OSError(msg)

    source = SonosSource(clock=clock, discover=broken_discover)
    assert source.fetch_snapshot().players == []
    assert source.speakers == []


def test_sonos_rediscovers_on_interval(clock) -> None:
    """Speakers are rediscovered only once the interval has passed."""
    calls = []

    def discover():
        calls.append(clock.now())
        return [FakeSpeaker(TRACK_INFO)]

    source = SonosSource(rediscovery_interval=10, clock=clock, discover=discover)
    source.fetch_snapshot()
    clock.advance(5)
    source.fetch_snapshot()
    clock.advance(5)
    source.fetch_snapshot()
    assert len(calls) == 2


def _played(title: str, artist: str, timestamp: str, album: str | None = "Album"):
    return SimpleNamespace(
        track=SimpleNamespace(title=title, artist=SimpleNamespace(name=artist)),
        album=album,
        timestamp=timestamp,
    )


class FakeUser:
    def __init__(self, tracks) -> None:
        self.tracks = tracks
        self.limit = None

    def get_recent_tracks(self, limit: int):
        self.limit = limit
        return self.tracks


class FakeNetwork:
    def __init__(self, user=None, error: Exception | None = None) -> None:
        self.user = user
        self.error = error
        self.requested: list[str] = []

    def get_user(self, username: str):
        if self.error is not None:
            raise self.error
        self.requested.append(username)
        return self.user

    def get_authenticated_user(self):
        return self.get_user("<authenticated>")


def test_played_track_to_play() -> None:
    """pylast played tracks map onto plays with a UTC play date."""
    play = played_track_to_play(_played("Title", "Artist", "1714564800", album=None))
    assert play.data.track == "Title"
    assert play.data.artists == ["Artist"]
    assert play.data.album is None
    assert play.data.play_date is not None
    assert play.data.play_date.isoformat() == "2024-05-01T12:00:00+00:00"
    assert play.meta.source == "lastfm"


def test_lastfm_history_snapshot() -> None:
    """Recent tracks become the history list, newest first."""
    user = FakeUser([_played("B", "X", "1714564900"), _played("A", "X", "1714564800")])
    network = FakeNetwork(user)
    source = LastfmHistorySource(network, username="someone", limit=5)

    snapshot = source.fetch_snapshot()

    assert [p.data.track for p in snapshot.history or []] == ["B", "A"]
    assert snapshot.players == []
    assert network.requested == ["someone"]
    assert user.limit == 5
    assert {p.meta.user for p in snapshot.history or []} == {"someone"}


def test_lastfm_history_error_is_source_error() -> None:
    """pylast failures surface as source errors."""
    source = LastfmHistorySource(FakeNetwork(error=pylast.PyLastError("boom")))
    with pytest.raises(SourceError, match="boom"):
        source.fetch_snapshot()

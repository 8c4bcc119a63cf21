"""Tests for the per-player listening session state machine."""

from __future__ import annotations

from datetime import timedelta

from conftest import START, make_play

from scrobble_sync.models import ReportedPlayerStatus
from scrobble_sync.player_state import PlayerState

PLATFORM = ("kitchen", "user")


def _player(clock) -> PlayerState:
    return PlayerState(PLATFORM, clock=clock)


def test_track_change_finishes_previous_play(clock) -> None:
    """Switching tracks returns the previous play with its listened time."""
    player = _player(clock)
    current, finished = player.set_play(make_play(track="A"))
    assert finished is None
    assert current is not None
    assert current.data.listened_for == 0

    clock.advance(60)
    current, finished = player.set_play(make_play(track="B"))

    assert finished is not None
    assert finished.data.track == "A"
    assert finished.data.listened_for == 60
    assert finished.data.play_date == START
    assert current is not None
    assert current.data.track == "B"
    assert current.data.listened_for == 0
    assert current.data.play_date == START + timedelta(seconds=60)


def test_continuous_playback_extends_range(clock) -> None:
    """Positions advancing with real time accumulate in one range."""
    player = _player(clock)
    player.set_play(make_play(position=0))
    clock.advance(10)
    player.set_play(make_play(position=10))
    clock.advance(10)
    current, finished = player.set_play(make_play(position=20))

    assert finished is None
    assert current is not None
    assert current.data.listened_for == 20
    assert player.get_position() == 20
    assert player.listen_ranges == []


def test_pause_closes_range_and_resume_opens_new_one(clock) -> None:
    """Time spent paused is not counted as listened."""
    player = _player(clock)
    player.set_play(make_play(position=0))
    clock.advance(20)
    player.set_play(make_play(position=20))
    player.set_play(make_play(position=20), ReportedPlayerStatus.PAUSED)
    assert player.current_listen_range is None
    assert len(player.listen_ranges) == 1

    clock.advance(30)
    player.set_play(make_play(position=20))
    clock.advance(10)
    current, _ = player.set_play(make_play(position=30))

    assert current is not None
    assert current.data.listened_for == 30
    assert len(current.data.listen_ranges or []) == 2


def test_forward_seek_starts_new_range(clock) -> None:
    """Jumping ahead closes the open range and starts another."""
    player = _player(clock)
    player.set_play(make_play(position=0))
    clock.advance(10)
    player.set_play(make_play(position=10))
    clock.advance(2)
    _, finished = player.set_play(make_play(position=100))

    assert finished is None
    assert len(player.listen_ranges) == 1
    assert player.current_listen_range is not None
    assert player.current_listen_range.start.position == 100
    assert player.get_listen_duration() == 10


def test_restart_near_end_is_repeat(clock) -> None:
    """Seeking back to the start after reaching the end finishes the play."""
    player = _player(clock)
    player.set_play(make_play(duration=200, position=0))
    clock.advance(190)
    player.set_play(make_play(duration=200, position=190))
    clock.advance(5)
    current, finished = player.set_play(make_play(duration=200, position=2))

    assert finished is not None
    assert finished.data.listened_for == 190
    assert finished.data.play_date == START
    assert current is not None
    assert current.data.play_date == START + timedelta(seconds=195)
    assert current.data.listened_for == 0
    assert player.get_position() == 2


def test_short_backward_seek_is_not_repeat(clock) -> None:
    """Rewinding early in a track only starts a new range."""
    player = _player(clock)
    player.set_play(make_play(position=0))
    clock.advance(20)
    player.set_play(make_play(position=20))
    clock.advance(5)
    _, finished = player.set_play(make_play(position=5))

    assert finished is None
    assert len(player.listen_ranges) == 1
    assert player.play_first_seen_at == START


def test_ending_near_track_end_finalizes_to_duration(clock) -> None:
    """A range ending within a few seconds of the end is counted to the end."""
    player = _player(clock)
    player.set_play(make_play(duration=200, position=0))
    clock.advance(198)
    player.set_play(make_play(duration=200, position=198))
    player.set_play(make_play(duration=200, position=198), ReportedPlayerStatus.PAUSED)

    assert player.listen_ranges[0].get_position() == 200


def test_stopped_status_finishes_and_clears(clock) -> None:
    """A status-only stop hands back the play and forgets it."""
    player = _player(clock)
    player.set_state(ReportedPlayerStatus.PLAYING, make_play(track="A"))
    clock.advance(45)
    player.set_state(ReportedPlayerStatus.PLAYING, make_play(track="A"))
    current, finished = player.set_state(ReportedPlayerStatus.STOPPED)

    assert finished is not None
    assert current is finished
    assert finished.data.listened_for == 45
    assert player.current_play is None
    assert player.get_position() is None


def test_empty_state_is_noop(clock) -> None:
    """No status and no play changes nothing."""
    player = _player(clock)
    assert player.set_state() == (None, None)


def test_stale_orphaned_and_dead(clock) -> None:
    """A silent player goes stale, then orphaned, then dead."""
    player = _player(clock)
    player.set_play(make_play())
    clock.advance(30)
    player.set_play(make_play())
    assert player.check_stale() is False

    clock.advance(121)
    assert player.check_stale() is True
    assert player.current_listen_range is None
    assert len(player.listen_ranges) == 1
    assert player.check_stale() is True
    assert len(player.listen_ranges) == 1
    assert player.is_orphaned() is False

    clock.advance(180)
    assert player.is_orphaned() is True
    assert player.is_dead() is False
    clock.advance(300)
    assert player.is_dead() is True


def test_text_summary_describes_play(clock) -> None:
    """The summary names the player and the track."""
    player = _player(clock)
    player.set_play(make_play(track="Summary Song", position=0))
    summary = player.text_summary()
    assert "kitchen-user" in summary
    assert "Summary Song" in summary
    assert "PLAYING" in summary


def test_clock_going_backwards_holds_range_end(clock) -> None:
    """An earlier timestamp than the range end never moves the end back."""
    player = _player(clock)
    player.set_play(make_play(position=0))
    clock.advance(10)
    player.set_play(make_play(position=10))
    clock.advance(-8)
    current, finished = player.set_play(make_play(position=11))

    assert finished is None
    assert current is not None
    assert player.current_listen_range is not None
    assert player.current_listen_range.end.timestamp == START + timedelta(seconds=10)
    assert player.get_position() == 11

"""Tests for position comparators and scrobble thresholds."""

from __future__ import annotations

from conftest import make_play

from scrobble_sync.thresholds import (
    ScrobbleThresholds,
    close_to_play_end,
    close_to_play_start,
    repeat_duration_played,
    threshold_result_summary,
    time_passes_scrobble_threshold,
)


def test_scrobble_threshold_passes_at_default_duration() -> None:
    """Exactly 30 listened seconds passes without a known duration."""
    assert time_passes_scrobble_threshold(ScrobbleThresholds(), 30).passes is True


def test_scrobble_threshold_fails_below_default_duration() -> None:
    """29 seconds of a track with unknown length does not pass."""
    result = time_passes_scrobble_threshold(ScrobbleThresholds(), 29)
    assert result.passes is False
    assert result.percent.passes is None


def test_scrobble_threshold_percent_and_duration_rules() -> None:
    """A 60s track at 40% fails until 30 seconds have been listened."""
    assert time_passes_scrobble_threshold(None, 24, 60).passes is False
    result = time_passes_scrobble_threshold(None, 30, 60)
    assert result.passes is True
    assert result.duration.passes is True
    assert result.percent.value == 50


def test_scrobble_threshold_user_values_override_defaults() -> None:
    """User thresholds replace the defaults."""
    thresholds = ScrobbleThresholds(duration=240, percent=25)
    result = time_passes_scrobble_threshold(thresholds, 60, 200)
    assert result.duration.passes is False
    assert result.percent.passes is True
    assert result.passes is True


def test_zero_duration_skips_percent_rule() -> None:
    """A zero duration does not divide by zero."""
    result = time_passes_scrobble_threshold(None, 10, 0)
    assert result.passes is False
    assert result.percent.passes is None
    assert "tracked percent" not in threshold_result_summary(result)


def test_close_to_play_start() -> None:
    """Absolute and percent rules for the start of a track."""
    play = make_play(duration=300)
    assert close_to_play_start(play, 8)[0] is True
    # 15% of 300s is 45s
    assert close_to_play_start(play, 40)[0] is True
    assert close_to_play_start(play, 60)[0] is False
    assert close_to_play_start(make_play(duration=None), 40)[0] is False


def test_close_to_play_end() -> None:
    """The end of a track needs a known duration."""
    play = make_play(duration=300)
    assert close_to_play_end(play, 295)[0] is True
    assert close_to_play_end(play, 260)[0] is True
    assert close_to_play_end(play, 200)[0] is False
    matched, hint = close_to_play_end(make_play(duration=None), 295)
    assert matched is False
    assert "no duration" in hint


def test_repeat_duration_played() -> None:
    """Either 30 seconds or half the track counts as a repeat listen."""
    assert repeat_duration_played(make_play(duration=300), 30)[0] is True
    assert repeat_duration_played(make_play(duration=40), 20)[0] is True
    assert repeat_duration_played(make_play(duration=300), 20)[0] is False
    assert repeat_duration_played(make_play(duration=None), 20)[0] is False

# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Position and listened-duration checks used to decide when a play counts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .models import PlayObject

DEFAULT_CLOSE_POSITION_ABSOLUTE: Final[float] = 10.0  # seconds
DEFAULT_CLOSE_POSITION_PERCENT: Final[float] = 15.0
DEFAULT_DURATION_REPEAT_ABSOLUTE: Final[float] = 30.0  # seconds
DEFAULT_DURATION_REPEAT_PERCENT: Final[float] = 50.0
DEFAULT_SCROBBLE_DURATION_THRESHOLD: Final[float] = 30.0  # seconds
DEFAULT_SCROBBLE_PERCENT_THRESHOLD: Final[float] = 50.0


@dataclass(frozen=True)
class PositionThresholds:
    """Overrides for the close-to-start/end and repeat checks."""

    close_absolute: float = DEFAULT_CLOSE_POSITION_ABSOLUTE
    close_percent: float = DEFAULT_CLOSE_POSITION_PERCENT
    repeat_absolute: float = DEFAULT_DURATION_REPEAT_ABSOLUTE
    repeat_percent: float = DEFAULT_DURATION_REPEAT_PERCENT


@dataclass(frozen=True)
class ScrobbleThresholds:
    """User-configured scrobble thresholds; unset values fall back to defaults."""

    duration: float | None = None
    percent: float | None = None


@dataclass(frozen=True)
class ThresholdCheck:
    """Outcome of a single threshold rule."""

    passes: bool | None
    threshold: float
    value: float | None


@dataclass(frozen=True)
class ScrobbleThresholdResult:
    """Combined outcome of the duration and percent rules."""

    passes: bool
    duration: ThresholdCheck
    percent: ThresholdCheck


def _fmt(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def close_to_play_start(
    play: PlayObject,
    elapsed: float,
    absolute: float = DEFAULT_CLOSE_POSITION_ABSOLUTE,
    percent: float = DEFAULT_CLOSE_POSITION_PERCENT,
) -> tuple[bool, str]:
    """Is ``elapsed`` within X seconds or Y percent of the start of a play?

    Only the absolute rule applies when the play has no duration.

    Returns:
        Whether the position is close to the start and a hint describing why
    """
    close_abs = elapsed <= absolute
    hints = [f"{'is' if close_abs else 'is not'} within {_fmt(absolute)}s of track start"]

    close_per = False
    duration = play.data.duration
    if duration:
        position_percent = elapsed / duration * 100
        close_per = position_percent <= percent
        if not close_abs:
            hints.append(
                f"{'is' if close_per else 'is not'} within {_fmt(percent)}% "
                f"of track start ({_fmt(position_percent)}%)",
            )

    return close_abs or close_per, f"Position ({_fmt(elapsed)}) {' and '.join(hints)}"


def close_to_play_end(
    play: PlayObject,
    elapsed: float,
    absolute: float = DEFAULT_CLOSE_POSITION_ABSOLUTE,
    percent: float = DEFAULT_CLOSE_POSITION_PERCENT,
) -> tuple[bool, str]:
    """Is ``elapsed`` within X seconds or Y percent of the end of a play?

    Returns:
        Whether the position is close to the end and a hint describing why.
        Always False when the play has no duration.
    """
    duration = play.data.duration
    if not duration:
        return False, (
            f"Cannot determine how close position {_fmt(elapsed)} is to end of "
            "track because no duration data is available"
        )

    near_abs = duration - elapsed <= absolute
    hints = [f"{'is' if near_abs else 'is not'} within {_fmt(absolute)}s of track end"]
    played_percent = elapsed / duration * 100
    near_per = played_percent >= 100 - percent
    if not near_abs:
        hints.append(
            f"{'is' if near_per else 'is not'} within {_fmt(percent)}% of track end "
            f"({_fmt(100 - played_percent)}% remaining)",
        )
    return near_abs or near_per, f"Position ({_fmt(elapsed)}) {' and '.join(hints)}"


def repeat_duration_played(
    play: PlayObject,
    elapsed: float,
    absolute: float = DEFAULT_DURATION_REPEAT_ABSOLUTE,
    percent: float = DEFAULT_DURATION_REPEAT_PERCENT,
) -> tuple[bool, str]:
    """Has more than X seconds or Y percent of the play been listened to?

    Returns:
        Whether enough was played to count a repeat and a hint describing why
    """
    abs_played = elapsed >= absolute
    hints = [f"{'is' if abs_played else 'is not'} more than {_fmt(absolute)}s"]

    per_played = False
    duration = play.data.duration
    if duration:
        duration_percent = elapsed / duration * 100
        per_played = duration_percent >= percent
        if not abs_played:
            hints.append(
                f"{'is' if per_played else 'is not'} more than {_fmt(percent)}% "
                f"of track duration ({_fmt(duration_percent)}%)",
            )

    return abs_played or per_played, (
        f"Duration listened ({_fmt(elapsed)}s) {' and '.join(hints)}"
    )


def time_passes_scrobble_threshold(
    thresholds: ScrobbleThresholds | None,
    elapsed: float,
    duration: float | None = None,
) -> ScrobbleThresholdResult:
    """Check listened time against the duration and percent thresholds.

    Args:
        thresholds: User thresholds, missing values use the defaults
        elapsed: Seconds listened
        duration: Track length in seconds, if known

    Returns:
        Result of both rules; passes if either rule passes. The percent rule
        is skipped (``passes is None``) when duration is unknown or zero.
    """
    user = thresholds or ScrobbleThresholds()
    duration_threshold = (
        user.duration if user.duration is not None else DEFAULT_SCROBBLE_DURATION_THRESHOLD
    )
    percent_threshold = (
        user.percent if user.percent is not None else DEFAULT_SCROBBLE_PERCENT_THRESHOLD
    )

    percent_value: float | None = None
    percent_passes: bool | None = None
    if duration:
        percent_value = elapsed / duration * 100
        percent_passes = percent_value >= percent_threshold

    duration_passes = elapsed >= duration_threshold

    return ScrobbleThresholdResult(
        passes=duration_passes or bool(percent_passes),
        duration=ThresholdCheck(
            passes=duration_passes, threshold=duration_threshold, value=elapsed,
        ),
        percent=ThresholdCheck(
            passes=percent_passes, threshold=percent_threshold, value=percent_value,
        ),
    )


def threshold_result_summary(result: ScrobbleThresholdResult) -> str:
    """Describe a threshold result for logs."""
    parts = [
        f"tracked time of {_fmt(result.duration.value or 0)}s "
        f"({'passes' if result.duration.passes else 'does not pass'} "
        f"{_fmt(result.duration.threshold)}s threshold)",
    ]
    if result.percent.passes is not None and result.percent.value is not None:
        parts.append(
            f"tracked percent of {_fmt(result.percent.value)}% "
            f"({'passes' if result.percent.passes else 'does not pass'} "
            f"{_fmt(result.percent.threshold)}% threshold)",
        )
    return " and ".join(parts)

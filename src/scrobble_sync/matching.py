# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Decide whether two play records describe the same listen.

Matching happens in two independent steps:

* content: normalized track title, artist set, album and, when both plays
  come from the same source, their stable track ids
* time: how closely the two play dates line up, classified as a
  :class:`~scrobble_sync.models.TemporalAccuracy`
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Final

from .models import DEFAULT_ACCEPTABLE_ACCURACY, PlayObject, TemporalAccuracy

# Sources that only report play dates to the minute (or worse)
LOW_GRANULARITY_SOURCES: Final[frozenset[str]] = frozenset({"subsonic", "ytmusic"})

DEFAULT_DIFF_THRESHOLD: Final[float] = 10.0
LOW_GRANULARITY_DIFF_THRESHOLD: Final[float] = 60.0
DEFAULT_FUZZY_DIFF_THRESHOLD: Final[float] = 10.0

_WHITESPACE = re.compile(r"\s+")
_EDGE_PUNCTUATION = re.compile(r"^[^\w]+|[^\w]+$")


def normalize_str(value: str | None) -> str:
    """Case, accent and whitespace insensitive form of a string."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    collapsed = _WHITESPACE.sub(" ", stripped.casefold()).strip()
    return _EDGE_PUNCTUATION.sub("", collapsed)


def _artist_set(artists: Iterable[str]) -> frozenset[str]:
    return frozenset(normalize_str(a) for a in artists if normalize_str(a))


def play_data_match(a: PlayObject, b: PlayObject) -> bool:
    """Compare the non-temporal data of two plays.

    Returns:
        True if both plays are the same track by the same artists
    """
    if (
        a.meta.source == b.meta.source
        and a.meta.track_id is not None
        and b.meta.track_id is not None
        and a.meta.track_id != b.meta.track_id
    ):
        return False

    if normalize_str(a.data.track) != normalize_str(b.data.track):
        return False

    if (
        a.data.album
        and b.data.album
        and normalize_str(a.data.album) != normalize_str(b.data.album)
    ):
        return False

    return _artist_set(a.data.artists) == _artist_set(b.data.artists)


@dataclass(frozen=True)
class TemporalPlayOptions:
    """Tuning for :func:`compare_play_temporally`."""

    diff_threshold: float | None = None
    fuzzy_duration: bool = False
    fuzzy_diff_threshold: float = DEFAULT_FUZZY_DIFF_THRESHOLD
    during_references: tuple[str, ...] = ("range",)


@dataclass
class TemporalPlayComparison:
    """Result of comparing two play dates."""

    match: TemporalAccuracy = TemporalAccuracy.NONE
    date_diff: float | None = None
    threshold: float | None = None
    fuzzy_duration_diff: float | None = None
    range: tuple[str, datetime, datetime] | None = None
    during_references: tuple[str, ...] = field(default_factory=tuple)


def _between(value: datetime, start: datetime, end: datetime) -> bool:
    return start < value < end


def compare_play_temporally(
    existing: PlayObject,
    candidate: PlayObject,
    options: TemporalPlayOptions | None = None,
) -> TemporalPlayComparison:
    """Classify how closely the candidate's play date matches the existing one.

    Args:
        existing: Play already recorded
        candidate: Play being considered
        options: Thresholds and which "during" windows to check

    Returns:
        The comparison; ``match`` is ``NONE`` if either play has no date
    """
    opts = options or TemporalPlayOptions()
    result = TemporalPlayComparison(during_references=opts.during_references)

    existing_date = existing.data.play_date
    candidate_date = candidate.data.play_date
    if existing_date is None or candidate_date is None:
        return result

    if opts.diff_threshold is not None:
        threshold = opts.diff_threshold
    elif (existing.meta.source or "").lower() in LOW_GRANULARITY_SOURCES:
        threshold = LOW_GRANULARITY_DIFF_THRESHOLD
    else:
        threshold = DEFAULT_DIFF_THRESHOLD

    diff = abs((existing_date - candidate_date).total_seconds())
    result.date_diff = diff
    result.threshold = threshold

    if diff <= 1:
        result.match = TemporalAccuracy.EXACT
        return result
    if diff <= threshold:
        result.match = TemporalAccuracy.CLOSE
        return result

    if "range" in opts.during_references:
        for listen_range in existing.data.listen_ranges or []:
            start, end = listen_range.start.timestamp, listen_range.end.timestamp
            if _between(candidate_date, start, end):
                result.match = TemporalAccuracy.DURING
                result.range = ("range", start, end)
                return result

    windows = (
        ("listenedFor", existing.data.listened_for),
        ("duration", existing.data.duration),
    )
    for reference, seconds in windows:
        if reference in opts.during_references and seconds is not None:
            end = existing_date + timedelta(seconds=seconds)
            if _between(candidate_date, existing_date, end):
                result.match = TemporalAccuracy.DURING
                result.range = (reference, existing_date, end)
                return result

    # one source may report the start of a play and the other its end
    reference_duration = candidate.data.duration or existing.data.duration
    if reference_duration is not None:
        result.fuzzy_duration_diff = abs(diff - reference_duration)
        if result.fuzzy_duration_diff <= opts.fuzzy_diff_threshold:
            result.match = TemporalAccuracy.FUZZY
            return result

    reference_listened = candidate.data.listened_for or existing.data.listened_for
    if opts.fuzzy_duration and reference_listened is not None:
        if abs(diff - reference_listened) <= opts.fuzzy_diff_threshold:
            result.match = TemporalAccuracy.FUZZY

    return result


def has_acceptable_temporal_accuracy(
    found: TemporalAccuracy,
    expected: Iterable[TemporalAccuracy] | None = None,
) -> bool:
    """Return True if ``found`` is one of the accepted accuracies."""
    return found in tuple(expected if expected is not None else DEFAULT_ACCEPTABLE_ACCURACY)


def generic_source_play_match(
    a: PlayObject,
    b: PlayObject,
    acceptable_accuracies: Iterable[TemporalAccuracy] | None = None,
    temporal_options: TemporalPlayOptions | None = None,
) -> bool:
    """Return True if both plays are the same track listened at the same time."""
    if not play_data_match(a, b):
        return False
    comparison = compare_play_temporally(a, b, temporal_options)
    return has_acceptable_temporal_accuracy(comparison.match, acceptable_accuracies)

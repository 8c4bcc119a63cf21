# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Diff successive "recently played" snapshots to find genuinely new plays.

A recently-played API returns an ordered list (newest first) every poll.
Comparing a fresh list against the last known one tells us what changed:

* ``prepend``: new plays on top of everything we already saw; these are new
  listens and are discovered
* ``append``: new plays at the tail; pagination or backfill, not discovered
* ``insert``: anything else (interior additions, replacements, reshuffles);
  not discovered
* ``bump``: a play we already saw moved to the top (listened again) or to the
  bottom; only a bump to the top is discovered
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Hashable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Final, Literal

from .clock import Clock, SystemClock
from .matching import normalize_str
from .models import PlayObject
from .utils import build_track_string

logger = logging.getLogger(__name__)

DiffStatus = Literal["equal", "added", "deleted", "moved"]
AddType = Literal["prepend", "append", "insert"]

DEFAULT_SNAPSHOT_MEMORY: Final[int] = 10
# Extra seconds allowed when checking whether skipped-over plays fit the gap
DEFAULT_SKIP_TOLERANCE: Final[float] = 10.0


def play_identity(play: PlayObject) -> Hashable:
    """Content key of a play that ignores when it was played."""
    return (
        play.meta.track_id,
        normalize_str(play.data.track),
        tuple(sorted(normalize_str(a) for a in play.data.artists)),
        normalize_str(play.data.album),
        play.data.duration,
    )


@dataclass(frozen=True)
class DiffEntry:
    """How one play moved between two lists."""

    status: DiffStatus
    value: PlayObject
    prev_index: int | None
    new_index: int | None


@dataclass
class ListDiff:
    """Per-entry diff of two lists.

    ``status`` is ``equal`` when nothing changed, ``added`` / ``deleted`` when
    one side was empty and ``updated`` otherwise.
    """

    status: Literal["equal", "added", "deleted", "updated"]
    diff: list[DiffEntry] = field(default_factory=list)

    def entries(self, status: DiffStatus) -> list[DiffEntry]:
        """Entries with the given status."""
        return [d for d in self.diff if d.status == status]

    def at_new_index(self, index: int) -> DiffEntry | None:
        """The entry occupying ``index`` in the new list."""
        return next((d for d in self.diff if d.new_index == index), None)


def get_list_diff(
    prev: Sequence[PlayObject], new: Sequence[PlayObject], from_end: bool = False,
) -> ListDiff:
    """Diff two play lists by content, tracking where each entry moved.

    Duplicate plays are matched in order: the n-th occurrence in ``new`` pairs
    with the n-th unmatched occurrence in ``prev``. With ``from_end`` the
    occurrences are counted from the end of both lists instead.
    """
    if not prev and not new:
        return ListDiff("equal")
    if not prev:
        return ListDiff(
            "added", [DiffEntry("added", p, None, i) for i, p in enumerate(new)],
        )
    if not new:
        return ListDiff(
            "deleted", [DiffEntry("deleted", p, i, None) for i, p in enumerate(prev)],
        )

    prev_occurrences: dict[Hashable, deque[int]] = defaultdict(deque)
    for idx, play in enumerate(prev):
        prev_occurrences[play_identity(play)].append(idx)

    diff: list[DiffEntry] = []
    matched_prev: set[int] = set()
    indexed = list(enumerate(new))
    for new_idx, play in reversed(indexed) if from_end else indexed:
        remaining = prev_occurrences.get(play_identity(play))
        if remaining:
            prev_idx = remaining.pop() if from_end else remaining.popleft()
            matched_prev.add(prev_idx)
            status: DiffStatus = "equal" if prev_idx == new_idx else "moved"
            diff.append(DiffEntry(status, play, prev_idx, new_idx))
        else:
            diff.append(DiffEntry("added", play, None, new_idx))
    if from_end:
        diff.reverse()

    diff.extend(
        DiffEntry("deleted", play, idx, None)
        for idx, play in enumerate(prev)
        if idx not in matched_prev
    )

    changed = any(d.status != "equal" for d in diff)
    return ListDiff("updated" if changed else "equal", diff)


def plays_are_sort_consistent(a: Sequence[PlayObject], b: Sequence[PlayObject]) -> bool:
    """Return True if both lists contain the same plays in the same order."""
    return get_list_diff(a, b).status == "equal"


def plays_are_added_only(
    a: Sequence[PlayObject], b: Sequence[PlayObject],
) -> tuple[bool, list[PlayObject], AddType | None]:
    """Check whether ``b`` is ``a`` with plays added only at one end.

    Plays that drop off the far end of a fixed-length list are allowed. Any
    interior addition, replacement or reordering of the surviving plays is an
    ``insert``.

    When the plain diff is not a prepend, duplicates are paired from the end
    of the lists as well so a play repeated right after itself is a prepend.

    Returns:
        ``(ok, added_plays, add_type)``; added plays are in ``b`` order
    """
    found = _classify_added(get_list_diff(a, b), b)
    if found[2] == "prepend":
        return found
    from_tail = _classify_added(get_list_diff(a, b, from_end=True), b)
    return from_tail if from_tail[2] == "prepend" else found


def _classify_added(
    result: ListDiff, b: Sequence[PlayObject],
) -> tuple[bool, list[PlayObject], AddType | None]:
    if result.status != "updated":
        return False, [], None

    added = sorted(d.new_index for d in result.entries("added") if d.new_index is not None)
    if not added:
        return False, [], None

    kept = sorted(
        (d for d in result.diff if d.status in ("equal", "moved")),
        key=lambda d: d.new_index or 0,
    )
    kept_prev = [d.prev_index or 0 for d in kept]
    # nothing in common means the lists cannot be correlated
    if not kept or any(x >= y for x, y in zip(kept_prev, kept_prev[1:])):
        return False, [], "insert"

    deleted_prev = [d.prev_index or 0 for d in result.entries("deleted")]
    added_plays = [b[i] for i in added]

    if added == list(range(len(added))) and all(d > kept_prev[-1] for d in deleted_prev):
        return True, added_plays, "prepend"

    first_appended = len(b) - len(added)
    if added == list(range(first_appended, len(b))) and all(
        d < kept_prev[0] for d in deleted_prev
    ):
        return True, added_plays, "append"

    return False, [], "insert"


def plays_are_bumped_only(
    a: Sequence[PlayObject], b: Sequence[PlayObject],
) -> tuple[bool, list[PlayObject], Literal["prepend", "append"] | None]:
    """Check whether ``b`` is ``a`` with exactly one play moved to an end.

    Returns:
        ``(ok, [bumped_play], bump_type)``
    """
    if len(a) != len(b) or not a:
        return False, [], None
    result = get_list_diff(a, b)
    if result.status != "updated" or any(
        d.status in ("added", "deleted") for d in result.diff
    ):
        return False, [], None

    by_new = sorted(result.diff, key=lambda d: d.new_index or 0)
    prev_of = [d.prev_index or 0 for d in by_new]
    n = len(prev_of)

    k = prev_of[0]
    if k > 0 and prev_of[1 : k + 1] == list(range(k)) and prev_of[k + 1 :] == list(
        range(k + 1, n),
    ):
        return True, [b[0]], "prepend"

    j = prev_of[-1]
    if j < n - 1 and prev_of[:j] == list(range(j)) and prev_of[j : n - 1] == list(
        range(j + 1, n),
    ):
        return True, [b[-1]], "append"

    return False, [], None


def human_readable_diff(
    a: Sequence[PlayObject], b: Sequence[PlayObject], result: ListDiff,
) -> str:
    """Describe a list diff line by line for logs."""
    lines: list[str] = []
    for index, play in enumerate(b):
        line = f"{index + 1}. {build_track_string(play)}"
        entry = result.at_new_index(index)
        if entry is None or entry.status == "equal":
            lines.append(line)
            continue
        if entry.status == "moved" and entry.prev_index is not None:
            lines.append(f"{line} => Moved - Originally at {entry.prev_index + 1}")
            continue
        replaced = next(
            (d for d in result.entries("deleted") if d.prev_index == index), None,
        )
        if replaced is not None:
            lines.append(
                f"{line} => Replaced - Original => {build_track_string(replaced.value)}",
            )
        else:
            lines.append(f"{line} => Added")
    lines.extend(
        f"{d.prev_index + 1}. {build_track_string(a[d.prev_index])} => Removed"
        for d in result.entries("deleted")
        if d.prev_index is not None and d.prev_index >= len(b)
    )
    return "\n".join(lines)


@dataclass
class HistoryDiffResult:
    """Outcome of evaluating one fetched history list."""

    plays: list[PlayObject]
    consistent: bool
    diff_type: Literal["added", "bump", "none"]
    add_type: AddType | None = None
    reason: str | None = None
    diff_results: list[DiffEntry] = field(default_factory=list)


class HistoryDiffEngine:
    """Remembers the last known-good history list and diffs new ones against it."""

    def __init__(
        self,
        clock: Clock | None = None,
        newest_first: bool = True,
        snapshot_memory: int = DEFAULT_SNAPSHOT_MEMORY,
        skip_tolerance: float = DEFAULT_SKIP_TOLERANCE,
    ) -> None:
        """Create an engine with no baseline.

        Args:
            clock: Time source, defaults to the system clock
            newest_first: Whether the source lists its newest play first
            snapshot_memory: How many past snapshots to remember for stale
                data detection
            skip_tolerance: Seconds of slack when deciding whether plays
                skipped over between polls could have been listened to
        """
        self.clock = clock or SystemClock()
        self.newest_first = newest_first
        self.skip_tolerance = skip_tolerance
        self.known_good: list[PlayObject] | None = None
        self.last_observed_at: datetime | None = None
        self._seen: deque[tuple[Hashable, ...]] = deque(maxlen=max(2, snapshot_memory))

    @staticmethod
    def _signature(plays: Sequence[PlayObject]) -> tuple[Hashable, ...]:
        return tuple(play_identity(p) for p in plays)

    def _ordered(self, plays: Sequence[PlayObject]) -> list[PlayObject]:
        return list(plays) if self.newest_first else list(reversed(plays))

    def restore(self, plays: Sequence[PlayObject], observed_at: datetime | None = None) -> None:
        """Seed the baseline, e.g. from a cache after a restart."""
        ordered = self._ordered(plays)
        self.known_good = ordered
        self.last_observed_at = observed_at or self.clock.now()
        self._seen.clear()
        self._seen.append(self._signature(ordered))

    def _accept(self, plays: list[PlayObject], now: datetime) -> None:
        self.known_good = plays
        self.last_observed_at = now
        self._seen.append(self._signature(plays))

    def _is_stale(self, signature: tuple[Hashable, ...]) -> bool:
        earlier = list(self._seen)[:-1]
        return signature in earlier

    def _filter_skipped(self, added: list[PlayObject], now: datetime) -> list[PlayObject]:
        """Drop prepended plays that could not have been listened to since the last poll.

        The newest play is always kept. Older ones are walked oldest first,
        each consuming its duration from the time elapsed since the last
        observation.
        """
        if len(added) <= 1 or self.last_observed_at is None:
            return added

        newest, older = added[0], added[1:]
        remaining = (now - self.last_observed_at).total_seconds() + self.skip_tolerance
        kept: list[PlayObject] = []
        for play in reversed(older):
            duration = play.data.duration
            if duration is None or duration <= remaining:
                kept.append(play)
                if duration is not None:
                    remaining -= duration
            else:
                logger.debug(
                    "Not discovering %s, its duration (%ss) does not fit the time since "
                    "the last observation",
                    build_track_string(play),
                    duration,
                )
        return [newest, *reversed(kept)]

    def _stamp(self, plays: list[PlayObject], now: datetime) -> list[PlayObject]:
        return [p if p.data.play_date is not None else p.clone(play_date=now) for p in plays]

    def evaluate(self, plays: Sequence[PlayObject]) -> HistoryDiffResult:
        """Diff a freshly fetched history list against the known-good one.

        Args:
            plays: The history list exactly as the source returned it

        Returns:
            Newly discovered plays (newest first) and how the list changed
        """
        now = self.clock.now()
        candidate = self._ordered(plays)

        if self.known_good is None:
            self._accept(candidate, now)
            return HistoryDiffResult(
                [], True, "none", reason="No previous history, using this list as the baseline",
            )

        result = get_list_diff(self.known_good, candidate)
        if result.status == "equal":
            self.last_observed_at = now
            return HistoryDiffResult([], True, "none", diff_results=result.diff)

        if self._is_stale(self._signature(candidate)):
            return HistoryDiffResult(
                [],
                False,
                "none",
                reason="History is identical to an earlier snapshot, upstream returned stale data",
                diff_results=result.diff,
            )

        previous = self.known_good
        has_added = any(d.status == "added" for d in result.diff)
        shrunk = len(candidate) < len(previous)
        if shrunk and not has_added:
            return HistoryDiffResult(
                [],
                False,
                "none",
                reason="History lost plays without gaining any, keeping the known list",
                diff_results=result.diff,
            )

        ok, added, add_type = plays_are_added_only(previous, candidate)
        if ok and add_type == "prepend":
            discovered = self._stamp(self._filter_skipped(added, now), now)
            self._accept(candidate, now)
            return HistoryDiffResult(
                discovered, True, "added", "prepend", diff_results=result.diff,
            )
        if ok:
            self._accept(candidate, now)
            return HistoryDiffResult(
                [],
                False,
                "added",
                add_type,
                reason="Plays were added to the end of history, likely a backfill or pagination change",
                diff_results=result.diff,
            )

        bumped_ok, bumped, bump_type = plays_are_bumped_only(previous, candidate)
        if bumped_ok and bump_type == "prepend":
            self._accept(candidate, now)
            return HistoryDiffResult(
                self._stamp(bumped, now), True, "bump", "prepend", diff_results=result.diff,
            )
        if bumped_ok:
            self._accept(candidate, now)
            return HistoryDiffResult(
                [],
                False,
                "bump",
                "append",
                reason="A previously seen play moved to the end of history",
                diff_results=result.diff,
            )

        # a shorter list is a partial fetch, the known list stays the baseline
        if not shrunk:
            self._accept(candidate, now)
        return HistoryDiffResult(
            [],
            False,
            "added" if has_added else "none",
            "insert",
            reason="History changed out of order (insert, replacement or compound change)",
            diff_results=result.diff,
        )

# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Point-in-time listening observations and contiguous listening intervals."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

from .clock import Clock, SystemClock

# How far (in seconds) a reported position may run ahead of real time
DEFAULT_ALLOWED_DRIFT: Final[float] = 2.5


@dataclass(frozen=True)
class ListenProgress:
    """A single observation of a playing track."""

    timestamp: datetime
    position: float | None = None
    position_percent: float | None = None

    def is_positional(self) -> bool:
        """Return True if the observation carries a track position."""
        return self.position is not None

    def get_duration(self, end: ListenProgress) -> float:
        """Seconds elapsed between this observation and ``end``.

        Uses track positions when both observations have one, otherwise the
        wall-clock difference between timestamps.
        """
        if self.position is not None and end.position is not None:
            return end.position - self.position
        return (end.timestamp - self.timestamp).total_seconds()

    def to_json(self) -> dict[str, Any]:
        """Serialize to JSON-compatible primitives."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "position": self.position,
            "position_percent": self.position_percent,
        }


ProgressLike = ListenProgress | Mapping[str, Any]


class ListenRange:
    """One contiguous span during which a track was observed playing.

    ``end`` defaults to ``start`` so a freshly opened range is zero-length
    (initial).
    """

    def __init__(
        self,
        start: ListenProgress,
        end: ListenProgress | None = None,
        allowed_drift: float = DEFAULT_ALLOWED_DRIFT,
        clock: Clock | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.allowed_drift = allowed_drift
        self.start = start
        self.end = end if end is not None else start
        if self.end.timestamp < self.start.timestamp:
            msg = "Listen range cannot end before it starts"
            raise ValueError(msg)

    def __repr__(self) -> str:
        return f"ListenRange(start={self.start!r}, end={self.end!r})"

    def is_positional(self) -> bool:
        """Return True if both ends carry a track position."""
        return self.start.position is not None and self.end.position is not None

    def is_initial(self) -> bool:
        """Return True if the range has not progressed since it was opened."""
        if self.is_positional():
            return self.start.position == self.end.position
        return self.start.timestamp == self.end.timestamp

    def seeked(
        self,
        position: float | None,
        reported_timestamp: datetime | None = None,
    ) -> tuple[bool, float | None]:
        """Decide whether a new position reading means the listener seeked.

        Args:
            position: Newly reported position in seconds
            reported_timestamp: When the position was reported (defaults to now)

        Returns:
            ``(True, delta_seconds)`` for a backward seek or a forward jump
            further ahead of real time than the allowed drift, else
            ``(False, None)``
        """
        if position is None or not self.is_positional() or self.is_initial():
            return False, None

        end_position = self.end.position or 0.0
        delta = position - end_position

        if position < end_position:
            return True, delta

        reported = reported_timestamp or self.clock.now()
        real_time_diff_ms = max(
            0.0, (reported - self.end.timestamp).total_seconds() * 1000,
        )
        position_diff_ms = delta * 1000
        if position_diff_ms - real_time_diff_ms > self.allowed_drift * 1000:
            return True, delta

        return False, None

    def _to_progress(self, data: ProgressLike) -> ListenProgress:
        if isinstance(data, ListenProgress):
            return data
        return ListenProgress(
            timestamp=data.get("timestamp") or self.clock.now(),
            position=data.get("position"),
            position_percent=data.get("position_percent"),
        )

    def set_range_start(self, data: ProgressLike) -> None:
        """Replace the start of the range."""
        self.start = self._to_progress(data)

    def set_range_end(self, data: ProgressLike) -> None:
        """Replace the end of the range.

        Raises:
            ValueError: If the new end is earlier than the range start
        """
        progress = self._to_progress(data)
        if progress.timestamp < self.start.timestamp:
            msg = "Listen range cannot end before it starts"
            raise ValueError(msg)
        self.end = progress

    def get_duration(self) -> float:
        """Seconds covered by the range (positional when possible)."""
        return self.start.get_duration(self.end)

    def get_wallclock_duration(self) -> float:
        """Real seconds between the start and end observations."""
        return (self.end.timestamp - self.start.timestamp).total_seconds()

    def get_position(self) -> float | None:
        """Last known position in the track."""
        return self.end.position

    def finalize(self, position: float | None = None) -> None:
        """Close the range, optionally forcing the final track position."""
        if position is not None:
            self.end = ListenProgress(
                timestamp=self.end.timestamp,
                position=position,
                position_percent=self.end.position_percent,
            )

    def to_json(self) -> list[dict[str, Any]]:
        """Serialize to JSON-compatible primitives."""
        return [self.start.to_json(), self.end.to_json()]

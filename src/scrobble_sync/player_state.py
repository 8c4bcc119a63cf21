# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Per-player listening session state machine.

Players are polled, not streamed: every poll reports what a player is playing
right now (and sometimes where in the track it is). ``PlayerState`` rebuilds
contiguous listening sessions from those discrete snapshots, finalizing the
previous play whenever the track changes, the player stops, or the listener
restarts the same track.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Final

from .clock import Clock, SystemClock
from .listen_range import DEFAULT_ALLOWED_DRIFT, ListenProgress, ListenRange
from .matching import play_data_match
from .models import PlatformId, PlayObject, ReportedPlayerStatus, platform_id_str
from .thresholds import (
    PositionThresholds,
    close_to_play_end,
    close_to_play_start,
    repeat_duration_played,
)
from .utils import build_track_string, logger

DEFAULT_STALE_INTERVAL: Final[float] = 120.0  # seconds
DEFAULT_ORPHANED_INTERVAL: Final[float] = 300.0  # seconds
# Ending this close to the track end counts as having reached it
END_OF_TRACK_TOLERANCE: Final[float] = 3.0  # seconds

PlayerUpdate = tuple[PlayObject | None, PlayObject | None]


class PlayerState:
    """Tracks what one physical player is playing and for how long."""

    def __init__(  # noqa: PLR0913
        self,
        platform_id: PlatformId,
        clock: Clock | None = None,
        stale_interval: float = DEFAULT_STALE_INTERVAL,
        orphaned_interval: float = DEFAULT_ORPHANED_INTERVAL,
        allowed_drift: float = DEFAULT_ALLOWED_DRIFT,
        position_thresholds: PositionThresholds | None = None,
    ) -> None:
        """Create an empty player.

        Args:
            platform_id: Device/user identity of the player
            clock: Time source, defaults to the system clock
            stale_interval: Seconds without play updates before the open
                listen session is closed
            orphaned_interval: Seconds without any update before the player
                is considered gone
            allowed_drift: Seconds a position may run ahead of real time
                before it counts as a forward seek
            position_thresholds: Close-to-start/end and repeat overrides
        """
        self.platform_id = platform_id
        self.clock = clock or SystemClock()
        self.stale_interval = stale_interval
        self.orphaned_interval = orphaned_interval
        self.allowed_drift = allowed_drift
        self.position_thresholds = position_thresholds or PositionThresholds()
        self.logger = logger.getChild(f"player.{self.platform_id_str}")

        self.reported_status = ReportedPlayerStatus.UNKNOWN
        self.current_play: PlayObject | None = None
        self.play_first_seen_at: datetime | None = None
        self.play_last_updated_at: datetime | None = None
        self.listen_ranges: list[ListenRange] = []
        self.current_listen_range: ListenRange | None = None
        self.created_at = self.clock.now()
        self.state_last_updated_at = self.created_at
        self.stale = False

    @property
    def platform_id_str(self) -> str:
        """Platform identity as a string key."""
        return platform_id_str(self.platform_id)

    # -------- staleness --------
    def is_update_stale(self) -> bool:
        """True if a play is tracked but has not been updated for too long."""
        if self.current_play is None or self.play_last_updated_at is None:
            return False
        since = (self.clock.now() - self.play_last_updated_at).total_seconds()
        return abs(since) > self.stale_interval

    def check_stale(self) -> bool:
        """Close the open listen session once the player goes stale."""
        is_stale = self.is_update_stale()
        if is_stale and not self.stale:
            self.stale = True
            self.logger.debug(
                "Stale after no play updates for more than %ss", self.stale_interval,
            )
            self.current_listen_session_end()
        return is_stale

    def is_orphaned(self) -> bool:
        """True if the player has not been heard from for the orphaned interval."""
        since = (self.clock.now() - self.state_last_updated_at).total_seconds()
        return since >= self.orphaned_interval

    def is_dead(self) -> bool:
        """True if the player has been orphaned for twice the orphaned interval."""
        since = (self.clock.now() - self.state_last_updated_at).total_seconds()
        return since >= self.orphaned_interval * 2

    # -------- state transitions --------
    def set_state(
        self,
        status: ReportedPlayerStatus | None = None,
        play: PlayObject | None = None,
    ) -> PlayerUpdate:
        """Apply one snapshot of this player.

        Returns:
            ``(played_so_far, finished)``; ``finished`` is the play that just
            ended, if any
        """
        self.state_last_updated_at = self.clock.now()
        if play is not None:
            return self.set_play(
                play, status if status is not None else ReportedPlayerStatus.PLAYING,
            )

        if status is None:
            return None, None

        if (
            status == ReportedPlayerStatus.STOPPED
            and self.reported_status != ReportedPlayerStatus.STOPPED
            and self.current_play is not None
        ):
            self.stop_player()
            played = self.get_played_object()
            self.clear_player()
            return played, played

        self.reported_status = status
        if status != ReportedPlayerStatus.PLAYING:
            self.current_listen_session_end()
        return self.get_played_object(), None

    def set_play(
        self,
        play: PlayObject,
        status: ReportedPlayerStatus = ReportedPlayerStatus.PLAYING,
    ) -> PlayerUpdate:
        """Feed the play currently reported by the player.

        Args:
            play: The play the player reports
            status: The status the player reports

        Returns:
            ``(played_so_far, finished)`` where ``finished`` is the previous
            play when this update ended it (track change or repeat)
        """
        now = self.clock.now()
        self.play_last_updated_at = now
        self.state_last_updated_at = now
        self.reported_status = status
        self.stale = False
        position = play.meta.track_progress_position

        if self.current_play is None:
            self.set_current_play(play)
            return self.get_played_object(), None

        if not play_data_match(self.current_play, play):
            self.logger.debug(
                "Incoming play (%s) does not match existing state, removing existing: %s",
                build_track_string(play),
                build_track_string(self.current_play),
            )
            if self.current_listen_range is not None:
                # the previous track was playing until we saw the new one
                self.current_listen_range.set_range_end(
                    {
                        "timestamp": self._range_timestamp(now),
                        "position": self.current_listen_range.end.position,
                    },
                )
            self.current_listen_session_end()
            played = self.get_played_object()
            self.set_current_play(play)
            return self.get_played_object(), played

        if status == ReportedPlayerStatus.PLAYING:
            finished = self.current_listen_session_continue(position)
            return self.get_played_object(), finished

        self.current_listen_session_end()
        return self.get_played_object(), None

    def set_current_play(self, play: PlayObject, position: float | None = None) -> None:
        """Start tracking a new play from scratch.

        Args:
            play: The play to track
            position: Where in the track listening starts, defaults to the
                position reported with the play
        """
        self.current_play = play
        self.play_first_seen_at = self.clock.now()
        self.listen_ranges = []
        self.current_listen_range = None
        self.logger.debug("New play: %s", build_track_string(play))

        if self.reported_status == ReportedPlayerStatus.PLAYING:
            self.current_listen_session_continue(
                position if position is not None else play.meta.track_progress_position,
            )

    def clear_player(self) -> None:
        """Forget the current play entirely."""
        self.current_play = None
        self.play_first_seen_at = None
        self.play_last_updated_at = None
        self.listen_ranges = []
        self.current_listen_range = None

    def stop_player(self) -> None:
        """Mark the player stopped and close the open listen session."""
        self.reported_status = ReportedPlayerStatus.STOPPED
        self.play_last_updated_at = self.clock.now()
        self.current_listen_session_end()

    # -------- listen sessions --------
    def current_listen_session_continue(
        self, position: float | None = None,
    ) -> PlayObject | None:
        """Extend the open listen range to now, or open one if none is open.

        A seek closes the open range and opens a new one. Seeking back to the
        start after listening long enough counts as a repeat.

        Returns:
            The finished play when a repeat was detected, else None
        """
        now = self.clock.now()
        if self.current_listen_range is None:
            self.logger.debug("Started new listen range")
            self.current_listen_range = ListenRange(
                ListenProgress(timestamp=now, position=position),
                allowed_drift=self.allowed_drift,
                clock=self.clock,
            )
            return None

        seeked, delta = self.current_listen_range.seeked(position, now)
        if not seeked:
            self.current_listen_range.set_range_end(
                ListenProgress(timestamp=self._range_timestamp(now), position=position),
            )
            return None

        if (
            position is not None
            and delta is not None
            and delta < 0
            and self.current_play is not None
            and self._is_repeat(position)
        ):
            self.logger.debug(
                "Seeked back to %ss after listening long enough, treating as a repeat",
                position,
            )
            self.current_listen_session_end()
            finished = self.get_played_object()
            self.set_current_play(self.current_play, position)
            return finished

        self.logger.debug("Seeked %+.1fs, starting new listen range", delta or 0)
        self.current_listen_session_end()
        self.current_listen_range = ListenRange(
            ListenProgress(timestamp=now, position=position),
            allowed_drift=self.allowed_drift,
            clock=self.clock,
        )
        return None

    def _range_timestamp(self, now: datetime) -> datetime:
        """``now``, held at the open range end if the clock stepped backwards."""
        listen_range = self.current_listen_range
        if listen_range is not None and now < listen_range.end.timestamp:
            self.logger.debug("Clock went back to %s, holding listen range end", now.isoformat())
            return listen_range.end.timestamp
        return now

    def _is_repeat(self, position: float) -> bool:
        play = self.current_play
        if play is None or self.current_listen_range is None:
            return False
        thresholds = self.position_thresholds
        near_start, _ = close_to_play_start(
            play, position, thresholds.close_absolute, thresholds.close_percent,
        )
        if not near_start:
            return False
        last_position = self.current_listen_range.get_position() or 0
        near_end, _ = close_to_play_end(
            play, last_position, thresholds.close_absolute, thresholds.close_percent,
        )
        repeated, _ = repeat_duration_played(
            play,
            self.get_listen_duration(),
            thresholds.repeat_absolute,
            thresholds.repeat_percent,
        )
        return near_end or repeated

    def current_listen_session_end(self) -> None:
        """Close the open listen range, keeping it if it covers any time."""
        listen_range = self.current_listen_range
        if listen_range is not None and listen_range.get_wallclock_duration() > 0:
            self.logger.debug("Ended current listen range")
            duration = self.current_play.data.duration if self.current_play else None
            end_position = listen_range.get_position()
            if (
                duration is not None
                and end_position is not None
                and duration - end_position < END_OF_TRACK_TOLERANCE
            ):
                listen_range.finalize(duration)
            else:
                listen_range.finalize()
            self.listen_ranges.append(listen_range)
        self.current_listen_range = None

    # -------- derived values --------
    def _all_ranges(self) -> list[ListenRange]:
        ranges = list(self.listen_ranges)
        if self.current_listen_range is not None:
            ranges.append(self.current_listen_range)
        return ranges

    def get_listen_duration(self) -> float:
        """Wall-clock seconds this play has been observed playing."""
        return sum(r.get_wallclock_duration() for r in self._all_ranges())

    def get_played_object(self) -> PlayObject | None:
        """The current play annotated with when and how long it was listened."""
        if self.current_play is None:
            return None
        return self.current_play.clone(
            play_date=self.play_first_seen_at,
            listened_for=self.get_listen_duration(),
            listen_ranges=self._all_ranges(),
        )

    def get_position(self) -> float | None:
        """Last known position in the current track."""
        if self.reported_status == ReportedPlayerStatus.STOPPED:
            return None
        ranges = self._all_ranges()
        if not ranges:
            return None
        return ranges[-1].get_position()

    def text_summary(self) -> str:
        """Multi-line description of the player for debug logs."""
        parts = [f"Player {self.platform_id_str}"]
        if self.current_play is not None and self.play_first_seen_at is not None:
            parts.append(
                f"{build_track_string(self.current_play)} @ "
                f"{self.play_first_seen_at.isoformat()}",
            )
        parts.append(
            f"Reported: {self.reported_status.value.upper()} | "
            f"Stale: {'Yes' if self.is_update_stale() else 'No'} | "
            f"Orphaned: {'Yes' if self.is_orphaned() else 'No'} | "
            f"Last Update: {self.state_last_updated_at.isoformat()}",
        )
        listened = self.get_listen_duration()
        line = f"Listened For: {listened:.0f}s"
        duration = self.current_play.data.duration if self.current_play else None
        position = self.get_position()
        if duration:
            line = f"{line} ({listened / duration * 100:.0f}%)"
            if position is not None:
                line = f"{position:.0f}/{duration:.0f}s | {line}"
        parts.append(line)
        return "\n".join(parts)

    def log_summary(self) -> None:
        """Write :meth:`text_summary` to the debug log."""
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(self.text_summary())

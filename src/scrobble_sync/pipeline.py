# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""From polled snapshots to submitted scrobbles.

Each source runs in its own :class:`SourcePoller` thread:

1. fetch a snapshot from the source
2. reconcile it (player state machines and/or history diffing) into
   candidate plays
3. drop candidates already discovered from this source
4. hand the rest to the :class:`ScrobbleDispatcher`, which skips plays the
   client already has and submits the remainder
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Final

from .cache import JsonStateCache
from .clients import ScrobbleClient, ScrobbleClientError
from .clock import Clock, SystemClock
from .history_diff import HistoryDiffEngine, get_list_diff, human_readable_diff
from .listen_range import DEFAULT_ALLOWED_DRIFT
from .matching import generic_source_play_match
from .models import (
    DEFAULT_ACCEPTABLE_ACCURACY,
    MalformedPlayError,
    PlatformId,
    PlayerStateData,
    PlayObject,
    SourceSnapshot,
    platform_id_from_play,
    platform_id_str,
)
from .notifier import LoggingNotifier, Notifier
from .player_state import DEFAULT_ORPHANED_INTERVAL, DEFAULT_STALE_INTERVAL, PlayerState
from .sources import SnapshotProvider, SourceError
from .thresholds import (
    PositionThresholds,
    ScrobbleThresholds,
    threshold_result_summary,
    time_passes_scrobble_threshold,
)
from .utils import build_track_string, custom_print

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERED_WINDOW: Final[int] = 30
DEFAULT_SCROBBLED_WINDOW: Final[int] = 50
DEFAULT_POLL_INTERVAL: Final[float] = 10.0  # seconds
DEFAULT_MAX_POLL_RETRIES: Final[int] = 5
DEFAULT_RETRY_MULTIPLIER: Final[float] = 1.5

_EPOCH: Final[datetime] = datetime.fromtimestamp(0, tz=timezone.utc)


def play_sort_key(play: PlayObject) -> datetime:
    """Sort key putting the oldest play first; undated plays sort first."""
    return play.data.play_date or _EPOCH


class DiscoveryLedger:
    """Recently discovered plays of one source, per platform."""

    def __init__(self, window: int = DEFAULT_DISCOVERED_WINDOW) -> None:
        self.window = window
        self._discovered: dict[str, deque[PlayObject]] = defaultdict(
            lambda: deque(maxlen=self.window),
        )

    def discovered(self, platform_id: PlatformId | None = None) -> list[PlayObject]:
        """Discovered plays, oldest first, for one platform or all of them."""
        if platform_id is not None:
            return list(self._discovered.get(platform_id_str(platform_id), ()))
        plays = [p for window in self._discovered.values() for p in window]
        return sorted(plays, key=play_sort_key)

    def existing_discovered(self, play: PlayObject) -> PlayObject | None:
        """The already discovered play matching ``play``, if any."""
        key = platform_id_str(platform_id_from_play(play))
        for existing in reversed(self._discovered.get(key, ())):
            if generic_source_play_match(existing, play, DEFAULT_ACCEPTABLE_ACCURACY):
                return existing
        return None

    def discover(self, plays: Iterable[PlayObject]) -> list[PlayObject]:
        """Record plays as discovered, skipping ones seen before.

        Returns:
            The newly discovered plays, oldest first
        """
        new: list[PlayObject] = []
        for play in sorted(plays, key=play_sort_key):
            existing = self.existing_discovered(play)
            if existing is not None:
                logger.debug(
                    "Already discovered %s", build_track_string(play, include_date=True),
                )
                continue
            self._discovered[platform_id_str(platform_id_from_play(play))].append(play)
            new.append(play)
        return new


class PositionalReconciler:
    """Runs one :class:`PlayerState` per player reported by a positional source."""

    def __init__(  # noqa: PLR0913
        self,
        scrobble_thresholds: ScrobbleThresholds | None = None,
        clock: Clock | None = None,
        stale_interval: float = DEFAULT_STALE_INTERVAL,
        orphaned_interval: float = DEFAULT_ORPHANED_INTERVAL,
        allowed_drift: float = DEFAULT_ALLOWED_DRIFT,
        position_thresholds: PositionThresholds | None = None,
    ) -> None:
        self.scrobble_thresholds = scrobble_thresholds or ScrobbleThresholds()
        self.clock = clock or SystemClock()
        self.stale_interval = stale_interval
        self.orphaned_interval = orphaned_interval
        self.allowed_drift = allowed_drift
        self.position_thresholds = position_thresholds or PositionThresholds()
        self.players: dict[str, PlayerState] = {}

    def get_player(self, platform_id: PlatformId) -> PlayerState:
        """The state machine for a platform, created on first use."""
        key = platform_id_str(platform_id)
        player = self.players.get(key)
        if player is None:
            logger.debug("New player %s", key)
            player = PlayerState(
                platform_id,
                clock=self.clock,
                stale_interval=self.stale_interval,
                orphaned_interval=self.orphaned_interval,
                allowed_drift=self.allowed_drift,
                position_thresholds=self.position_thresholds,
            )
            self.players[key] = player
        return player

    def passes_threshold(self, play: PlayObject) -> bool:
        """Has the play been listened to long enough to scrobble?"""
        result = time_passes_scrobble_threshold(
            self.scrobble_thresholds, play.data.listened_for or 0.0, play.data.duration,
        )
        logger.debug(
            "%s %s: %s",
            build_track_string(play),
            "passes" if result.passes else "does not pass",
            threshold_result_summary(result),
        )
        return result.passes

    @staticmethod
    def _with_position(state: PlayerStateData) -> PlayObject | None:
        play = state.play
        if play is None or state.position is None or play.meta.track_progress_position is not None:
            return play
        return PlayObject(play.data, replace(play.meta, track_progress_position=state.position))

    def process(self, states: Iterable[PlayerStateData]) -> list[PlayObject]:
        """Apply one poll's player snapshots.

        Players missing from the poll are checked for staleness; dead ones
        are finalized and removed.

        Returns:
            Plays that passed the scrobble threshold (may include plays that
            were already returned on an earlier poll)
        """
        candidates: list[PlayObject] = []
        reported: set[str] = set()

        for state in states:
            player = self.get_player(state.platform_id)
            reported.add(player.platform_id_str)
            current, finished = player.set_state(state.status, self._with_position(state))
            player.log_summary()
            candidate = finished if finished is not None else current
            if candidate is not None and self.passes_threshold(candidate):
                candidates.append(candidate)

        for key, player in list(self.players.items()):
            if key in reported:
                continue
            if player.is_dead():
                logger.debug("Removing dead player %s", key)
                player.current_listen_session_end()
                played = player.get_played_object()
                if played is not None and self.passes_threshold(played):
                    candidates.append(played)
                del self.players[key]
                continue
            player.check_stale()
            if player.is_orphaned():
                logger.debug("Player %s is orphaned", key)

        return candidates

    def display_info(self, names: dict[str, str] | None = None) -> dict[str, dict[str, Any]]:
        """Summary of every player for :func:`~scrobble_sync.utils.update_all_progress_displays`."""
        names = names or {}
        info: dict[str, dict[str, Any]] = {}
        for key, player in self.players.items():
            play = player.current_play
            info[key] = {
                "player": names.get(player.platform_id[0], key),
                "track": build_track_string(play) if play is not None else None,
                "status": player.reported_status.value,
                "position": player.get_position(),
                "duration": play.data.duration if play is not None else None,
                "listened": player.get_listen_duration() if play is not None else None,
            }
        return info


class HistoryReconciler:
    """Diffs a history source's recently played list between polls."""

    def __init__(
        self,
        engine: HistoryDiffEngine | None = None,
        name: str = "history",
        cache: JsonStateCache | None = None,
    ) -> None:
        """Create the reconciler, restoring the last known history from cache.

        Args:
            engine: Diff engine, a fresh one by default
            name: Source name used in logs and as the cache key
            cache: Where to persist the last known-good history
        """
        self.engine = engine or HistoryDiffEngine()
        self.name = name
        self.cache = cache
        if cache is not None:
            cached = cache.get_history(name)
            if cached:
                logger.debug("Restored %d cached history plays for %s", len(cached), name)
                self.engine.restore(cached)

    def process(self, history: Sequence[PlayObject]) -> list[PlayObject]:
        """Evaluate a fetched history list.

        Returns:
            Newly discovered plays
        """
        previous = self.engine.known_good
        result = self.engine.evaluate(history)

        if not result.consistent:
            logger.info(
                "%s history was not consistent with the last known state, "
                "nothing discovered: %s",
                self.name,
                result.reason,
            )
            if logger.isEnabledFor(logging.DEBUG) and previous is not None:
                logger.debug(
                    "Changes from last seen list:\n%s",
                    human_readable_diff(previous, history, get_list_diff(previous, history)),
                )

        if self.cache is not None and self.engine.known_good is not previous:
            self.cache.set_history(self.name, history)
        return result.plays


class SourceReconciler:
    """Routes each snapshot to the positional and history reconcilers."""

    def __init__(
        self,
        positional: PositionalReconciler | None = None,
        history: HistoryReconciler | None = None,
    ) -> None:
        self.positional = positional or PositionalReconciler()
        self.history = history

    def process(self, snapshot: SourceSnapshot) -> list[PlayObject]:
        """Candidate plays from one snapshot."""
        plays = self.positional.process(snapshot.players)
        if snapshot.history is not None:
            if self.history is None:
                self.history = HistoryReconciler()
            plays.extend(self.history.process(snapshot.history))
        return plays


class ScrobbleDispatcher:
    """Submits discovered plays to every client, skipping duplicates."""

    def __init__(
        self,
        clients: Iterable[ScrobbleClient],
        window: int = DEFAULT_SCROBBLED_WINDOW,
        notifier: Notifier | None = None,
    ) -> None:
        self.clients = list(clients)
        self.notifier = notifier or LoggingNotifier()
        self._scrobbled: dict[str, deque[PlayObject]] = {
            c.name: deque(maxlen=window) for c in self.clients
        }
        self._lock = threading.Lock()

    def prime(self) -> None:
        """Seed each client's window with what it already has upstream."""
        for client in self.clients:
            try:
                recent = client.get_recent_scrobbles()
            except ScrobbleClientError as exc:
                logger.warning("Could not fetch recent scrobbles from %s: %s", client.name, exc)
                continue
            with self._lock:
                self._scrobbled[client.name].extend(sorted(recent, key=play_sort_key))

    def existing_scrobble(self, client: ScrobbleClient, play: PlayObject) -> PlayObject | None:
        """The already scrobbled play matching ``play`` for a client, if any."""
        for existing in reversed(self._scrobbled[client.name]):
            if generic_source_play_match(existing, play):
                return existing
        return None

    def _forget(self, client: ScrobbleClient, play: PlayObject) -> None:
        window = self._scrobbled[client.name]
        if play in window:
            window.remove(play)

    def dispatch(self, plays: Iterable[PlayObject]) -> int:
        """Scrobble plays oldest first.

        Plays are claimed in each client's window under the lock and
        submitted outside it. A failed submission releases its claim.

        Returns:
            Number of successful submissions across all clients
        """
        pending: list[tuple[ScrobbleClient, PlayObject]] = []
        with self._lock:
            for play in sorted(plays, key=play_sort_key):
                for client in self.clients:
                    if client.is_own_play(play):
                        logger.debug(
                            "%s was read from the %s account, not resubmitting",
                            build_track_string(play),
                            client.name,
                        )
                        continue
                    if self.existing_scrobble(client, play) is not None:
                        logger.debug(
                            "%s already has %s", client.name, build_track_string(play),
                        )
                        continue
                    self._scrobbled[client.name].append(play)
                    pending.append((client, play))

        submitted = 0
        for client, play in pending:
            try:
                client.scrobble(play)
            except ScrobbleClientError as exc:
                logger.exception("Error scrobbling to %s", client.name)
                with self._lock:
                    self._forget(client, play)
                self.notifier.send(
                    "ERROR",
                    "Scrobble failed",
                    f"{build_track_string(play)} could not be scrobbled to "
                    f"{client.name}: {exc}",
                    {"client": client.name, "error": type(exc).__name__},
                )
                continue
            submitted += 1
            custom_print(f"Scrobbled to {client.name}: {build_track_string(play)}")
        return submitted


class SourcePoller:
    """Polls one source on an interval and forwards what it discovers."""

    def __init__(  # noqa: PLR0913
        self,
        provider: SnapshotProvider,
        on_discovered: Callable[[list[PlayObject]], Any],
        reconciler: SourceReconciler | None = None,
        ledger: DiscoveryLedger | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_retries: int = DEFAULT_MAX_POLL_RETRIES,
        retry_multiplier: float = DEFAULT_RETRY_MULTIPLIER,
        notifier: Notifier | None = None,
        stop_event: threading.Event | None = None,
        after_poll: Callable[[SourcePoller], Any] | None = None,
    ) -> None:
        """Create a poller.

        Args:
            provider: The source to poll
            on_discovered: Called with newly discovered plays, oldest first
            reconciler: Turns snapshots into candidate plays
            ledger: Remembers what this source already discovered
            interval: Seconds between polls
            max_retries: Consecutive failed polls before giving up
            retry_multiplier: Backoff factor applied per consecutive failure
            notifier: Told when the poller gives up
            stop_event: Set to stop polling, shared between pollers
            after_poll: Called after every successful poll
        """
        self.provider = provider
        self.on_discovered = on_discovered
        self.reconciler = reconciler or SourceReconciler()
        self.ledger = ledger or DiscoveryLedger()
        self.interval = interval
        self.max_retries = max_retries
        self.retry_multiplier = retry_multiplier
        self.notifier = notifier or LoggingNotifier()
        self.stop_event = stop_event or threading.Event()
        self.after_poll = after_poll

    @property
    def name(self) -> str:
        """Name of the polled source."""
        return self.provider.name

    def poll_once(self) -> list[PlayObject]:
        """Fetch, reconcile and forward one snapshot.

        A snapshot that arrives after the stop event was set, or that holds
        a malformed play, is discarded without touching any state.

        Returns:
            Newly discovered plays

        Raises:
            SourceError: If the source could not be read
        """
        snapshot = self.provider.fetch_snapshot()
        if self.stop_event.is_set():
            logger.debug("Stop requested while polling %s, discarding snapshot", self.name)
            return []

        try:
            snapshot.validate()
        except MalformedPlayError as exc:
            logger.warning("Skipping malformed snapshot from %s: %s", self.name, exc)
            return []

        discovered = self.ledger.discover(self.reconciler.process(snapshot))
        for play in discovered:
            custom_print(
                f"Discovered from {self.name}: {build_track_string(play, include_date=True)}",
            )
        if discovered:
            self.on_discovered(discovered)
        return discovered

    def run(self) -> None:
        """Poll until the stop event is set or retries are exhausted."""
        custom_print(f"Polling {self.name} every {self.interval}s")
        failures = 0
        while not self.stop_event.is_set():
            try:
                self.poll_once()
            except (SourceError, OSError) as exc:
                failures += 1
                logger.warning(
                    "Polling %s failed (%d/%d): %s",
                    self.name,
                    failures,
                    self.max_retries,
                    exc,
                )
                if failures > self.max_retries:
                    custom_print(
                        f"{self.name} failed {failures} times in a row, giving up", "ERROR",
                    )
                    self.notifier.send(
                        "ERROR",
                        "Source stopped",
                        f"Polling {self.name} failed {failures} times in a row: {exc}",
                        {"source": self.name},
                    )
                    return
                self.stop_event.wait(self.interval * self.retry_multiplier**failures)
                continue
            except ValueError:
                logger.exception(
                    "Could not reconcile snapshot from %s, skipping this poll", self.name,
                )
                self.stop_event.wait(self.interval)
                continue

            failures = 0
            if self.after_poll is not None:
                self.after_poll(self)
            self.stop_event.wait(self.interval)
        logger.debug("Stopped polling %s", self.name)


def run_pollers(
    pollers: Sequence[SourcePoller],
    stop_event: threading.Event,
    join_interval: float = 0.5,
) -> None:
    """Run every poller in its own thread until they finish or Ctrl+C.

    Args:
        pollers: Pollers sharing ``stop_event``
        stop_event: Set on shutdown to stop all pollers
        join_interval: Seconds between liveness checks
    """
    threads = [
        threading.Thread(target=poller.run, name=f"poller-{poller.name}", daemon=True)
        for poller in pollers
    ]
    for thread in threads:
        thread.start()
    try:
        while any(thread.is_alive() for thread in threads):
            for thread in threads:
                thread.join(join_interval)
    except KeyboardInterrupt:
        custom_print("\nShutting down...")
        stop_event.set()
        for thread in threads:
            thread.join()

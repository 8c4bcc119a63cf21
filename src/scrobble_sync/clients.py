# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Scrobble clients: where discovered plays are submitted."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Final, Protocol

import pylast  # type: ignore[import-untyped]

from .models import PlayObject
from .sources import played_track_to_play

logger = logging.getLogger(__name__)

# 4=Authentication failed, 9=Invalid session key, 14=Unauthorized token
AUTH_ERROR_CODES: Final[frozenset[int]] = frozenset({4, 9, 14})
# 29=Rate limit exceeded
RATE_LIMIT_ERROR_CODES: Final[frozenset[int]] = frozenset({29})
DEFAULT_RECENT_LIMIT: Final[int] = 50


class ScrobbleClientError(Exception):
    """Base class for scrobble submission failures."""


class LastFMAuthError(ScrobbleClientError):
    """Last.fm rejected the credentials or session."""


class LastFMRateLimitError(ScrobbleClientError):
    """Last.fm rate limited the request."""


class LastFMNetworkError(ScrobbleClientError):
    """Last.fm could not be reached."""


class LastFMUnknownError(ScrobbleClientError):
    """Last.fm returned an error we do not handle specifically."""


class ScrobbleClient(Protocol):
    """Destination for discovered plays."""

    name: str

    def scrobble(self, play: PlayObject) -> None:
        """Submit one play.

        Raises:
            ScrobbleClientError: If the submission failed
        """

    def get_recent_scrobbles(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[PlayObject]:
        """Plays already recorded upstream, newest first."""

    def is_own_play(self, play: PlayObject) -> bool:
        """Return True if ``play`` was read from this client's own account."""


def map_ws_error(exc: pylast.WSError) -> ScrobbleClientError:
    """Translate a Last.fm web service error into a client error."""
    raw_code = getattr(exc, "status", None)
    try:
        code = int(raw_code) if raw_code is not None else None
    except (TypeError, ValueError):
        code = None

    if code in AUTH_ERROR_CODES:
        return LastFMAuthError(str(exc))
    if code in RATE_LIMIT_ERROR_CODES:
        return LastFMRateLimitError(str(exc))
    return LastFMUnknownError(f"Last.fm API error {code}: {exc}")


def artist_string(play: PlayObject) -> str:
    """Single artist credit for services that take one artist field."""
    return ", ".join(play.data.artists)


class LastfmScrobbleClient:
    """Submits plays to Last.fm through pylast."""

    def __init__(
        self,
        network: pylast.LastFMNetwork,
        username: str | None = None,
        name: str = "lastfm",
    ) -> None:
        self.network = network
        self.username = username
        self.name = name

    @classmethod
    def from_credentials(
        cls,
        api_key: str,
        api_secret: str,
        username: str | None = None,
        password: str | None = None,
        session_key: str | None = None,
    ) -> LastfmScrobbleClient:
        """Authenticate with a session key or a username and password.

        Raises:
            ValueError: If neither a session key nor a username and password
                are given
        """
        if session_key:
            logger.info("Using Last.fm session key auth")
            network = pylast.LastFMNetwork(
                api_key=api_key, api_secret=api_secret, session_key=session_key,
            )
        elif username and password:
            logger.info("Using Last.fm username + password auth")
            network = pylast.LastFMNetwork(
                api_key=api_key,
                api_secret=api_secret,
                username=username,
                password_hash=pylast.md5(password),
            )
        else:
            msg = "Missing Last.fm credentials"
            raise ValueError(msg)
        return cls(network, username=username)

    def scrobble(self, play: PlayObject) -> None:
        """Scrobble a play, using its play date as the scrobble timestamp.

        Raises:
            LastFMAuthError: If Last.fm rejected the session
            LastFMRateLimitError: If Last.fm rate limited us
            LastFMUnknownError: For any other Last.fm API error
            LastFMNetworkError: If Last.fm could not be reached
        """
        played_at = play.data.play_date or datetime.now(timezone.utc)
        duration = play.data.duration
        try:
            self.network.scrobble(
                artist=artist_string(play),
                title=play.data.track,
                timestamp=int(played_at.timestamp()),
                album=play.data.album,
                duration=int(duration) if duration else None,
            )
        except pylast.WSError as exc:
            raise map_ws_error(exc) from exc
        except (pylast.PyLastError, OSError) as exc:
            raise LastFMNetworkError(str(exc)) from exc

    def is_own_play(self, play: PlayObject) -> bool:
        """Return True if ``play`` came from the history of the account we scrobble to."""
        if not self.username or not play.meta.user:
            return False
        return (
            play.meta.source == self.name
            and play.meta.user.lower() == self.username.lower()
        )

    def _user(self) -> pylast.User:
        if self.username:
            return self.network.get_user(self.username)
        return self.network.get_authenticated_user()

    def get_recent_scrobbles(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[PlayObject]:
        """Fetch the most recent scrobbles, newest first.

        Raises:
            ScrobbleClientError: If Last.fm could not be queried
        """
        try:
            recent = self._user().get_recent_tracks(limit=limit)
        except pylast.WSError as exc:
            raise map_ws_error(exc) from exc
        except (pylast.PyLastError, OSError) as exc:
            raise LastFMNetworkError(str(exc)) from exc
        return [
            played_track_to_play(track, source=self.name, user=self.username)
            for track in recent
        ]

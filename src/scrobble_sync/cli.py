# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Command line interface for scrobble-sync."""

from __future__ import annotations

import os
import threading
from collections.abc import Callable
from datetime import timezone
from typing import Annotated, Any

import pylast  # type: ignore[import-untyped]
import rich
import typer
from rich.console import Console
from rich.table import Table

from .cache import JsonStateCache
from .clients import LastfmScrobbleClient, ScrobbleClientError
from .config import get_config
from .history_diff import HistoryDiffEngine
from .notifier import Notifier, notifier_from_config
from .pipeline import (
    HistoryReconciler,
    PositionalReconciler,
    ScrobbleDispatcher,
    SourcePoller,
    SourceReconciler,
    run_pollers,
)
from .sources import LastfmHistorySource, SonosSource
from .thresholds import PositionThresholds, ScrobbleThresholds
from .utils import configure_logging, update_all_progress_displays

# Create Typer app instance
app = typer.Typer(
    name="scrobble-sync",
    help="Discover plays from your music sources and scrobble them",
    add_completion=False,
    no_args_is_help=True,  # Show help when no command is provided
)

STATE_CACHE_FILE = "state.json"


def build_client(config: dict[str, Any]) -> LastfmScrobbleClient:
    """Create the Last.fm client from validated configuration.

    Raises:
        typer.Exit: If Last.fm rejects the credentials
    """
    try:
        return LastfmScrobbleClient.from_credentials(
            api_key=str(config["LASTFM_API_KEY"]),
            api_secret=str(config["LASTFM_API_SECRET"]),
            username=config.get("LASTFM_USERNAME"),
            password=config.get("LASTFM_PASSWORD"),
            session_key=config.get("LASTFM_SESSION_KEY"),
        )
    except (pylast.PyLastError, ValueError) as exc:
        rich.print(f"[red]Error:[/red] Failed to initialize Last.fm network: {exc}")
        raise typer.Exit(1) from exc


def is_other_account(config: dict[str, Any]) -> bool:
    """Return True if the history user differs from the account scrobbled to."""
    history_user = config.get("LASTFM_HISTORY_USERNAME")
    username = config.get("LASTFM_USERNAME")
    return bool(history_user) and str(history_user).lower() != str(username or "").lower()


def _show_players(
    reconciler: PositionalReconciler, source: SonosSource,
) -> Callable[[SourcePoller], None]:
    def show(_poller: SourcePoller) -> None:
        display_info = reconciler.display_info(source.speaker_names())
        if display_info:
            update_all_progress_displays(display_info)

    return show


def build_pollers(  # noqa: PLR0913
    config: dict[str, Any],
    dispatcher: ScrobbleDispatcher,
    network: pylast.LastFMNetwork,
    notifier: Notifier,
    stop_event: threading.Event,
    *,
    sonos: bool,
    lastfm_history: bool,
) -> list[SourcePoller]:
    """Wire each enabled source to its reconciler and the dispatcher."""
    pollers: list[SourcePoller] = []
    common: dict[str, Any] = {
        "on_discovered": dispatcher.dispatch,
        "interval": config["POLL_INTERVAL"],
        "max_retries": config["MAX_POLL_RETRIES"],
        "notifier": notifier,
        "stop_event": stop_event,
    }

    if sonos:
        source = SonosSource(rediscovery_interval=config["SPEAKER_REDISCOVERY_INTERVAL"])
        positional = PositionalReconciler(
            scrobble_thresholds=ScrobbleThresholds(
                duration=config["SCROBBLE_THRESHOLD_DURATION"],
                percent=config["SCROBBLE_THRESHOLD_PERCENT"],
            ),
            stale_interval=config["PLAYER_STALE_INTERVAL"],
            orphaned_interval=config["PLAYER_ORPHANED_INTERVAL"],
            allowed_drift=config["ALLOWED_DRIFT"],
            position_thresholds=PositionThresholds(
                close_absolute=config["CLOSE_POSITION_ABSOLUTE"],
                close_percent=config["CLOSE_POSITION_PERCENT"],
                repeat_absolute=config["REPEAT_DURATION_ABSOLUTE"],
                repeat_percent=config["REPEAT_DURATION_PERCENT"],
            ),
        )
        pollers.append(
            SourcePoller(
                source,
                reconciler=SourceReconciler(positional=positional),
                after_poll=_show_players(positional, source),
                **common,
            ),
        )

    if lastfm_history:
        source_history = LastfmHistorySource(
            network, username=config.get("LASTFM_HISTORY_USERNAME"),
        )
        cache = JsonStateCache(config["DATA_DIR"] / STATE_CACHE_FILE)
        history = HistoryReconciler(
            HistoryDiffEngine(), name=source_history.name, cache=cache,
        )
        pollers.append(
            SourcePoller(
                source_history,
                reconciler=SourceReconciler(history=history),
                **common,
            ),
        )

    return pollers


@app.command()
def run(  # noqa: PLR0913, PLR0917
    sonos: Annotated[
        bool,
        typer.Option("--sonos/--no-sonos", help="Watch Sonos speakers"),
    ] = True,
    lastfm_history: Annotated[
        bool,
        typer.Option(
            "--lastfm-history/--no-lastfm-history",
            help="Watch Last.fm recently played history",
        ),
    ] = False,
    username: str | None = typer.Option(
        None,
        "--username",
        "-u",
        help="Last.fm username",
        envvar="LASTFM_USERNAME",
    ),
    password: str | None = typer.Option(
        None,
        "--password",
        "-p",
        help="Last.fm password",
        envvar="LASTFM_PASSWORD",
    ),
    api_key: str | None = typer.Option(
        None,
        "--api-key",
        "-k",
        help="Last.fm API key",
        envvar="LASTFM_API_KEY",
    ),
    api_secret: str | None = typer.Option(
        None,
        "--api-secret",
        "-s",
        help="Last.fm API secret",
        envvar="LASTFM_API_SECRET",
    ),
    history_user: str | None = typer.Option(
        None,
        "--history-user",
        help="Last.fm user whose history --lastfm-history reads",
        envvar="LASTFM_HISTORY_USERNAME",
    ),
    interval: float | None = typer.Option(
        None,
        "--interval",
        "-i",
        help="Polling interval in seconds",
        envvar="POLL_INTERVAL",
    ),
    rediscovery_interval: float | None = typer.Option(
        None,
        "--rediscovery",
        "-r",
        help="Speaker rediscovery interval in seconds",
        envvar="SPEAKER_REDISCOVERY_INTERVAL",
    ),
    threshold: float | None = typer.Option(
        None,
        "--threshold",
        "-t",
        help="Scrobble threshold percentage",
        envvar="SCROBBLE_THRESHOLD_PERCENT",
        min=0,
        max=100,
    ),
    threshold_duration: float | None = typer.Option(
        None,
        "--threshold-duration",
        "-d",
        help="Scrobble threshold in seconds listened",
        envvar="SCROBBLE_THRESHOLD_DURATION",
        min=0,
    ),
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging", is_flag=True),
    ] = False,
) -> None:
    """Start watching sources and scrobbling to Last.fm.

    Raises:
        typer.Exit: If the configuration is invalid or no source is enabled.
    """
    configure_logging("DEBUG" if debug else "INFO")

    overrides = {
        "LASTFM_USERNAME": username,
        "LASTFM_PASSWORD": password,
        "LASTFM_API_KEY": api_key,
        "LASTFM_API_SECRET": api_secret,
        "LASTFM_HISTORY_USERNAME": history_user,
        "POLL_INTERVAL": interval,
        "SPEAKER_REDISCOVERY_INTERVAL": rediscovery_interval,
        "SCROBBLE_THRESHOLD_PERCENT": threshold,
        "SCROBBLE_THRESHOLD_DURATION": threshold_duration,
    }
    for key, value in overrides.items():
        if value is not None:
            os.environ[key] = str(value)

    try:
        config = get_config()
    except ValueError as exc:
        rich.print(f"\n[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc

    if not sonos and not lastfm_history:
        rich.print("[red]Error:[/red] Enable at least one source")
        raise typer.Exit(1)

    if lastfm_history and not is_other_account(config):
        rich.print(
            "[red]Error:[/red] --lastfm-history must read a different account than "
            "the one scrobbled to, set --history-user",
        )
        raise typer.Exit(1)

    client = build_client(config)
    notifier = notifier_from_config(config)
    dispatcher = ScrobbleDispatcher([client], notifier=notifier)
    dispatcher.prime()

    stop_event = threading.Event()
    pollers = build_pollers(
        config,
        dispatcher,
        client.network,
        notifier,
        stop_event,
        sonos=sonos,
        lastfm_history=lastfm_history,
    )
    run_pollers(pollers, stop_event)


@app.command(name="recent")
def show_recent_tracks(
    limit: int = typer.Option(
        10,
        "--limit",
        "-n",
        help="Number of recent tracks to show",
        min=1,
        max=50,
    ),
) -> None:
    """Show recently scrobbled tracks.

    Raises:
        typer.Exit: If credentials are missing or Last.fm cannot be queried.
    """
    console = Console()

    try:
        config = get_config()
    except ValueError as exc:
        console.print(f"\n[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc

    with console.status("Connecting to Last.fm...") as status:
        client = build_client(config)
        status.update(f"Fetching last {limit} tracks...")
        try:
            recent = client.get_recent_scrobbles(limit=limit)
        except ScrobbleClientError as exc:
            console.print(f"\n[red]Error:[/red] Last.fm API error: {exc}")
            raise typer.Exit(1) from exc

    if not recent:
        console.print("[yellow]No recent tracks found.[/yellow]")
        return

    tracks_table = Table(title=f"Last {len(recent)} Scrobbled Tracks")
    tracks_table.add_column("#", style="dim")
    tracks_table.add_column("Artist", style="cyan")
    tracks_table.add_column("Title", style="green")
    tracks_table.add_column("Album", style="blue")
    tracks_table.add_column("Scrobbled At", style="magenta")

    for idx, play in enumerate(recent, 1):
        played_at = play.data.play_date
        tracks_table.add_row(
            str(idx),
            ", ".join(play.data.artists),
            play.data.track,
            play.data.album or "-",
            played_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
            if played_at
            else "-",
        )

    console.print(tracks_table)


@app.command(name="players")
def show_players(
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging", is_flag=True),
    ] = False,
) -> None:
    """Show what every Sonos speaker is playing right now."""
    configure_logging("DEBUG" if debug else "WARNING")
    source = SonosSource()
    snapshot = source.fetch_snapshot()
    names = source.speaker_names()

    display_info: dict[str, dict[str, Any]] = {}
    for state in snapshot.players:
        play = state.play
        device = state.platform_id[0]
        display_info[device] = {
            "player": names.get(device, device),
            "track": f"{', '.join(play.data.artists)} - {play.data.track}" if play else None,
            "status": state.status.value if state.status else None,
            "position": state.position,
            "duration": play.data.duration if play else None,
        }

    if not display_info:
        rich.print("[yellow]No Sonos speakers found.[/yellow]")
        return
    update_all_progress_displays(display_info)


def main() -> None:
    """Entry point for the CLI."""
    app()

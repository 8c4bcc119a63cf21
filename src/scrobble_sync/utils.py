# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Logging and console helpers shared across the package."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Final

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from .models import PlayObject

logger: Final[logging.Logger] = logging.getLogger("scrobble_sync")

console: Final[Console] = Console()

_LEVEL_STYLES: Final[dict[str, str]] = {
    "DEBUG": "dim",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "bold red",
}


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging and quiet down chatty third-party loggers."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        force=True,  # Ensure we reset any existing handlers
    )

    logging.getLogger("soco").setLevel(logging.INFO)

    # Completely suppress pylast HTTP request logging
    pylast_logger = logging.getLogger("pylast")
    pylast_logger.setLevel(logging.WARNING)
    pylast_logger.addHandler(logging.NullHandler())
    pylast_logger.propagate = False

    # Also suppress httpx logging which pylast uses internally
    httpx_logger = logging.getLogger("httpx")
    httpx_logger.setLevel(logging.WARNING)
    httpx_logger.propagate = False


def custom_print(message: str, level: str = "INFO") -> None:
    """Print a status line to the console and mirror it to the log.

    Args:
        message: Text to show
        level: Log level name, also selects the console style
    """
    level = level.upper()
    style = _LEVEL_STYLES.get(level, "")
    console.print(f"[{style}]{message}[/{style}]" if style else message)
    logger.log(getattr(logging, level, logging.INFO), message)


def build_track_string(play: PlayObject, include_date: bool = False) -> str:
    """Human-readable one-line description of a play."""
    artists = ", ".join(play.data.artists) or "(no artists)"
    text = f"{artists} - {play.data.track}"
    if play.meta.track_id:
        text = f"({play.meta.track_id}) {text}"
    if play.data.album:
        text = f"{text} [{play.data.album}]"
    if include_date and play.data.play_date is not None:
        text = f"{text} @ {play.data.play_date.isoformat()}"
    return text


def _format_seconds(value: float | None) -> str:
    if value is None:
        return "-"
    minutes, seconds = divmod(int(value), 60)
    return f"{minutes}:{seconds:02d}"


def update_all_progress_displays(display_info: Mapping[str, Mapping[str, Any]]) -> None:
    """Render the state of every tracked player as a table.

    Args:
        display_info: Player key to a mapping with ``player``, ``track``,
            ``status``, ``position``, ``duration`` and ``listened`` entries
    """
    table = Table(title="Players")
    table.add_column("Player", style="cyan")
    table.add_column("Track", style="green")
    table.add_column("Status", style="magenta")
    table.add_column("Position", justify="right")
    table.add_column("Listened", justify="right")

    for key, info in display_info.items():
        table.add_row(
            str(info.get("player", key)),
            str(info.get("track") or "-"),
            str(info.get("status") or "unknown"),
            f"{_format_seconds(info.get('position'))}/"
            f"{_format_seconds(info.get('duration'))}",
            _format_seconds(info.get("listened")),
        )

    console.print(table)

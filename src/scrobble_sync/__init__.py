# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Play-state reconciliation and scrobbling for polled music sources."""

from .history_diff import HistoryDiffEngine, HistoryDiffResult
from .listen_range import ListenProgress, ListenRange
from .models import (
    MalformedPlayError,
    PlayData,
    PlayerStateData,
    PlayMeta,
    PlayObject,
    ReportedPlayerStatus,
    SourceSnapshot,
    TemporalAccuracy,
)
from .player_state import PlayerState

__version__ = "0.2.0"
__all__ = [
    "HistoryDiffEngine",
    "HistoryDiffResult",
    "ListenProgress",
    "ListenRange",
    "MalformedPlayError",
    "PlayData",
    "PlayMeta",
    "PlayObject",
    "PlayerState",
    "PlayerStateData",
    "ReportedPlayerStatus",
    "SourceSnapshot",
    "TemporalAccuracy",
]

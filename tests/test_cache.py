"""Tests for the JSON state cache."""

from __future__ import annotations

from pathlib import Path

from conftest import START, make_play

from scrobble_sync.cache import JsonStateCache


def test_history_survives_reload(tmp_path: Path) -> None:
    """Saved history can be read back by a new cache instance."""
    path = tmp_path / "nested" / "state.json"
    play = make_play(track="Cached", artists=["A", "B"], play_date=START, track_id="id-1")
    JsonStateCache(path).set_history("lastfm", [play])

    restored = JsonStateCache(path).get_history("lastfm")

    assert restored is not None
    assert len(restored) == 1
    assert restored[0].data.track == "Cached"
    assert restored[0].data.artists == ["A", "B"]
    assert restored[0].data.play_date == START
    assert restored[0].meta.track_id == "id-1"


def test_missing_key_returns_none(tmp_path: Path) -> None:
    """Nothing cached for a source means no history."""
    assert JsonStateCache(tmp_path / "state.json").get_history("lastfm") is None


def test_corrupt_file_falls_back_to_empty(tmp_path: Path) -> None:
    """Invalid JSON is logged and ignored."""
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    cache = JsonStateCache(path)
    assert cache.data == {}
    assert cache.get_history("lastfm") is None


def test_non_dict_file_falls_back_to_empty(tmp_path: Path) -> None:
    """A JSON document that is not an object is ignored."""
    path = tmp_path / "state.json"
    path.write_text("[1, 2]", encoding="utf-8")
    assert JsonStateCache(path).data == {}


def test_unreadable_history_entry_is_ignored(tmp_path: Path) -> None:
    """History entries without a track are treated as no cache."""
    path = tmp_path / "state.json"
    path.write_text('{"history": {"lastfm": [{"data": {}}]}}', encoding="utf-8")
    assert JsonStateCache(path).get_history("lastfm") is None

"""Tests for operator notifications."""

from __future__ import annotations

import logging
from typing import Any

import requests

from scrobble_sync.notifier import (
    LoggingNotifier,
    WebhookNotifier,
    notifier_from_config,
)


class FakeResponse:
    def raise_for_status(self) -> None:
        return None


class FakeSession:
    """Captures POSTs instead of sending them."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.posts: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        if self.error is not None:
            raise self.error
        self.posts.append({"url": url, **kwargs})
        return FakeResponse()


def test_webhook_posts_json_payload() -> None:
    """Notifications at or above the minimum level are posted."""
    session = FakeSession()
    notifier = WebhookNotifier(" https://hooks.example/x ", session=session)
    notifier.send("error", "Scrobble failed", "details", {"client": "lastfm"})

    assert len(session.posts) == 1
    post = session.posts[0]
    assert post["url"] == "https://hooks.example/x"
    assert post["json"] == {
        "level": "ERROR",
        "title": "scrobble-sync: Scrobble failed",
        "message": "details",
        "extra": {"client": "lastfm"},
    }


def test_webhook_filters_below_min_level() -> None:
    """Notifications below the minimum level are dropped."""
    session = FakeSession()
    WebhookNotifier("https://hooks.example/x", min_level="ERROR", session=session).send(
        "WARNING", "title", "message",
    )
    assert session.posts == []


def test_webhook_failures_are_swallowed() -> None:
    """A failing webhook never raises."""
    session = FakeSession(error=requests.ConnectionError("refused"))
    WebhookNotifier("https://hooks.example/x", session=session).send("ERROR", "t", "m")


def test_logging_notifier_logs(caplog) -> None:
    """The logging notifier writes at the notification level."""
    with caplog.at_level(logging.WARNING, logger="scrobble_sync.notifier"):
        LoggingNotifier().send("WARNING", "Title", "Message")
    assert "Title: Message" in caplog.text


def test_notifier_from_config() -> None:
    """A webhook URL selects the webhook notifier."""
    assert isinstance(notifier_from_config({}), LoggingNotifier)
    notifier = notifier_from_config(
        {"NOTIFY_WEBHOOK_URL": "https://hooks.example/x", "NOTIFY_MIN_LEVEL": "ERROR"},
    )
    assert isinstance(notifier, WebhookNotifier)
    assert notifier.min_level == logging.ERROR

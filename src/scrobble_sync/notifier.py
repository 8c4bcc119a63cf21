# Copyright (c) 2025 Denis Moskalets
# Licensed under the MIT License.

"""Best-effort operator notifications.

Notifications never raise: a failed delivery is logged and dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Final, Protocol

import requests

logger = logging.getLogger(__name__)

LEVELS: Final[dict[str, int]] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}
DEFAULT_MIN_LEVEL: Final[str] = "WARNING"
DEFAULT_APP_TAG: Final[str] = "scrobble-sync"
WEBHOOK_TIMEOUT: Final[float] = 5.0  # seconds


def level_value(level: str) -> int:
    """Numeric value of a level name; unknown names count as WARNING."""
    return LEVELS.get(level.upper(), logging.WARNING)


class Notifier(Protocol):
    """Something that can deliver a short operator notification."""

    def send(
        self,
        level: str,
        title: str,
        message: str,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        """Deliver a notification."""


class LoggingNotifier:
    """Writes notifications to the log."""

    def send(
        self,
        level: str,
        title: str,
        message: str,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        """Log the notification at its level."""
        logger.log(level_value(level), "%s: %s %s", title, message, dict(extra or {}))


class WebhookNotifier:
    """POSTs notifications as JSON to a webhook URL."""

    def __init__(
        self,
        webhook_url: str,
        min_level: str = DEFAULT_MIN_LEVEL,
        app_tag: str = DEFAULT_APP_TAG,
        session: requests.Session | None = None,
    ) -> None:
        """Create a webhook notifier.

        Args:
            webhook_url: Where to POST notifications
            min_level: Notifications below this level are dropped
            app_tag: Prefix for notification titles
            session: HTTP session to reuse, a new one by default
        """
        self.webhook_url = webhook_url.strip()
        self.min_level = level_value(min_level)
        self.app_tag = app_tag
        self.session = session or requests.Session()

    def send(
        self,
        level: str,
        title: str,
        message: str,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        """POST the notification if it is at or above the minimum level."""
        if level_value(level) < self.min_level:
            return

        payload = {
            "level": level.upper(),
            "title": f"{self.app_tag}: {title}",
            "message": message,
            "extra": dict(extra or {}),
        }
        try:
            response = self.session.post(
                self.webhook_url, json=payload, timeout=WEBHOOK_TIMEOUT,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.debug("Notification send failed: %s", exc)


def notifier_from_config(config: Mapping[str, Any]) -> Notifier:
    """Build the notifier described by the configuration.

    Returns:
        A :class:`WebhookNotifier` when ``NOTIFY_WEBHOOK_URL`` is set, else a
        :class:`LoggingNotifier`
    """
    url = config.get("NOTIFY_WEBHOOK_URL")
    if url:
        return WebhookNotifier(
            str(url), min_level=str(config.get("NOTIFY_MIN_LEVEL") or DEFAULT_MIN_LEVEL),
        )
    return LoggingNotifier()

"""Push notifications and notification clicks."""

import logging
import threading
from typing import Any

from .lifecycle import Clients
from .models import Notification

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Hook Line Studio"
DEFAULT_BODY = "Hook Line Studio notification"
NOTIFICATION_ICON = "/icon-192x192.png"
NOTIFICATION_BADGE = "/badge-72x72.png"

# Notifications kept for inspection; older ones are dropped.
MAX_NOTIFICATIONS = 50


def build_notification(data: dict[str, Any] | None) -> Notification:
    """Build a notification from a push payload, filling in defaults."""
    if not isinstance(data, dict):
        data = {}
    extra = data.get("data")
    options = {
        "body": data.get("body") or DEFAULT_BODY,
        "icon": NOTIFICATION_ICON,
        "badge": NOTIFICATION_BADGE,
        "tag": data.get("tag") or "default",
        "requireInteraction": bool(data.get("requireInteraction", False)),
        "data": extra if isinstance(extra, dict) else {},
    }
    return Notification(title=data.get("title") or DEFAULT_TITLE, options=options)


class Notifications:
    """Shows push notifications and handles clicks on them."""

    def __init__(self, clients: Clients) -> None:
        self._clients = clients
        self._shown: list[Notification] = []
        self._lock = threading.Lock()

    def push(self, data: dict[str, Any] | None) -> Notification:
        logger.info("Push notification received")
        notification = build_notification(data)
        with self._lock:
            self._shown.append(notification)
            del self._shown[:-MAX_NOTIFICATIONS]
        return notification

    def click(self, notification: Notification) -> str:
        """Close the notification and open a window at its target URL."""
        logger.info("Notification clicked")
        notification.close()
        url = notification.data.get("url") or "/"
        self._clients.open_window(url)
        return url

    def find(self, tag: str) -> Notification | None:
        """Most recent open notification with the given tag."""
        with self._lock:
            for notification in reversed(self._shown):
                if notification.options.get("tag") == tag and not notification.closed:
                    return notification
        return None

    @property
    def shown(self) -> list[Notification]:
        with self._lock:
            return list(self._shown)

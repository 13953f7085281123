"""User-visible notifications (the toast layer of the UI)."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Protocol

logger = logging.getLogger(__name__)

NotificationLevel = Literal["info", "success", "warning", "error"]


@dataclass(slots=True)
class Notification:
    title: str
    description: str
    level: NotificationLevel = "info"


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LoggingNotifier:
    """Default sink: notifications go to the service log."""

    _LEVELS = {
        "info": logging.INFO,
        "success": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    def notify(self, notification: Notification) -> None:
        logger.log(
            self._LEVELS.get(notification.level, logging.INFO),
            "%s: %s",
            notification.title,
            notification.description,
        )


class CollectingNotifier:
    """Keeps notifications in memory so an API caller can drain them."""

    def __init__(self) -> None:
        self.items: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.items.append(notification)

    def drain(self) -> list[Notification]:
        items, self.items = self.items, []
        return items

"""Transient user notifications (toasts) raised by the timeline services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional, Protocol, runtime_checkable


LOGGER = logging.getLogger(__name__)

Variant = Literal["default", "destructive"]


@dataclass(frozen=True)
class NotificationAction:
    label: str
    href: str


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    variant: Variant = "default"
    action: Optional[NotificationAction] = None
    entry_id: Optional[str] = None


@runtime_checkable
class Notifier(Protocol):
    def notify(self, notification: Notification) -> None:
        """Show *notification* to the user."""


class NotificationLog:
    """Notifier that records every notification and optionally forwards it."""

    def __init__(self, forward: Optional[Callable[[Notification], None]] = None) -> None:
        self._items: List[Notification] = []
        self._forward = forward

    @property
    def items(self) -> List[Notification]:
        return list(self._items)

    def notify(self, notification: Notification) -> None:
        self._items.append(notification)
        level = logging.WARNING if notification.variant == "destructive" else logging.INFO
        LOGGER.log(level, "Notification: %s - %s", notification.title, notification.description)
        if self._forward is not None:
            self._forward(notification)

    def titled(self, title: str) -> List[Notification]:
        return [item for item in self._items if item.title == title]

    def clear(self) -> None:
        self._items.clear()


def error_notification(description: str, *, title: str = "Error", entry_id: Optional[str] = None) -> Notification:
    return Notification(title=title, description=description, variant="destructive", entry_id=entry_id)


__all__ = [
    "Notification",
    "NotificationAction",
    "NotificationLog",
    "Notifier",
    "Variant",
    "error_notification",
]

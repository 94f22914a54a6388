"""Reminder toggling and external calendar export for single timeline entries."""

from __future__ import annotations

import logging
import webbrowser
from typing import Callable, Optional

from ..errors import ExportLinkError, ReminderToggleError
from ..models import CalendarProvider, LiveSessionEntry, Role
from .adapter import EventSourceAdapter
from .events import emit_reminder_event
from .notifications import Notification, Notifier, error_notification
from .query import TimelineQueryEngine


LOGGER = logging.getLogger(__name__)

Opener = Callable[[str], object]

EXPORT_FAILURE_MESSAGE = "Failed to add event to calendar"


class ReminderCoordinator:
    """Commit reminder flips after backend confirmation and open export links.

    Failures are reported through the notifier and never touch other entries.
    """

    def __init__(
        self,
        engine: TimelineQueryEngine,
        adapter: EventSourceAdapter,
        notifier: Optional[Notifier] = None,
        *,
        opener: Opener = webbrowser.open,
    ) -> None:
        self._engine = engine
        self._adapter = adapter
        self._notifier = notifier
        self._opener = opener

    def _notify(self, notification: Notification) -> None:
        if self._notifier is not None:
            self._notifier.notify(notification)

    async def toggle_reminder(self, entry_id: str, current_state: bool) -> bool:
        """Ask the backend to flip the reminder; return the flag now held."""

        enabled = not current_state
        entry = self._engine.find(entry_id)
        try:
            if entry is None:
                raise ReminderToggleError(f"Unknown entry {entry_id}", entry_id=entry_id)
            if not isinstance(entry, LiveSessionEntry):
                raise ReminderToggleError("Reminders are only available for live sessions", entry_id=entry_id)
            if self._adapter.role is not Role.STUDENT:
                raise ReminderToggleError("Only students can set reminders", entry_id=entry_id)
        except ReminderToggleError as error:
            LOGGER.warning("Rejected reminder toggle: %s", error.message)
            self._notify(error_notification(ReminderToggleError.default_message, entry_id=entry_id))
            return bool(current_state)

        result = await self._adapter.set_reminder(entry_id, enabled)
        if not result.ok:
            reason = result.error.message if result.error else ReminderToggleError.default_message
            emit_reminder_event(
                "Reminder toggle failed",
                payload={"entry_id": entry_id, "enabled": enabled, "error": reason},
                level=logging.WARNING,
            )
            self._notify(error_notification(ReminderToggleError.default_message, entry_id=entry_id))
            return entry.is_reminded

        self._engine.set_reminded(entry_id, enabled)
        emit_reminder_event("Reminder updated", payload={"entry_id": entry_id, "enabled": enabled})
        if enabled:
            self._notify(
                Notification(
                    title="Reminder Set",
                    description="You will be notified before this event starts",
                    entry_id=entry_id,
                )
            )
        else:
            self._notify(
                Notification(
                    title="Reminder Removed",
                    description="You will no longer receive notifications for this event",
                    entry_id=entry_id,
                )
            )
        return enabled

    async def export_to_calendar(self, entry_id: str, provider: CalendarProvider | str) -> Optional[str]:
        """Fetch the provider link for *entry_id*, open it and return it."""

        result = await self._adapter.get_calendar_export_link(entry_id, provider)
        if not result.ok or result.url is None:
            message = result.error.message if result.error else ExportLinkError.default_message
            emit_reminder_event(
                "Calendar export failed",
                payload={"entry_id": entry_id, "provider": provider, "error": message},
                level=logging.WARNING,
            )
            self._notify(error_notification(EXPORT_FAILURE_MESSAGE, entry_id=entry_id))
            return None

        emit_reminder_event(
            "Opening calendar export", payload={"entry_id": entry_id, "provider": provider}
        )
        try:
            self._opener(result.url)
        except Exception as error:  # noqa: BLE001 - a broken opener must not escape the action row
            LOGGER.warning("Unable to open calendar link %s: %s", result.url, error)
            self._notify(error_notification(EXPORT_FAILURE_MESSAGE, entry_id=entry_id))
            return None
        return result.url


__all__ = ["EXPORT_FAILURE_MESSAGE", "Opener", "ReminderCoordinator"]

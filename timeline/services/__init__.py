"""Timeline services: retrieval, live updates, reminders, export and persistence."""

from .adapter import AdapterResult, EventSourceAdapter
from .live_status import InMemoryPushChannel, LiveStatusSynchronizer, SsePushChannel, StatusChange
from .notifications import Notification, NotificationLog
from .query import LoadOutcome, TimelineQueryEngine
from .reminders import ReminderCoordinator
from .url_state import HistoryNavigator, UrlStateSynchronizer

__all__ = [
    "AdapterResult",
    "EventSourceAdapter",
    "HistoryNavigator",
    "InMemoryPushChannel",
    "LiveStatusSynchronizer",
    "LoadOutcome",
    "Notification",
    "NotificationLog",
    "ReminderCoordinator",
    "SsePushChannel",
    "StatusChange",
    "TimelineQueryEngine",
    "UrlStateSynchronizer",
]

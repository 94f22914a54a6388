"""Apply pushed live-session status changes to the entries held by the query engine."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Protocol, Set, runtime_checkable

import httpx

from ..models import LiveSessionEntry, LiveStatus
from .events import emit_push_event
from .notifications import Notification, NotificationAction, Notifier
from .query import TimelineQueryEngine


LOGGER = logging.getLogger(__name__)

STATUS_UPDATE_EVENT = "lecture-status-update"
STREAM_PATH = "/api/events/stream"

Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class StatusChange:
    """One status transition delivered by the push channel.

    ``status`` stays a raw string until the synchronizer validates it.
    """

    entry_id: str
    status: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StatusChange":
        raw_id = payload.get("lectureId", payload.get("entryId"))
        if raw_id is None or not str(raw_id).strip():
            raise ValueError("status update is missing an entry id")
        status = payload.get("status")
        return cls(entry_id=str(raw_id).strip(), status=str(status or "").strip().upper())

    def to_payload(self) -> dict:
        return {"lectureId": self.entry_id, "status": self.status}


StatusCallback = Callable[[StatusChange], None]


@runtime_checkable
class PushChannel(Protocol):
    def subscribe(self, callback: StatusCallback) -> Unsubscribe:
        """Deliver every future :class:`StatusChange` to *callback*."""


class InMemoryPushChannel:
    """Synchronous fan-out of status changes inside one process."""

    def __init__(self) -> None:
        self._callbacks: List[StatusCallback] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def subscribe(self, callback: StatusCallback) -> Unsubscribe:
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def publish(self, change: StatusChange | Mapping[str, Any]) -> None:
        if not isinstance(change, StatusChange):
            change = StatusChange.from_payload(change)
        for callback in list(self._callbacks):
            callback(change)


class _SseDecoder:
    """Accumulate ``text/event-stream`` lines into ``(event, data)`` pairs."""

    def __init__(self) -> None:
        self._event = "message"
        self._data: List[str] = []

    def feed(self, line: str) -> Optional[tuple]:
        if not line:
            if not self._data:
                self._event = "message"
                return None
            message = (self._event, "\n".join(self._data))
            self._event = "message"
            self._data = []
            return message
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None


class SsePushChannel:
    """Read status updates from the backend's server-sent event stream.

    The reader runs as a background task on the current event loop while at
    least one subscriber is registered.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        path: str = STREAM_PATH,
        headers: Optional[Mapping[str, str]] = None,
        reconnect_delay: float = 5.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=None)
        self._url = path
        self._headers = dict(headers or {})
        self._reconnect_delay = max(0.0, float(reconnect_delay))
        self._callbacks: List[StatusCallback] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, callback: StatusCallback) -> Unsubscribe:
        self._callbacks.append(callback)
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)
            if not self._callbacks:
                self._cancel()

        return _unsubscribe

    async def close(self) -> None:
        task = self._task
        self._cancel()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._owns_client:
            await self._client.aclose()

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        while self._callbacks:
            try:
                await self._consume()
            except (httpx.HTTPError, httpx.StreamError) as error:
                LOGGER.warning("Status stream interrupted: %s", error)
            except Exception:  # noqa: BLE001 - reconnect on any reader failure
                LOGGER.exception("Status stream reader failed")
            if not self._reconnect_delay:
                return
            await asyncio.sleep(self._reconnect_delay)

    async def _consume(self) -> None:
        decoder = _SseDecoder()
        headers = {"Accept": "text/event-stream", **self._headers}
        async with self._client.stream("GET", self._url, headers=headers) as response:
            response.raise_for_status()
            emit_push_event("Connected to status stream", payload={"url": str(response.url)})
            async for line in response.aiter_lines():
                message = decoder.feed(line.rstrip("\r"))
                if message is None:
                    continue
                event, data = message
                if event != STATUS_UPDATE_EVENT:
                    continue
                self._dispatch(data)

    def _dispatch(self, data: str) -> None:
        try:
            payload = json.loads(data)
            change = StatusChange.from_payload(payload)
        except (ValueError, AttributeError) as error:
            LOGGER.warning("Ignoring malformed status update %r: %s", data, error)
            return
        for callback in list(self._callbacks):
            callback(change)


def live_announcement(entry: LiveSessionEntry) -> Notification:
    return Notification(
        title="Lecture is Live!",
        description=f"{entry.title} has started.",
        action=NotificationAction(
            label="Join Now",
            href=f"/content/{entry.course_id}/player/{entry.id}",
        ),
        entry_id=entry.id,
    )


class LiveStatusSynchronizer:
    """Route push updates into :meth:`TimelineQueryEngine.set_status`.

    Only ``status`` ever changes; entries are never added or removed here. A
    transition onto ``LIVE`` is announced once until a later push moves the
    entry off ``LIVE`` again.
    """

    def __init__(
        self,
        engine: TimelineQueryEngine,
        channel: PushChannel,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self._engine = engine
        self._channel = channel
        self._notifier = notifier
        self._unsubscribe: Optional[Unsubscribe] = None
        self._announced: Set[str] = set()

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._channel.subscribe(self.handle)
            emit_push_event("Subscribed to status updates")

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            emit_push_event("Unsubscribed from status updates")

    def handle(self, change: StatusChange) -> bool:
        """Apply *change*; return ``True`` when the held entry set changed."""

        entry = self._engine.find(change.entry_id)
        if entry is None:
            emit_push_event(
                "Ignored update for unknown entry",
                payload={"entry_id": change.entry_id, "status": change.status},
                level=logging.DEBUG,
            )
            return False
        if not isinstance(entry, LiveSessionEntry):
            LOGGER.debug("Ignoring live status update for exam %s", change.entry_id)
            return False
        try:
            status = LiveStatus(change.status)
        except ValueError:
            LOGGER.warning(
                "Ignoring invalid live status %r for entry %s", change.status, change.entry_id
            )
            return False

        changed = self._engine.set_status(entry.id, status)
        emit_push_event(
            "Applied status update",
            payload={"entry_id": entry.id, "status": status, "changed": changed},
        )

        if status is not LiveStatus.LIVE:
            self._announced.discard(entry.id)
            return changed
        if entry.status is LiveStatus.LIVE or entry.id in self._announced:
            return changed
        self._announced.add(entry.id)
        if self._notifier is not None:
            updated = self._engine.find(entry.id)
            if isinstance(updated, LiveSessionEntry):
                self._notifier.notify(live_announcement(updated))
        return changed


__all__ = [
    "InMemoryPushChannel",
    "LiveStatusSynchronizer",
    "PushChannel",
    "STATUS_UPDATE_EVENT",
    "STREAM_PATH",
    "SsePushChannel",
    "StatusChange",
    "live_announcement",
]

"""One interactive timeline view: filters, month, live sync, actions and URL."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from .config import TimelineSettings
from .models import (
    CalendarProvider,
    FilterState,
    LiveSessionEntry,
    StatusFilter,
    TimelineEntry,
    ViewMode,
    ensure_utc,
    utc_now,
)
from .services.adapter import EventSourceAdapter
from .services.calendar import CalendarDayBucket, add_months, entries_on, month_start, project_calendar
from .services.live_status import LiveStatusSynchronizer, PushChannel
from .services.notifications import NotificationLog, Notifier
from .services.query import Clock, LoadOutcome, TimelineQueryEngine
from .services.reminders import Opener, ReminderCoordinator
from .services.url_state import (
    DEFAULT_PATH,
    HistoryNavigator,
    Navigator,
    UrlStateSynchronizer,
    hydrate_filter_state,
)


LOGGER = logging.getLogger(__name__)

ROLLOVER_GRACE_SECONDS = 1.0


async def load_upcoming(
    adapter: EventSourceAdapter,
    *,
    limit: int = 3,
    notifier: Optional[Notifier] = None,
    clock: Clock = utc_now,
) -> Tuple[TimelineEntry, ...]:
    """Dashboard widget query: the next *limit* entries with no filters."""

    engine = TimelineQueryEngine(adapter, notifier=notifier, page_size=limit, clock=clock)
    outcome = await engine.load(
        FilterState(view_mode=ViewMode.LIST), show_loading_indicator=False
    )
    return outcome.entries


class TimelineSession:
    """Glue the timeline services together for one calendar/list view.

    Every filter change reloads through the query engine and schedules a
    debounced URL write; :meth:`close` cancels every timer the session owns.
    """

    def __init__(
        self,
        adapter: EventSourceAdapter,
        *,
        channel: Optional[PushChannel] = None,
        notifier: Optional[Notifier] = None,
        navigator: Optional[Navigator] = None,
        settings: Optional[TimelineSettings] = None,
        filters: Optional[FilterState] = None,
        path: str = DEFAULT_PATH,
        clock: Clock = utc_now,
        opener: Opener = webbrowser.open,
    ) -> None:
        settings = settings or TimelineSettings()
        self._settings = settings
        self._adapter = adapter
        self._clock = clock
        self._notifier: Notifier = notifier or NotificationLog()
        self._engine = TimelineQueryEngine(
            adapter,
            notifier=self._notifier,
            page_size=settings.page_size,
            calendar_limit=settings.calendar_limit,
            clock=clock,
        )
        self._live = (
            LiveStatusSynchronizer(self._engine, channel, self._notifier)
            if channel is not None
            else None
        )
        self._reminders = ReminderCoordinator(
            self._engine, adapter, self._notifier, opener=opener
        )
        self._navigator = navigator or HistoryNavigator(path)
        self._url = UrlStateSynchronizer(
            self._navigator, path, debounce_seconds=settings.url_debounce_seconds
        )
        self._filters = filters or FilterState()
        self._month = month_start(self._filters.selected_date or self._engine.today())
        self._url.mark_written(self._filters)
        self._rollover_handle: Optional[asyncio.TimerHandle] = None
        self._rollover_task: Optional[asyncio.Task] = None
        self._today = self._engine.today()
        self._closed = False

    @classmethod
    def from_url(cls, url: str, adapter: EventSourceAdapter, **kwargs: object) -> "TimelineSession":
        """Build a session whose filters and month are hydrated from *url*."""

        path, _, query = url.partition("?")
        path = path or DEFAULT_PATH
        filters = hydrate_filter_state(query)
        if "navigator" not in kwargs or kwargs["navigator"] is None:
            kwargs["navigator"] = HistoryNavigator(url)
        session = cls(adapter, filters=filters, path=path, **kwargs)  # type: ignore[arg-type]
        session._url.mark_written(filters, url)
        return session

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def filters(self) -> FilterState:
        return self._filters

    @property
    def month(self) -> date:
        return self._month

    @property
    def entries(self) -> Tuple[TimelineEntry, ...]:
        return self._engine.entries

    @property
    def engine(self) -> TimelineQueryEngine:
        return self._engine

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @property
    def url_sync(self) -> UrlStateSynchronizer:
        return self._url

    @property
    def navigator(self) -> Navigator:
        return self._navigator

    @property
    def loading(self) -> bool:
        return self._engine.loading

    @property
    def total_pages(self) -> int:
        return self._engine.total_pages

    @property
    def today(self) -> date:
        return self._engine.today()

    def calendar_buckets(self) -> Tuple[CalendarDayBucket, ...]:
        return project_calendar(self._engine.entries, self._month, self._adapter.time_zone.key)

    def entries_on(self, day: date) -> list:
        return entries_on(self._engine.entries, day, self._adapter.time_zone)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> LoadOutcome:
        if self._live is not None:
            self._live.start()
        outcome = await self.refresh()
        self._url.schedule(self._filters)
        self._url.flush()
        self._arm_rollover()
        return outcome

    async def refresh(self, *, show_loading_indicator: bool = True) -> LoadOutcome:
        outcome = await self._engine.load(
            self._filters, month=self._month, show_loading_indicator=show_loading_indicator
        )
        if (
            outcome.ok
            and self._filters.view_mode is ViewMode.LIST
            and outcome.page != self._filters.page
        ):
            LOGGER.debug("Clamping page %s to %s", self._filters.page, outcome.page)
            self._update(page=outcome.page)
        return outcome

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._live is not None:
            self._live.stop()
        self._url.close()
        if self._rollover_handle is not None:
            self._rollover_handle.cancel()
            self._rollover_handle = None
        task = self._rollover_task
        self._rollover_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Filter changes
    # ------------------------------------------------------------------
    def _update(self, **changes: object) -> None:
        self._filters = self._filters.evolve(**changes)
        self._url.schedule(self._filters)

    async def set_view(self, view_mode: ViewMode) -> LoadOutcome:
        self._update(view_mode=ViewMode(view_mode), page=1)
        return await self.refresh()

    async def set_status_filter(self, status_filter: StatusFilter) -> LoadOutcome:
        self._update(status_filter=StatusFilter(status_filter), page=1)
        return await self.refresh()

    def set_search_query(self, query: str) -> None:
        """Record the text being typed; loading waits for :meth:`submit_search`."""

        self._update(search_query=query)

    async def submit_search(self, query: Optional[str] = None) -> LoadOutcome:
        if query is not None:
            self._update(search_query=query, page=1)
        else:
            self._update(page=1)
        return await self.refresh(show_loading_indicator=False)

    async def go_to_page(self, page: int) -> LoadOutcome:
        page = min(max(1, int(page)), self._engine.total_pages)
        self._update(page=page)
        return await self.refresh()

    async def previous_month(self) -> LoadOutcome:
        return await self.show_month(add_months(self._month, -1))

    async def next_month(self) -> LoadOutcome:
        return await self.show_month(add_months(self._month, 1))

    async def go_to_today(self) -> LoadOutcome:
        return await self.show_month(month_start(self._engine.today()))

    async def show_month(self, month: date) -> LoadOutcome:
        month = month_start(month)
        self._month = month
        self._update(selected_date=None)
        return await self.refresh()

    async def select_date(self, day: date) -> list:
        """Select *day* and return its entries for the day dialog."""

        self._update(selected_date=day)
        if self._filters.view_mode is ViewMode.LIST:
            await self.refresh()
        elif month_start(day) != self._month:
            self._month = month_start(day)
            await self.refresh()
        return self.entries_on(day)

    # ------------------------------------------------------------------
    # Entry actions
    # ------------------------------------------------------------------
    async def toggle_reminder(self, entry_id: str) -> bool:
        entry = self._engine.find(entry_id)
        current = entry.is_reminded if isinstance(entry, LiveSessionEntry) else False
        return await self._reminders.toggle_reminder(entry_id, current)

    async def export_to_calendar(
        self, entry_id: str, provider: CalendarProvider | str
    ) -> Optional[str]:
        return await self._reminders.export_to_calendar(entry_id, provider)

    async def upcoming(self, limit: Optional[int] = None) -> Tuple[TimelineEntry, ...]:
        return await load_upcoming(
            self._adapter,
            limit=limit or self._settings.widget_limit,
            notifier=self._notifier,
            clock=self._clock,
        )

    # ------------------------------------------------------------------
    # Day rollover
    # ------------------------------------------------------------------
    def seconds_until_midnight(self) -> float:
        tz = self._adapter.time_zone
        now = self._clock().astimezone(tz)
        midnight = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=tz)
        remaining = ensure_utc(midnight) - ensure_utc(now)
        return max(0.0, remaining.total_seconds()) + ROLLOVER_GRACE_SECONDS

    def _arm_rollover(self) -> None:
        if self._closed:
            return
        loop = asyncio.get_running_loop()
        self._rollover_handle = loop.call_later(self.seconds_until_midnight(), self._on_rollover)

    def _on_rollover(self) -> None:
        self._rollover_handle = None
        today = self._engine.today()
        if today != self._today:
            LOGGER.info("Local date changed to %s; refreshing timeline", today)
            self._today = today
            self._rollover_task = asyncio.get_running_loop().create_task(
                self.refresh(show_loading_indicator=False)
            )
        self._arm_rollover()


__all__ = ["TimelineSession", "load_upcoming"]

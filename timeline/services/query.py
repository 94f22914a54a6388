"""Timeline query engine: the single owner of the in-memory entry set."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from ..errors import FetchError, InvalidFilterCombination, TimelineError
from ..models import (
    DateWindow,
    EntryKind,
    ExamStatus,
    FilterState,
    LiveSessionEntry,
    LiveStatus,
    Pagination,
    Role,
    StatusFilter,
    TimelineEntry,
    ViewMode,
    ensure_utc,
    utc_now,
)
from .adapter import AdapterResult, EventSourceAdapter
from .calendar import calendar_window, month_start
from .events import emit_fetch_event
from .notifications import Notifier, error_notification


LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[Tuple[TimelineEntry, ...]], None]
Clock = Callable[[], datetime]

DEFAULT_PAGE_SIZE = 10
DEFAULT_CALENDAR_LIMIT = 100


@dataclass(frozen=True)
class LoadOutcome:
    sequence: int
    entries: Tuple[TimelineEntry, ...]
    changed: bool = False
    stale: bool = False
    error: Optional[TimelineError] = None
    page: int = 1
    total_pages: int = 1
    window: Optional[DateWindow] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.stale


def one_year_after(moment: datetime) -> datetime:
    try:
        return moment.replace(year=moment.year + 1)
    except ValueError:
        # 29 February
        return moment.replace(year=moment.year + 1, day=28)


def matches_status(entry: TimelineEntry, status_filter: StatusFilter) -> bool:
    """Kind-aware status match; a filter never matches an entry of the other kind."""

    if status_filter is StatusFilter.ALL:
        return True
    return entry.kind is status_filter.kind and entry.status.value == status_filter.value


def merge_entries(batches: Iterable[Iterable[TimelineEntry]]) -> List[TimelineEntry]:
    """Merge batches keeping the first entry per id, ordered by time then id."""

    unique: Dict[str, TimelineEntry] = {}
    for batch in batches:
        for entry in batch:
            if entry.id in unique:
                LOGGER.warning("Duplicate timeline entry id '%s' ignored", entry.id)
                continue
            unique[entry.id] = entry
    return sorted(unique.values(), key=lambda item: (item.scheduled_at, item.id))


class TimelineQueryEngine:
    """Load entries for the current view and hold the canonical result set."""

    def __init__(
        self,
        adapter: EventSourceAdapter,
        *,
        notifier: Optional[Notifier] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        calendar_limit: int = DEFAULT_CALENDAR_LIMIT,
        clock: Clock = utc_now,
    ) -> None:
        self._adapter = adapter
        self._notifier = notifier
        self._page_size = max(1, int(page_size))
        self._calendar_limit = max(1, int(calendar_limit))
        self._clock = clock
        self._entries: Tuple[TimelineEntry, ...] = ()
        self._sequence = 0
        self._loading_sequences: Set[int] = set()
        self._subscribers: List[Subscriber] = []
        self._page = 1
        self._total_pages = 1
        self._last_error: Optional[TimelineError] = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def entries(self) -> Tuple[TimelineEntry, ...]:
        return self._entries

    @property
    def role(self) -> Role:
        return self._adapter.role

    @property
    def adapter(self) -> EventSourceAdapter:
        return self._adapter

    @property
    def page(self) -> int:
        return self._page

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def total_pages(self) -> int:
        return self._total_pages

    @property
    def loading(self) -> bool:
        return bool(self._loading_sequences)

    @property
    def last_error(self) -> Optional[TimelineError]:
        return self._last_error

    def find(self, entry_id: str) -> Optional[TimelineEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def today(self) -> date:
        return self._clock().astimezone(self._adapter.time_zone).date()

    def compute_window(self, filters: FilterState, month: Optional[date] = None) -> DateWindow:
        tz = self._adapter.time_zone
        if filters.view_mode is ViewMode.CALENDAR:
            return calendar_window(month_start(month or filters.selected_date or self.today()), tz)

        if filters.selected_date is not None:
            start = ensure_utc(datetime.combine(filters.selected_date, time.min, tzinfo=tz))
        else:
            start = ensure_utc(self._clock())
        return DateWindow(start=start, end=one_year_after(start))

    async def load(
        self,
        filters: FilterState,
        *,
        month: Optional[date] = None,
        show_loading_indicator: bool = True,
    ) -> LoadOutcome:
        self._sequence += 1
        sequence = self._sequence
        if show_loading_indicator:
            self._loading_sequences.add(sequence)
        try:
            return await self._load(sequence, filters, month)
        finally:
            self._loading_sequences.discard(sequence)

    async def _load(self, sequence: int, filters: FilterState, month: Optional[date]) -> LoadOutcome:
        window = self.compute_window(filters, month)
        status_filter = filters.status_filter
        list_view = filters.view_mode is ViewMode.LIST
        requested_page = max(1, int(filters.page))
        query = filters.search_query.strip()
        if list_view and not query:
            # Each kind returns its first page*size rows; the merged slice is the page.
            pagination = Pagination(page=1, limit=requested_page * self._page_size)
        else:
            pagination = Pagination(page=1, limit=self._calendar_limit)

        kinds = [
            kind
            for kind in (EntryKind.LIVE_SESSION, EntryKind.EXAM)
            if status_filter.kind in (None, kind)
        ]
        results: List[AdapterResult] = list(
            await asyncio.gather(
                *(
                    self._adapter.fetch_entries(
                        kind, window, status_filter.status_for(kind), pagination
                    )
                    for kind in kinds
                )
            )
        )

        if sequence != self._sequence:
            emit_fetch_event(
                "Discarded stale response",
                payload={"sequence": sequence, "latest": self._sequence},
            )
            return LoadOutcome(
                sequence=sequence,
                entries=self._entries,
                stale=True,
                page=self._page,
                total_pages=self._total_pages,
                window=window,
            )

        failures = [result.error for result in results if result.error is not None]
        if failures:
            error = next(
                (item for item in failures if isinstance(item, InvalidFilterCombination)),
                failures[0],
            )
            self._report_failure(error)
            return LoadOutcome(
                sequence=sequence,
                entries=self._entries,
                error=error,
                page=self._page,
                total_pages=self._total_pages,
                window=window,
            )

        self._last_error = None
        merged = merge_entries(result.entries for result in results)
        filtered = [
            entry
            for entry in merged
            if matches_status(entry, status_filter) and entry.matches_search(query)
        ]

        if list_view:
            server_totals = [result.total for result in results]
            if not query and server_totals and all(total is not None for total in server_totals):
                total = sum(total for total in server_totals if total is not None)
            else:
                total = len(filtered)
            total_pages = max(1, math.ceil(total / self._page_size))
            page = min(max(1, requested_page), total_pages)
            offset = (page - 1) * self._page_size
            visible = filtered[offset : offset + self._page_size]
        else:
            total_pages = 1
            page = 1
            visible = filtered

        self._page = page
        self._total_pages = total_pages
        changed = self._commit(tuple(visible))
        emit_fetch_event(
            "Loaded timeline",
            payload={
                "sequence": sequence,
                "view": filters.view_mode,
                "status": status_filter,
                "count": len(self._entries),
                "changed": changed,
                "page": page,
                "total_pages": total_pages,
            },
        )
        return LoadOutcome(
            sequence=sequence,
            entries=self._entries,
            changed=changed,
            page=page,
            total_pages=total_pages,
            window=window,
        )

    def _report_failure(self, error: TimelineError) -> None:
        self._last_error = error
        LOGGER.error("Error fetching events: %s", error.message)
        if self._notifier is None:
            return
        if isinstance(error, InvalidFilterCombination):
            self._notifier.notify(
                error_notification(InvalidFilterCombination.default_message, title="Filter Error")
            )
        else:
            self._notifier.notify(error_notification(FetchError.default_message))

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------
    def set_status(self, entry_id: str, status: Union[LiveStatus, ExamStatus]) -> bool:
        """Replace the status of one entry; reserved for the live status synchronizer."""

        def _apply(entry: TimelineEntry) -> TimelineEntry:
            return entry.with_status(status)  # type: ignore[arg-type]

        try:
            return self._replace_entry(entry_id, _apply)
        except TypeError as error:
            LOGGER.warning("Ignoring status %s for entry %s: %s", status, entry_id, error)
            return False

    def set_reminded(self, entry_id: str, enabled: bool) -> bool:
        """Flip the reminder flag of one live session; reserved for the reminder coordinator."""

        def _apply(entry: TimelineEntry) -> TimelineEntry:
            if not isinstance(entry, LiveSessionEntry):
                return entry
            return entry.with_reminder(enabled)

        return self._replace_entry(entry_id, _apply)

    def _replace_entry(
        self, entry_id: str, update: Callable[[TimelineEntry], TimelineEntry]
    ) -> bool:
        for index, entry in enumerate(self._entries):
            if entry.id != entry_id:
                continue
            updated = update(entry)
            if updated is entry:
                return False
            self._commit(self._entries[:index] + (updated,) + self._entries[index + 1 :])
            return True
        return False

    def _commit(self, entries: Tuple[TimelineEntry, ...]) -> bool:
        if entries == self._entries:
            return False
        self._entries = entries
        for callback in list(self._subscribers):
            callback(entries)
        return True


__all__ = [
    "DEFAULT_CALENDAR_LIMIT",
    "DEFAULT_PAGE_SIZE",
    "LoadOutcome",
    "TimelineQueryEngine",
    "matches_status",
    "merge_entries",
    "one_year_after",
]

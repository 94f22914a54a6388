"""Reflect the timeline filter state in a navigable URL."""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import date
from enum import Enum
from typing import Any, List, Mapping, Optional, Protocol, Tuple, Union
from urllib.parse import parse_qs, urlencode

from ..models import FilterState, StatusFilter, ViewMode
from .events import emit_url_event


LOGGER = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.3
DEFAULT_PATH = "/calendar"

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

QueryInput = Union[str, Mapping[str, Any], None]


def serialize_filter_state(state: FilterState) -> str:
    """Encode *state* as a query string, omitting every default value."""

    defaults = FilterState()
    params: List[Tuple[str, str]] = []
    if state.view_mode is not defaults.view_mode:
        params.append(("view", state.view_mode.value))
    if state.status_filter is not defaults.status_filter:
        params.append(("status", state.status_filter.value))
    if state.search_query:
        params.append(("query", state.search_query))
    if state.page != defaults.page:
        params.append(("page", str(state.page)))
    if state.selected_date is not None:
        params.append(("date", state.selected_date.isoformat()))
    return urlencode(params)


def build_url(path: str, state: FilterState) -> str:
    query = serialize_filter_state(state)
    return f"{path}?{query}" if query else path


def _first(values: Mapping[str, Any], key: str) -> Optional[str]:
    value = values.get(key)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    return str(value)


def _parse_page(raw: Optional[str]) -> int:
    if raw is None:
        return 1
    try:
        return max(1, int(raw.strip()))
    except ValueError:
        return 1


def _parse_date(raw: Optional[str]) -> Optional[date]:
    if raw is None or not _ISO_DATE.match(raw.strip()):
        return None
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        return None


def hydrate_filter_state(query: QueryInput) -> FilterState:
    """Rebuild a :class:`FilterState` from a query string or parameter mapping.

    Unknown or malformed values fall back to their defaults.
    """

    if query is None:
        return FilterState()
    if isinstance(query, str):
        text = query.split("?", 1)[1] if "?" in query else query
        values: Mapping[str, Any] = parse_qs(text, keep_blank_values=True)
    else:
        values = query

    defaults = FilterState()
    try:
        view_mode = ViewMode(_first(values, "view") or defaults.view_mode.value)
    except ValueError:
        view_mode = defaults.view_mode
    try:
        status_filter = StatusFilter((_first(values, "status") or defaults.status_filter.value).upper())
    except ValueError:
        status_filter = defaults.status_filter

    return FilterState(
        status_filter=status_filter,
        search_query=_first(values, "query") or "",
        view_mode=view_mode,
        page=_parse_page(_first(values, "page")),
        selected_date=_parse_date(_first(values, "date")),
    )


class UrlSyncPhase(str, Enum):
    IDLE = "idle"
    PENDING_WRITE = "pending_write"
    WRITTEN = "written"


class Navigator(Protocol):
    def push(self, url: str) -> None:
        """Add a new history entry for *url*."""

    def replace(self, url: str) -> None:
        """Replace the current history entry with *url*."""


class HistoryNavigator:
    """In-process history used when no browser is attached."""

    def __init__(self, initial_url: str = DEFAULT_PATH) -> None:
        self.entries: List[str] = [initial_url]
        self.calls: List[Tuple[str, str]] = []

    @property
    def current(self) -> str:
        return self.entries[-1]

    def push(self, url: str) -> None:
        self.calls.append(("push", url))
        self.entries.append(url)

    def replace(self, url: str) -> None:
        self.calls.append(("replace", url))
        self.entries[-1] = url


def _only_date_changed(previous: Optional[FilterState], state: FilterState) -> bool:
    if previous is None or previous.selected_date == state.selected_date:
        return False
    return previous.evolve(selected_date=state.selected_date) == state


class UrlStateSynchronizer:
    """Debounced writer with phases ``IDLE -> PENDING_WRITE -> WRITTEN -> IDLE``.

    At most one timer handle is alive at a time; it is cancelled on every
    reschedule, on :meth:`flush` and on :meth:`close`.
    """

    def __init__(
        self,
        navigator: Navigator,
        path: str = DEFAULT_PATH,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._navigator = navigator
        self._path = path
        self._debounce = max(0.0, float(debounce_seconds))
        self._phase = UrlSyncPhase.IDLE
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[FilterState] = None
        self._last_state: Optional[FilterState] = None
        self._last_url: Optional[str] = None

    @property
    def phase(self) -> UrlSyncPhase:
        return self._phase

    @property
    def last_written_url(self) -> Optional[str]:
        return self._last_url

    def mark_written(self, state: FilterState, url: Optional[str] = None) -> str:
        """Record *state* (shown as *url*) as already reflected in the address bar."""

        self._last_state = state
        self._last_url = url or build_url(self._path, state)
        return self._last_url

    def schedule(self, state: FilterState) -> None:
        self._cancel_handle()
        self._pending = state
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._debounce, self._on_timer)
        self._set_phase(UrlSyncPhase.PENDING_WRITE)

    def flush(self) -> Optional[str]:
        """Write any pending state now; return the URL written, if any."""

        self._cancel_handle()
        return self._write_pending()

    def close(self) -> None:
        self._cancel_handle()
        self._pending = None
        self._set_phase(UrlSyncPhase.IDLE)

    def _on_timer(self) -> None:
        self._handle = None
        self._write_pending()

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _write_pending(self) -> Optional[str]:
        state = self._pending
        self._pending = None
        if state is None:
            self._set_phase(UrlSyncPhase.IDLE)
            return None

        url = build_url(self._path, state)
        if url == self._last_url:
            emit_url_event("Skipped unchanged URL", payload={"url": url})
            self._last_state = state
            self._set_phase(UrlSyncPhase.IDLE)
            return None

        if _only_date_changed(self._last_state, state):
            self._navigator.replace(url)
            method = "replace"
        else:
            self._navigator.push(url)
            method = "push"
        self._last_state = state
        self._last_url = url
        self._set_phase(UrlSyncPhase.WRITTEN)
        emit_url_event("Wrote URL", payload={"url": url, "method": method})
        self._set_phase(UrlSyncPhase.IDLE)
        return url

    def _set_phase(self, phase: UrlSyncPhase) -> None:
        if phase is not self._phase:
            LOGGER.debug("URL sync %s -> %s", self._phase.value, phase.value)
        self._phase = phase


__all__ = [
    "DEFAULT_DEBOUNCE_SECONDS",
    "DEFAULT_PATH",
    "HistoryNavigator",
    "Navigator",
    "UrlStateSynchronizer",
    "UrlSyncPhase",
    "build_url",
    "hydrate_filter_state",
    "serialize_filter_state",
]

"""Event source adapter: typed results over the heterogeneous backend payloads."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Tuple, Type, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import (
    BackendError,
    ExportLinkError,
    FetchError,
    InvalidFilterCombination,
    MalformedEntry,
    ReminderToggleError,
    TimelineError,
    error_code,
    normalize_error_message,
)
from ..models import (
    AccessWindow,
    CalendarProvider,
    DateWindow,
    EntryKind,
    ExamEntry,
    ExamStatus,
    LiveSessionEntry,
    LiveStatus,
    Pagination,
    Role,
    StatusFilter,
    TimelineEntry,
    ensure_utc,
)
from .backend import BackendPayload, TimelineBackend
from .events import emit_fetch_event


LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
INVALID_FILTER_CODE = "INVALID_FILTER"
_INVALID_FILTER_MARKERS = ("invalid value for argument", "invalid status filter")

StatusArgument = Union[LiveStatus, ExamStatus, StatusFilter, None]


@dataclass(frozen=True)
class AdapterResult:
    """Outcome of one collaborator call; exactly one of data/error is meaningful."""

    entries: Tuple[TimelineEntry, ...] = ()
    total: Optional[int] = None
    url: Optional[str] = None
    error: Optional[TimelineError] = None
    dropped: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: TimelineError) -> "AdapterResult":
        return cls(error=error)


def resolve_time_zone(name: Optional[str]) -> ZoneInfo:
    """Return the :class:`ZoneInfo` for *name*, falling back to UTC."""

    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            LOGGER.warning("Unknown time zone '%s'; falling back to UTC", name)
    return ZoneInfo("UTC")


def parse_timestamp(value: Any, tz: ZoneInfo) -> datetime:
    """Parse an ISO-8601 value to aware UTC; naive values are read in *tz*."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"expected ISO timestamp, got {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return ensure_utc(parsed)


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value < 0:
        return None
    return int(value)


def _is_invalid_filter(error: Any, message: str) -> bool:
    if error_code(error) == INVALID_FILTER_CODE:
        return True
    lowered = message.lower()
    return any(marker in lowered for marker in _INVALID_FILTER_MARKERS)


class EventSourceAdapter:
    """Normalise live sessions and exams into :data:`TimelineEntry` values.

    Every public coroutine returns an :class:`AdapterResult`; nothing raised by
    the backend escapes this boundary.
    """

    def __init__(
        self,
        backend: TimelineBackend,
        *,
        role: Role,
        time_zone: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._backend = backend
        self._role = Role(role)
        self._tz = resolve_time_zone(time_zone)
        self._timeout = float(timeout_seconds)

    @property
    def role(self) -> Role:
        return self._role

    @property
    def time_zone(self) -> ZoneInfo:
        return self._tz

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------
    async def fetch_entries(
        self,
        kind: EntryKind,
        window: DateWindow,
        status: StatusArgument = None,
        pagination: Optional[Pagination] = None,
    ) -> AdapterResult:
        try:
            typed_status = self._coerce_status(kind, status)
        except InvalidFilterCombination as error:
            emit_fetch_event(
                "Rejected status filter before request",
                payload={"kind": kind, "status": status},
                level=logging.WARNING,
            )
            return AdapterResult.failure(error)

        if kind is EntryKind.LIVE_SESSION:
            call = self._backend.fetch_live_session_entries
        else:
            call = self._backend.fetch_exam_entries

        started = time.perf_counter()
        payload, failure = await self._invoke(
            lambda: call(self._role, window, typed_status, pagination),
            error_type=FetchError,
            label=f"fetch {kind.value.lower()} entries",
        )
        duration_ms = (time.perf_counter() - started) * 1000.0
        if failure is not None:
            emit_fetch_event(
                "Fetch failed",
                payload={"kind": kind, "role": self._role, "error": failure.message},
                duration_ms=duration_ms,
                level=logging.WARNING,
            )
            return AdapterResult.failure(failure)

        if payload is None:
            return AdapterResult.failure(FetchError("Backend returned no payload"))
        rows = payload.get("entries")
        if rows is None:
            rows = payload.get("events", [])
        if not isinstance(rows, list):
            return AdapterResult.failure(FetchError("Backend returned an invalid entry list"))

        entries, dropped = self.normalize_batch(kind, rows)
        total = _optional_int(payload.get("total"))
        emit_fetch_event(
            "Fetched entries",
            payload={
                "kind": kind,
                "role": self._role,
                "count": len(entries),
                "dropped": dropped,
                "total": total,
            },
            duration_ms=duration_ms,
        )
        return AdapterResult(entries=tuple(entries), total=total, dropped=dropped)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    async def set_reminder(self, entry_id: str, enabled: bool) -> AdapterResult:
        _, failure = await self._invoke(
            lambda: self._backend.set_reminder(entry_id, bool(enabled)),
            error_type=ReminderToggleError,
            label="set reminder",
            entry_id=entry_id,
        )
        if failure is not None:
            return AdapterResult.failure(failure)
        return AdapterResult()

    async def get_calendar_export_link(
        self, entry_id: str, provider: CalendarProvider
    ) -> AdapterResult:
        try:
            provider = CalendarProvider(provider)
        except ValueError:
            return AdapterResult.failure(
                ExportLinkError(f"Unsupported calendar provider: {provider}", entry_id=entry_id)
            )
        payload, failure = await self._invoke(
            lambda: self._backend.get_calendar_export_link(entry_id, provider),
            error_type=ExportLinkError,
            label="get calendar link",
            entry_id=entry_id,
        )
        if failure is not None:
            return AdapterResult.failure(failure)
        if payload is None:
            return AdapterResult.failure(
                ExportLinkError("Backend did not return a calendar link", entry_id=entry_id)
            )
        url = _optional_text(payload.get("url")) or _optional_text(payload.get("calendarUrl"))
        if url is None:
            return AdapterResult.failure(
                ExportLinkError("Backend did not return a calendar link", entry_id=entry_id)
            )
        return AdapterResult(url=url)

    # ------------------------------------------------------------------
    # Normalisation
    # ------------------------------------------------------------------
    def normalize_batch(
        self, kind: EntryKind, rows: List[Any]
    ) -> Tuple[List[TimelineEntry], int]:
        entries: List[TimelineEntry] = []
        dropped = 0
        for row in rows:
            try:
                entries.append(self.normalize_entry(kind, row))
            except MalformedEntry as error:
                dropped += 1
                LOGGER.warning("Dropping malformed %s record: %s", kind.value.lower(), error)
        return entries, dropped

    def normalize_entry(self, kind: EntryKind, raw: Any) -> TimelineEntry:
        if not isinstance(raw, Mapping):
            raise MalformedEntry(f"expected an object, got {type(raw).__name__}")

        raw_id = raw.get("id")
        if isinstance(raw_id, bool) or not isinstance(raw_id, (str, int)) or not str(raw_id).strip():
            raise MalformedEntry("missing id")
        entry_id = str(raw_id).strip()

        title = _optional_text(raw.get("title"))
        if title is None:
            raise MalformedEntry("missing title", entry_id=entry_id)

        declared = raw.get("type")
        if declared is not None and declared != kind.value:
            raise MalformedEntry(
                f"record of type {declared!r} returned by the {kind.value} endpoint",
                entry_id=entry_id,
            )

        try:
            scheduled_at = parse_timestamp(raw.get("scheduledAt"), self._tz)
        except (ValueError, OverflowError) as error:
            raise MalformedEntry(f"unparseable scheduledAt: {error}", entry_id=entry_id) from error

        common = dict(
            id=entry_id,
            title=title,
            parent_context_name=_optional_text(raw.get("courseName")) or "Unknown Course",
            course_id=str(raw.get("courseId") or ""),
            scheduled_at=scheduled_at,
            owner_name=_optional_text(raw.get("creatorName")),
            owner_avatar_url=_optional_text(raw.get("creatorImage")),
            section_name=_optional_text(raw.get("sectionName")),
        )

        if kind is EntryKind.LIVE_SESSION:
            try:
                status = LiveStatus(raw.get("status") or LiveStatus.SCHEDULED.value)
            except ValueError as error:
                raise MalformedEntry(
                    f"invalid live status {raw.get('status')!r}", entry_id=entry_id
                ) from error
            return LiveSessionEntry(
                **common,
                duration_minutes=_optional_int(raw.get("duration")),
                status=status,
                is_reminded=self._role is Role.STUDENT and raw.get("isReminded") is True,
            )

        try:
            exam_status = ExamStatus(raw.get("status"))
        except ValueError as error:
            raise MalformedEntry(
                f"invalid exam status {raw.get('status')!r}", entry_id=entry_id
            ) from error
        closes_at = None
        if raw.get("endDate"):
            try:
                closes_at = parse_timestamp(raw.get("endDate"), self._tz)
            except (ValueError, OverflowError) as error:
                raise MalformedEntry(f"unparseable endDate: {error}", entry_id=entry_id) from error
        return ExamEntry(
            **common,
            duration_minutes=_optional_int(raw.get("timeLimit")) or _optional_int(raw.get("duration")),
            status=exam_status,
            form_id=_optional_text(raw.get("formId")),
            passing_score=_optional_int(raw.get("passingScore")),
            access_window=AccessWindow(opens_at=scheduled_at, closes_at=closes_at),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _coerce_status(
        kind: EntryKind, status: StatusArgument
    ) -> Union[LiveStatus, ExamStatus, None]:
        if status is None:
            return None
        if isinstance(status, StatusFilter):
            if status is StatusFilter.ALL:
                return None
            typed = status.status_for(kind)
            if typed is None:
                raise InvalidFilterCombination(
                    f"Status {status.value} does not apply to {kind.value} entries"
                )
            return typed
        expected = LiveStatus if kind is EntryKind.LIVE_SESSION else ExamStatus
        if not isinstance(status, expected):
            raise InvalidFilterCombination(
                f"Status {getattr(status, 'value', status)} does not apply to {kind.value} entries"
            )
        return status

    async def _invoke(
        self,
        factory: Callable[[], Awaitable[BackendPayload]],
        *,
        error_type: Type[TimelineError],
        label: str,
        entry_id: Optional[str] = None,
    ) -> Tuple[Optional[Mapping[str, Any]], Optional[TimelineError]]:
        try:
            payload = await asyncio.wait_for(factory(), timeout=self._timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out after %.1fs trying to %s", self._timeout, label)
            return None, error_type(
                f"Request timed out after {self._timeout:g} seconds", entry_id=entry_id
            )
        except BackendError as error:
            message = normalize_error_message(error, default=error_type.default_message)
            LOGGER.warning("Backend failed to %s: %s", label, message)
            if error_type is FetchError and _is_invalid_filter(error, message):
                return None, InvalidFilterCombination(message, entry_id=entry_id)
            return None, error_type(message, entry_id=entry_id)
        except Exception as error:  # noqa: BLE001 - nothing may escape the adapter
            message = normalize_error_message(error, default=error_type.default_message)
            LOGGER.warning("Unexpected failure trying to %s: %s", label, message)
            return None, error_type(message, entry_id=entry_id)

        if not isinstance(payload, Mapping):
            return None, error_type("Backend returned an invalid response", entry_id=entry_id)
        if payload.get("success") is not True:
            raw_error = payload.get("error")
            message = normalize_error_message(raw_error, default=error_type.default_message)
            LOGGER.warning("Backend reported failure to %s: %s", label, message)
            if error_type is FetchError and _is_invalid_filter(raw_error, message):
                return None, InvalidFilterCombination(message, entry_id=entry_id)
            return None, error_type(message, entry_id=entry_id)
        return payload, None


__all__ = [
    "AdapterResult",
    "DEFAULT_TIMEOUT_SECONDS",
    "EventSourceAdapter",
    "INVALID_FILTER_CODE",
    "parse_timestamp",
    "resolve_time_zone",
]

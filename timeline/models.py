"""Timeline domain types shared by the services, the UI and the backend."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import ClassVar, Optional, Union
from zoneinfo import ZoneInfo


class Role(str, Enum):
    STUDENT = "student"
    CREATOR = "creator"


class EntryKind(str, Enum):
    LIVE_SESSION = "LIVE"
    EXAM = "EXAM"


class LiveStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    ENDED = "ENDED"


class ExamStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"


class ViewMode(str, Enum):
    CALENDAR = "calendar"
    LIST = "list"


class CalendarProvider(str, Enum):
    GOOGLE = "google"
    OUTLOOK = "outlook"
    ICAL = "ical"


class StatusFilter(str, Enum):
    """Status selector offered by the timeline views.

    Every value other than ``ALL`` belongs to exactly one entry kind.
    """

    ALL = "ALL"
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    ENDED = "ENDED"
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"

    @property
    def kind(self) -> Optional[EntryKind]:
        if self is StatusFilter.ALL:
            return None
        if self.value in LiveStatus.__members__:
            return EntryKind.LIVE_SESSION
        return EntryKind.EXAM

    def status_for(self, kind: EntryKind) -> Union["LiveStatus", "ExamStatus", None]:
        """Return the typed status to send for *kind*, or ``None`` when unfiltered."""

        if self is StatusFilter.ALL or self.kind is not kind:
            return None
        if kind is EntryKind.LIVE_SESSION:
            return LiveStatus(self.value)
        return ExamStatus(self.value)


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime; naive values are taken as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessWindow:
    """Period during which an exam can be launched."""

    opens_at: datetime
    closes_at: Optional[datetime] = None

    def has_opened(self, now: datetime) -> bool:
        return ensure_utc(now) >= self.opens_at

    def is_open(self, now: datetime) -> bool:
        now = ensure_utc(now)
        if now < self.opens_at:
            return False
        if self.closes_at is not None and now > self.closes_at:
            return False
        return True


@dataclass(frozen=True)
class _EntryBase:
    id: str
    title: str
    parent_context_name: str
    course_id: str
    scheduled_at: datetime
    duration_minutes: Optional[int] = None
    owner_name: Optional[str] = None
    owner_avatar_url: Optional[str] = None
    section_name: Optional[str] = None

    def local_date(self, tz: ZoneInfo) -> date:
        """Calendar date of ``scheduled_at`` as seen from *tz*."""

        return self.scheduled_at.astimezone(tz).date()

    def matches_search(self, query: str) -> bool:
        needle = query.strip().lower()
        if not needle:
            return True
        haystacks = (self.title, self.parent_context_name, self.owner_name or "")
        return any(needle in value.lower() for value in haystacks)


@dataclass(frozen=True)
class LiveSessionEntry(_EntryBase):
    """A scheduled live lecture."""

    kind: ClassVar[EntryKind] = EntryKind.LIVE_SESSION

    status: LiveStatus = LiveStatus.SCHEDULED
    is_reminded: bool = False

    def with_status(self, status: LiveStatus) -> "LiveSessionEntry":
        if not isinstance(status, LiveStatus):
            raise TypeError(f"live sessions only accept LiveStatus values, got {status!r}")
        if status is self.status:
            return self
        return replace(self, status=status)

    def with_reminder(self, enabled: bool) -> "LiveSessionEntry":
        if bool(enabled) is self.is_reminded:
            return self
        return replace(self, is_reminded=bool(enabled))


@dataclass(frozen=True)
class ExamEntry(_EntryBase):
    """An exam attached to a course."""

    kind: ClassVar[EntryKind] = EntryKind.EXAM

    status: ExamStatus = ExamStatus.PUBLISHED
    form_id: Optional[str] = None
    passing_score: Optional[int] = None
    access_window: Optional[AccessWindow] = None

    def with_status(self, status: ExamStatus) -> "ExamEntry":
        if not isinstance(status, ExamStatus):
            raise TypeError(f"exams only accept ExamStatus values, got {status!r}")
        if status is self.status:
            return self
        return replace(self, status=status)

    def _window(self) -> AccessWindow:
        return self.access_window or AccessWindow(opens_at=self.scheduled_at)

    def has_opened(self, now: datetime) -> bool:
        return self._window().has_opened(now)

    def is_open(self, now: datetime) -> bool:
        return self._window().is_open(now)


TimelineEntry = Union[LiveSessionEntry, ExamEntry]


@dataclass(frozen=True)
class FilterState:
    """User-controlled filters reflected in the navigable URL."""

    status_filter: StatusFilter = StatusFilter.ALL
    search_query: str = ""
    view_mode: ViewMode = ViewMode.CALENDAR
    page: int = 1
    selected_date: Optional[date] = None

    def evolve(self, **changes: object) -> "FilterState":
        return replace(self, **changes)


@dataclass(frozen=True)
class DateWindow:
    """Inclusive UTC range used to scope a query."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("window end must not precede its start")

    def contains(self, moment: datetime) -> bool:
        return self.start <= ensure_utc(moment) <= self.end


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    limit: int = 10

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.limit < 1:
            raise ValueError("limit must be >= 1")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


__all__ = [
    "AccessWindow",
    "CalendarProvider",
    "DateWindow",
    "EntryKind",
    "ExamEntry",
    "ExamStatus",
    "FilterState",
    "LiveSessionEntry",
    "LiveStatus",
    "Pagination",
    "Role",
    "StatusFilter",
    "TimelineEntry",
    "ViewMode",
    "ensure_utc",
    "utc_now",
]

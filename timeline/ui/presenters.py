"""View-model helpers shared by the terminal renderer and the web routes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from ..models import (
    ExamEntry,
    ExamStatus,
    LiveSessionEntry,
    LiveStatus,
    Role,
    StatusFilter,
    TimelineEntry,
    ensure_utc,
)
from ..services.calendar import CalendarDayBucket
from ..services.notifications import Notification


MAX_VISIBLE_PER_DAY = 2
SCHEDULE_EVENT_HREF = "/dashboard/creator/content/create"

_UTC = ZoneInfo("UTC")


@dataclass(frozen=True)
class StatusBadge:
    label: str
    tone: str = "outline"
    pulsing: bool = False


@dataclass(frozen=True)
class EntryAction:
    label: str
    href: Optional[str]
    enabled: bool = True
    blocked_notice: Optional[Notification] = None


@dataclass(frozen=True)
class EmptyState:
    title: str
    description: str
    action_label: Optional[str] = None
    action_href: Optional[str] = None


@dataclass(frozen=True)
class DayCell:
    date: date
    visible: Tuple[TimelineEntry, ...]
    overflow: int
    in_month: bool
    is_today: bool
    is_selected: bool

    @property
    def has_badges(self) -> bool:
        return bool(self.visible)


def _clock(moment: datetime) -> str:
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d} {suffix}"


def _local(moment: datetime, tz: Optional[ZoneInfo]) -> datetime:
    return ensure_utc(moment).astimezone(tz or _UTC)


def status_badge(entry: TimelineEntry, now: datetime) -> StatusBadge:
    if isinstance(entry, LiveSessionEntry):
        if entry.status is LiveStatus.LIVE:
            return StatusBadge("Live Now", tone="live", pulsing=True)
        if entry.status is LiveStatus.SCHEDULED:
            return StatusBadge("Upcoming")
        return StatusBadge("Ended", tone="secondary")

    if entry.status is ExamStatus.PUBLISHED:
        if entry.is_open(now):
            return StatusBadge("Available", tone="info")
        if entry.has_opened(now):
            return StatusBadge("Closed", tone="secondary")
        return StatusBadge("Upcoming")
    if entry.status is ExamStatus.CLOSED:
        return StatusBadge("Closed", tone="secondary")
    return StatusBadge("Draft")


def format_event_date(moment: datetime, tz: Optional[ZoneInfo] = None) -> str:
    local = _local(moment, tz)
    return f"{local:%a, %b} {local.day}, {local.year} {_clock(local)}"


def primary_action(entry: TimelineEntry, now: datetime, tz: Optional[ZoneInfo] = None) -> EntryAction:
    """Main call-to-action of an entry row.

    Exams become launchable from ``opens_at`` inclusive.
    """

    if isinstance(entry, ExamEntry):
        if entry.has_opened(now):
            return EntryAction("Take Exam", f"/exams/{entry.form_id or entry.id}")
        notice = Notification(
            title="Exam not available yet",
            description=f"This exam will be available on {format_event_date(entry.scheduled_at, tz)}",
            entry_id=entry.id,
        )
        return EntryAction("Not Available Yet", None, enabled=False, blocked_notice=notice)

    href = f"/content/{entry.course_id}/player/{entry.id}"
    if entry.status is LiveStatus.LIVE:
        return EntryAction("Join Now", href)
    return EntryAction("View Details", href)


def empty_state(role: Role, search_query: str = "") -> EmptyState:
    if search_query.strip():
        return EmptyState("No events found", "Try adjusting your search or filters")
    if Role(role) is Role.CREATOR:
        return EmptyState(
            "No events found",
            "Schedule events or create exams to see them here",
            action_label="Schedule Event",
            action_href=SCHEDULE_EVENT_HREF,
        )
    return EmptyState(
        "No events found",
        "Enroll in courses with live sessions or exams to see them here",
    )


_LIST_DESCRIPTIONS = {
    StatusFilter.ALL: "All events and exams",
    StatusFilter.LIVE: "Currently live events",
    StatusFilter.SCHEDULED: "Upcoming scheduled events",
    StatusFilter.ENDED: "Past events",
    StatusFilter.PUBLISHED: "Available exams",
    StatusFilter.CLOSED: "Closed exams",
    StatusFilter.DRAFT: "Draft exams",
}


def list_description(status_filter: StatusFilter) -> str:
    return _LIST_DESCRIPTIONS[StatusFilter(status_filter)]


def format_scheduled_time(moment: datetime, now: datetime, tz: Optional[ZoneInfo] = None) -> str:
    local = _local(moment, tz)
    today = _local(now, tz).date()
    if local.date() == today:
        return f"Today at {_clock(local)}"
    if local.date() == today + timedelta(days=1):
        return f"Tomorrow at {_clock(local)}"
    return f"{local:%a, %b} {local.day} at {_clock(local)}"


def _distance(seconds: float) -> str:
    minutes = seconds / 60.0
    if seconds < 30:
        return "less than a minute"
    if minutes < 1.5:
        return "1 minute"
    if minutes < 44.5:
        return f"{round(minutes)} minutes"
    if minutes < 89.5:
        return "about 1 hour"
    if minutes < 1439.5:
        return f"about {round(minutes / 60)} hours"
    if minutes < 2519.5:
        return "1 day"
    if minutes < 43199.5:
        return f"{round(minutes / 1440)} days"
    if minutes < 86399.5:
        return "about 1 month"
    if minutes < 525600:
        return f"{round(minutes / 43200)} months"
    years = int(minutes // 525600)
    return "about 1 year" if years == 1 else f"about {years} years"


def format_time_until(moment: datetime, now: datetime) -> str:
    delta = (ensure_utc(moment) - ensure_utc(now)).total_seconds()
    if delta < 0:
        return f"Started {_distance(-delta)} ago"
    return f"Starts in {_distance(delta)}"


def duration_label(entry: TimelineEntry) -> Optional[str]:
    if entry.duration_minutes is None:
        return None
    if isinstance(entry, ExamEntry):
        return f"{entry.duration_minutes} min time limit"
    return f"{entry.duration_minutes} min"


def day_cells(
    buckets: Sequence[CalendarDayBucket],
    today: date,
    selected: Optional[date] = None,
    *,
    max_visible: int = MAX_VISIBLE_PER_DAY,
) -> List[DayCell]:
    return [
        DayCell(
            date=bucket.date,
            visible=bucket.entries[:max_visible],
            overflow=max(0, len(bucket.entries) - max_visible),
            in_month=bucket.in_month,
            is_today=bucket.date == today,
            is_selected=selected is not None and bucket.date == selected,
        )
        for bucket in buckets
    ]


__all__ = [
    "DayCell",
    "EmptyState",
    "EntryAction",
    "MAX_VISIBLE_PER_DAY",
    "StatusBadge",
    "day_cells",
    "duration_label",
    "empty_state",
    "format_event_date",
    "format_scheduled_time",
    "format_time_until",
    "list_description",
    "primary_action",
    "status_badge",
]

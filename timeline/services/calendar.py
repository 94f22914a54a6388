"""Month-grid projection of timeline entries."""

from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Sequence, Tuple
from zoneinfo import ZoneInfo

from ..models import DateWindow, TimelineEntry, ensure_utc


DAYS_PER_WEEK = 7
WEEKDAY_LABELS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


@dataclass(frozen=True)
class CalendarDayBucket:
    """Entries falling on one day of the visible grid."""

    date: date
    entries: Tuple[TimelineEntry, ...]
    in_month: bool


def month_start(value: date) -> date:
    return value.replace(day=1)


def add_months(value: date, months: int) -> date:
    """Return the first day of the month *months* away from *value*."""

    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_grid_bounds(month: date) -> Tuple[date, date]:
    """First and last day of the Sunday-first grid showing *month*."""

    first = month_start(month)
    last = add_months(first, 1) - timedelta(days=1)
    # date.weekday(): Monday == 0 ... Sunday == 6
    lead = (first.weekday() + 1) % DAYS_PER_WEEK
    trail = (DAYS_PER_WEEK - 1) - (last.weekday() + 1) % DAYS_PER_WEEK
    return first - timedelta(days=lead), last + timedelta(days=trail)


def grid_days(month: date) -> List[date]:
    start, end = month_grid_bounds(month)
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def local_day_window(first: date, last: date, tz: ZoneInfo) -> DateWindow:
    """UTC window covering local midnight of *first* through the end of *last*."""

    start = datetime.combine(first, time.min, tzinfo=tz)
    end = datetime.combine(last, time.max, tzinfo=tz)
    return DateWindow(start=ensure_utc(start), end=ensure_utc(end))


def calendar_window(month: date, tz: ZoneInfo) -> DateWindow:
    first, last = month_grid_bounds(month)
    return local_day_window(first, last, tz)


def entries_on(entries: Iterable[TimelineEntry], day: date, tz: ZoneInfo) -> List[TimelineEntry]:
    return [entry for entry in entries if entry.local_date(tz) == day]


@functools.lru_cache(maxsize=32)
def project_calendar(
    entries: Tuple[TimelineEntry, ...], month: date, tz_name: str
) -> Tuple[CalendarDayBucket, ...]:
    """Bucket *entries* into the padded grid for *month* in time zone *tz_name*.

    Pure and memoised: equal inputs return the very same tuple, so renderers can
    compare by identity.
    """

    tz = ZoneInfo(tz_name)
    first = month_start(month)
    by_day: Dict[date, List[TimelineEntry]] = {}
    for entry in entries:
        by_day.setdefault(entry.local_date(tz), []).append(entry)

    return tuple(
        CalendarDayBucket(
            date=day,
            entries=tuple(by_day.get(day, ())),
            in_month=(day.year, day.month) == (first.year, first.month),
        )
        for day in grid_days(first)
    )


def bucket_for(buckets: Sequence[CalendarDayBucket], day: date) -> CalendarDayBucket | None:
    for bucket in buckets:
        if bucket.date == day:
            return bucket
    return None


__all__ = [
    "CalendarDayBucket",
    "DAYS_PER_WEEK",
    "WEEKDAY_LABELS",
    "add_months",
    "bucket_for",
    "calendar_window",
    "entries_on",
    "grid_days",
    "local_day_window",
    "month_grid_bounds",
    "month_start",
    "project_calendar",
]

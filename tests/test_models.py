from datetime import datetime, timedelta, timezone

import pytest

from timeline.models import (
    AccessWindow,
    DateWindow,
    EntryKind,
    ExamEntry,
    ExamStatus,
    LiveSessionEntry,
    LiveStatus,
    Pagination,
    StatusFilter,
    ensure_utc,
)


START = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _live(**changes) -> LiveSessionEntry:
    values = dict(
        id="l1",
        title="Regression",
        parent_context_name="Statistics",
        course_id="c1",
        scheduled_at=START,
        owner_name="Dana",
    )
    values.update(changes)
    return LiveSessionEntry(**values)


def test_status_filter_belongs_to_one_kind() -> None:
    assert StatusFilter.ALL.kind is None
    for value in ("SCHEDULED", "LIVE", "ENDED"):
        assert StatusFilter(value).kind is EntryKind.LIVE_SESSION
    for value in ("DRAFT", "PUBLISHED", "CLOSED"):
        assert StatusFilter(value).kind is EntryKind.EXAM

    assert StatusFilter.LIVE.status_for(EntryKind.LIVE_SESSION) is LiveStatus.LIVE
    assert StatusFilter.LIVE.status_for(EntryKind.EXAM) is None
    assert StatusFilter.CLOSED.status_for(EntryKind.EXAM) is ExamStatus.CLOSED


def test_live_entry_rejects_exam_status() -> None:
    entry = _live()

    with pytest.raises(TypeError):
        entry.with_status(ExamStatus.PUBLISHED)

    assert entry.with_status(LiveStatus.SCHEDULED) is entry
    assert entry.with_status(LiveStatus.LIVE).status is LiveStatus.LIVE


def test_with_reminder_returns_same_object_when_unchanged() -> None:
    entry = _live()

    assert entry.with_reminder(False) is entry
    assert entry.with_reminder(True).is_reminded is True


def test_exam_opens_exactly_at_its_start() -> None:
    exam = ExamEntry(
        id="e1",
        title="Midterm",
        parent_context_name="Statistics",
        course_id="c1",
        scheduled_at=START,
        access_window=AccessWindow(opens_at=START, closes_at=START + timedelta(hours=2)),
    )

    assert not exam.is_open(START - timedelta(seconds=1))
    assert exam.is_open(START)
    assert exam.is_open(START + timedelta(hours=2))
    assert not exam.is_open(START + timedelta(hours=2, seconds=1))
    assert exam.has_opened(START + timedelta(days=30))
    assert not exam.has_opened(START - timedelta(seconds=1))


def test_search_matches_title_course_and_owner_case_insensitively() -> None:
    entry = _live()

    assert entry.matches_search("")
    assert entry.matches_search("REGRESS")
    assert entry.matches_search("statis")
    assert entry.matches_search("dana")
    assert not entry.matches_search("physics")


def test_date_window_and_pagination_validate_their_bounds() -> None:
    with pytest.raises(ValueError):
        DateWindow(start=START, end=START - timedelta(seconds=1))
    with pytest.raises(ValueError):
        Pagination(page=0)

    assert Pagination(page=3, limit=10).offset == 20
    assert DateWindow(start=START, end=START).contains(START)


def test_naive_datetimes_are_taken_as_utc() -> None:
    assert ensure_utc(datetime(2026, 1, 1, 9, 30)) == datetime(2026, 1, 1, 9, 30, tzinfo=timezone.utc)

import asyncio
from datetime import date, datetime, timedelta, timezone

from conftest import NOW, FakeBackend, exam_row, live_row

from timeline.errors import FetchError, InvalidFilterCombination
from timeline.models import (
    EntryKind,
    ExamStatus,
    FilterState,
    LiveSessionEntry,
    LiveStatus,
    Role,
    StatusFilter,
    ViewMode,
)
from timeline.services.adapter import EventSourceAdapter
from timeline.services.notifications import NotificationLog
from timeline.services.query import TimelineQueryEngine, merge_entries, one_year_after


LIST = FilterState(view_mode=ViewMode.LIST)


def _engine(backend, *, role=Role.STUDENT, page_size=10, notifier=None, time_zone=None):
    adapter = EventSourceAdapter(backend, role=role, time_zone=time_zone)
    return TimelineQueryEngine(
        adapter, notifier=notifier, page_size=page_size, clock=lambda: NOW
    )


def _sample_backend() -> FakeBackend:
    return FakeBackend(
        live=[
            live_row("l2", "Sampling", "2026-03-12T10:00:00Z"),
            live_row("l1", "Regression", "2026-03-10T11:30:00Z", status="LIVE"),
        ],
        exams=[exam_row("e1", "Midterm", "2026-03-11T09:00:00Z")],
    )


def test_entries_are_merged_in_time_order() -> None:
    engine = _engine(_sample_backend())

    outcome = asyncio.run(engine.load(LIST))

    assert outcome.ok
    assert [entry.id for entry in engine.entries] == ["l1", "e1", "l2"]
    assert outcome.total_pages == 1


def test_duplicate_ids_keep_the_first_entry() -> None:
    backend = _sample_backend()
    backend.exams.append(exam_row("l1", "Shadow", "2026-03-10T08:00:00Z"))
    engine = _engine(backend)

    asyncio.run(engine.load(LIST))

    shadowed = engine.find("l1")
    assert isinstance(shadowed, LiveSessionEntry)
    assert len(engine.entries) == 3


def test_status_filter_only_queries_its_kind() -> None:
    backend = _sample_backend()
    engine = _engine(backend)

    asyncio.run(engine.load(LIST.evolve(status_filter=StatusFilter.LIVE)))

    assert backend.calls_named("exams") == []
    assert backend.calls_named("live")[0][3] is LiveStatus.LIVE
    assert [entry.id for entry in engine.entries] == ["l1"]

    asyncio.run(engine.load(LIST.evolve(status_filter=StatusFilter.PUBLISHED)))

    assert len(backend.calls_named("live")) == 1
    assert backend.calls_named("exams")[0][3] is ExamStatus.PUBLISHED
    assert [entry.kind for entry in engine.entries] == [EntryKind.EXAM]


def test_search_filters_client_side() -> None:
    engine = _engine(_sample_backend())

    asyncio.run(engine.load(LIST.evolve(search_query="midterm")))

    assert [entry.id for entry in engine.entries] == ["e1"]


def test_list_view_slices_merged_pages() -> None:
    backend = FakeBackend(
        live=[live_row(f"l{index}", f"Live {index}", f"2026-03-{11 + index:02d}T10:00:00Z") for index in range(3)],
        exams=[exam_row(f"e{index}", f"Exam {index}", f"2026-03-{11 + index:02d}T09:00:00Z") for index in range(3)],
    )
    engine = _engine(backend, page_size=2)

    outcome = asyncio.run(engine.load(LIST.evolve(page=2)))

    assert [entry.id for entry in engine.entries] == ["e1", "l1"]
    assert outcome.total_pages == 3
    assert outcome.page == 2
    assert backend.calls_named("live")[0][4].limit == 4


def test_out_of_range_page_returns_the_last_page() -> None:
    backend = FakeBackend(
        live=[live_row(f"l{index}", f"Live {index}", f"2026-03-{11 + index:02d}T10:00:00Z") for index in range(3)],
        exams=[exam_row(f"e{index}", f"Exam {index}", f"2026-03-{11 + index:02d}T09:00:00Z") for index in range(3)],
    )
    engine = _engine(backend, page_size=2)

    outcome = asyncio.run(engine.load(LIST.evolve(page=5)))

    assert outcome.page == 3
    assert [entry.id for entry in engine.entries] == ["e2", "l2"]
    assert len(backend.calls) == 2


def test_search_fetches_beyond_the_first_pages() -> None:
    backend = FakeBackend(
        live=[live_row(f"l{index}", f"Live {index}", f"2026-03-{11 + index:02d}T10:00:00Z") for index in range(5)]
        + [live_row("bayes", "Bayes", "2026-04-20T10:00:00Z")],
    )
    engine = _engine(backend, page_size=2)

    asyncio.run(engine.load(LIST.evolve(search_query="bay")))

    assert [entry.id for entry in engine.entries] == ["bayes"]
    assert backend.calls_named("live")[0][4].limit > 2


def test_list_window_starts_now_or_at_selected_date() -> None:
    engine = _engine(FakeBackend(), time_zone="America/New_York")

    window = engine.compute_window(LIST)
    assert window.start == NOW
    assert window.end == NOW.replace(year=2027)

    window = engine.compute_window(LIST.evolve(selected_date=date(2026, 3, 20)))
    assert window.start == datetime(2026, 3, 20, 4, 0, tzinfo=timezone.utc)


def test_one_year_after_leap_day() -> None:
    leap = datetime(2028, 2, 29, 12, 0, tzinfo=timezone.utc)

    assert one_year_after(leap) == datetime(2029, 2, 28, 12, 0, tzinfo=timezone.utc)


def test_calendar_view_requests_the_whole_grid() -> None:
    backend = _sample_backend()
    engine = _engine(backend)

    outcome = asyncio.run(engine.load(FilterState(), month=date(2026, 3, 1)))

    assert outcome.window.start == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert outcome.window.end >= datetime(2026, 4, 4, tzinfo=timezone.utc)
    assert backend.calls_named("live")[0][4].limit == 100


def test_unchanged_results_do_not_notify_subscribers() -> None:
    engine = _engine(_sample_backend())
    seen = []
    engine.subscribe(seen.append)

    first = asyncio.run(engine.load(LIST))
    held = engine.entries
    second = asyncio.run(engine.load(LIST))

    assert first.changed and not second.changed
    assert engine.entries is held
    assert len(seen) == 1


def test_stale_responses_are_discarded() -> None:
    backend = _sample_backend()
    engine = _engine(backend)
    gate = asyncio.Event()

    async def scenario():
        backend.gates["live"] = gate
        slow = asyncio.create_task(engine.load(LIST))
        while not backend.calls_named("live"):
            await asyncio.sleep(0)
        backend.gates.pop("live")
        backend.live = [live_row("fresh", "Fresh", "2026-03-15T10:00:00Z")]
        backend.exams = []
        fast = await engine.load(LIST)
        gate.set()
        return await slow, fast

    slow, fast = asyncio.run(scenario())

    assert slow.stale and not slow.ok
    assert fast.ok
    assert [entry.id for entry in engine.entries] == ["fresh"]
    assert not engine.loading


def test_failure_keeps_previous_entries_and_notifies() -> None:
    backend = _sample_backend()
    log = NotificationLog()
    engine = _engine(backend, notifier=log)
    asyncio.run(engine.load(LIST))
    held = engine.entries

    backend.failures["exams"] = RuntimeError("database offline")
    outcome = asyncio.run(engine.load(LIST))

    assert isinstance(outcome.error, FetchError)
    assert engine.entries is held
    assert engine.last_error is outcome.error
    (notification,) = log.items
    assert notification.title == "Error"
    assert notification.description == "Failed to load events"
    assert notification.variant == "destructive"


def test_invalid_filter_failure_uses_filter_error_toast() -> None:
    backend = _sample_backend()
    backend.failures["live"] = {"success": False, "error": {"code": "INVALID_FILTER", "message": "bad"}}
    log = NotificationLog()
    engine = _engine(backend, notifier=log)

    outcome = asyncio.run(engine.load(LIST))

    assert isinstance(outcome.error, InvalidFilterCombination)
    assert log.titled("Filter Error")[0].description == InvalidFilterCombination.default_message


def test_set_status_replaces_only_the_target_entry() -> None:
    engine = _engine(_sample_backend())
    asyncio.run(engine.load(LIST))
    before = engine.entries

    assert engine.set_status("l2", LiveStatus.LIVE)
    assert engine.find("l2").status is LiveStatus.LIVE
    assert engine.entries[0] is before[0]
    assert engine.entries[1] is before[1]

    assert not engine.set_status("l2", LiveStatus.LIVE)
    assert not engine.set_status("e1", LiveStatus.LIVE)
    assert not engine.set_status("missing", LiveStatus.LIVE)


def test_merge_entries_orders_ties_by_id() -> None:
    engine = _engine(
        FakeBackend(
            live=[live_row("b", "B", "2026-03-11T10:00:00Z")],
            exams=[exam_row("a", "A", "2026-03-11T10:00:00Z")],
        )
    )
    asyncio.run(engine.load(LIST))

    assert [entry.id for entry in merge_entries([engine.entries[::-1]])] == ["a", "b"]

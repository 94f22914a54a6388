import logging
from datetime import datetime, timezone

from timeline.models import LiveStatus
from timeline.services.events import (
    FETCH,
    emit_structured_event,
    normalize_context,
    sanitize_context_value,
)


def test_normalize_context_drops_empty_values():
    cleaned = normalize_context(
        {
            "status": LiveStatus.LIVE,
            "at": datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
            "ids": ["a", "b"],
            "empty": "  ",
            "missing": None,
            "": "ignored",
        }
    )

    assert cleaned == {"status": "LIVE", "at": "2026-03-10T12:00:00+00:00", "ids": "a, b"}


def test_long_values_are_truncated():
    value = sanitize_context_value("x" * 250)

    assert len(value) == 201
    assert value.endswith("…")


def test_structured_event_formats_message_and_extras(caplog):
    logger = logging.getLogger("tests.events")

    with caplog.at_level(logging.INFO, logger="tests.events"):
        emit_structured_event(FETCH, "Loaded", payload={"total": 3}, duration_ms=12.34, logger=logger)

    (record,) = caplog.records
    assert record.getMessage() == "[FETCH] Loaded (total=3, duration_ms=12.3)"
    assert record.timeline_event_type == "FETCH"
    assert record.timeline_payload == {"total": 3, "duration_ms": 12.3}

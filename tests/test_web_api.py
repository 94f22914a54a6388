from __future__ import annotations

import asyncio
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from conftest import NOW

from timeline.config import AppConfig
from timeline.models import ExamStatus, LiveStatus
from timeline.services.live_status import StatusChange
from timeline.services.storage import EventRepository
from timeline.web.server import StatusBroadcaster, create_app, format_sse


WINDOW = {"start": "2026-03-09T00:00:00Z", "end": "2027-03-09T00:00:00Z"}
STUDENT = {"X-User-Id": "student"}
CREATOR = {"X-User-Id": "creator"}


def _create_sample_data(config: AppConfig) -> EventRepository:
    repository = EventRepository(config)
    repository.add_user("Dana", user_id="creator", email="dana@example.com", image="dana.png")
    repository.add_user("Sam", user_id="student")
    repository.add_user("Outsider", user_id="outsider")
    course_id = repository.add_course("Statistics", "creator", course_id="course")
    repository.enroll("student", course_id)
    repository.add_lecture(
        course_id, "Regression Basics", NOW + timedelta(hours=2), duration=45, lecture_id="soon"
    )
    repository.add_lecture(
        course_id, "Happening", NOW - timedelta(hours=1), status=LiveStatus.LIVE, lecture_id="live_now"
    )
    repository.add_exam(
        course_id, "Midterm", NOW + timedelta(days=1), status=ExamStatus.PUBLISHED, exam_id="midterm"
    )
    repository.add_exam(
        course_id, "Final", NOW + timedelta(days=2), status=ExamStatus.DRAFT, exam_id="final"
    )
    return repository


def _client(config: AppConfig, **kwargs) -> TestClient:
    app = create_app(_create_sample_data(config), config=config, **kwargs)
    return TestClient(app)


def test_live_listing_uses_camel_case_fields(temp_config):
    client = _client(temp_config)

    response = client.get("/api/events/live", params={"role": "student", **WINDOW}, headers=STUDENT)

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["total"] == 2
    assert [entry["id"] for entry in payload["entries"]] == ["live_now", "soon"]
    soon = payload["entries"][1]
    assert soon["type"] == "LIVE"
    assert soon["courseName"] == "Statistics"
    assert soon["creatorName"] == "Dana"
    assert soon["duration"] == 45
    assert soon["isReminded"] is False
    assert soon["scheduledAt"].endswith("Z")


def test_exam_listing_hides_drafts_from_students(temp_config):
    client = _client(temp_config)

    student = client.get("/api/events/exams", params={"role": "student", **WINDOW}, headers=STUDENT)
    creator = client.get("/api/events/exams", params={"role": "creator", **WINDOW}, headers=CREATOR)

    assert [entry["id"] for entry in student.json()["entries"]] == ["midterm"]
    midterm = student.json()["entries"][0]
    assert midterm["examId"] == "midterm"
    assert midterm["creatorName"] == "Dana"

    entries = creator.json()["entries"]
    assert [entry["id"] for entry in entries] == ["midterm", "final"]
    assert entries[0]["creatorName"] == "You"
    assert entries[0]["creatorImage"] is None


def test_listing_paginates(temp_config):
    client = _client(temp_config)

    response = client.get(
        "/api/events/live",
        params={"role": "student", "page": 2, "limit": 1, **WINDOW},
        headers=STUDENT,
    )

    payload = response.json()
    assert payload["total"] == 2
    assert [entry["id"] for entry in payload["entries"]] == ["soon"]


def test_missing_user_header_is_unauthorized(temp_config):
    client = _client(temp_config)

    response = client.get("/api/events/live", params={"role": "student", **WINDOW})

    assert response.status_code == 401


def test_exam_status_on_live_route_is_an_invalid_filter(temp_config):
    client = _client(temp_config)

    response = client.get(
        "/api/events/live",
        params={"role": "student", "status": "PUBLISHED", **WINDOW},
        headers=STUDENT,
    )

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "INVALID_FILTER"
    assert "PUBLISHED" in detail["message"]


def test_status_all_is_accepted(temp_config):
    client = _client(temp_config)

    response = client.get(
        "/api/events/exams",
        params={"role": "student", "status": "all", **WINDOW},
        headers=STUDENT,
    )

    assert response.status_code == 200
    assert response.json()["total"] == 1


def test_reminder_toggle_round_trips(temp_config):
    client = _client(temp_config)

    response = client.put("/api/events/soon/reminder", json={"enabled": True}, headers=STUDENT)
    assert response.status_code == 200
    assert response.json() == {"success": True}

    listing = client.get("/api/events/live", params={"role": "student", **WINDOW}, headers=STUDENT)
    reminded = {entry["id"]: entry["isReminded"] for entry in listing.json()["entries"]}
    assert reminded == {"live_now": False, "soon": True}


def test_reminder_for_inaccessible_lecture_is_not_found(temp_config):
    client = _client(temp_config)

    response = client.put(
        "/api/events/soon/reminder", json={"enabled": True}, headers={"X-User-Id": "outsider"}
    )

    assert response.status_code == 404


def test_google_calendar_link_carries_event_data(temp_config):
    client = _client(temp_config)

    response = client.get("/api/events/soon/calendar", params={"provider": "google"}, headers=STUDENT)

    assert response.status_code == 200
    payload = response.json()
    assert payload["url"] == payload["calendarUrl"]
    query = parse_qs(urlparse(payload["url"]).query)
    assert query["text"] == ["Regression Basics - Statistics"]
    event = payload["eventData"]
    assert event["startTime"] == "2026-03-10T14:00:00Z"
    assert event["endTime"] == "2026-03-10T14:45:00Z"
    assert event["location"] == "https://learn.example.com/content/course/player/soon"


def test_ical_link_is_absolute(temp_config):
    client = _client(temp_config)

    response = client.get("/api/events/soon/calendar", params={"provider": "ical"}, headers=STUDENT)

    url = response.json()["url"]
    assert url == "http://testserver/api/calendar/ical?lectureId=soon"


def test_ical_download_is_an_attachment(temp_config):
    client = _client(temp_config)

    response = client.get("/api/calendar/ical", params={"lectureId": "soon"}, headers=STUDENT)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/calendar")
    assert (
        response.headers["content-disposition"]
        == 'attachment; filename="regression_basics_event.ics"'
    )
    assert b"BEGIN:VCALENDAR" in response.content
    assert b"SUMMARY:Regression Basics - Statistics" in response.content


def test_ical_download_for_outsider_is_not_found(temp_config):
    client = _client(temp_config)

    response = client.get(
        "/api/calendar/ical", params={"lectureId": "soon"}, headers={"X-User-Id": "outsider"}
    )

    assert response.status_code == 404


def test_status_change_is_stored_and_broadcast(temp_config):
    broadcaster = StatusBroadcaster()
    published = []
    broadcaster.publish = lambda change: published.append(change) or 0
    client = _client(temp_config, broadcaster=broadcaster)

    response = client.post("/api/lectures/soon/status", json={"status": "live"}, headers=CREATOR)

    assert response.status_code == 200
    assert response.json()["status"] == "LIVE"
    assert published == [StatusChange(entry_id="soon", status="LIVE")]
    listing = client.get(
        "/api/events/live", params={"role": "creator", "status": "LIVE", **WINDOW}, headers=CREATOR
    )
    assert {entry["id"] for entry in listing.json()["entries"]} == {"live_now", "soon"}


def test_status_change_requires_ownership(temp_config):
    client = _client(temp_config)

    response = client.post("/api/lectures/soon/status", json={"status": "LIVE"}, headers=STUDENT)

    assert response.status_code == 404


def test_status_change_rejects_unknown_status(temp_config):
    client = _client(temp_config)

    bogus = client.post("/api/lectures/soon/status", json={"status": "PAUSED"}, headers=CREATOR)
    everything = client.post("/api/lectures/soon/status", json={"status": "ALL"}, headers=CREATOR)

    assert bogus.status_code == 400
    assert everything.status_code == 400


def test_api_handles_configured_root_path(temp_config):
    client = _client(temp_config, root_path="lecture/")

    response = client.get("/lecture/api/health")

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_cors_preflight_is_supported(temp_config):
    client = _client(temp_config)

    response = client.options(
        "/api/events/soon/reminder",
        headers={
            "Origin": "https://example.com",
            "Access-Control-Request-Method": "PUT",
            "Access-Control-Request-Headers": "x-user-id",
        },
    )

    assert response.status_code == 200
    assert response.headers.get("access-control-allow-origin") == "*"


def test_broadcaster_delivers_to_listeners_and_ticks_keepalive():
    broadcaster = StatusBroadcaster()

    async def scenario():
        stream = broadcaster.listen(keepalive=0.01)
        idle = await stream.__anext__()
        assert broadcaster.listener_count == 1
        delivered = broadcaster.publish(StatusChange(entry_id="soon", status="LIVE"))
        change = await stream.__anext__()
        await stream.aclose()
        return idle, delivered, change

    idle, delivered, change = asyncio.run(scenario())

    assert idle is None
    assert delivered == 1
    assert change == StatusChange(entry_id="soon", status="LIVE")
    assert broadcaster.listener_count == 0


def test_format_sse_frames():
    frame = format_sse(StatusChange(entry_id="soon", status="ENDED"))

    assert frame == 'event: lecture-status-update\ndata: {"lectureId": "soon", "status": "ENDED"}\n\n'
    assert format_sse(None) == ": keepalive\n\n"

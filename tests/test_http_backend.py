from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from conftest import NOW

from timeline.errors import BackendError
from timeline.models import CalendarProvider, DateWindow, ExamStatus, LiveStatus, Pagination, Role
from timeline.services.http_backend import HttpTimelineBackend


WINDOW = DateWindow(start=NOW, end=NOW + timedelta(days=30))


def _backend(handler) -> HttpTimelineBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test")
    return HttpTimelineBackend("http://api.test", user_id="student-1", client=client)


def test_live_query_sends_window_filters_and_user_header() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "entries": [], "total": 0})

    backend = _backend(handler)
    payload = asyncio.run(
        backend.fetch_live_session_entries(
            Role.STUDENT, WINDOW, LiveStatus.LIVE, Pagination(page=2, limit=5)
        )
    )

    assert payload == {"success": True, "entries": [], "total": 0}
    (request,) = seen
    assert request.url.path == "/api/events/live"
    assert request.headers["X-User-Id"] == "student-1"
    params = request.url.params
    assert params["role"] == "student"
    assert params["start"] == "2026-03-10T12:00:00Z"
    assert params["end"] == "2026-04-09T12:00:00Z"
    assert params["status"] == "LIVE"
    assert params["page"] == "2"
    assert params["limit"] == "5"


def test_exam_query_omits_optional_filters() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "entries": [], "total": 0})

    asyncio.run(_backend(handler).fetch_exam_entries(Role.CREATOR, WINDOW))

    params = seen[0].url.params
    assert seen[0].url.path == "/api/events/exams"
    assert params["role"] == "creator"
    assert "status" not in params
    assert "page" not in params


def test_error_detail_becomes_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"detail": {"code": "INVALID_FILTER", "message": "Invalid value for argument `status`"}},
        )

    backend = _backend(handler)

    with pytest.raises(BackendError) as excinfo:
        asyncio.run(backend.fetch_exam_entries(Role.STUDENT, WINDOW, ExamStatus.PUBLISHED))

    assert excinfo.value.code == "INVALID_FILTER"
    assert excinfo.value.status_code == 400
    assert str(excinfo.value) == "Invalid value for argument `status`"


def test_plain_text_error_uses_status_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "Lecture not found or you don't have access"})

    with pytest.raises(BackendError) as excinfo:
        asyncio.run(_backend(handler).set_reminder("missing", True))

    assert excinfo.value.code is None
    assert excinfo.value.status_code == 404
    assert "Lecture not found" in str(excinfo.value)


def test_non_json_success_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(BackendError, match="non-JSON"):
        asyncio.run(_backend(handler).fetch_live_session_entries(Role.STUDENT, WINDOW))


def test_network_failure_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendError, match="connection refused"):
        asyncio.run(_backend(handler).fetch_live_session_entries(Role.STUDENT, WINDOW))


def test_reminder_and_status_send_json_bodies() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"success": True})

    backend = _backend(handler)

    async def scenario():
        await backend.set_reminder("lec-1", False)
        await backend.update_lecture_status("lec-1", LiveStatus.ENDED)

    asyncio.run(scenario())

    assert seen == [
        ("PUT", "/api/events/lec-1/reminder", {"enabled": False}),
        ("POST", "/api/lectures/lec-1/status", {"status": "ENDED"}),
    ]


def test_calendar_link_passes_provider() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "url": "https://outlook.example/compose"})

    payload = asyncio.run(_backend(handler).get_calendar_export_link("lec-1", CalendarProvider.OUTLOOK))

    assert payload["url"] == "https://outlook.example/compose"
    assert seen[0].url.path == "/api/events/lec-1/calendar"
    assert seen[0].url.params["provider"] == "outlook"

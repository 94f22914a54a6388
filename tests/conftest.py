from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from timeline.bootstrap import Bootstrapper
from timeline.config import AppConfig
from timeline.models import CalendarProvider, Pagination


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def live_row(entry_id: str, title: str, scheduled_at: str, status: str = "SCHEDULED", **extra: Any) -> Dict[str, Any]:
    row = {
        "id": entry_id,
        "title": title,
        "type": "LIVE",
        "status": status,
        "scheduledAt": scheduled_at,
        "courseId": "course-1",
        "courseName": "Applied Statistics",
        "creatorName": "Dana",
        "duration": 60,
        "isReminded": False,
    }
    row.update(extra)
    return row


def exam_row(entry_id: str, title: str, start: str, status: str = "PUBLISHED", **extra: Any) -> Dict[str, Any]:
    row = {
        "id": entry_id,
        "title": title,
        "type": "EXAM",
        "status": status,
        "scheduledAt": start,
        "courseId": "course-1",
        "courseName": "Applied Statistics",
        "creatorName": "Dana",
        "timeLimit": 90,
        "formId": f"form-{entry_id}",
    }
    row.update(extra)
    return row


class FakeBackend:
    """In-memory backend recording every call it receives."""

    def __init__(self, live: Optional[List[Dict[str, Any]]] = None, exams: Optional[List[Dict[str, Any]]] = None) -> None:
        self.live = list(live or [])
        self.exams = list(exams or [])
        self.calls: List[tuple] = []
        self.failures: Dict[str, Any] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.links: Dict[str, str] = {}

    async def _serve(self, name: str, rows: List[Dict[str, Any]], status, pagination: Optional[Pagination]):
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        failure = self.failures.get(name)
        if isinstance(failure, BaseException):
            raise failure
        if failure is not None:
            return failure
        selected = [row for row in rows if status is None or row.get("status") == status.value]
        total = len(selected)
        if pagination is not None:
            selected = selected[pagination.offset : pagination.offset + pagination.limit]
        return {"success": True, "entries": selected, "total": total}

    async def fetch_live_session_entries(self, role, window, status=None, pagination=None):
        self.calls.append(("live", role, window, status, pagination))
        return await self._serve("live", self.live, status, pagination)

    async def fetch_exam_entries(self, role, window, status=None, pagination=None):
        self.calls.append(("exams", role, window, status, pagination))
        return await self._serve("exams", self.exams, status, pagination)

    async def set_reminder(self, entry_id, enabled):
        self.calls.append(("reminder", entry_id, enabled))
        return await self._serve("reminder", [], None, None)

    async def get_calendar_export_link(self, entry_id, provider: CalendarProvider):
        self.calls.append(("calendar", entry_id, provider))
        failure = self.failures.get("calendar")
        if isinstance(failure, BaseException):
            raise failure
        if failure is not None:
            return failure
        return {"success": True, "url": self.links.get(entry_id, f"https://calendar.example/{provider.value}/{entry_id}")}

    def calls_named(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]


@pytest.fixture()
def clock():
    return lambda: NOW


@pytest.fixture()
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LECTURE_TIMELINE_API_URL", raising=False)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/timeline.db",
            "timeline": {"app_url": "https://learn.example.com"},
        },
        base_path=tmp_path,
        env={},
    )

    Bootstrapper(config).initialize()
    return config

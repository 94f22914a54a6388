"""Collaborator contract for the timeline backend."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, Union, runtime_checkable

from ..models import (
    CalendarProvider,
    DateWindow,
    ExamStatus,
    LiveStatus,
    Pagination,
    Role,
)


# ``{"success": True, "entries": [...], "total": n}`` or ``{"success": False, "error": ...}``
BackendPayload = Mapping[str, Any]

StatusValue = Union[LiveStatus, ExamStatus]


@runtime_checkable
class TimelineBackend(Protocol):
    """Role-scoped retrieval and mutation operations consumed by the adapter.

    Implementations may raise on transport failure; the adapter converts any
    exception into a typed result.
    """

    async def fetch_live_session_entries(
        self,
        role: Role,
        window: DateWindow,
        status: Optional[StatusValue] = None,
        pagination: Optional[Pagination] = None,
    ) -> BackendPayload:
        """Return live sessions visible to *role* inside *window*."""

    async def fetch_exam_entries(
        self,
        role: Role,
        window: DateWindow,
        status: Optional[StatusValue] = None,
        pagination: Optional[Pagination] = None,
    ) -> BackendPayload:
        """Return exams visible to *role* inside *window*."""

    async def set_reminder(self, entry_id: str, enabled: bool) -> BackendPayload:
        """Arm or disarm the reminder for *entry_id*."""

    async def get_calendar_export_link(
        self, entry_id: str, provider: CalendarProvider
    ) -> BackendPayload:
        """Return ``{"success": True, "url": ...}`` for *provider*."""


__all__ = ["BackendPayload", "StatusValue", "TimelineBackend"]

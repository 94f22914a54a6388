"""FastAPI application serving the reference timeline backend."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi import status as http_status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel

from ..config import AppConfig
from ..models import CalendarProvider, ExamStatus, LiveStatus, Role
from ..services.adapter import INVALID_FILTER_CODE
from ..services.events import emit_push_event, emit_structured_event
from ..services.export import build_event_data, calendar_link, ical_filename, render_ical
from ..services.live_status import STATUS_UPDATE_EVENT, STREAM_PATH, StatusChange
from ..services.storage import EventRepository, ExamRecord, LiveSessionRecord


LOGGER = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0
MAX_PAGE_LIMIT = 500


class ReminderPayload(BaseModel):
    enabled: bool = True


class LectureStatusPayload(BaseModel):
    status: str


class StatusBroadcaster:
    """Fan out status changes to every connected event-stream listener."""

    def __init__(self) -> None:
        self._queues: Set[asyncio.Queue] = set()

    @property
    def listener_count(self) -> int:
        return len(self._queues)

    def publish(self, change: StatusChange) -> int:
        for queue in list(self._queues):
            queue.put_nowait(change)
        emit_push_event(
            "Broadcast status update",
            payload={"entry_id": change.entry_id, "status": change.status, "listeners": len(self._queues)},
        )
        return len(self._queues)

    async def listen(self, *, keepalive: float = KEEPALIVE_SECONDS) -> AsyncIterator[Optional[StatusChange]]:
        """Yield changes as they arrive; ``None`` marks an idle keepalive tick."""

        queue: asyncio.Queue = asyncio.Queue()
        self._queues.add(queue)
        try:
            while True:
                try:
                    yield await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield None
        finally:
            self._queues.discard(queue)


def format_sse(change: Optional[StatusChange]) -> str:
    if change is None:
        return ": keepalive\n\n"
    return f"event: {STATUS_UPDATE_EVENT}\ndata: {json.dumps(change.to_payload())}\n\n"


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def _require_user(user_id: Optional[str]) -> str:
    if user_id is None or not user_id.strip():
        raise HTTPException(status_code=http_status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user_id.strip()


def _invalid_filter(value: str, kind: str) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_400_BAD_REQUEST,
        detail={
            "code": INVALID_FILTER_CODE,
            "message": f"Invalid value for argument `status`: {value} is not a valid {kind} status",
        },
    )


def _parse_live_status(value: Optional[str]) -> Optional[LiveStatus]:
    if value is None or value.upper() == "ALL":
        return None
    try:
        return LiveStatus(value.upper())
    except ValueError:
        raise _invalid_filter(value, "live session") from None


def _parse_exam_status(value: Optional[str]) -> Optional[ExamStatus]:
    if value is None or value.upper() == "ALL":
        return None
    try:
        return ExamStatus(value.upper())
    except ValueError:
        raise _invalid_filter(value, "exam") from None


def _serialize_live(record: LiveSessionRecord, role: Role) -> Dict[str, Any]:
    return {
        "id": record.id,
        "title": record.title,
        "type": "LIVE",
        "status": record.status,
        "scheduledAt": record.scheduled_at,
        "courseId": record.course_id,
        "courseName": record.course_title,
        "sectionName": record.section_title,
        "creatorId": record.creator_id,
        "creatorName": record.creator_name,
        "creatorImage": record.creator_image,
        "duration": record.duration,
        "isReminded": record.is_reminded if role is Role.STUDENT else False,
    }


def _serialize_exam(record: ExamRecord, role: Role) -> Dict[str, Any]:
    own = role is Role.CREATOR
    return {
        "id": record.id,
        "title": record.title,
        "type": "EXAM",
        "status": record.status,
        "scheduledAt": record.start_date,
        "courseId": record.course_id,
        "courseName": record.course_title,
        "sectionName": record.section_title,
        "creatorId": record.creator_id,
        "creatorName": "You" if own else record.creator_name,
        "creatorImage": None if own else record.creator_image,
        "duration": record.time_limit,
        "examId": record.id,
        "formId": record.form_id,
        "timeLimit": record.time_limit,
        "passingScore": record.passing_score,
        "endDate": record.end_date,
    }


def create_app(
    repository: EventRepository,
    *,
    config: AppConfig,
    broadcaster: Optional[StatusBroadcaster] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    app = FastAPI(
        title="Lecture Timeline",
        description="Live sessions and exams for the timeline views",
        root_path=_normalize_root_path(root_path),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    broadcaster = broadcaster or StatusBroadcaster()
    app.state.repository = repository
    app.state.broadcaster = broadcaster
    app.state.config = config
    app.state.server = None

    configure_emitter = getattr(repository, "configure_event_emitter", None)
    if callable(configure_emitter):
        configure_emitter(emit_structured_event)

    app_url = config.timeline.app_url

    def _log_event(message: str, **payload: Any) -> None:
        emit_structured_event("HTTP", message, payload=payload, logger=LOGGER)

    def _lecture_event_data(user_id: str, lecture_id: str):
        record = repository.get_lecture_for_user(user_id, lecture_id)
        if record is None:
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND,
                detail="Lecture not found or you don't have access",
            )
        return build_event_data(
            lecture_id=record.id,
            lecture_title=record.title,
            course_id=record.course_id,
            course_title=record.course_title,
            scheduled_at=datetime.strptime(record.scheduled_at, "%Y-%m-%dT%H:%M:%SZ"),
            duration_minutes=record.duration,
            app_url=app_url,
            creator_name=record.creator_name,
            creator_email=record.creator_email,
            description=record.description,
        )

    @app.get("/api/health")
    async def health() -> Dict[str, Any]:
        return {"success": True, "listeners": broadcaster.listener_count}

    @app.get("/api/events/live")
    async def list_live_sessions(
        role: Role,
        start: datetime,
        end: datetime,
        status: Optional[str] = None,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=MAX_PAGE_LIMIT),
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        user_id = _require_user(x_user_id)
        live_status = _parse_live_status(status)
        records, total = repository.query_live_sessions(
            user_id, role, start, end, status=live_status, page=page, limit=limit
        )
        _log_event("Listed live sessions", role=role, status=live_status, count=len(records), total=total)
        entries: List[Dict[str, Any]] = [_serialize_live(record, role) for record in records]
        return {"success": True, "entries": entries, "total": total}

    @app.get("/api/events/exams")
    async def list_exams(
        role: Role,
        start: datetime,
        end: datetime,
        status: Optional[str] = None,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=MAX_PAGE_LIMIT),
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        user_id = _require_user(x_user_id)
        exam_status = _parse_exam_status(status)
        records, total = repository.query_exams(
            user_id, role, start, end, status=exam_status, page=page, limit=limit
        )
        _log_event("Listed exams", role=role, status=exam_status, count=len(records), total=total)
        return {
            "success": True,
            "entries": [_serialize_exam(record, role) for record in records],
            "total": total,
        }

    @app.put("/api/events/{entry_id}/reminder")
    async def update_reminder(
        entry_id: str,
        payload: ReminderPayload,
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        user_id = _require_user(x_user_id)
        if not repository.set_reminder(user_id, entry_id, payload.enabled):
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND,
                detail="Lecture not found or you don't have access",
            )
        _log_event("Updated reminder", entry_id=entry_id, enabled=payload.enabled)
        return {"success": True}

    @app.get("/api/events/{entry_id}/calendar")
    async def calendar_data(
        request: Request,
        entry_id: str,
        provider: CalendarProvider = CalendarProvider.GOOGLE,
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        user_id = _require_user(x_user_id)
        event = _lecture_event_data(user_id, entry_id)
        url = calendar_link(event, provider)
        if url.startswith("/"):
            url = f"{str(request.base_url).rstrip('/')}{url}"
        return {"success": True, "url": url, "calendarUrl": url, "eventData": event.to_payload()}

    @app.get("/api/calendar/ical")
    async def download_ical(
        lecture_id: str = Query(..., alias="lectureId"),
        x_user_id: Optional[str] = Header(None),
    ) -> Response:
        user_id = _require_user(x_user_id)
        record = repository.get_lecture_for_user(user_id, lecture_id)
        event = _lecture_event_data(user_id, lecture_id)
        filename = ical_filename(record.title if record else lecture_id)
        return Response(
            content=render_ical(event),
            media_type="text/calendar",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/api/lectures/{lecture_id}/status")
    async def update_lecture_status(
        lecture_id: str,
        payload: LectureStatusPayload,
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        user_id = _require_user(x_user_id)
        new_status = _parse_live_status(payload.status)
        if new_status is None:
            raise _invalid_filter(payload.status, "live session")
        if not repository.update_lecture_status(user_id, lecture_id, new_status):
            raise HTTPException(
                status_code=http_status.HTTP_404_NOT_FOUND,
                detail="Lecture not found or you don't own it",
            )
        listeners = broadcaster.publish(StatusChange(entry_id=lecture_id, status=new_status.value))
        return {
            "success": True,
            "lectureId": lecture_id,
            "status": new_status.value,
            "listeners": listeners,
        }

    @app.get(STREAM_PATH)
    async def stream_status_updates(request: Request) -> StreamingResponse:
        async def event_source() -> AsyncIterator[str]:
            async for change in broadcaster.listen():
                if await request.is_disconnected():
                    break
                yield format_sse(change)

        headers = {
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
        return StreamingResponse(event_source(), media_type="text/event-stream", headers=headers)

    return app


__all__ = ["StatusBroadcaster", "create_app", "format_sse"]

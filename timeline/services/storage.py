"""Persistence helpers backed by SQLite for the reference timeline backend."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..config import AppConfig
from ..models import ExamStatus, LiveStatus, Role, ensure_utc, utc_now
from .events import DB_QUERY


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
STUDENT_EXAM_STATUSES = (ExamStatus.PUBLISHED.value, ExamStatus.CLOSED.value)


LOGGER = logging.getLogger(__name__)


def format_db_timestamp(value: datetime) -> str:
    return ensure_utc(value).strftime(TIMESTAMP_FORMAT)


def parse_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return ensure_utc(datetime.strptime(value, TIMESTAMP_FORMAT))


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class LiveSessionRecord:
    id: str
    title: str
    description: str
    status: str
    scheduled_at: str
    duration: Optional[int]
    course_id: str
    course_title: str
    section_title: Optional[str]
    creator_id: str
    creator_name: Optional[str]
    creator_image: Optional[str]
    creator_email: Optional[str] = None
    is_reminded: bool = False


@dataclass
class ExamRecord:
    id: str
    title: str
    status: str
    start_date: str
    end_date: Optional[str]
    time_limit: Optional[int]
    passing_score: Optional[int]
    form_id: Optional[str]
    course_id: str
    course_title: str
    section_title: Optional[str]
    creator_id: str
    creator_name: Optional[str]
    creator_image: Optional[str]


_LECTURE_COLUMNS = """
    l.id, l.title, l.description, l.status, l.scheduled_at, l.duration,
    c.id AS course_id, c.title AS course_title, l.section_title,
    u.id AS creator_id, u.name AS creator_name, u.image AS creator_image,
    u.email AS creator_email
"""

_EXAM_COLUMNS = """
    e.id, e.title, e.status, e.start_date, e.end_date, e.time_limit,
    e.passing_score, e.form_id,
    c.id AS course_id, c.title AS course_title, e.section_title,
    u.id AS creator_id, u.name AS creator_name, u.image AS creator_image
"""


class EventRepository:
    """Role-scoped queries over courses, live lectures, exams and reminders."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting debug events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any) -> Iterator[Dict[str, Any]]:
        """Emit a structured debug event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        try:
            yield event_payload
        except Exception as exc:
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            event_payload.setdefault("status", "ok")
            filtered = {key: value for key, value in event_payload.items() if value is not None}
            self._event_emitter(DB_QUERY, action, payload=filtered, duration_ms=duration_ms)

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] = (),
        *,
        action: str,
        table: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params = tuple(parameters)
        with self._track_db_event(
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        with self._track_db_event("connect", database=str(self._db_path)):
            connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        try:
            self._execute(connection, "PRAGMA foreign_keys = ON", action="pragma_foreign_keys")
            with connection:
                yield connection
        finally:
            connection.close()

    # ---------------------------------------------------------------------
    # Creation helpers
    # ---------------------------------------------------------------------
    def add_user(
        self,
        name: str,
        *,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        image: Optional[str] = None,
    ) -> str:
        user_id = user_id or _new_id()
        with self._track_db_event("add_user", table="users", user_id=user_id):
            with self._connect() as connection:
                self._execute(
                    connection,
                    """
                    INSERT INTO users(id, name, email, image) VALUES (?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name, email = excluded.email, image = excluded.image
                    """,
                    (user_id, name, email, image),
                    action="users.insert",
                    table="users",
                )
        LOGGER.debug("User '%s' inserted with id=%s", name, user_id)
        return user_id

    def add_course(self, title: str, creator_id: str, *, course_id: Optional[str] = None) -> str:
        course_id = course_id or _new_id()
        with self._track_db_event("add_course", table="courses", course_id=course_id):
            with self._connect() as connection:
                self._execute(
                    connection,
                    "INSERT INTO courses(id, title, creator_id) VALUES (?, ?, ?)",
                    (course_id, title, creator_id),
                    action="courses.insert",
                    table="courses",
                )
        LOGGER.debug("Course '%s' inserted with id=%s", title, course_id)
        return course_id

    def enroll(self, user_id: str, course_id: str) -> None:
        with self._track_db_event("enroll", table="enrollments", user_id=user_id, course_id=course_id):
            with self._connect() as connection:
                self._execute(
                    connection,
                    "INSERT OR IGNORE INTO enrollments(user_id, course_id) VALUES (?, ?)",
                    (user_id, course_id),
                    action="enrollments.insert",
                    table="enrollments",
                )

    def add_lecture(
        self,
        course_id: str,
        title: str,
        scheduled_at: datetime,
        *,
        duration: Optional[int] = None,
        status: LiveStatus = LiveStatus.SCHEDULED,
        description: str = "",
        section_title: Optional[str] = None,
        lecture_id: Optional[str] = None,
    ) -> str:
        lecture_id = lecture_id or _new_id()
        with self._track_db_event("add_lecture", table="lectures", lecture_id=lecture_id):
            with self._connect() as connection:
                self._execute(
                    connection,
                    """
                    INSERT INTO lectures(
                        id, course_id, title, description, section_title,
                        scheduled_at, duration, status
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        lecture_id,
                        course_id,
                        title,
                        description,
                        section_title,
                        format_db_timestamp(scheduled_at),
                        duration,
                        LiveStatus(status).value,
                    ),
                    action="lectures.insert",
                    table="lectures",
                )
        LOGGER.debug("Lecture '%s' inserted with id=%s", title, lecture_id)
        return lecture_id

    def add_exam(
        self,
        course_id: str,
        title: str,
        start_date: datetime,
        *,
        end_date: Optional[datetime] = None,
        status: ExamStatus = ExamStatus.DRAFT,
        time_limit: Optional[int] = None,
        passing_score: Optional[int] = None,
        form_id: Optional[str] = None,
        section_title: Optional[str] = None,
        exam_id: Optional[str] = None,
    ) -> str:
        exam_id = exam_id or _new_id()
        with self._track_db_event("add_exam", table="exams", exam_id=exam_id):
            with self._connect() as connection:
                self._execute(
                    connection,
                    """
                    INSERT INTO exams(
                        id, course_id, title, section_title, status, start_date,
                        end_date, time_limit, passing_score, form_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        exam_id,
                        course_id,
                        title,
                        section_title,
                        ExamStatus(status).value,
                        format_db_timestamp(start_date),
                        format_db_timestamp(end_date) if end_date else None,
                        time_limit,
                        passing_score,
                        form_id,
                    ),
                    action="exams.insert",
                    table="exams",
                )
        LOGGER.debug("Exam '%s' inserted with id=%s", title, exam_id)
        return exam_id

    # ---------------------------------------------------------------------
    # Timeline queries
    # ---------------------------------------------------------------------
    @staticmethod
    def _scope(role: Role, alias: str) -> str:
        if Role(role) is Role.CREATOR:
            return "c.creator_id = ?"
        return (
            f"EXISTS (SELECT 1 FROM enrollments en WHERE en.course_id = {alias}.course_id"
            " AND en.user_id = ?)"
        )

    def query_live_sessions(
        self,
        user_id: str,
        role: Role,
        start: datetime,
        end: datetime,
        *,
        status: Optional[LiveStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[LiveSessionRecord], int]:
        """Return one page of live lectures visible to *user_id* and the total count.

        Creators see their own lectures; ``ALL`` and ``SCHEDULED`` are bounded by
        the window. Students see enrolled courses; ``ALL`` means scheduled inside
        the window or live right now.
        """

        role = Role(role)
        scope = self._scope(role, "l")
        clauses = [scope]
        params: List[Any] = [user_id]
        window = (format_db_timestamp(start), format_db_timestamp(end))

        if status is None and role is Role.STUDENT:
            clauses.append(
                "((l.status = 'SCHEDULED' AND l.scheduled_at BETWEEN ? AND ?) OR l.status = 'LIVE')"
            )
            params.extend(window)
        else:
            if status is not None:
                clauses.append("l.status = ?")
                params.append(LiveStatus(status).value)
            if status in (None, LiveStatus.SCHEDULED):
                clauses.append("l.scheduled_at BETWEEN ? AND ?")
                params.extend(window)

        where = " AND ".join(clauses)
        base = f"FROM lectures l JOIN courses c ON c.id = l.course_id JOIN users u ON u.id = c.creator_id WHERE {where}"
        with self._track_db_event(
            "query_live_sessions", table="lectures", role=role, status=status, page=page, limit=limit
        ) as event:
            with self._connect() as connection:
                total = int(
                    self._execute(
                        connection, f"SELECT COUNT(*) {base}", params,
                        action="lectures.count", table="lectures",
                    ).fetchone()[0]
                )
                rows = self._execute(
                    connection,
                    f"SELECT {_LECTURE_COLUMNS} {base} ORDER BY l.scheduled_at, l.id LIMIT ? OFFSET ?",
                    [*params, limit, (page - 1) * limit],
                    action="lectures.select",
                    table="lectures",
                ).fetchall()
                reminded = self._reminded_ids(connection, user_id, [row["id"] for row in rows])
                event.update({"total": total, "returned": len(rows)})
        records = [
            LiveSessionRecord(**dict(row), is_reminded=row["id"] in reminded) for row in rows
        ]
        return records, total

    def query_exams(
        self,
        user_id: str,
        role: Role,
        start: datetime,
        end: datetime,
        *,
        status: Optional[ExamStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[ExamRecord], int]:
        """Return one page of exams starting inside the window and the total count.

        Students never see draft exams.
        """

        role = Role(role)
        scope = self._scope(role, "e")
        clauses = [scope, "e.start_date BETWEEN ? AND ?"]
        params: List[Any] = [user_id, format_db_timestamp(start), format_db_timestamp(end)]
        if status is not None:
            clauses.append("e.status = ?")
            params.append(ExamStatus(status).value)
        if role is Role.STUDENT:
            clauses.append(f"e.status IN ({', '.join('?' for _ in STUDENT_EXAM_STATUSES)})")
            params.extend(STUDENT_EXAM_STATUSES)

        where = " AND ".join(clauses)
        base = f"FROM exams e JOIN courses c ON c.id = e.course_id JOIN users u ON u.id = c.creator_id WHERE {where}"
        with self._track_db_event(
            "query_exams", table="exams", role=role, status=status, page=page, limit=limit
        ) as event:
            with self._connect() as connection:
                total = int(
                    self._execute(
                        connection, f"SELECT COUNT(*) {base}", params,
                        action="exams.count", table="exams",
                    ).fetchone()[0]
                )
                rows = self._execute(
                    connection,
                    f"SELECT {_EXAM_COLUMNS} {base} ORDER BY e.start_date, e.id LIMIT ? OFFSET ?",
                    [*params, limit, (page - 1) * limit],
                    action="exams.select",
                    table="exams",
                ).fetchall()
                event.update({"total": total, "returned": len(rows)})
        return [ExamRecord(**dict(row)) for row in rows], total

    def _reminded_ids(
        self, connection: sqlite3.Connection, user_id: str, lecture_ids: List[str]
    ) -> set:
        if not lecture_ids:
            return set()
        placeholders = ", ".join("?" for _ in lecture_ids)
        cursor = self._execute(
            connection,
            f"SELECT lecture_id FROM event_reminders WHERE user_id = ? AND lecture_id IN ({placeholders})",
            [user_id, *lecture_ids],
            action="event_reminders.select",
            table="event_reminders",
        )
        return {row["lecture_id"] for row in cursor.fetchall()}

    # ---------------------------------------------------------------------
    # Single lecture helpers
    # ---------------------------------------------------------------------
    def get_lecture_for_user(self, user_id: str, lecture_id: str) -> Optional[LiveSessionRecord]:
        """Return the lecture when *user_id* created its course or is enrolled in it."""

        with self._track_db_event("get_lecture_for_user", table="lectures", lecture_id=lecture_id) as event:
            with self._connect() as connection:
                row = self._execute(
                    connection,
                    f"""
                    SELECT {_LECTURE_COLUMNS}
                    FROM lectures l
                    JOIN courses c ON c.id = l.course_id
                    JOIN users u ON u.id = c.creator_id
                    WHERE l.id = ? AND (
                        c.creator_id = ?
                        OR EXISTS (
                            SELECT 1 FROM enrollments en
                            WHERE en.course_id = c.id AND en.user_id = ?
                        )
                    )
                    """,
                    (lecture_id, user_id, user_id),
                    action="lectures.lookup",
                    table="lectures",
                ).fetchone()
                if row is None:
                    event["found"] = False
                    return None
                reminded = self._reminded_ids(connection, user_id, [lecture_id])
                event["found"] = True
        return LiveSessionRecord(**dict(row), is_reminded=lecture_id in reminded)

    def set_reminder(self, user_id: str, lecture_id: str, enabled: bool) -> bool:
        """Arm or clear a reminder; ``False`` when the lecture is not accessible."""

        if self.get_lecture_for_user(user_id, lecture_id) is None:
            LOGGER.debug("Reminder for inaccessible lecture %s rejected", lecture_id)
            return False
        with self._track_db_event(
            "set_reminder", table="event_reminders", lecture_id=lecture_id, enabled=enabled
        ):
            with self._connect() as connection:
                if enabled:
                    self._execute(
                        connection,
                        "INSERT OR IGNORE INTO event_reminders(user_id, lecture_id, created_at) VALUES (?, ?, ?)",
                        (user_id, lecture_id, format_db_timestamp(utc_now())),
                        action="event_reminders.insert",
                        table="event_reminders",
                    )
                else:
                    self._execute(
                        connection,
                        "DELETE FROM event_reminders WHERE user_id = ? AND lecture_id = ?",
                        (user_id, lecture_id),
                        action="event_reminders.delete",
                        table="event_reminders",
                    )
        return True

    def update_lecture_status(self, creator_id: str, lecture_id: str, status: LiveStatus) -> bool:
        """Change the live status of a lecture owned by *creator_id*."""

        with self._track_db_event(
            "update_lecture_status", table="lectures", lecture_id=lecture_id, status=status
        ) as event:
            with self._connect() as connection:
                cursor = self._execute(
                    connection,
                    """
                    UPDATE lectures SET status = ?
                    WHERE id = ? AND course_id IN (SELECT id FROM courses WHERE creator_id = ?)
                    """,
                    (LiveStatus(status).value, lecture_id, creator_id),
                    action="lectures.update_status",
                    table="lectures",
                )
                updated = cursor.rowcount > 0
                event["updated"] = updated
        return updated


__all__ = [
    "EventRepository",
    "ExamRecord",
    "LiveSessionRecord",
    "STUDENT_EXAM_STATUSES",
    "format_db_timestamp",
    "parse_db_timestamp",
]

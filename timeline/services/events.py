"""Structured log events for fetches, pushes, URL writes, reminders and queries."""

from __future__ import annotations

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("lecture_timeline.events")

FETCH = "FETCH"
PUSH = "PUSH"
URL_STATE = "URL_STATE"
REMINDER = "REMINDER"
DB_QUERY = "DB_QUERY"

MAX_VALUE_LENGTH = 200


def sanitize_context_value(value: Any) -> Any:
    """Return *value* in a shape that reads well inside a log line."""

    if isinstance(value, Enum):
        value = value.value
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return normalize_context(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        value = ", ".join(str(sanitize_context_value(item)) for item in value)
    text = str(value).strip()
    if len(text) > MAX_VALUE_LENGTH:
        return text[:MAX_VALUE_LENGTH] + "…"
    return text or None


def normalize_context(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop empty keys and values; stringify the rest."""

    cleaned: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        value = sanitize_context_value(raw_value)
        if key and value not in (None, "", {}):
            cleaned[str(key)] = value
    return cleaned


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log ``[TYPE] message (key=value, ...)`` and attach the details as extras."""

    details = normalize_context(payload)
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 1)
    text = f"[{event_type}] {message}".strip() if event_type else str(message).strip()
    if details:
        text += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"
    logger.log(
        level,
        text,
        extra={
            "timeline_event": str(message).strip(),
            "timeline_event_type": event_type or "",
            "timeline_payload": details,
        },
    )


def emit_fetch_event(
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
) -> None:
    emit_structured_event(FETCH, message, payload=payload, duration_ms=duration_ms, level=level)


def emit_push_event(message: str, *, payload: Optional[Dict[str, Any]] = None, level: int = logging.INFO) -> None:
    emit_structured_event(PUSH, message, payload=payload, level=level)


def emit_url_event(message: str, *, payload: Optional[Dict[str, Any]] = None, level: int = logging.DEBUG) -> None:
    emit_structured_event(URL_STATE, message, payload=payload, level=level)


def emit_reminder_event(
    message: str, *, payload: Optional[Dict[str, Any]] = None, level: int = logging.INFO
) -> None:
    emit_structured_event(REMINDER, message, payload=payload, level=level)


__all__ = [
    "DB_QUERY",
    "DEFAULT_EVENT_LOGGER",
    "FETCH",
    "PUSH",
    "REMINDER",
    "URL_STATE",
    "emit_fetch_event",
    "emit_push_event",
    "emit_reminder_event",
    "emit_structured_event",
    "emit_url_event",
    "normalize_context",
    "sanitize_context_value",
]

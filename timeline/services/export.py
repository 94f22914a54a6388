"""External calendar links and iCalendar rendering for live sessions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional
from urllib.parse import urlencode

from icalendar import Calendar, Event, vCalAddress, vText

from ..models import CalendarProvider, ensure_utc, utc_now


DEFAULT_EVENT_MINUTES = 60
GOOGLE_TEMPLATE_URL = "https://calendar.google.com/calendar/render"
OUTLOOK_COMPOSE_URL = "https://outlook.live.com/calendar/0/deeplink/compose"
ICAL_PATH = "/api/calendar/ical"
PRODID = "-//Lecture Timeline//Live Sessions//EN"
FALLBACK_ORGANIZER_EMAIL = "noreply@lecture-timeline.local"


@dataclass(frozen=True)
class CalendarEventData:
    """Everything an external calendar needs to describe one live session."""

    lecture_id: str
    title: str
    description: str
    location: str
    start: datetime
    end: datetime
    organizer_name: str = "Instructor"
    organizer_email: Optional[str] = None

    def to_payload(self) -> Dict[str, str]:
        return {
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "startTime": ensure_utc(self.start).isoformat().replace("+00:00", "Z"),
            "endTime": ensure_utc(self.end).isoformat().replace("+00:00", "Z"),
        }


def build_event_data(
    *,
    lecture_id: str,
    lecture_title: str,
    course_id: str,
    course_title: str,
    scheduled_at: datetime,
    duration_minutes: Optional[int],
    app_url: str,
    creator_name: Optional[str] = None,
    creator_email: Optional[str] = None,
    description: Optional[str] = None,
) -> CalendarEventData:
    start = ensure_utc(scheduled_at)
    end = start + timedelta(minutes=duration_minutes or DEFAULT_EVENT_MINUTES)
    organizer = creator_name or "Instructor"
    return CalendarEventData(
        lecture_id=lecture_id,
        title=f"{lecture_title} - {course_title}",
        description=f"Live session by {organizer}\n\n{description or ''}",
        location=f"{app_url.rstrip('/')}/content/{course_id}/player/{lecture_id}",
        start=start,
        end=end,
        organizer_name=organizer,
        organizer_email=creator_email,
    )


def format_compact_utc(moment: datetime) -> str:
    return ensure_utc(moment).strftime("%Y%m%dT%H%M%SZ")


def format_outlook_time(moment: datetime) -> str:
    return ensure_utc(moment).strftime("%Y-%m-%dT%H:%M:%S")


def google_calendar_url(event: CalendarEventData) -> str:
    params = {
        "action": "TEMPLATE",
        "text": event.title,
        "details": event.description,
        "location": event.location,
        "dates": f"{format_compact_utc(event.start)}/{format_compact_utc(event.end)}",
    }
    return f"{GOOGLE_TEMPLATE_URL}?{urlencode(params)}"


def outlook_calendar_url(event: CalendarEventData) -> str:
    params = {
        "subject": event.title,
        "body": event.description,
        "location": event.location,
        "startdt": format_outlook_time(event.start),
        "enddt": format_outlook_time(event.end),
    }
    return f"{OUTLOOK_COMPOSE_URL}?{urlencode(params)}"


def ical_url(lecture_id: str) -> str:
    return f"{ICAL_PATH}?{urlencode({'lectureId': lecture_id})}"


def calendar_link(event: CalendarEventData, provider: CalendarProvider | str) -> str:
    provider = CalendarProvider(provider)
    if provider is CalendarProvider.GOOGLE:
        return google_calendar_url(event)
    if provider is CalendarProvider.OUTLOOK:
        return outlook_calendar_url(event)
    return ical_url(event.lecture_id)


def ical_filename(title: str) -> str:
    return f"{re.sub(r'[^a-z0-9]', '_', title, flags=re.IGNORECASE).lower()}_event.ics"


def render_ical(event: CalendarEventData, *, now: Optional[datetime] = None) -> bytes:
    """Return a single-event VCALENDAR document for *event*."""

    calendar = Calendar()
    calendar.add("prodid", PRODID)
    calendar.add("version", "2.0")
    calendar.add("calscale", "GREGORIAN")
    calendar.add("method", "PUBLISH")

    ical_event = Event()
    ical_event.add("uid", f"{event.lecture_id}@lecture-timeline")
    ical_event.add("dtstamp", ensure_utc(now or utc_now()))
    ical_event.add("dtstart", ensure_utc(event.start))
    ical_event.add("dtend", ensure_utc(event.end))
    ical_event.add("summary", event.title)
    ical_event.add("description", event.description)
    ical_event.add("location", event.location)
    ical_event.add("status", "CONFIRMED")

    organizer = vCalAddress(f"mailto:{event.organizer_email or FALLBACK_ORGANIZER_EMAIL}")
    organizer.params["cn"] = vText(event.organizer_name)
    ical_event["organizer"] = organizer

    calendar.add_component(ical_event)
    return calendar.to_ical()


__all__ = [
    "CalendarEventData",
    "DEFAULT_EVENT_MINUTES",
    "build_event_data",
    "calendar_link",
    "format_compact_utc",
    "format_outlook_time",
    "google_calendar_url",
    "ical_filename",
    "ical_url",
    "outlook_calendar_url",
    "render_ical",
]

"""A Rich-powered terminal renderer for the timeline."""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..models import ExamEntry, FilterState, Role, TimelineEntry, utc_now
from ..services.calendar import WEEKDAY_LABELS, CalendarDayBucket
from ..services.notifications import Notification
from .presenters import (
    day_cells,
    duration_label,
    empty_state,
    format_event_date,
    format_scheduled_time,
    format_time_until,
    list_description,
    primary_action,
    status_badge,
)


BADGE_STYLES = {
    "live": "bold white on red",
    "info": "bold white on blue",
    "secondary": "dim",
    "outline": "cyan",
}


class TimelineConsole:
    """Render timeline entries, month grids and notifications with Rich widgets."""

    def __init__(
        self,
        console: Optional[Console] = None,
        *,
        time_zone: Optional[ZoneInfo] = None,
        clock=utc_now,
    ) -> None:
        self._console = console or Console()
        self._tz = time_zone or ZoneInfo("UTC")
        self._clock = clock

    @property
    def console(self) -> Console:
        return self._console

    # ------------------------------------------------------------------
    # Notifier
    # ------------------------------------------------------------------
    def notify(self, notification: Notification) -> None:
        style = "red" if notification.variant == "destructive" else "green"
        body = Text(notification.description)
        if notification.action is not None:
            body.append(f"\n{notification.action.label}: {notification.action.href}", style="bold")
        self._console.print(
            Panel(body, title=notification.title, border_style=style, box=box.ROUNDED)
        )

    # ------------------------------------------------------------------
    # List view
    # ------------------------------------------------------------------
    def _entry_label(self, entry: TimelineEntry) -> Text:
        label = Text(entry.title, style="bold")
        if isinstance(entry, ExamEntry):
            label.append("  [exam]", style="magenta")
        label.append("\n")
        label.append(entry.parent_context_name, style="dim")
        if entry.owner_name:
            label.append(f" · {entry.owner_name}", style="dim")
        return label

    def _badge(self, entry: TimelineEntry, now: datetime) -> Text:
        badge = status_badge(entry, now)
        text = Text()
        if badge.pulsing:
            text.append("● ", style="blink red")
        text.append(f" {badge.label} ", style=BADGE_STYLES.get(badge.tone, ""))
        return text

    def render_list(
        self,
        entries: Sequence[TimelineEntry],
        *,
        role: Role,
        filters: FilterState,
        total_pages: int = 1,
    ) -> None:
        now = self._clock()
        title = "Upcoming Events & Exams"
        if not entries:
            state = empty_state(role, filters.search_query)
            body = Text(f"{state.title}\n", style="bold")
            body.append(state.description, style="dim")
            if state.action_label:
                body.append(f"\n\n{state.action_label} → {state.action_href}", style="cyan")
            self._console.print(Panel(body, title=title, border_style="yellow", box=box.ROUNDED))
            return

        table = Table(box=box.SIMPLE_HEAVY, expand=True, caption=list_description(filters.status_filter))
        table.add_column("Event")
        table.add_column("Date & Time")
        table.add_column("Status")
        table.add_column("Action", justify="right")
        for entry in entries:
            when = Text(format_event_date(entry.scheduled_at, self._tz))
            duration = duration_label(entry)
            if duration:
                when.append(f"\n{duration}", style="dim")
            action = primary_action(entry, now, self._tz)
            action_text = Text(action.label, style="bold" if action.enabled else "dim")
            if action.href:
                action_text.append(f"\n{action.href}", style="dim")
            table.add_row(self._entry_label(entry), when, self._badge(entry, now), action_text)

        footer = Text(f"Page {filters.page} of {total_pages}", style="dim")
        self._console.print(
            Panel(Group(table, footer), title=title, border_style="cyan", box=box.ROUNDED)
        )

    # ------------------------------------------------------------------
    # Calendar view
    # ------------------------------------------------------------------
    def render_calendar(
        self,
        buckets: Sequence[CalendarDayBucket],
        month: date,
        *,
        selected: Optional[date] = None,
    ) -> None:
        today = self._clock().astimezone(self._tz).date()
        grid = Table(box=box.SQUARE, expand=True, show_lines=True)
        for label in WEEKDAY_LABELS:
            grid.add_column(label, ratio=1, vertical="top")

        cells = day_cells(buckets, today, selected)
        for start in range(0, len(cells), len(WEEKDAY_LABELS)):
            row = []
            for cell in cells[start : start + len(WEEKDAY_LABELS)]:
                style = "bold" if cell.in_month else "dim"
                if cell.is_today:
                    style += " underline"
                if cell.is_selected:
                    style += " reverse"
                text = Text(str(cell.date.day), style=style)
                for entry in cell.visible:
                    marker = "✎" if isinstance(entry, ExamEntry) else "●"
                    text.append(f"\n{marker} {entry.title}", style="magenta" if marker == "✎" else "cyan")
                if cell.overflow:
                    text.append(f"\n+{cell.overflow} more", style="dim")
                row.append(text)
            grid.add_row(*row)

        self._console.print(
            Panel(grid, title=f"{month:%B %Y}", border_style="cyan", box=box.ROUNDED)
        )

    def render_day(self, day: date, entries: Iterable[TimelineEntry]) -> None:
        now = self._clock()
        entries = list(entries)
        table = Table.grid(expand=True, padding=(0, 1))
        table.add_column()
        table.add_column(justify="right")
        for entry in entries:
            table.add_row(self._entry_label(entry), self._badge(entry, now))
        body = table if entries else Text("No events scheduled for this day.", style="dim")
        self._console.print(
            Panel(body, title=f"{day:%A}, {day:%B} {day.day}, {day.year}", box=box.ROUNDED)
        )

    # ------------------------------------------------------------------
    # Upcoming widget
    # ------------------------------------------------------------------
    def render_upcoming(self, entries: Sequence[TimelineEntry], *, role: Role) -> None:
        now = self._clock()
        if not entries:
            message = (
                "You don't have any upcoming sessions scheduled"
                if role is Role.CREATOR
                else "No upcoming events or exams from your courses"
            )
            self._console.print(Panel(Text(message, style="dim"), title="Upcoming", box=box.ROUNDED))
            return

        table = Table.grid(expand=True, padding=(0, 1))
        table.add_column()
        table.add_column(justify="right")
        for entry in entries:
            when = Text(format_scheduled_time(entry.scheduled_at, now, self._tz))
            when.append(f"\n{format_time_until(entry.scheduled_at, now)}", style="dim")
            table.add_row(self._entry_label(entry), when)
        self._console.print(Panel(table, title="Upcoming", border_style="magenta", box=box.ROUNDED))


__all__ = ["TimelineConsole"]

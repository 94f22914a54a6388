"""Entry-point for the Lecture Timeline application."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import threading
import time
import webbrowser
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple

import typer
import uvicorn

from timeline.bootstrap import BootstrapError, initialize_app
from timeline.config import AppConfig
from timeline.logging_utils import build_handlers, configure_logging
from timeline.models import (
    CalendarProvider,
    ExamStatus,
    FilterState,
    LiveStatus,
    Role,
    StatusFilter,
    TimelineEntry,
    ViewMode,
    utc_now,
)
from timeline.services.adapter import EventSourceAdapter
from timeline.services.http_backend import USER_HEADER, HttpTimelineBackend
from timeline.services.live_status import SsePushChannel
from timeline.services.notifications import NotificationLog
from timeline.services.storage import EventRepository
from timeline.services.url_state import DEFAULT_PATH, build_url
from timeline.session import TimelineSession, load_upcoming
from timeline.ui.console import TimelineConsole
from timeline.web import create_app


LOGGER = logging.getLogger("lecture_timeline.cli")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000

_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


cli = typer.Typer(add_completion=False, help="Lecture Timeline management commands")


config_option = typer.Option(None, "--config", "-c", help="Path to a JSON configuration file.")
user_option = typer.Option(..., "--user", "-u", help="Identifier sent as the acting user.")
role_option = typer.Option(Role.STUDENT, "--role", "-r", help="Role whose timeline to show.")
api_option = typer.Option(None, "--api-url", help="Override the timeline API base URL.")
tz_option = typer.Option(None, "--time-zone", "--tz", help="IANA time zone for local dates.")


def _prepare(config_path: Optional[Path], *, console_logs: bool = False) -> AppConfig:
    try:
        config = initialize_app(config_path)
    except BootstrapError as error:
        typer.echo(f"Failed to prepare storage: {error}", err=True)
        raise typer.Exit(code=1) from error
    configure_logging(handlers=build_handlers(config.log_root, console=console_logs))
    return config


@contextlib.asynccontextmanager
async def _open_adapter(
    config: AppConfig,
    *,
    user: str,
    role: Role,
    api_url: Optional[str],
    time_zone: Optional[str],
) -> AsyncIterator[Tuple[HttpTimelineBackend, EventSourceAdapter]]:
    settings = config.timeline
    backend = HttpTimelineBackend(
        api_url or settings.api_base_url,
        user_id=user,
        timeout=settings.request_timeout_seconds,
    )
    adapter = EventSourceAdapter(
        backend,
        role=role,
        time_zone=time_zone or settings.default_time_zone,
        timeout_seconds=settings.request_timeout_seconds,
    )
    try:
        yield backend, adapter
    finally:
        await backend.aclose()


def _parse_month(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    match = _MONTH_PATTERN.match(value.strip())
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise typer.BadParameter("Month must look like YYYY-MM.", param_hint="--month")
    return date(int(match.group(1)), int(match.group(2)), 1)


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None, config_path=None, open_browser=False)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="LECTURE_TIMELINE_ROOT_PATH",
    ),
    config_path: Optional[Path] = config_option,
    open_browser: bool = typer.Option(False, "--open/--no-open", help="Open the API docs once started."),
) -> None:
    """Run the FastAPI-powered reference backend."""

    app_config = _prepare(config_path, console_logs=True)
    repository = EventRepository(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(repository, config=app_config, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    if open_browser:
        browser_host = host
        if not browser_host or browser_host in {"0.0.0.0", "::"}:
            browser_host = "127.0.0.1"
        url = f"http://{browser_host}:{port}{normalized_root}/docs"

        def _open_browser_later() -> None:
            time.sleep(1.0)
            try:
                webbrowser.open(url, new=2, autoraise=True)
            except Exception as error:  # noqa: BLE001 - the server keeps running without a browser
                LOGGER.debug("Could not open browser: %s", error)

        threading.Thread(target=_open_browser_later, daemon=True).start()

    server.run()


@cli.command()
def seed(
    config_path: Optional[Path] = config_option,
    creator: str = typer.Option("creator-1", help="Identifier of the demo creator"),
    student: str = typer.Option("student-1", help="Identifier of the demo student"),
) -> None:
    """Populate the database with a small demo course."""

    config = _prepare(config_path)
    repository = EventRepository(config)
    now = utc_now().replace(second=0, microsecond=0)

    repository.add_user("Dana Instructor", user_id=creator, email="dana@example.com")
    repository.add_user("Sam Student", user_id=student, email="sam@example.com")
    course_id = repository.add_course("Applied Statistics", creator)
    repository.enroll(student, course_id)

    lectures = [
        ("Regression Office Hours", now - timedelta(minutes=10), LiveStatus.LIVE),
        ("Sampling Deep Dive", now + timedelta(hours=2), LiveStatus.SCHEDULED),
        ("Probability Recap", now - timedelta(days=1), LiveStatus.ENDED),
    ]
    for title, scheduled_at, lecture_status in lectures:
        lecture_id = repository.add_lecture(
            course_id,
            title,
            scheduled_at,
            duration=60,
            status=lecture_status,
            section_title="Week 3",
        )
        typer.echo(f"Lecture {lecture_id}: {title} ({lecture_status.value})")

    exams = [
        ("Midterm", now - timedelta(hours=1), now + timedelta(days=2), ExamStatus.PUBLISHED),
        ("Final", now + timedelta(days=30), None, ExamStatus.DRAFT),
    ]
    for title, start_date, end_date, exam_status in exams:
        exam_id = repository.add_exam(
            course_id,
            title,
            start_date,
            end_date=end_date,
            status=exam_status,
            time_limit=90,
            passing_score=60,
        )
        typer.echo(f"Exam {exam_id}: {title} ({exam_status.value})")

    typer.echo(f"Seeded course {course_id} for creator '{creator}' and student '{student}'.")


@cli.command()
def agenda(
    user: str = user_option,
    role: Role = role_option,
    status: StatusFilter = typer.Option(StatusFilter.ALL, "--status", help="Status filter"),
    query: str = typer.Option("", "--query", "-q", help="Search titles and course names"),
    page: int = typer.Option(1, "--page", min=1, help="Page to show"),
    url: Optional[str] = typer.Option(None, "--url", help="Restore filters from a timeline URL"),
    api_url: Optional[str] = api_option,
    time_zone: Optional[str] = tz_option,
    config_path: Optional[Path] = config_option,
) -> None:
    """Print the merged list of live sessions and exams."""

    config = _prepare(config_path)

    async def _run() -> None:
        async with _open_adapter(config, user=user, role=role, api_url=api_url, time_zone=time_zone) as (_, adapter):
            ui = TimelineConsole(time_zone=adapter.time_zone)
            notifier = NotificationLog(forward=ui.notify)
            if url is None:
                start_url = build_url(
                    DEFAULT_PATH,
                    FilterState(status_filter=status, search_query=query, view_mode=ViewMode.LIST, page=page),
                )
            else:
                start_url = url
            session = TimelineSession.from_url(
                start_url, adapter, notifier=notifier, settings=config.timeline
            )
            try:
                if session.filters.view_mode is not ViewMode.LIST:
                    await session.set_view(ViewMode.LIST)
                await session.start()
                ui.render_list(
                    session.entries,
                    role=role,
                    filters=session.filters,
                    total_pages=session.total_pages,
                )
                typer.echo(session.url_sync.last_written_url or start_url)
            finally:
                await session.close()

    asyncio.run(_run())


@cli.command()
def calendar(
    user: str = user_option,
    role: Role = role_option,
    month: Optional[str] = typer.Option(None, "--month", "-m", help="Month to show (YYYY-MM)"),
    day: Optional[datetime] = typer.Option(
        None, "--day", formats=["%Y-%m-%d"], help="Also list the entries on this day"
    ),
    api_url: Optional[str] = api_option,
    time_zone: Optional[str] = tz_option,
    config_path: Optional[Path] = config_option,
) -> None:
    """Render a month grid of live sessions and exams."""

    config = _prepare(config_path)
    target_month = _parse_month(month)

    async def _run() -> None:
        async with _open_adapter(config, user=user, role=role, api_url=api_url, time_zone=time_zone) as (_, adapter):
            ui = TimelineConsole(time_zone=adapter.time_zone)
            session = TimelineSession(
                adapter, notifier=NotificationLog(forward=ui.notify), settings=config.timeline
            )
            try:
                await session.start()
                if day is not None:
                    await session.select_date(day.date())
                elif target_month is not None and target_month != session.month:
                    await session.show_month(target_month)
                selected = session.filters.selected_date if day is not None else None
                ui.render_calendar(session.calendar_buckets(), session.month, selected=selected)
                if day is not None:
                    ui.render_day(day.date(), session.entries_on(day.date()))
            finally:
                await session.close()

    asyncio.run(_run())


@cli.command()
def upcoming(
    user: str = user_option,
    role: Role = role_option,
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="How many entries to show"),
    api_url: Optional[str] = api_option,
    time_zone: Optional[str] = tz_option,
    config_path: Optional[Path] = config_option,
) -> None:
    """Show the dashboard widget with the next few entries."""

    config = _prepare(config_path)

    async def _run() -> None:
        async with _open_adapter(config, user=user, role=role, api_url=api_url, time_zone=time_zone) as (_, adapter):
            ui = TimelineConsole(time_zone=adapter.time_zone)
            entries = await load_upcoming(
                adapter,
                limit=limit or config.timeline.widget_limit,
                notifier=NotificationLog(forward=ui.notify),
            )
            ui.render_upcoming(entries, role=role)

    asyncio.run(_run())


@cli.command()
def remind(
    entry_id: str = typer.Argument(..., help="Live session to toggle the reminder for"),
    user: str = user_option,
    api_url: Optional[str] = api_option,
    time_zone: Optional[str] = tz_option,
    config_path: Optional[Path] = config_option,
) -> None:
    """Toggle the reminder on one of the student's live sessions."""

    config = _prepare(config_path)

    async def _run() -> bool:
        async with _open_adapter(
            config, user=user, role=Role.STUDENT, api_url=api_url, time_zone=time_zone
        ) as (_, adapter):
            ui = TimelineConsole(time_zone=adapter.time_zone)
            session = TimelineSession(
                adapter, notifier=NotificationLog(forward=ui.notify), settings=config.timeline
            )
            try:
                await session.set_view(ViewMode.LIST)
                return await session.toggle_reminder(entry_id)
            finally:
                await session.close()

    enabled = asyncio.run(_run())
    typer.echo(f"Reminder {'on' if enabled else 'off'} for {entry_id}")


@cli.command()
def export(
    entry_id: str = typer.Argument(..., help="Live session to export"),
    provider: CalendarProvider = typer.Option(CalendarProvider.GOOGLE, "--provider", "-p"),
    user: str = user_option,
    role: Role = role_option,
    open_link: bool = typer.Option(False, "--open/--no-open", help="Open the link in a browser"),
    api_url: Optional[str] = api_option,
    time_zone: Optional[str] = tz_option,
    config_path: Optional[Path] = config_option,
) -> None:
    """Print (and optionally open) an add-to-calendar link for a live session."""

    config = _prepare(config_path)

    def _opener(link: str) -> bool:
        return webbrowser.open(link, new=2) if open_link else True

    async def _run() -> Optional[str]:
        async with _open_adapter(config, user=user, role=role, api_url=api_url, time_zone=time_zone) as (_, adapter):
            ui = TimelineConsole(time_zone=adapter.time_zone)
            session = TimelineSession(
                adapter,
                notifier=NotificationLog(forward=ui.notify),
                settings=config.timeline,
                opener=_opener,
            )
            try:
                await session.set_view(ViewMode.LIST)
                return await session.export_to_calendar(entry_id, provider)
            finally:
                await session.close()

    link = asyncio.run(_run())
    if link is None:
        raise typer.Exit(code=1)
    typer.echo(link)


@cli.command("set-status")
def set_status(
    lecture_id: str = typer.Argument(..., help="Lecture to update"),
    new_status: LiveStatus = typer.Argument(..., help="New lecture status"),
    user: str = user_option,
    api_url: Optional[str] = api_option,
    config_path: Optional[Path] = config_option,
) -> None:
    """Change a lecture's status as its creator; listeners receive the update."""

    config = _prepare(config_path)

    async def _run() -> None:
        async with _open_adapter(
            config, user=user, role=Role.CREATOR, api_url=api_url, time_zone=None
        ) as (backend, _):
            await backend.update_lecture_status(lecture_id, new_status)

    try:
        asyncio.run(_run())
    except Exception as error:  # noqa: BLE001 - report backend failures on the command line
        typer.echo(f"Failed to update status: {error}", err=True)
        raise typer.Exit(code=1) from error
    typer.echo(f"Lecture {lecture_id} is now {new_status.value}")


@cli.command()
def watch(
    user: str = user_option,
    role: Role = role_option,
    api_url: Optional[str] = api_option,
    time_zone: Optional[str] = tz_option,
    config_path: Optional[Path] = config_option,
) -> None:
    """Follow the live list, re-rendering whenever a status update arrives."""

    config = _prepare(config_path)
    base_url = api_url or config.timeline.api_base_url

    async def _run() -> None:
        async with _open_adapter(config, user=user, role=role, api_url=api_url, time_zone=time_zone) as (_, adapter):
            ui = TimelineConsole(time_zone=adapter.time_zone)
            channel = SsePushChannel(base_url, headers={USER_HEADER: user})
            session = TimelineSession(
                adapter,
                channel=channel,
                notifier=NotificationLog(forward=ui.notify),
                settings=config.timeline,
            )

            def _render(entries: Tuple[TimelineEntry, ...]) -> None:
                ui.render_list(
                    entries,
                    role=role,
                    filters=session.filters,
                    total_pages=session.total_pages,
                )

            unsubscribe = session.engine.subscribe(_render)
            try:
                await session.start()
                await asyncio.Event().wait()
            finally:
                unsubscribe()
                await session.close()
                await channel.close()

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_run())


if __name__ == "__main__":
    cli()

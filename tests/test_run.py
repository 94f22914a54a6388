"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

import contextlib
from datetime import date, timedelta
from types import SimpleNamespace

import pytest
import typer
from typer.testing import CliRunner

import run
from conftest import FakeBackend, live_row
from timeline.models import Role, utc_now
from timeline.services.adapter import EventSourceAdapter
from timeline.services.storage import EventRepository


runner = CliRunner()


def _setup_serve(monkeypatch, temp_config, *, open_browser=False, host="0.0.0.0"):
    captured = {}

    monkeypatch.setattr(run, "_prepare", lambda config_path, console_logs=False: temp_config)
    monkeypatch.setattr(run, "EventRepository", lambda config: object())

    dummy_app = SimpleNamespace(state=SimpleNamespace())

    def _create_app(repository, config, root_path):
        captured["root_path"] = root_path
        return dummy_app

    monkeypatch.setattr(run, "create_app", _create_app)

    class DummyConfig:
        def __init__(self, app, **kwargs):
            captured["app"] = app
            captured["config_kwargs"] = kwargs

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    class DummyThread:
        def __init__(self, target, daemon):
            self._target = target
            captured["thread_daemon"] = daemon

        def start(self):
            captured["thread_started"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)
    monkeypatch.setattr(run.threading, "Thread", DummyThread)
    monkeypatch.setattr(run.webbrowser, "open", lambda *args, **kwargs: True)

    run.serve(host=host, port=9000, root_path="timeline/", config_path=None, open_browser=open_browser)

    captured["app_state_server"] = dummy_app.state.server
    return captured


def _patch_adapter(monkeypatch, temp_config, backend):
    monkeypatch.setattr(run, "_prepare", lambda config_path, console_logs=False: temp_config)

    @contextlib.asynccontextmanager
    async def _fake_open_adapter(config, *, user, role, api_url, time_zone):
        yield backend, EventSourceAdapter(backend, role=role, time_zone="UTC")

    monkeypatch.setattr(run, "_open_adapter", _fake_open_adapter)


def _upcoming_backend() -> FakeBackend:
    soon = (utc_now() + timedelta(days=1)).strftime("%Y-%m-%dT%H:%M:%SZ")
    return FakeBackend(live=[live_row("l1", "Regression", soon)])


def test_serve_runs_uvicorn_with_normalized_root(monkeypatch, temp_config):
    captured = _setup_serve(monkeypatch, temp_config)

    assert captured["root_path"] == "/timeline"
    assert captured["config_kwargs"]["root_path"] == "/timeline"
    assert captured["config_kwargs"]["port"] == 9000
    assert captured["server_run"] is True
    assert captured["app_state_server"] is captured["server_instance"]
    assert "thread_started" not in captured


def test_serve_can_open_the_docs(monkeypatch, temp_config):
    captured = _setup_serve(monkeypatch, temp_config, open_browser=True)

    assert captured["thread_started"] is True
    assert captured["thread_daemon"] is True


def test_parse_month_accepts_year_month():
    assert run._parse_month("2026-04") == date(2026, 4, 1)
    assert run._parse_month(None) is None


@pytest.mark.parametrize("value", ["2026-13", "April", "2026/04"])
def test_parse_month_rejects_malformed_values(value):
    with pytest.raises(typer.BadParameter):
        run._parse_month(value)


def test_normalize_root_path():
    assert run._normalize_root_path(None) == ""
    assert run._normalize_root_path("  ") == ""
    assert run._normalize_root_path("lecture/") == "/lecture"


def test_seed_populates_demo_course(monkeypatch, temp_config):
    monkeypatch.setattr(run, "_prepare", lambda config_path, console_logs=False: temp_config)

    result = runner.invoke(run.cli, ["seed", "--creator", "c1", "--student", "s1"])

    assert result.exit_code == 0, result.output
    assert "Seeded course" in result.output
    repository = EventRepository(temp_config)
    now = utc_now()
    records, total = repository.query_live_sessions("s1", Role.STUDENT, now, now + timedelta(days=365))
    assert total == 2
    assert {record.status for record in records} == {"LIVE", "SCHEDULED"}

    again = runner.invoke(run.cli, ["seed", "--creator", "c1", "--student", "s1"])
    assert again.exit_code == 0, again.output


def test_remind_toggles_a_loaded_session(monkeypatch, temp_config):
    backend = _upcoming_backend()
    _patch_adapter(monkeypatch, temp_config, backend)

    result = runner.invoke(run.cli, ["remind", "l1", "--user", "s1"])

    assert result.exit_code == 0, result.output
    assert "Reminder on for l1" in result.output
    assert backend.calls_named("reminder") == [("reminder", "l1", True)]


def test_export_prints_the_provider_link(monkeypatch, temp_config):
    backend = _upcoming_backend()
    _patch_adapter(monkeypatch, temp_config, backend)

    result = runner.invoke(run.cli, ["export", "l1", "--user", "s1", "--provider", "outlook"])

    assert result.exit_code == 0, result.output
    assert "https://calendar.example/outlook/l1" in result.output


def test_export_failure_exits_non_zero(monkeypatch, temp_config):
    backend = _upcoming_backend()
    backend.failures["calendar"] = {"success": False, "error": "Lecture not found"}
    _patch_adapter(monkeypatch, temp_config, backend)

    result = runner.invoke(run.cli, ["export", "l1", "--user", "s1"])

    assert result.exit_code == 1


def test_set_status_reports_backend_failures(monkeypatch, temp_config):
    class FailingBackend:
        async def update_lecture_status(self, lecture_id, status):
            raise RuntimeError("Lecture not found or you don't own it")

    monkeypatch.setattr(run, "_prepare", lambda config_path, console_logs=False: temp_config)

    @contextlib.asynccontextmanager
    async def _fake_open_adapter(config, **kwargs):
        yield FailingBackend(), None

    monkeypatch.setattr(run, "_open_adapter", _fake_open_adapter)

    result = runner.invoke(run.cli, ["set-status", "l1", "LIVE", "--user", "c1"])

    assert result.exit_code == 1

"""Configuration loading utilities for the timeline application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional


LOGGER = logging.getLogger(__name__)


_WRITE_PROBE = ".lecture_timeline_write_check"

API_URL_ENV = "LECTURE_TIMELINE_API_URL"


def _is_writable(directory: Path) -> bool:
    """Create *directory* if needed and probe it with a throwaway file."""

    probe = directory / _WRITE_PROBE
    try:
        directory.mkdir(parents=True, exist_ok=True)
        probe.write_text("ok", encoding="utf-8")
    except OSError:
        return False
    with contextlib.suppress(OSError):
        probe.unlink()
    return True


def _first_writable(candidates: Iterable[Path], *, label: str) -> Optional[Path]:
    """Return the first candidate directory that accepts writes.

    Candidates after the first are fallbacks and are logged when chosen.
    ``None`` means nothing worked and bootstrap will report the failure.
    """

    ordered = list(dict.fromkeys(path.resolve() for path in candidates))
    for index, directory in enumerate(ordered):
        if not _is_writable(directory):
            continue
        if index:
            LOGGER.warning("%s directory '%s' is not writable; using '%s'.", label, ordered[0], directory)
        return directory
    LOGGER.warning("No writable %s directory among %s", label.lower(), [str(path) for path in ordered])
    return None


@dataclass(frozen=True)
class TimelineSettings:
    """Client-side knobs for fetching and presenting the timeline."""

    api_base_url: str = "http://127.0.0.1:8000"
    app_url: str = "http://127.0.0.1:3000"
    request_timeout_seconds: float = 15.0
    url_debounce_seconds: float = 0.3
    page_size: int = 10
    calendar_limit: int = 100
    widget_limit: int = 3
    default_time_zone: str = "UTC"

    @classmethod
    def from_mapping(
        cls, mapping: Optional[Mapping[str, Any]], *, env: Optional[Mapping[str, str]] = None
    ) -> "TimelineSettings":
        values: Dict[str, Any] = {}
        known = {item.name: item.type for item in fields(cls)}
        for key, raw_value in (mapping or {}).items():
            if key not in known:
                LOGGER.debug("Ignoring unknown timeline setting '%s'", key)
                continue
            values[key] = raw_value

        for key in ("request_timeout_seconds", "url_debounce_seconds"):
            if key in values:
                values[key] = float(values[key])
        for key in ("page_size", "calendar_limit", "widget_limit"):
            if key in values:
                values[key] = max(1, int(values[key]))

        source = os.environ if env is None else env
        override = source.get(API_URL_ENV, "").strip()
        if override:
            values["api_base_url"] = override

        return cls(**values)



@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and timeline settings for the application."""

    storage_root: Path
    database_file: Path
    timeline: TimelineSettings = field(default_factory=TimelineSettings)

    @property
    def log_root(self) -> Path:
        return (self.storage_root / "logs").resolve()

    @classmethod
    def from_mapping(
        cls,
        mapping: Dict[str, Any],
        *,
        base_path: Path,
        env: Optional[Mapping[str, str]] = None,
    ) -> "AppConfig":
        configured_storage = (base_path / mapping["storage_root"]).resolve()
        storage_root = _first_writable(
            (configured_storage, Path.home() / ".lecture_timeline" / "storage"),
            label="Storage",
        ) or configured_storage

        database_file = (base_path / mapping["database_file"]).resolve()
        if storage_root != configured_storage and database_file.is_relative_to(configured_storage):
            database_file = storage_root / database_file.relative_to(configured_storage)
        database_dir = _first_writable((database_file.parent, storage_root), label="Database")
        if database_dir is not None and database_dir != database_file.parent:
            database_file = database_dir / database_file.name

        timeline = TimelineSettings.from_mapping(mapping.get("timeline"), env=env)
        return cls(storage_root=storage_root, database_file=database_file, timeline=timeline)


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["API_URL_ENV", "AppConfig", "TimelineSettings", "load_config"]

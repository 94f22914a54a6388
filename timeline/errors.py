"""Error taxonomy and message normalisation for the timeline services."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional


DEFAULT_ERROR_MESSAGE = "Unknown error occurred"


class TimelineError(RuntimeError):
    """Base class for failures surfaced by the timeline services."""

    default_message = "Timeline operation failed"

    def __init__(self, message: Optional[str] = None, *, entry_id: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.entry_id = entry_id

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.default_message


class FetchError(TimelineError):
    """Retrieving entries from the backend failed."""

    default_message = "Failed to load events"


class InvalidFilterCombination(TimelineError):
    """A status filter was sent to an endpoint whose entry kind does not support it."""

    default_message = (
        "The selected status filter is not compatible with this view. "
        "Please try a different filter."
    )


class ReminderToggleError(TimelineError):
    default_message = "Failed to update reminder"


class ExportLinkError(TimelineError):
    default_message = "Failed to generate calendar link"


class MalformedEntry(TimelineError, ValueError):
    """A single backend record could not be normalised."""

    default_message = "Malformed timeline entry"


class BackendError(RuntimeError):
    """Raised by transport implementations when a collaborator call fails."""

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


def normalize_error_message(error: Any, default: str = DEFAULT_ERROR_MESSAGE) -> str:
    """Return a human readable message for an arbitrary error payload.

    Accepts strings, exceptions, mappings carrying ``message``/``error`` keys and
    arbitrary objects. Never raises.
    """

    if error is None:
        return default
    if isinstance(error, str):
        return error.strip() or default
    if isinstance(error, BaseException):
        text = str(error).strip()
        return text or error.__class__.__name__
    if isinstance(error, Mapping):
        for key in ("message", "error", "detail"):
            if key in error and error[key] is not error:
                nested = normalize_error_message(error[key], default="")
                if nested:
                    return nested
    try:
        text = json.dumps(error, default=str)
    except Exception:  # noqa: BLE001 - unserialisable payloads map to the default
        return default
    return text if text and text not in ("{}", "[]", '""') else default


def error_code(error: Any) -> Optional[str]:
    """Extract a machine readable ``code`` from an error payload, if any."""

    if isinstance(error, BackendError):
        return error.code
    if isinstance(error, Mapping):
        code = error.get("code")
        if isinstance(code, str) and code.strip():
            return code.strip()
    return None


__all__ = [
    "BackendError",
    "DEFAULT_ERROR_MESSAGE",
    "ExportLinkError",
    "FetchError",
    "InvalidFilterCombination",
    "MalformedEntry",
    "ReminderToggleError",
    "TimelineError",
    "error_code",
    "normalize_error_message",
]

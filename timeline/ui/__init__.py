"""Terminal presentation for the timeline."""

from .console import TimelineConsole

__all__ = ["TimelineConsole"]

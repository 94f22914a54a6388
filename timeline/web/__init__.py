"""HTTP surface for the reference timeline backend."""

from .server import StatusBroadcaster, create_app, format_sse

__all__ = ["StatusBroadcaster", "create_app", "format_sse"]

"""Unified lecture and exam timeline for the marketplace dashboards."""

__version__ = "0.1.0"

"""Startup Guard: validation, recovery, safe mode and crash analytics for application startup."""

__version__ = "1.0.0"

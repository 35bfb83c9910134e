"""Retention and cleanup of old backup archives and logs."""

__version__ = "1.0.0"

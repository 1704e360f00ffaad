"""PostgreSQL data-access layer for the cattle-tracking application."""

__version__ = "0.1.0"

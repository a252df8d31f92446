"""Resumable, deduplicating harvester for UI-paginated result streams."""

__version__ = "0.1.0"

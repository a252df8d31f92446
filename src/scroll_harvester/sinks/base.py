from __future__ import annotations
from typing import Protocol
from scroll_harvester.core.models import OutputRecord


class OutputSink(Protocol):
    """Protocol for output sinks. ``emit`` must be durable once it returns."""

    def emit(self, record: OutputRecord) -> None: ...

    def close(self) -> None: ...

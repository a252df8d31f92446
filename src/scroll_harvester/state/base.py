from __future__ import annotations

from typing import Dict, Mapping, Protocol

from scroll_harvester.core.models import ScrollState


class StatePersistence(Protocol):
    """Protocol for scroll-state checkpoint backends. States are scoped by job id."""

    def load_all(self, job_id: str) -> Dict[str, ScrollState]: ...

    def save_all(self, job_id: str, states: Mapping[str, ScrollState]) -> None: ...

    def mark_run_started(self, job_id: str) -> int: ...

    def mark_run_completed(self, job_id: str) -> None: ...

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

DEFAULT_LIMIT = 999_999


class EntityType(str, Enum):
    """Kinds of paginated streams the harvester can walk."""

    COMMENTS = "comments"
    PROFILE_POSTS = "profile_posts"
    HASHTAG_POSTS = "hashtag_posts"
    LOCATION_POSTS = "location_posts"
    FOLLOWERS = "followers"
    FOLLOWING = "following"
    LIKERS = "likers"

    @property
    def is_comments(self) -> bool:
        return self is EntityType.COMMENTS

    @property
    def is_posts(self) -> bool:
        return self in (EntityType.PROFILE_POSTS, EntityType.HASHTAG_POSTS, EntityType.LOCATION_POSTS)

    @property
    def is_user_list(self) -> bool:
        return self in (EntityType.FOLLOWERS, EntityType.FOLLOWING, EntityType.LIKERS)

    @property
    def exhausted_without_trigger(self) -> bool:
        """Whether a missing "load more" trigger means the stream is finished."""
        return not self.is_posts


class LoopStatus(str, Enum):
    """Outcome of one controller iteration."""

    RUNNING = "RUNNING"
    DONE = "DONE"


@dataclass
class ScrollState:
    """Mutable scroll/dedup state of one entity."""

    has_next_page: bool = True
    reached_time_boundary: bool = False
    all_duplicates_in_last_batch: bool = False
    accepted_ids: Set[str] = field(default_factory=set)

    def copy(self) -> "ScrollState":
        return ScrollState(
            has_next_page=self.has_next_page,
            reached_time_boundary=self.reached_time_boundary,
            all_duplicates_in_last_batch=self.all_duplicates_in_last_batch,
            accepted_ids=set(self.accepted_ids),
        )

    def reopened(self) -> "ScrollState":
        """Fresh per-run flags over the same accepted ids."""
        return ScrollState(accepted_ids=set(self.accepted_ids))


@dataclass(frozen=True)
class RequestSpec:
    """Specification for an HTTP request."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    body: Any = None


@dataclass(frozen=True)
class RawPage:
    """An untranslated paginated response.

    ``payload`` holds the decoded ``data`` member once the response has been
    parsed; ``body`` keeps the raw text as received.
    """

    url: str
    status_code: int = 200
    content_type: str = "application/json"
    body: str = ""
    payload: Any = None


@dataclass(frozen=True)
class TranslatedPage:
    """Uniform view over one page of a remote collection."""

    items: List[Any]
    has_next_page: bool
    total_count: Optional[int] = None
    end_cursor: Optional[str] = None


@dataclass
class OutputRecord:
    """A sink-ready record. ``position`` is 1-based within the entity's stream."""

    id: Optional[str]
    timestamp: Optional[datetime]
    entity_id: str
    position: Optional[int] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {"id": self.id}
        row.update(self.fields)
        row["position"] = self.position
        row["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return row


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive ``[min_date, max_date]`` filter; a missing bound is open."""

    min_date: Optional[datetime] = None
    max_date: Optional[datetime] = None

    @property
    def is_set(self) -> bool:
        return self.min_date is not None or self.max_date is not None

    def is_outside(self, timestamp: Optional[datetime]) -> bool:
        # Records without a timestamp cannot be judged, so they never fall outside.
        if timestamp is None:
            return False
        if self.min_date is not None and timestamp < self.min_date:
            return True
        if self.max_date is not None and timestamp > self.max_date:
            return True
        return False

    def contains(self, timestamp: Optional[datetime]) -> bool:
        return not self.is_outside(timestamp)


@dataclass(frozen=True)
class HarvestTarget:
    """One entity to walk: its id, the page that exposes it and query variables."""

    entity_id: str
    url: str = ""
    variables: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EngineSettings:
    """Timing and retry knobs for the load-more protocol."""

    transport: str = "playwright"  # playwright | graphql
    headless: bool = True
    max_retries: int = 10
    max_clicks: int = 10
    request_timeout_s: float = 1.0
    response_timeout_s: float = 100.0
    backoff_unit_s: float = 1.0
    navigation_timeout_s: float = 30.0
    query_hash: Optional[str] = None
    page_size: int = 50
    max_workers: int = 1
    max_stalled_iterations: int = 20


@dataclass(frozen=True)
class StateSettings:
    """Where scroll state is checkpointed and how often."""

    path: str = "output/state.db"
    resume: bool = True
    checkpoint_every_iterations: int = 1


@dataclass(frozen=True)
class HarvestJob:
    """Configuration for a harvesting job."""

    id: str
    name: str
    entity_type: EntityType
    targets: List[HarvestTarget] = field(default_factory=list)
    limit: int = DEFAULT_LIMIT
    time_window: TimeWindow = field(default_factory=TimeWindow)
    max_iterations: int = 10_000
    engine: EngineSettings = field(default_factory=EngineSettings)
    state: StateSettings = field(default_factory=StateSettings)
    sink_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EntityReport:
    """What happened to one entity during a run."""

    entity_id: str
    status: str = "pending"  # pending | done | failed | stopped
    accepted: int = 0
    iterations: int = 0
    error: str = ""


@dataclass
class HarvestReport:
    """Summary report of a harvesting job."""

    entities: Dict[str, EntityReport] = field(default_factory=dict)
    failures: Dict[str, int] = field(default_factory=dict)

    @property
    def records_emitted(self) -> int:
        return sum(e.accepted for e in self.entities.values())

    def bump_failure(self, key: str) -> None:
        """Increment the count for a specific failure type."""
        self.failures[key] = self.failures.get(key, 0) + 1

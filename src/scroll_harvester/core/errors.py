from __future__ import annotations

from typing import Optional


class HarvestError(Exception):
    """Base class for every error raised by the harvester."""


class InvalidEntityError(HarvestError):
    """Raised when state is requested for an empty or missing entity id."""

    def __init__(self, entity_id: object = None):
        super().__init__(f"Invalid entity id: {entity_id!r}")
        self.entity_id = entity_id


class MalformedResponseError(HarvestError):
    """The response no longer has the structure the translator expects."""


class MissingIdError(HarvestError):
    """A record in a batch has no id, so the batch cannot be deduplicated."""

    def __init__(self, entity_id: str, index: int):
        super().__init__(f"Missing item id in batch for {entity_id} (record index {index})")
        self.entity_id = entity_id
        self.index = index


class CorrelationTimeoutError(HarvestError):
    """No matching paginated response arrived within an attempt's window."""


class ResponseParseError(HarvestError):
    """A matching response arrived but its body could not be used."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(ResponseParseError):
    """The remote side answered with HTTP 429."""

    def __init__(self, url: str = ""):
        super().__init__(f"Rate limited while loading {url or 'page'}", status_code=429)

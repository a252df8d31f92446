from __future__ import annotations

from typing import Dict, Optional, Protocol

from scroll_harvester.core.models import EntityType, RawPage

GRAPHQL_ENDPOINT = "https://www.instagram.com/graphql/query/"

# "first" only shows up in the variables of page-size style pagination queries
PAGE_SIZE_MARKER = "%22first%22"

# variable identifying which paginated query a request belongs to
CHECKED_VARIABLES: Dict[EntityType, str] = {
    EntityType.COMMENTS: "%22shortcode%22",
    EntityType.PROFILE_POSTS: "%22id%22",
    EntityType.HASHTAG_POSTS: "%22tag_name%22",
    EntityType.LOCATION_POSTS: "%22id%22",
    EntityType.FOLLOWERS: "%22id%22",
    EntityType.FOLLOWING: "%22id%22",
    EntityType.LIKERS: "%22shortcode%22",
}


def matches_page_query(url: str, entity_type: EntityType, endpoint: str = GRAPHQL_ENDPOINT) -> bool:
    """True when ``url`` is the paginated query of ``entity_type``, not background traffic."""
    if not url or not url.startswith(endpoint):
        return False
    return CHECKED_VARIABLES[entity_type] in url and PAGE_SIZE_MARKER in url


class AutomationDriver(Protocol):
    """What the load-more protocol needs from a browser (or browser-like) driver."""

    def trigger_action(self, entity_id: str) -> bool:
        """Fire the UI action that loads the next page; False if no trigger exists."""
        ...

    def wait_for_matching_request(self, entity_id: str, timeout_s: float) -> bool: ...

    def wait_for_matching_response(self, entity_id: str, timeout_s: float) -> Optional[RawPage]: ...

    def is_page_usable(self) -> bool: ...

    def initial_page(self) -> Optional[RawPage]:
        """Page data already embedded in the document, if any."""
        ...

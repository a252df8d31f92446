from __future__ import annotations

import json
import threading
from typing import Any, Dict, Optional

import requests

from scroll_harvester.core.errors import HarvestError
from scroll_harvester.core.models import EntityType, RawPage, RequestSpec
from scroll_harvester.drivers.base import GRAPHQL_ENDPOINT
from scroll_harvester.fetch.orchestrator import parse_raw_page
from scroll_harvester.http.client import HttpClient
from scroll_harvester.transform.translator import translate
from scroll_harvester.utils.logging import get_logger


class GraphQLCursorDriver:
    """
    AutomationDriver that pages a GraphQL query directly with its end cursor.

    Used for finite lists (followers, following, likers) where no UI has to be
    driven: each trigger sends the next cursor query, the "request" is
    observed as soon as it was sent and the response is handed back as-is.
    The cursor advances only on responses that translate cleanly; once the
    remote side stops returning a cursor the trigger reports itself absent.
    """

    def __init__(
        self,
        client: HttpClient,
        entity_type: EntityType,
        query_hash: str,
        variables: Dict[str, Any],
        page_size: int = 50,
        endpoint: str = GRAPHQL_ENDPOINT,
        stop_event: Optional[threading.Event] = None,
    ):
        self.client = client
        self.entity_type = entity_type
        self.query_hash = query_hash
        self.variables = dict(variables)
        self.page_size = page_size
        self.endpoint = endpoint
        self.stop_event = stop_event or threading.Event()
        self.cursor: Optional[str] = None
        self.exhausted = False
        self._pending: Optional[RawPage] = None
        self.log = get_logger("scroll_harvester.driver.graphql")

    def build_request(self) -> RequestSpec:
        variables = {**self.variables, "first": self.page_size}
        if self.cursor:
            variables["after"] = self.cursor
        return RequestSpec(
            url=self.endpoint,
            params={
                "query_hash": self.query_hash,
                "variables": json.dumps(variables, separators=(",", ":")),
            },
        )

    def trigger_action(self, entity_id: str) -> bool:
        if self.exhausted or not self.is_page_usable():
            return False

        try:
            page = self.client.send(self.build_request())
        except requests.RequestException as e:
            self.log.warning("Cursor query for %s failed: %s", entity_id, e)
            # surfaces as an unusable response so the orchestrator backs off
            self._pending = RawPage(url=self.endpoint, status_code=0, content_type="", body="")
            return True

        self._pending = page
        self._advance_cursor(page)
        return True

    def wait_for_matching_request(self, entity_id: str, timeout_s: float) -> bool:
        return self._pending is not None

    def wait_for_matching_response(self, entity_id: str, timeout_s: float) -> Optional[RawPage]:
        page, self._pending = self._pending, None
        return page

    def is_page_usable(self) -> bool:
        return not self.stop_event.is_set()

    def initial_page(self) -> Optional[RawPage]:
        return None

    def _advance_cursor(self, page: RawPage) -> None:
        try:
            translated = translate(self.entity_type, parse_raw_page(page))
        except HarvestError as e:
            self.log.debug("Cursor not advanced: %s", e)
            return

        if translated.end_cursor:
            self.cursor = translated.end_cursor
        else:
            self.exhausted = True

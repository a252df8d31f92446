from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Deque, Dict, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from scroll_harvester.core.models import EntityType, RawPage
from scroll_harvester.drivers.base import GRAPHQL_ENDPOINT, matches_page_query
from scroll_harvester.utils.logging import get_logger

LOAD_MORE_SELECTORS: Dict[EntityType, str] = {
    EntityType.COMMENTS: '[aria-label="Load more comments"], li > div > button',
    EntityType.PROFILE_POSTS: "article ~ div > div > button",
    EntityType.HASHTAG_POSTS: "article ~ div > div > button",
    EntityType.LOCATION_POSTS: "article ~ div > div > button",
    EntityType.FOLLOWERS: 'div[role="dialog"] ul',
    EntityType.FOLLOWING: 'div[role="dialog"] ul',
    EntityType.LIKERS: 'div[role="dialog"] ul',
}

# key of window._sharedData.entry_data holding the first page of each stream
ENTRY_DATA_KEYS: Dict[EntityType, str] = {
    EntityType.COMMENTS: "PostPage",
    EntityType.PROFILE_POSTS: "ProfilePage",
    EntityType.HASHTAG_POSTS: "TagPage",
    EntityType.LOCATION_POSTS: "LocationsPage",
}

COOKIE_SELECTORS = [
    "button:has-text('Only allow essential cookies')",
    "button:has-text('Allow essential and optional cookies')",
    "button:has-text('Accept')",
]


class PlaywrightAutomationDriver:
    """
    AutomationDriver over a Playwright sync page.

    Matching requests and responses are captured by page event listeners
    into FIFO queues. Waiting polls those queues with ``page.wait_for_timeout``
    in short slices, which both lets Playwright dispatch its events and lets a
    stop request interrupt the wait.
    """

    def __init__(
        self,
        page: Any,
        entity_type: EntityType,
        stop_event: Optional[threading.Event] = None,
        poll_interval_s: float = 0.05,
        click_timeout_s: float = 4.0,
        endpoint: str = GRAPHQL_ENDPOINT,
    ):
        self.page = page
        self.entity_type = entity_type
        self.stop_event = stop_event or threading.Event()
        self.poll_interval_s = poll_interval_s
        self.click_timeout_s = click_timeout_s
        self.endpoint = endpoint
        self.log = get_logger("scroll_harvester.driver.playwright")
        self._requests: Deque[str] = deque()
        self._responses: Deque[Any] = deque()
        self.page.on("request", self._on_request)
        self.page.on("response", self._on_response)

    def open(self, url: str, timeout_s: float = 30.0) -> None:
        self.log.info("Playwright: navigating %s", url)
        self.page.goto(url, wait_until="domcontentloaded", timeout=self._timeout_ms(timeout_s))
        self._accept_cookies()

    def trigger_action(self, entity_id: str) -> bool:
        if not self.is_page_usable():
            return False

        # requests seen before this trigger (e.g. auto-loaded feed pages) must not count as fired
        self._requests.clear()

        selector = LOAD_MORE_SELECTORS[self.entity_type]
        try:
            if self.entity_type.is_comments:
                self.page.keyboard.press("PageUp")
                return self._click(selector)

            if self.entity_type.is_posts:
                self.page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
                # the "show more posts" button only exists before the first scroll load
                self._click(selector)
                return True

            # user lists live in a scrollable dialog
            target = self.page.locator(selector).first
            if target.count() == 0:
                return False
            target.evaluate("(el) => { el.parentElement.scrollTop = el.parentElement.scrollHeight; }")
            return True
        except PlaywrightError as e:
            self.log.debug("Trigger for %s failed: %s", entity_id, e)
            return False

    def wait_for_matching_request(self, entity_id: str, timeout_s: float) -> bool:
        return self._wait_for(self._requests, timeout_s) is not None

    def wait_for_matching_response(self, entity_id: str, timeout_s: float) -> Optional[RawPage]:
        response = self._wait_for(self._responses, timeout_s)
        if response is None:
            return None

        try:
            body = response.text()
        except PlaywrightError as e:
            self.log.debug("Body of %s unavailable: %s", response.url, e)
            body = ""

        headers = response.headers or {}
        return RawPage(
            url=response.url,
            status_code=response.status,
            content_type=headers.get("content-type", ""),
            body=body,
        )

    def is_page_usable(self) -> bool:
        if self.stop_event.is_set():
            return False
        try:
            return not self.page.is_closed()
        except PlaywrightError:
            # target closed
            return False

    def initial_page(self) -> Optional[RawPage]:
        key = ENTRY_DATA_KEYS.get(self.entity_type)
        if key is None:
            return None

        try:
            graphql = self.page.evaluate(
                """(key) => {
                    const entry = window._sharedData && window._sharedData.entry_data;
                    const pages = entry && entry[key];
                    return pages && pages[0] ? pages[0].graphql : null;
                }""",
                key,
            )
        except PlaywrightError as e:
            self.log.debug("Embedded page data unavailable: %s", e)
            return None

        if not isinstance(graphql, dict):
            return None
        return RawPage(url=self.page.url, payload=graphql)

    def _on_request(self, request: Any) -> None:
        if matches_page_query(request.url, self.entity_type, self.endpoint):
            self._requests.append(request.url)

    def _on_response(self, response: Any) -> None:
        if matches_page_query(response.url, self.entity_type, self.endpoint):
            self._responses.append(response)

    def _wait_for(self, queue: Deque[Any], timeout_s: float) -> Optional[Any]:
        deadline = time.monotonic() + max(0.0, timeout_s)
        while True:
            if queue:
                return queue.popleft()
            if self.stop_event.is_set() or time.monotonic() >= deadline:
                return None
            try:
                self.page.wait_for_timeout(self._timeout_ms(self.poll_interval_s))
            except PlaywrightError:
                return queue.popleft() if queue else None

    def _accept_cookies(self) -> None:
        for selector in COOKIE_SELECTORS:
            if self._click(selector, timeout_s=1.5):
                break

    def _click(self, selector: str, timeout_s: Optional[float] = None) -> bool:
        timeout_ms = self._timeout_ms(self.click_timeout_s if timeout_s is None else timeout_s)
        try:
            loc = self.page.locator(selector).first
            if loc.count() == 0:
                return False
            loc.click(timeout=timeout_ms)
            return True
        except PlaywrightError:
            return False

    def _timeout_ms(self, timeout_s: float) -> int:
        return int(max(0.0, float(timeout_s)) * 1000)


class PlaywrightSession:
    """Owns one Chromium browser/context/page; one session per worker thread."""

    def __init__(self, headless: bool = True):
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(headless=headless)
        self._context = self._browser.new_context(viewport={"width": 1366, "height": 768})
        self.page = self._context.new_page()

    def close(self) -> None:
        for closer in (self._context, self._browser):
            try:
                closer.close()
            except PlaywrightError:
                pass
        self._playwright.stop()

    def __enter__(self) -> "PlaywrightSession":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

from __future__ import annotations

import dataclasses
import json
from enum import Enum
from typing import Optional

from scroll_harvester.core.errors import CorrelationTimeoutError, RateLimitedError, ResponseParseError
from scroll_harvester.core.models import EntityType, RawPage
from scroll_harvester.drivers.base import AutomationDriver
from scroll_harvester.http.policies import BackoffPolicy, CancellableDelay
from scroll_harvester.utils.logging import get_logger


class TriggerOutcome(str, Enum):
    FIRED = "fired"
    NO_REQUEST = "no_request"
    NO_ELEMENT = "no_element"


def parse_raw_page(raw: RawPage) -> RawPage:
    """
    Validate a matching response and decode its ``data`` member.

    Raises:
        RateLimitedError: On HTTP 429.
        ResponseParseError: On any other non-200 status, a non-JSON content
            type (a text/html answer means a redirect to login) or a body
            without a ``data`` object.
    """
    if raw.payload is not None:
        return raw

    if raw.status_code == 429:
        raise RateLimitedError(raw.url)
    if raw.status_code != 200:
        raise ResponseParseError(f"Got error status while scrolling: {raw.status_code}", raw.status_code)
    if "application/json" not in (raw.content_type or "").lower():
        raise ResponseParseError(f"Unexpected content type {raw.content_type!r}", raw.status_code)

    try:
        decoded = json.loads(raw.body)
    except (TypeError, ValueError) as e:
        raise ResponseParseError(f"Invalid JSON body: {e}", raw.status_code) from e

    data = decoded.get("data") if isinstance(decoded, dict) else None
    if not isinstance(data, dict):
        raise ResponseParseError("Response has no data object", raw.status_code)

    return dataclasses.replace(raw, payload=data)


class LoadMoreOrchestrator:
    """
    Drives the UI to load the next page and correlates the trigger with the
    paginated response it causes.

    One attempt fires the trigger up to ``max_clicks`` times, each racing a
    short wait for a matching request; the first request seen wins,
    whichever click caused it. The matching response is then awaited with a
    long timeout and parsed. Failed attempts are retried with quadratic
    backoff; once retries are exhausted the caller gets ``None``.
    """

    def __init__(
        self,
        driver: AutomationDriver,
        policy: Optional[BackoffPolicy] = None,
        delay: Optional[CancellableDelay] = None,
        max_clicks: int = 10,
        request_timeout_s: float = 1.0,
        response_timeout_s: float = 100.0,
    ):
        self.driver = driver
        self.policy = policy or BackoffPolicy()
        self.delay = delay or CancellableDelay()
        self.max_clicks = max(1, max_clicks)
        self.request_timeout_s = request_timeout_s
        self.response_timeout_s = response_timeout_s
        self.log = get_logger("scroll_harvester.orchestrator")

    def request_next_page(self, entity_id: str, entity_type: Optional[EntityType] = None) -> Optional[RawPage]:
        """
        Load the next page of ``entity_id``.

        Returns:
            The parsed page, or None when no page could be obtained (retries
            exhausted, trigger gone for a stream that ends with its trigger,
            or the run was cancelled).
        """
        for attempt in range(self.policy.max_retries + 1):
            if self.delay.cancelled:
                self.log.info("Load more cancelled for %s", entity_id)
                return None

            try:
                outcome = self._fire_trigger(entity_id)
                if outcome is TriggerOutcome.NO_ELEMENT and entity_type is not None and entity_type.exhausted_without_trigger:
                    self.log.debug("Zero clickable elements for %s", entity_id)
                    return None
                if outcome is not TriggerOutcome.FIRED:
                    raise CorrelationTimeoutError(f"No matching request after {self.max_clicks} triggers")

                raw = self.driver.wait_for_matching_response(entity_id, self.response_timeout_s)
                if raw is None:
                    raise CorrelationTimeoutError("Matching response did not arrive")
                return parse_raw_page(raw)
            except RateLimitedError as e:
                self.log.warning("Attempt %s for %s rate limited: %s", attempt + 1, entity_id, e)
            except ResponseParseError as e:
                self.log.error("Attempt %s for %s returned an unusable response: %s", attempt + 1, entity_id, e)
            except CorrelationTimeoutError as e:
                self.log.debug("Attempt %s for %s failed: %s", attempt + 1, entity_id, e)

            if attempt >= self.policy.max_retries:
                break

            wait_s = self.policy.delay_for(attempt + 1)
            self.log.info("Retry scroll for %s after %s seconds", entity_id, wait_s)
            if not self.delay.sleep(wait_s):
                self.log.info("Load more cancelled for %s", entity_id)
                return None

        self.log.warning("Giving up loading more for %s after %s attempts", entity_id, self.policy.max_retries + 1)
        return None

    def _fire_trigger(self, entity_id: str) -> TriggerOutcome:
        for click in range(self.max_clicks):
            if self.delay.cancelled:
                return TriggerOutcome.NO_REQUEST
            if not self.driver.trigger_action(entity_id):
                return TriggerOutcome.NO_ELEMENT if click == 0 else TriggerOutcome.NO_REQUEST
            if self.driver.wait_for_matching_request(entity_id, self.request_timeout_s):
                self.log.debug("Request for %s fired after %s trigger(s)", entity_id, click + 1)
                return TriggerOutcome.FIRED
        return TriggerOutcome.NO_REQUEST

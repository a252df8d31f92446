from __future__ import annotations

import threading
from typing import Optional

from scroll_harvester.core.errors import MalformedResponseError
from scroll_harvester.core.models import EntityType, LoopStatus, RawPage, TranslatedPage
from scroll_harvester.drivers.base import AutomationDriver
from scroll_harvester.fetch.orchestrator import LoadMoreOrchestrator
from scroll_harvester.state.store import PaginationStateStore
from scroll_harvester.transform.records import build_records
from scroll_harvester.transform.sink import DeduplicatingItemSink
from scroll_harvester.transform.translator import translate
from scroll_harvester.utils.logging import get_logger


def merge_has_next_page(previous: bool, observed: bool) -> bool:
    """Forward-only merge: a False, once seen, is never replaced by True."""
    return previous and observed


class ScrollLoopController:
    """
    One step of the scroll loop for one entity: load the next page, translate
    it, push it through the deduplicating sink and decide whether another
    step is worthwhile.

    The caller invokes ``run`` repeatedly until it returns DONE. Iterations
    for one entity must not overlap.
    """

    def __init__(
        self,
        store: PaginationStateStore,
        orchestrator: LoadMoreOrchestrator,
        sink: DeduplicatingItemSink,
        driver: Optional[AutomationDriver] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.sink = sink
        self.driver = driver if driver is not None else orchestrator.driver
        self.stop_event = stop_event
        self.log = get_logger("scroll_harvester.controller")

    def run(self, entity_id: str, entity_type: EntityType, limit: int) -> LoopStatus:
        state = self.store.get_or_create(entity_id)

        if self._stopped() or not self._page_usable():
            self.log.info("Page for %s is no longer usable, stopping", entity_id)
            return LoopStatus.DONE

        if limit <= 0:
            return LoopStatus.DONE

        if state.reached_time_boundary:
            self.log.debug("Time boundary already reached for %s", entity_id)
            return LoopStatus.DONE

        if not state.has_next_page:
            self.log.debug("No next page for %s", entity_id)
            return LoopStatus.DONE

        if len(state.accepted_ids) >= limit:
            return LoopStatus.DONE

        raw = self.orchestrator.request_next_page(entity_id, entity_type)
        if raw is None:
            if entity_type.is_posts and state.has_next_page and not self._stopped():
                # feeds also load on plain scrolling, a missing response is not proof of the end
                self.log.debug("No response for %s, keeping page state", entity_id)
                return LoopStatus.RUNNING
            self.log.info("Nothing more to load for %s", entity_id)
            return LoopStatus.DONE

        return self.ingest(entity_id, entity_type, raw, limit)

    def ingest(self, entity_id: str, entity_type: EntityType, raw: RawPage, limit: int) -> LoopStatus:
        """Process a page that is already available and decide whether to continue."""
        state = self.store.get_or_create(entity_id)
        old_count = len(state.accepted_ids)

        page = self._translate(entity_id, entity_type, raw)
        state.has_next_page = merge_has_next_page(state.has_next_page, page.has_next_page)

        records = build_records(entity_type, page.items, entity_id)
        self.sink.accept(entity_id, records, start_position=old_count, limit=limit)

        scraped = len(state.accepted_ids)
        self.log.info(
            "%s: %s %s loaded, %s/%s scraped",
            entity_id,
            len(page.items),
            entity_type.value,
            scraped,
            page.total_count if page.total_count is not None else "?",
        )

        if state.reached_time_boundary:
            self.log.info("Reached last date of interest for %s", entity_id)
            return LoopStatus.DONE

        if scraped >= limit:
            self.log.warning("Reached max %s limit for %s: %s. Finishing scrolling...", entity_type.value, entity_id, limit)
            return LoopStatus.DONE

        if not state.has_next_page:
            self.log.info("No more pages for %s", entity_id)
            return LoopStatus.DONE

        if state.all_duplicates_in_last_batch:
            self.log.debug("All duplicates for %s, scrolling on", entity_id)

        return LoopStatus.RUNNING

    def _translate(self, entity_id: str, entity_type: EntityType, raw: RawPage) -> TranslatedPage:
        try:
            return translate(entity_type, raw)
        except MalformedResponseError as e:
            self.log.error("Malformed response for %s, treating as last page: %s", entity_id, e)
            return TranslatedPage(items=[], has_next_page=False, total_count=None)

    def _stopped(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def _page_usable(self) -> bool:
        if self.driver is None:
            return True
        return bool(self.driver.is_page_usable())

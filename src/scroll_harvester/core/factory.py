from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from scroll_harvester.core.engine import DriverFactory, HarvestEngine
from scroll_harvester.core.models import EntityType, HarvestJob, HarvestTarget
from scroll_harvester.drivers.base import AutomationDriver
from scroll_harvester.http.policies import CancellableDelay
from scroll_harvester.sinks.base import OutputSink
from scroll_harvester.state.sqlite_store import SQLiteStatePersistence
from scroll_harvester.state.store import PaginationStateStore
from scroll_harvester.transform.sink import DeduplicatingItemSink


@dataclass(frozen=True)
class BuiltComponents:
    engine: HarvestEngine
    store: PaginationStateStore
    persistence: SQLiteStatePersistence
    output: OutputSink
    sink: DeduplicatingItemSink


def default_variables(entity_type: EntityType, target: HarvestTarget) -> Dict[str, Any]:
    """GraphQL variables identifying ``target`` for cursor queries."""
    if entity_type is EntityType.LIKERS:
        base: Dict[str, Any] = {"shortcode": target.entity_id, "include_reel": False}
    else:
        base = {"id": target.entity_id, "include_reel": False, "fetch_mutual": False}
    base.update(target.variables)
    return base


class ComponentFactory:
    """
    Factory responsible for wiring dependencies.
    Keeps main.py clean and makes the system easy to extend.
    """

    def __init__(self, stop_event: Optional[threading.Event] = None, http_timeout_s: int = 30):
        self.stop_event = stop_event or threading.Event()
        self.http_timeout_s = http_timeout_s

    def build(self, job: HarvestJob) -> BuiltComponents:
        """
        Build all components needed for harvesting ``job``.

        Returns:
            A container with all built components.
        """
        store = PaginationStateStore()
        persistence = self._persistence(job)
        output = self._output(job)
        sink = DeduplicatingItemSink(store, output, limit=job.limit, time_window=job.time_window)

        engine = HarvestEngine(
            store=store,
            sink=sink,
            driver_factory=self._driver_factory(job),
            persistence=persistence,
            stop_event=self.stop_event,
        )

        return BuiltComponents(
            engine=engine,
            store=store,
            persistence=persistence,
            output=output,
            sink=sink,
        )

    # ---------- Builders (private) ----------

    def _persistence(self, job: HarvestJob) -> SQLiteStatePersistence:
        """Create the checkpoint backend."""
        return SQLiteStatePersistence(job.state.path)

    def _output(self, job: HarvestJob) -> OutputSink:
        """Create the output sink."""
        sink_type = str(job.sink_config.get("type", "jsonl")).lower()
        path = job.sink_config.get("path", f"output/{job.id}.{sink_type}")

        if sink_type == "csv":
            from scroll_harvester.sinks.csv_sink import CsvSink

            return CsvSink(path, job.entity_type)

        from scroll_harvester.sinks.jsonl_sink import JsonlSink

        return JsonlSink(path)

    def _driver_factory(self, job: HarvestJob) -> DriverFactory:
        """Pick how pages are loaded for each target."""
        if job.engine.transport == "graphql":
            return lambda target: self._graphql_driver(job, target)
        return lambda target: self._playwright_driver(job, target)

    @contextmanager
    def _playwright_driver(self, job: HarvestJob, target: HarvestTarget) -> Iterator[AutomationDriver]:
        # Import locally to avoid requiring a browser unless used.
        from scroll_harvester.drivers.playwright_driver import PlaywrightAutomationDriver, PlaywrightSession

        with PlaywrightSession(headless=job.engine.headless) as session:
            driver = PlaywrightAutomationDriver(session.page, job.entity_type, stop_event=self.stop_event)
            driver.open(target.url, timeout_s=job.engine.navigation_timeout_s)
            yield driver

    @contextmanager
    def _graphql_driver(self, job: HarvestJob, target: HarvestTarget) -> Iterator[AutomationDriver]:
        from scroll_harvester.drivers.graphql_driver import GraphQLCursorDriver
        from scroll_harvester.http.client import RequestsHttpClient

        client = RequestsHttpClient(timeout_s=self.http_timeout_s, delay=CancellableDelay(self.stop_event))
        try:
            yield GraphQLCursorDriver(
                client,
                job.entity_type,
                query_hash=job.engine.query_hash or "",
                variables=default_variables(job.entity_type, target),
                page_size=job.engine.page_size,
                stop_event=self.stop_event,
            )
        finally:
            client.session.close()

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, ContextManager, Optional

from scroll_harvester.core.controller import ScrollLoopController
from scroll_harvester.core.errors import HarvestError
from scroll_harvester.core.models import EntityReport, HarvestJob, HarvestReport, HarvestTarget, LoopStatus
from scroll_harvester.drivers.base import AutomationDriver
from scroll_harvester.fetch.orchestrator import LoadMoreOrchestrator
from scroll_harvester.http.policies import BackoffPolicy, CancellableDelay
from scroll_harvester.state.base import StatePersistence
from scroll_harvester.state.store import PaginationStateStore
from scroll_harvester.transform.sink import DeduplicatingItemSink
from scroll_harvester.utils.logging import get_logger

DriverFactory = Callable[[HarvestTarget], ContextManager[AutomationDriver]]


class HarvestEngine:
    """
    Hosts the scroll loop for every target of a job: owns the state store,
    decides when to checkpoint it, and keeps one entity's failure from
    affecting the others.
    """

    def __init__(
        self,
        store: PaginationStateStore,
        sink: DeduplicatingItemSink,
        driver_factory: DriverFactory,
        persistence: Optional[StatePersistence] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the harvest engine.

        Args:
            store: Keyed scroll state shared by every component.
            sink: Deduplicating sink configured with the job's limit/window.
            driver_factory: Opens an AutomationDriver for one target.
            persistence: Optional checkpoint backend for the store.
            stop_event: Set to stop every entity promptly.
        """
        self.store = store
        self.sink = sink
        self.driver_factory = driver_factory
        self.persistence = persistence
        self.stop_event = stop_event or threading.Event()
        self._checkpoint_lock = threading.Lock()
        self.log = get_logger("scroll_harvester.engine")

    def run(self, job: HarvestJob) -> HarvestReport:
        """
        Harvest every target of ``job``.

        Returns:
            A report with one entry per target.
        """
        report = HarvestReport()
        workers = max(1, min(job.engine.max_workers, len(job.targets) or 1))

        try:
            if self.persistence is not None:
                run_no = self.persistence.mark_run_started(job.id)
                if job.state.resume:
                    # every run walks the streams again; only the accepted ids carry over
                    saved = self.persistence.load_all(job.id)
                    self.store.restore({entity_id: state.reopened() for entity_id, state in saved.items()})
                self.log.info("Run %s of job %s, %s entities in state", run_no, job.id, len(self.store))

            self.log.info(
                "Job started: %s (%s) type=%s targets=%s limit=%s workers=%s",
                job.name,
                job.id,
                job.entity_type.value,
                len(job.targets),
                job.limit,
                workers,
            )

            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="harvest") as pool:
                futures = [(t, pool.submit(self.run_entity, job, t)) for t in job.targets]
                for target, future in futures:
                    try:
                        entity_report = future.result()
                    except Exception as e:
                        self.log.exception("%s: entity failed unexpectedly", target.entity_id)
                        entity_report = EntityReport(target.entity_id, status="failed", error=f"{type(e).__name__}: {e}")
                    report.entities[target.entity_id] = entity_report
                    if entity_report.status == "failed":
                        report.bump_failure(entity_report.error.split(":", 1)[0] or "unknown")

            if self.persistence is not None:
                self.persistence.mark_run_completed(job.id)

            self.log.info(
                "Job done: emitted=%s done=%s failed=%s stopped=%s",
                report.records_emitted,
                self._count(report, "done"),
                self._count(report, "failed"),
                self._count(report, "stopped"),
            )
        finally:
            self.checkpoint(job.id)
            self._cleanup()

        return report

    def run_entity(self, job: HarvestJob, target: HarvestTarget) -> EntityReport:
        """Walk one entity until its loop is DONE, it stalls or the run stops."""
        report = EntityReport(target.entity_id)

        with self.store.lock_for(target.entity_id):
            state = self.store.get_or_create(target.entity_id)
            start_count = len(state.accepted_ids)

            try:
                with self.driver_factory(target) as driver:
                    controller = self._controller(job, driver)
                    self._loop(job, target, controller, driver, report)
            except HarvestError as e:
                self.log.error("%s: %s", target.entity_id, e)
                report.status = "failed"
                report.error = f"{type(e).__name__}: {e}"
            finally:
                report.accepted = len(state.accepted_ids) - start_count

        self.log.info(
            "Entity %s finished: status=%s accepted=%s iterations=%s",
            target.entity_id,
            report.status,
            report.accepted,
            report.iterations,
        )
        return report

    def checkpoint(self, job_id: str) -> None:
        """Persist a snapshot of every scroll state."""
        if self.persistence is None:
            return
        with self._checkpoint_lock:
            self.persistence.save_all(job_id, self.store.snapshot())

    def _loop(
        self,
        job: HarvestJob,
        target: HarvestTarget,
        controller: ScrollLoopController,
        driver: AutomationDriver,
        report: EntityReport,
    ) -> None:
        entity_id = target.entity_id
        state = self.store.get_or_create(entity_id)
        every = max(1, job.state.checkpoint_every_iterations)

        status = LoopStatus.RUNNING
        initial = driver.initial_page()
        if initial is not None and not state.reached_time_boundary and len(state.accepted_ids) < job.limit:
            status = controller.ingest(entity_id, job.entity_type, initial, job.limit)
            self.checkpoint(job.id)

        stalled = 0
        while status is LoopStatus.RUNNING and report.iterations < job.max_iterations:
            before = len(state.accepted_ids)
            status = controller.run(entity_id, job.entity_type, job.limit)
            report.iterations += 1

            if report.iterations % every == 0:
                self.checkpoint(job.id)

            stalled = 0 if len(state.accepted_ids) > before else stalled + 1
            if status is LoopStatus.RUNNING and stalled >= job.engine.max_stalled_iterations:
                self.log.warning("%s: no new records for %s iterations, giving up", entity_id, stalled)
                break

        if self.stop_event.is_set():
            report.status = "stopped"
        else:
            report.status = "done"

    def _controller(self, job: HarvestJob, driver: AutomationDriver) -> ScrollLoopController:
        orchestrator = LoadMoreOrchestrator(
            driver,
            policy=BackoffPolicy(max_retries=job.engine.max_retries, unit_s=job.engine.backoff_unit_s),
            delay=CancellableDelay(self.stop_event),
            max_clicks=job.engine.max_clicks,
            request_timeout_s=job.engine.request_timeout_s,
            response_timeout_s=job.engine.response_timeout_s,
        )
        return ScrollLoopController(self.store, orchestrator, self.sink, driver=driver, stop_event=self.stop_event)

    def _count(self, report: HarvestReport, status: str) -> int:
        return sum(1 for e in report.entities.values() if e.status == status)

    def _cleanup(self) -> None:
        """Close the output sink once the job is over."""
        close = getattr(self.sink.output, "close", None)
        if callable(close):
            close()
            self.log.info("Closed output sink")

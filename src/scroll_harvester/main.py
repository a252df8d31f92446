from __future__ import annotations

import signal
import sys
import threading

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from scroll_harvester.config_models import config_to_job_objects, load_and_validate_config
from scroll_harvester.core.factory import ComponentFactory
from scroll_harvester.core.models import HarvestJob, HarvestReport
from scroll_harvester.utils.logging import get_logger, setup_logging

log = get_logger("scroll_harvester.main")


def load_job(path: str) -> tuple[HarvestJob, dict]:
    """
    Load a harvest job configuration from a YAML file.

    Returns:
        A tuple of (HarvestJob, schedule_config).
    """
    config = load_and_validate_config(path)
    return config_to_job_objects(config)


def install_stop_handlers(stop_event: threading.Event, on_stop=None) -> None:
    """Turn SIGINT/SIGTERM into a cooperative stop request."""

    def _request_stop(signum, frame):
        log.warning("Stop requested (signal %s), abandoning in-flight waits", signum)
        stop_event.set()
        if on_stop is not None:
            on_stop()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)


def run_one(job: HarvestJob, stop_event: threading.Event) -> HarvestReport:
    """Run a single harvesting job."""
    factory = ComponentFactory(stop_event=stop_event)
    built = factory.build(job)

    report = built.engine.run(job)
    for entity in report.entities.values():
        print(f"{entity.entity_id}: {entity.status} accepted={entity.accepted} iterations={entity.iterations}")
    print("DONE:", report.records_emitted, "records,", dict(report.failures) or "no failures")
    return report


def run_schedule(job: HarvestJob, schedule_cfg: dict, stop_event: threading.Event) -> None:
    """Run a harvesting job periodically; each run resumes from the checkpoint."""
    scheduler = BlockingScheduler()

    interval_hours = schedule_cfg.get("interval_hours", 24)
    print(f"Scheduling job every {interval_hours} hours")

    scheduler.add_job(
        run_one,
        trigger=IntervalTrigger(hours=interval_hours),
        args=[job, stop_event],
        id=f"harvest_{job.id}",
        name=f"Scheduled harvest: {job.name}",
        max_instances=1,
    )

    # a stop signal ends the in-flight run and the scheduler
    install_stop_handlers(stop_event, on_stop=lambda: scheduler.shutdown(wait=False))

    print(f"Starting scheduled harvester for job '{job.name}' (every {interval_hours} hours)")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        stop_event.set()
        print("Scheduler stopped by user")


def main() -> None:
    """Main entry point for the harvester."""
    if len(sys.argv) < 2:
        print("Usage: scroll-harvest configs/jobs/<job>.yaml [configs/logging.yaml]")
        raise SystemExit(2)

    job_path = sys.argv[1]
    setup_logging(sys.argv[2] if len(sys.argv) > 2 else "configs/logging.yaml")

    stop_event = threading.Event()
    install_stop_handlers(stop_event)

    print(f"Loading job from {job_path}")
    job, schedule_cfg = load_job(job_path)

    if schedule_cfg:
        print("Running in scheduled mode")
        run_schedule(job, schedule_cfg, stop_event)
    else:
        print("Running in one-time mode")
        report = run_one(job, stop_event)
        if report.failures:
            raise SystemExit(1)


if __name__ == "__main__":
    main()

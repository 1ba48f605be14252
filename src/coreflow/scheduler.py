"""Background scheduler: sweeps the deferred-send outbox and overdue offers."""

from __future__ import annotations

import logging
import time

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from coreflow.engine import WorkflowEngine
from coreflow.offers import OfferService

log = logging.getLogger(__name__)

SWEEP_JOB_ID = "coreflow_sweep"

_scheduler: BackgroundScheduler | None = None


def get_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
        )
    return _scheduler


def init_scheduler(engine: WorkflowEngine, offers: OfferService, interval_seconds: int = 60) -> None:
    """Start the scheduler with the periodic sweep job."""
    scheduler = get_scheduler()
    if scheduler.running:
        return

    scheduler.add_job(
        run_sweep,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=SWEEP_JOB_ID,
        args=[engine, offers],
        name="Deferred sends and offer expiry",
        replace_existing=True,
    )
    scheduler.start()
    log.info("Background scheduler started (sweep every %ds).", interval_seconds)


def shutdown_scheduler() -> None:
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        log.info("Background scheduler stopped.")
    _scheduler = None


def run_sweep(engine: WorkflowEngine, offers: OfferService) -> dict:
    """One pass over due sends and overdue offers. Errors are logged, not raised."""
    start_time = time.monotonic()
    summary = {"sends_processed": 0, "offers_expired": 0}

    try:
        summary["sends_processed"] = engine.process_due_sends()
    except Exception as exc:
        log.error("Deferred send sweep failed: %s", exc, exc_info=True)

    try:
        summary["offers_expired"] = offers.expire_overdue()
    except Exception as exc:
        log.error("Offer expiry sweep failed: %s", exc, exc_info=True)

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    if summary["sends_processed"] or summary["offers_expired"]:
        log.info(
            "Sweep done in %dms: %d sends, %d offers expired",
            elapsed_ms, summary["sends_processed"], summary["offers_expired"],
        )
    return summary

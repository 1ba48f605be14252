"""Sweep job run by the background scheduler and the CLI."""

from __future__ import annotations

from datetime import datetime, timedelta

from conftest import USER_ID, add_candidate, add_template, add_workflow
from coreflow.cli import main
from coreflow.schemas import CandidateStage, Offer, OfferStatus, TemplateType
from coreflow.scheduler import SWEEP_JOB_ID, get_scheduler, init_scheduler, run_sweep, shutdown_scheduler


def test_run_sweep_expires_overdue_offers(db, engine, offers, user):
    db.save_offer(Offer(user_id=USER_ID, position_title="Eng", expires_at=datetime.now() - timedelta(hours=1)))
    summary = run_sweep(engine, offers)
    assert summary == {"sends_processed": 0, "offers_expired": 1}


def test_run_sweep_leaves_future_sends_queued(db, engine, offers, sender, user):
    template = add_template(db, TemplateType.SCREENING)
    add_workflow(db, CandidateStage.SCREENING, template, delay_minutes=60)
    c = add_candidate(db)
    engine.execute(c.id, CandidateStage.SCREENING, USER_ID)

    assert run_sweep(engine, offers)["sends_processed"] == 0
    assert sender.sent == []


def test_scheduler_registers_single_sweep_job(engine, offers):
    try:
        init_scheduler(engine, offers, interval_seconds=3600)
        scheduler = get_scheduler()
        assert scheduler.running
        assert [job.id for job in scheduler.get_jobs()] == [SWEEP_JOB_ID]
    finally:
        shutdown_scheduler()


def test_cli_expire_offers(config, db, user, monkeypatch):
    db.save_offer(Offer(user_id=USER_ID, position_title="Eng", expires_at=datetime.now() - timedelta(days=2)))
    monkeypatch.setenv("COREFLOW_DB_PATH", str(config.db_path))

    assert main(["expire-offers"]) == 0
    assert db.list_offers(USER_ID)[0].status == OfferStatus.EXPIRED

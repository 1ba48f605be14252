"""SQLite persistence round trips and conditional updates."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta

import pytest

from conftest import USER_ID, add_candidate, add_template, add_workflow
from coreflow.schemas import (
    CandidateStage,
    ExecutionStatus,
    NegotiationEvent,
    NegotiationEventType,
    Offer,
    OfferStatus,
    OfferTerms,
    ScheduledSend,
    TemplateType,
    WorkflowExecution,
)


def test_save_and_get_candidate(db, user):
    c = add_candidate(db, match_score=None, is_test=True)
    got = db.get_candidate(c.id)
    assert got.name == "Alice Smith"
    assert got.match_score is None
    assert got.is_test
    assert db.get_candidate(c.id, user_id="other") is None


def test_update_candidate_stage(db, user):
    c = add_candidate(db)
    assert db.update_candidate(c.id, {"stage": CandidateStage.HIRED})
    assert db.get_candidate(c.id).stage == CandidateStage.HIRED
    assert [x.id for x in db.list_candidates(USER_ID, CandidateStage.HIRED)] == [c.id]


def test_workflow_round_trip_keeps_lists_and_optionals(db, user):
    t = add_template(db, TemplateType.SCREENING)
    w = add_workflow(db, CandidateStage.SCREENING, t, source_filter=["a", "b"], min_match_score=None)
    got = db.get_workflow(w.id)
    assert got.source_filter == ["a", "b"]
    assert got.min_match_score is None
    assert db.list_workflows(USER_ID, CandidateStage.SCREENING, enabled_only=True) == [got]


def test_only_one_pending_execution_per_workflow_and_candidate(db):
    db.insert_execution(WorkflowExecution(workflow_id="w", candidate_id="c"))
    with pytest.raises(sqlite3.IntegrityError):
        db.insert_execution(WorkflowExecution(workflow_id="w", candidate_id="c"))
    # finished executions do not block
    db.insert_execution(WorkflowExecution(workflow_id="w", candidate_id="c", status=ExecutionStatus.SENT))


def test_complete_execution_only_once(db):
    e = WorkflowExecution(workflow_id="w", candidate_id="c")
    db.insert_execution(e)
    assert db.complete_execution(e.id, ExecutionStatus.SENT, email_log_id="log1")
    assert not db.complete_execution(e.id, ExecutionStatus.FAILED, error_message="late")
    assert db.get_execution(e.id).status == ExecutionStatus.SENT


def test_scheduled_send_claimed_once(db):
    s = ScheduledSend(
        execution_id="e", workflow_id="w", candidate_id="c", user_id=USER_ID,
        stage=CandidateStage.SCREENING, due_at=datetime.now() - timedelta(minutes=1),
    )
    db.insert_scheduled_send(s)
    assert [x.id for x in db.list_due_sends(datetime.now())] == [s.id]
    assert db.claim_scheduled_send(s.id)
    assert not db.claim_scheduled_send(s.id)
    assert db.list_due_sends(datetime.now()) == []


def test_offer_round_trip(db, user):
    o = Offer(
        user_id=USER_ID, position_title="Eng", salary_amount=1.5, start_date=date(2026, 1, 1),
        benefits=["x"], negotiation_history=[
            NegotiationEvent(sequence=1, type=NegotiationEventType.COUNTER_OFFER, terms=OfferTerms(salary_amount=2)),
        ],
    )
    db.save_offer(o)
    got = db.get_offer(o.id)
    assert got.start_date == date(2026, 1, 1)
    assert got.benefits == ["x"]
    assert got.negotiation_history[0].terms.salary_amount == 2
    assert db.list_offers(USER_ID, general_only=True) == [got]


def test_conditional_offer_update(db, user):
    o = Offer(user_id=USER_ID, position_title="Eng")
    db.save_offer(o)
    assert not db.update_offer(o.id, {"status": OfferStatus.SENT}, expected_statuses=("negotiating",))
    assert db.update_offer(o.id, {"status": OfferStatus.SENT}, expected_statuses=("draft",))
    assert db.get_offer(o.id).status == OfferStatus.SENT


def test_append_negotiation_event_assigns_sequence(db, user):
    o = Offer(user_id=USER_ID, position_title="Eng", status=OfferStatus.SENT)
    db.save_offer(o)
    event = NegotiationEvent(sequence=0, type=NegotiationEventType.COUNTER_OFFER)

    first = db.append_negotiation_event(o.id, event, ("sent",), updates={"status": OfferStatus.NEGOTIATING})
    second = db.append_negotiation_event(o.id, event, ("negotiating",))
    refused = db.append_negotiation_event(o.id, event, ("sent",))

    assert (first.sequence, second.sequence) == (1, 2)
    assert refused is None
    assert len(db.get_offer(o.id).negotiation_history) == 2

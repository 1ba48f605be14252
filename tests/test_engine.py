"""Workflow execution engine."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta

import pytest

from conftest import USER_ID, add_candidate, add_template, add_workflow
from coreflow.errors import DeliveryError, ValidationError
from coreflow.schemas import (
    CandidateStage,
    EmailLog,
    ExecutionStatus,
    InterviewDetails,
    ScheduledSendStatus,
    TemplateType,
    WorkflowExecution,
)


@pytest.fixture
def screening(db, user):
    template = add_template(db, TemplateType.SCREENING)
    return add_workflow(db, CandidateStage.SCREENING, template)


def test_execute_sends_and_logs(db, engine, sender, screening, job):
    c = add_candidate(db, job_id=job.id)

    executions = engine.execute(c.id, CandidateStage.SCREENING, USER_ID)

    assert [e.status for e in executions] == [ExecutionStatus.SENT]
    assert len(sender.sent) == 1
    email = sender.sent[0]
    assert email.to == "alice@example.com"
    assert email.subject == "Screening for Alice Smith"
    assert email.body == "Hi Alice Smith, about Backend Engineer at Acme."
    assert executions[0].email_log_id
    assert db.has_sent_email_of_type(c.id, "Screening")


def test_skip_if_already_sent_records_skip_without_sending(db, engine, sender, screening):
    c = add_candidate(db)
    db.insert_email_log(EmailLog(user_id=USER_ID, candidate_id=c.id, to_email=c.email, email_type="Screening"))

    executions = engine.execute(c.id, CandidateStage.SCREENING, USER_ID, skip_if_already_sent=True)

    assert [e.status for e in executions] == [ExecutionStatus.SKIPPED]
    assert sender.sent == []


def test_low_score_candidate_gets_nothing(db, engine, sender, user):
    template = add_template(db, TemplateType.SCREENING)
    add_workflow(db, CandidateStage.SCREENING, template, min_match_score=70)
    low = add_candidate(db, match_score=60)
    high = add_candidate(db, match_score=85, email="high@example.com")

    assert engine.execute(low.id, CandidateStage.SCREENING, USER_ID) == []
    assert db.list_executions(USER_ID, candidate_id=low.id) == []

    assert len(engine.execute(high.id, CandidateStage.SCREENING, USER_ID)) == 1
    assert [e.to for e in sender.sent] == ["high@example.com"]


def test_missing_candidate_is_noop(engine, sender, screening):
    assert engine.execute("nope", CandidateStage.SCREENING, USER_ID) == []
    assert sender.sent == []


def test_candidate_without_email_is_skipped(db, engine, sender, screening):
    c = add_candidate(db, email="")
    executions = engine.execute(c.id, CandidateStage.SCREENING, USER_ID)
    assert executions[0].status == ExecutionStatus.SKIPPED
    assert "no email" in executions[0].error_message
    assert sender.sent == []


def test_test_candidate_needs_real_application(db, engine, sender, screening):
    sourced = add_candidate(db, is_test=True)
    applied = add_candidate(db, is_test=True, cv_file_url="https://cdn/cv.pdf", email="t2@example.com")

    assert engine.execute(sourced.id, CandidateStage.SCREENING, USER_ID)[0].status == ExecutionStatus.SKIPPED
    assert engine.execute(applied.id, CandidateStage.SCREENING, USER_ID)[0].status == ExecutionStatus.SENT
    assert [e.to for e in sender.sent] == ["t2@example.com"]


def test_delivery_failure_is_recorded_not_raised(db, engine, sender, screening):
    c = add_candidate(db)
    sender.fail_with = "mailbox full"

    executions = engine.execute(c.id, CandidateStage.SCREENING, USER_ID)

    assert executions[0].status == ExecutionStatus.FAILED
    assert executions[0].error_message == "mailbox full"
    assert db.get_candidate(c.id).stage == CandidateStage.SCREENING


def test_missing_template_fails_execution(db, engine, user):
    template = add_template(db, TemplateType.SCREENING)
    add_workflow(db, CandidateStage.SCREENING, template.model_copy(update={"id": "deleted"}))
    c = add_candidate(db)

    executions = engine.execute(c.id, CandidateStage.SCREENING, USER_ID)

    assert executions[0].status == ExecutionStatus.FAILED
    assert executions[0].error_message == "Email template not found"


def test_existing_pending_execution_blocks_second_send(db, engine, sender, screening):
    c = add_candidate(db)
    db.insert_execution(WorkflowExecution(workflow_id=screening.id, candidate_id=c.id))

    assert engine.execute(c.id, CandidateStage.SCREENING, USER_ID) == []
    assert sender.sent == []


def test_delayed_workflow_goes_through_outbox(db, engine, sender, user):
    template = add_template(db, TemplateType.SCREENING)
    add_workflow(db, CandidateStage.SCREENING, template, delay_minutes=30)
    c = add_candidate(db)

    executions = engine.execute(c.id, CandidateStage.SCREENING, USER_ID)
    assert [e.status for e in executions] == [ExecutionStatus.PENDING]
    assert sender.sent == []

    assert engine.process_due_sends(datetime.now()) == 0
    later = datetime.now() + timedelta(minutes=31)
    assert engine.process_due_sends(later) == 1
    assert len(sender.sent) == 1
    assert db.get_execution(executions[0].id).status == ExecutionStatus.SENT

    # already claimed and done
    assert engine.process_due_sends(later) == 0
    assert len(sender.sent) == 1


def test_delayed_send_for_deleted_candidate_fails(db, engine, sender, user):
    template = add_template(db, TemplateType.SCREENING)
    add_workflow(db, CandidateStage.SCREENING, template, delay_minutes=5)
    c = add_candidate(db)
    execution = engine.execute(c.id, CandidateStage.SCREENING, USER_ID)[0]
    db.delete_candidate(c.id)

    engine.process_due_sends(datetime.now() + timedelta(minutes=10))

    stored = db.get_execution(execution.id)
    assert stored.status == ExecutionStatus.FAILED
    assert sender.sent == []


def test_interview_waits_for_details_and_fills_placeholders(db, engine, sender, user):
    template = add_template(
        db, TemplateType.INTERVIEW,
        content="See you {interview_date} at {interview_time}: {meeting_link} {unknown_thing}",
    )
    add_workflow(db, CandidateStage.INTERVIEW, template)
    c = add_candidate(db, CandidateStage.INTERVIEW)

    assert engine.execute(c.id, CandidateStage.INTERVIEW, USER_ID) == []

    details = InterviewDetails(date="March 3, 2026", time="10:00 AM", meeting_link="https://meet/x")
    executions = engine.execute(c.id, CandidateStage.INTERVIEW, USER_ID, interview=details)

    assert executions[0].status == ExecutionStatus.SENT
    assert sender.sent[0].body == "See you March 3, 2026 at 10:00 AM: https://meet/x {unknown_thing}"


def test_delayed_interview_email_keeps_meeting_details(db, engine, sender, user):
    template = add_template(
        db, TemplateType.INTERVIEW,
        content="Meet on {interview_date} at {interview_time}: {meeting_link}",
    )
    add_workflow(db, CandidateStage.INTERVIEW, template, delay_minutes=10)
    c = add_candidate(db, CandidateStage.INTERVIEW)
    details = InterviewDetails(date="March 3", time="10:00", meeting_link="https://meet/x")

    engine.execute(c.id, CandidateStage.INTERVIEW, USER_ID, interview=details)
    later = datetime.now() + timedelta(minutes=11)
    [queued] = db.list_due_sends(later)
    assert queued.interview == details

    assert engine.process_due_sends(later) == 1
    assert sender.sent[0].body == "Meet on March 3 at 10:00: https://meet/x"
    assert db.get_scheduled_send(queued.id).status == ScheduledSendStatus.DONE


def test_scheduled_send_error_fails_execution_and_closes_row(db, engine, sender, user, monkeypatch):
    template = add_template(db, TemplateType.SCREENING)
    add_workflow(db, CandidateStage.SCREENING, template, delay_minutes=5)
    c = add_candidate(db)
    execution = engine.execute(c.id, CandidateStage.SCREENING, USER_ID)[0]
    later = datetime.now() + timedelta(minutes=10)
    [queued] = db.list_due_sends(later)

    def broken_get_workflow(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "get_workflow", broken_get_workflow)
    assert engine.process_due_sends(later) == 1

    stored = db.get_execution(execution.id)
    assert stored.status == ExecutionStatus.FAILED
    assert "locked" in stored.error_message
    assert db.get_scheduled_send(queued.id).status == ScheduledSendStatus.DONE
    assert sender.sent == []


def test_send_test_goes_to_recruiter_and_is_not_logged(db, engine, sender, screening):
    result = engine.send_test(screening.id, USER_ID)

    assert result.ok
    email = sender.sent[0]
    assert email.to == "rita@acme.test"
    assert email.subject == "[TEST] Screening for John Doe"
    assert db.list_executions(USER_ID) == []


def test_send_test_requires_profile_email(db, engine, screening, user):
    db.save_user(user.model_copy(update={"email": ""}))
    with pytest.raises(ValidationError):
        engine.send_test(screening.id, USER_ID)


def test_send_test_delivery_failure_raises(engine, sender, screening):
    sender.fail_with = "smtp down"
    with pytest.raises(DeliveryError):
        engine.send_test(screening.id, USER_ID)


def test_retry_failed_execution(db, engine, sender, screening):
    c = add_candidate(db)
    sender.fail_with = "timeout"
    failed = engine.execute(c.id, CandidateStage.SCREENING, USER_ID)[0]

    sender.fail_with = None
    retried = engine.retry_execution(failed.id, USER_ID)

    assert retried.id != failed.id
    assert retried.status == ExecutionStatus.SENT
    assert len(sender.sent) == 1


def test_retry_rejects_non_failed_execution(db, engine, screening):
    c = add_candidate(db)
    sent = engine.execute(c.id, CandidateStage.SCREENING, USER_ID)[0]
    with pytest.raises(ValidationError):
        engine.retry_execution(sent.id, USER_ID)

"""Workflow matching rules."""

from __future__ import annotations

from datetime import datetime, timedelta

from coreflow.matching import find_matching_workflows, workflow_matches
from coreflow.schemas import Candidate, CandidateStage, EmailWorkflow


def _candidate(**kwargs) -> Candidate:
    fields = {"user_id": "u1", "name": "Bo", "email": "bo@example.com", "stage": CandidateStage.SCREENING}
    fields.update(kwargs)
    return Candidate(**fields)


def _workflow(**kwargs) -> EmailWorkflow:
    fields = {"user_id": "u1", "trigger_stage": CandidateStage.SCREENING, "email_template_id": "t1"}
    fields.update(kwargs)
    return EmailWorkflow(**fields)


def test_score_above_threshold_matches():
    assert workflow_matches(_workflow(min_match_score=70), _candidate(match_score=85))


def test_score_below_threshold_does_not_match():
    assert not workflow_matches(_workflow(min_match_score=70), _candidate(match_score=60))


def test_unscored_candidate_fails_any_threshold():
    assert not workflow_matches(_workflow(min_match_score=0), _candidate(match_score=None))


def test_no_threshold_matches_unscored_candidate():
    assert workflow_matches(_workflow(), _candidate(match_score=None))


def test_source_filter_is_any_of_and_case_sensitive():
    wf = _workflow(source_filter=["linkedin", "referral"])
    assert workflow_matches(wf, _candidate(source="referral"))
    assert not workflow_matches(wf, _candidate(source="LinkedIn"))
    assert not workflow_matches(wf, _candidate(source=""))


def test_disabled_or_other_stage_does_not_match():
    assert not workflow_matches(_workflow(enabled=False), _candidate())
    assert not workflow_matches(_workflow(trigger_stage=CandidateStage.HIRED), _candidate())


def test_find_matching_orders_by_creation_and_scopes_to_owner():
    now = datetime.now()
    late = _workflow(name="late", created_at=now)
    early = _workflow(name="early", created_at=now - timedelta(hours=1))
    foreign = _workflow(name="foreign", user_id="u2")

    matched = find_matching_workflows(_candidate(), [late, foreign, early])

    assert [w.name for w in matched] == ["early", "late"]

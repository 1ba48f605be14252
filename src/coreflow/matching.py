"""Decide which email workflows apply to a candidate."""

from __future__ import annotations

from coreflow.schemas import Candidate, EmailWorkflow


def workflow_matches(workflow: EmailWorkflow, candidate: Candidate) -> bool:
    if workflow.trigger_stage != candidate.stage:
        return False
    if not workflow.enabled:
        return False

    if workflow.min_match_score is not None:
        # An unscored candidate never satisfies a score threshold
        if candidate.match_score is None or candidate.match_score < workflow.min_match_score:
            return False

    if workflow.source_filter and candidate.source not in workflow.source_filter:
        return False

    return True


def find_matching_workflows(
    candidate: Candidate,
    workflows: list[EmailWorkflow],
) -> list[EmailWorkflow]:
    """Return every workflow of the candidate's owner that matches, oldest first."""
    matched = [
        w for w in workflows
        if w.user_id == candidate.user_id and workflow_matches(w, candidate)
    ]
    return sorted(matched, key=lambda w: w.created_at)

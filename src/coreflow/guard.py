"""Stage transition rules for manual candidate moves."""

from __future__ import annotations

from dataclasses import dataclass, field

from coreflow.schemas import (
    Candidate,
    CandidateStage,
    EmailWorkflow,
    Offer,
    OfferStatus,
)

# Offer statuses that count as "this candidate has an offer"
ACTIVE_OFFER_STATUSES = frozenset({
    OfferStatus.DRAFT,
    OfferStatus.SENT,
    OfferStatus.VIEWED,
    OfferStatus.NEGOTIATING,
    OfferStatus.ACCEPTED,
})

# How a stage is named in user-facing messages
_STAGE_LABELS = {CandidateStage.REJECTED: "Rejection"}


@dataclass
class TransitionContext:
    """Everything the guard needs, loaded by the caller."""

    workflows: list[EmailWorkflow] = field(default_factory=list)
    offers: list[Offer] = field(default_factory=list)


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    reason: str = ""


def authorize_transition(
    candidate: Candidate,
    from_stage: CandidateStage,
    to_stage: CandidateStage,
    context: TransitionContext,
) -> TransitionDecision:
    if from_stage == CandidateStage.NEW:
        return TransitionDecision(
            False,
            'Cannot manually move candidates from "New" stage. '
            "Candidates must upload their CV to move to Screening.",
        )

    if to_stage == from_stage:
        return TransitionDecision(False, f'Candidate is already in the "{to_stage.value}" stage.')

    if to_stage == CandidateStage.NEW:
        return TransitionDecision(False, 'Candidates cannot be moved back to the "New" stage.')

    # Interviews are scheduled by the recruiter, who sends the email then
    if to_stage == CandidateStage.INTERVIEW:
        return TransitionDecision(True)

    has_workflow = any(
        w.enabled and w.trigger_stage == to_stage and w.user_id == candidate.user_id
        for w in context.workflows
    )
    if not has_workflow:
        label = _STAGE_LABELS.get(to_stage, to_stage.value)
        return TransitionDecision(
            False,
            f'Cannot move candidate to "{to_stage.value}" stage. '
            f'Please create an email workflow for the "{label}" stage first.',
        )

    if to_stage == CandidateStage.OFFER:
        has_offer = any(
            o.candidate_id == candidate.id and o.status in ACTIVE_OFFER_STATUSES
            for o in context.offers
        )
        if not has_offer:
            return TransitionDecision(
                False,
                'Cannot move candidate to "Offer" stage. '
                "Please create a job offer for this candidate first.",
            )

    return TransitionDecision(True)

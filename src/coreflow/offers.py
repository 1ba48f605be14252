"""Offer lifecycle and counter-offer negotiation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from coreflow.database import RESPONDABLE_OFFER_STATUSES, Database
from coreflow.engine import WorkflowEngine
from coreflow.errors import (
    AlreadyRespondedError,
    DeliveryError,
    InvalidOfferState,
    NotFoundError,
    TokenExpiredError,
    ValidationError,
)
from coreflow.placeholders import candidate_context, offer_context, render, with_response_link
from coreflow.schemas import (
    Candidate,
    CandidateStage,
    CounterOfferRequest,
    EmailLog,
    NegotiationEvent,
    NegotiationEventType,
    Offer,
    OfferCreate,
    OfferStatus,
    OfferTerms,
    OfferUpdate,
    TemplateType,
)
from coreflow.tokens import generate_secure_token
from coreflow.tools.email import OutgoingEmail, SendResult

log = logging.getLogger(__name__)

OFFER_TRANSITIONS: dict[OfferStatus, frozenset[OfferStatus]] = {
    OfferStatus.DRAFT: frozenset({OfferStatus.SENT, OfferStatus.EXPIRED}),
    OfferStatus.SENT: frozenset({
        OfferStatus.VIEWED, OfferStatus.NEGOTIATING, OfferStatus.ACCEPTED,
        OfferStatus.DECLINED, OfferStatus.EXPIRED,
    }),
    OfferStatus.VIEWED: frozenset({
        OfferStatus.NEGOTIATING, OfferStatus.ACCEPTED, OfferStatus.DECLINED, OfferStatus.EXPIRED,
    }),
    OfferStatus.NEGOTIATING: frozenset({
        OfferStatus.NEGOTIATING, OfferStatus.SENT, OfferStatus.ACCEPTED,
        OfferStatus.DECLINED, OfferStatus.EXPIRED,
    }),
    OfferStatus.ACCEPTED: frozenset(),
    OfferStatus.DECLINED: frozenset(),
    OfferStatus.EXPIRED: frozenset(),
}

EDITABLE_STATUSES = (OfferStatus.DRAFT.value, OfferStatus.NEGOTIATING.value)
NON_TERMINAL_STATUSES = tuple(s.value for s, targets in OFFER_TRANSITIONS.items() if targets)

DEFAULT_TEMPLATES: dict[TemplateType, tuple[str, str]] = {
    TemplateType.OFFER: (
        "Job Offer – {position_title} at {company_name}",
        "Dear {candidate_name},\n\n"
        "We are delighted to extend a job offer for the {position_title} position at {company_name}.\n\n"
        "Position: {position_title}\n"
        "Salary: {salary}\n"
        "Start Date: {start_date}\n"
        "Expires: {expires_at}\n\n"
        "{benefits}\n\n"
        "Please review the offer details and let us know your decision.\n\n"
        "Best regards,\n{company_name}",
    ),
    TemplateType.OFFER_ACCEPTED: (
        "Counter Offer Accepted – {position_title} at {company_name}",
        "Dear {candidate_name},\n\n"
        "We are pleased to inform you that we have accepted your counter offer for the "
        "{position_title} position at {company_name}!\n\n"
        "Final Offer Details:\n"
        "Position: {position_title}\n"
        "Salary: {salary}\n"
        "Start Date: {start_date}\n\n"
        "Benefits:\n{benefits_list}\n\n"
        "We look forward to welcoming you to {company_name}!\n\n"
        "Best regards,\n{your_name}\n{company_name}",
    ),
    TemplateType.OFFER_DECLINED: (
        "Counter Offer Update – {position_title} at {company_name}",
        "Dear {candidate_name},\n\n"
        "Thank you for your counter offer regarding the {position_title} position at {company_name}.\n\n"
        "After careful consideration, we are unable to accept the terms of your counter offer. "
        "However, our original offer of {salary} remains available if you would like to proceed.\n\n"
        "If you have any questions, please don't hesitate to reach out.\n\n"
        "Best regards,\n{your_name}\n{company_name}",
    ),
    TemplateType.COUNTER_OFFER_RESPONSE: (
        "Updated Offer – {position_title} at {company_name}",
        "Dear {candidate_name},\n\n"
        "Thank you for your counter offer. After reviewing your request, we would like to "
        "propose the following updated terms:\n\n"
        "Position: {position_title}\n"
        "Salary: {salary}\n"
        "Start Date: {start_date}\n"
        "Expires: {expires_at}\n\n"
        "Benefits:\n{benefits_list}\n\n"
        "{notes}\n\n"
        "Please let us know if you would like to proceed.\n\n"
        "Best regards,\n{your_name}\n{company_name}",
    ),
}


def latest_counter_offer(history: list[NegotiationEvent]) -> NegotiationEvent | None:
    """Most recent candidate counter offer, ordered by timestamp then sequence."""
    counters = [e for e in history if e.type == NegotiationEventType.COUNTER_OFFER]
    if not counters:
        return None
    return max(counters, key=lambda e: (e.timestamp, e.sequence))


def _term_updates(terms: OfferTerms) -> dict:
    return terms.model_dump(exclude_none=True)


class OfferService:
    def __init__(self, db: Database, engine: WorkflowEngine) -> None:
        self.db = db
        self.engine = engine
        self.config = engine.config

    # -- Recruiter operations ---------------------------------------------------

    def create(self, user_id: str, data: OfferCreate) -> Offer:
        if data.candidate_id:
            self._candidate(data.candidate_id, user_id)
        offer = Offer(user_id=user_id, **data.model_dump())
        self.db.save_offer(offer)
        log.info("Created offer %s for %s", offer.id, data.candidate_id or "general pool")
        return offer

    def get(self, offer_id: str, user_id: str) -> Offer:
        offer = self.db.get_offer(offer_id, user_id)
        if offer is None:
            raise NotFoundError("Offer not found")
        return offer

    def list_offers(
        self,
        user_id: str,
        candidate_id: str | None = None,
        status: OfferStatus | None = None,
        general_only: bool = False,
    ) -> list[Offer]:
        return self.db.list_offers(user_id, candidate_id=candidate_id, status=status, general_only=general_only)

    def update(self, offer_id: str, user_id: str, data: OfferUpdate) -> Offer:
        offer = self.get(offer_id, user_id)
        if offer.status.value not in EDITABLE_STATUSES:
            raise InvalidOfferState(
                f"Offer terms can only be changed while the offer is a draft or under negotiation "
                f"(current status: {offer.status.value})."
            )
        updates = data.model_dump(exclude_unset=True)
        if updates and not self.db.update_offer(offer_id, updates, expected_statuses=EDITABLE_STATUSES):
            raise InvalidOfferState("Offer changed status while it was being edited.")
        return self.get(offer_id, user_id)

    def link_to_candidate(self, offer_id: str, user_id: str, candidate_id: str) -> Offer:
        offer = self.get(offer_id, user_id)
        if offer.candidate_id:
            raise InvalidOfferState("Offer is already linked to a candidate.")
        self._candidate(candidate_id, user_id)
        self.db.update_offer(offer_id, {"candidate_id": candidate_id})
        log.info("Linked offer %s to candidate %s", offer_id, candidate_id)
        return self.get(offer_id, user_id)

    def send(self, offer_id: str, user_id: str) -> Offer:
        """Email the offer with a response link and move the candidate to Offer.

        Nothing changes unless delivery succeeds.
        """
        offer = self.get(offer_id, user_id)
        if not offer.candidate_id:
            raise ValidationError("Link this offer to a candidate before sending it.")
        # A negotiating offer goes back to sent only through decline_counter_offer
        if offer.status != OfferStatus.DRAFT:
            raise InvalidOfferState(f"Only draft offers can be sent. This offer is {offer.status.value}.")

        workflows = self.db.list_workflows(user_id, trigger_stage=CandidateStage.OFFER, enabled_only=True)
        if not workflows:
            raise ValidationError(
                'Please create an email workflow for the "Offer" stage before sending offers.'
            )

        candidate = self._candidate(offer.candidate_id, user_id)
        if not candidate.email:
            raise ValidationError("Candidate has no email address.")

        token = generate_secure_token()
        token_expires_at = datetime.now() + timedelta(days=self.config.offer_token_days)
        link = self.engine.response_link(token)

        subject, content = self._template_text(user_id, TemplateType.OFFER, workflows[0].email_template_id)
        content = with_response_link(content, link)
        result = self._send_offer_email(offer, candidate, subject, content, TemplateType.OFFER, link=link)
        if not result.ok:
            raise DeliveryError(f"Failed to send offer email: {result.error}")

        now = datetime.now()
        updated = self.db.update_offer(
            offer_id,
            {
                "status": OfferStatus.SENT,
                "sent_at": now,
                "offer_token": token,
                "offer_token_expires_at": token_expires_at,
            },
            expected_statuses=(OfferStatus.DRAFT.value,),
        )
        if not updated:
            raise InvalidOfferState("Offer changed status while it was being sent.")

        # Sending the offer is itself the Offer-stage email
        self.db.update_candidate(candidate.id, {"stage": CandidateStage.OFFER})
        log.info("Sent offer %s to %s", offer_id, candidate.email)
        return self.get(offer_id, user_id)

    def expire(self, offer_id: str, user_id: str) -> Offer:
        offer = self.get(offer_id, user_id)
        self._check_transition(offer, OfferStatus.EXPIRED)
        if not self.db.update_offer(offer_id, {"status": OfferStatus.EXPIRED}, expected_statuses=NON_TERMINAL_STATUSES):
            raise InvalidOfferState("Offer was resolved before it could be expired.")
        log.info("Expired offer %s", offer_id)
        return self.get(offer_id, user_id)

    def expire_overdue(self, now: datetime | None = None) -> int:
        """Expire every open offer whose expiry date has passed."""
        now = now or datetime.now()
        expired = 0
        for offer in self.db.list_overdue_offers(now):
            if self.db.update_offer(offer.id, {"status": OfferStatus.EXPIRED}, expected_statuses=NON_TERMINAL_STATUSES):
                expired += 1
        if expired:
            log.info("Expired %d overdue offers", expired)
        return expired

    # -- Candidate operations (token) -------------------------------------------

    def get_by_token(self, token: str) -> Offer:
        offer = self.db.get_offer_by_token(token)
        if offer is None:
            raise NotFoundError("Invalid or expired offer link")
        if offer.offer_token_expires_at and offer.offer_token_expires_at < datetime.now():
            raise TokenExpiredError("This offer link has expired. Please contact the recruiter.")
        return offer

    def view_by_token(self, token: str) -> Offer:
        offer = self.get_by_token(token)
        if offer.status == OfferStatus.SENT:
            self.db.update_offer(
                offer.id,
                {"status": OfferStatus.VIEWED, "viewed_at": datetime.now()},
                expected_statuses=(OfferStatus.SENT.value,),
            )
            offer = self.get_by_token(token)
        return offer

    def accept_by_token(self, token: str, response: str | None = None) -> Offer:
        offer = self._respond(token, OfferStatus.ACCEPTED, response)
        if offer.candidate_id:
            self._run_hired_workflows(offer)
        return offer

    def decline_by_token(self, token: str, response: str | None = None) -> Offer:
        return self._respond(token, OfferStatus.DECLINED, response)

    def counter_offer_by_token(self, token: str, request: CounterOfferRequest) -> Offer:
        offer = self.get_by_token(token)
        self._check_respondable(offer)

        proposed = OfferTerms(**request.model_dump(exclude={"notes"}))
        proposed.salary_currency = proposed.salary_currency or offer.salary_currency
        proposed.salary_period = proposed.salary_period or offer.salary_period

        event = NegotiationEvent(
            sequence=0,
            type=NegotiationEventType.COUNTER_OFFER,
            terms=proposed,
            notes=request.notes,
        )
        stored = self.db.append_negotiation_event(
            offer.id, event, RESPONDABLE_OFFER_STATUSES,
            updates={"status": OfferStatus.NEGOTIATING},
        )
        if stored is None:
            self._check_respondable(self.get_by_token(token))
            raise InvalidOfferState("This offer can no longer be negotiated.")
        log.info("Counter offer #%d received on offer %s", stored.sequence, offer.id)
        return self.get_by_token(token)

    # -- Recruiter side of a negotiation ----------------------------------------

    def respond_to_counter_offer(
        self,
        offer_id: str,
        user_id: str,
        terms: OfferTerms,
        notes: str = "",
    ) -> Offer:
        """Propose revised terms and send them to the candidate with a fresh link."""
        offer = self.get(offer_id, user_id)
        self._require_negotiating(offer)

        token = generate_secure_token()
        updates = {
            **_term_updates(terms),
            "offer_token": token,
            "offer_token_expires_at": datetime.now() + timedelta(days=self.config.offer_token_days),
        }
        event = NegotiationEvent(
            sequence=0,
            type=NegotiationEventType.COUNTER_OFFER_RESPONSE,
            terms=terms,
            notes=notes,
        )
        if self.db.append_negotiation_event(offer.id, event, (OfferStatus.NEGOTIATING.value,), updates=updates) is None:
            raise InvalidOfferState("Offer is no longer under negotiation.")

        offer = self.get(offer_id, user_id)
        link = self.engine.response_link(token)
        self._notify(offer, TemplateType.COUNTER_OFFER_RESPONSE, link=link, notes=notes)
        return offer

    def accept_counter_offer(self, offer_id: str, user_id: str) -> Offer:
        offer = self.get(offer_id, user_id)
        self._require_negotiating(offer)
        counter = latest_counter_offer(offer.negotiation_history)
        if counter is None or counter.terms is None:
            raise InvalidOfferState("There is no counter offer to accept.")

        now = datetime.now()
        event = NegotiationEvent(
            sequence=0,
            type=NegotiationEventType.COUNTER_OFFER_ACCEPTED,
            terms=counter.terms,
        )
        stored = self.db.append_negotiation_event(
            offer.id, event, (OfferStatus.NEGOTIATING.value,),
            updates={**_term_updates(counter.terms), "status": OfferStatus.ACCEPTED, "responded_at": now},
            candidate_stage=CandidateStage.HIRED,
        )
        if stored is None:
            raise InvalidOfferState("Offer is no longer under negotiation.")
        log.info("Accepted counter offer #%d on offer %s", counter.sequence, offer_id)

        offer = self.get(offer_id, user_id)
        self._notify(offer, TemplateType.OFFER_ACCEPTED)
        if offer.candidate_id:
            self._run_hired_workflows(offer)
        return offer

    def decline_counter_offer(self, offer_id: str, user_id: str, notes: str | None = None) -> Offer:
        """Reject the candidate's counter; the original terms stand and the offer is live again."""
        offer = self.get(offer_id, user_id)
        self._require_negotiating(offer)

        event = NegotiationEvent(
            sequence=0,
            type=NegotiationEventType.COUNTER_OFFER_DECLINED,
            notes=notes or "",
        )
        stored = self.db.append_negotiation_event(
            offer.id, event, (OfferStatus.NEGOTIATING.value,),
            updates={"status": OfferStatus.SENT},
        )
        if stored is None:
            raise InvalidOfferState("Offer is no longer under negotiation.")

        offer = self.get(offer_id, user_id)
        self._notify(offer, TemplateType.OFFER_DECLINED)
        return offer

    # -- Helpers ------------------------------------------------------------------

    def _respond(self, token: str, status: OfferStatus, response: str | None) -> Offer:
        result = self.db.respond_to_offer_atomic(token, status, response, datetime.now())
        if not result["success"]:
            error = result["error"]
            if error == "not_found":
                raise NotFoundError("Invalid or expired offer link")
            if error == "token_expired":
                raise TokenExpiredError("This offer link has expired. Please contact the recruiter.")
            if error == "already_responded":
                raise AlreadyRespondedError(
                    f"This offer has already been {result['status'] or 'responded to'}."
                )
            raise InvalidOfferState(f"This offer is {result['status']} and can no longer be answered.")

        log.info("Offer %s %s by candidate", result["offer_id"], status.value)
        offer = self.db.get_offer(result["offer_id"])
        if offer is None:
            raise NotFoundError("Offer not found")
        return offer

    def _run_hired_workflows(self, offer: Offer) -> None:
        try:
            self.engine.execute(offer.candidate_id, CandidateStage.HIRED, offer.user_id, skip_if_already_sent=True)
        except Exception:
            log.exception("Hired workflows failed for candidate %s", offer.candidate_id)

    def _check_transition(self, offer: Offer, to_status: OfferStatus) -> None:
        if to_status not in OFFER_TRANSITIONS[offer.status]:
            raise InvalidOfferState(
                f"Cannot move offer from {offer.status.value} to {to_status.value}."
            )

    def _check_respondable(self, offer: Offer) -> None:
        if offer.status in (OfferStatus.ACCEPTED, OfferStatus.DECLINED):
            raise AlreadyRespondedError(f"This offer has already been {offer.status.value}.")
        if offer.status.value not in RESPONDABLE_OFFER_STATUSES:
            raise InvalidOfferState(f"This offer is {offer.status.value} and can no longer be answered.")

    def _require_negotiating(self, offer: Offer) -> None:
        if offer.status != OfferStatus.NEGOTIATING:
            raise InvalidOfferState(
                f"Offer must be under negotiation (current status: {offer.status.value})."
            )

    def _candidate(self, candidate_id: str, user_id: str) -> Candidate:
        candidate = self.db.get_candidate(candidate_id, user_id)
        if candidate is None:
            raise NotFoundError("Candidate not found")
        return candidate

    def _template_text(
        self,
        user_id: str,
        template_type: TemplateType,
        preferred_template_id: str | None = None,
    ) -> tuple[str, str]:
        template = None
        if preferred_template_id:
            template = self.db.get_template(preferred_template_id, user_id)
            if template is not None and template.type != template_type:
                template = None
        if template is None:
            template = self.db.find_template_by_type(user_id, template_type)
        if template is None:
            return DEFAULT_TEMPLATES[template_type]
        return template.subject, template.content

    def _send_offer_email(
        self,
        offer: Offer,
        candidate: Candidate,
        subject: str,
        content: str,
        template_type: TemplateType,
        link: str | None = None,
        notes: str | None = None,
    ) -> SendResult:
        job = self.db.get_job(offer.job_id) if offer.job_id else None
        user = self.db.get_user(offer.user_id)
        context = candidate_context(candidate, job, user)
        context.update(offer_context(offer, response_link=link))
        if notes is not None:
            context["notes"] = notes

        email = OutgoingEmail(
            to=candidate.email,
            subject=render(subject, context),
            body=render(content, context),
            from_name=context["your_name"],
            email_type=template_type.value,
            metadata={"offer_id": offer.id, "candidate_id": candidate.id},
        )
        try:
            result = self.engine.sender(email)
        except Exception as e:
            log.exception("Email sender raised for offer %s", offer.id)
            result = SendResult(ok=False, error=str(e))

        if result.ok:
            self.db.insert_email_log(EmailLog(
                user_id=offer.user_id,
                candidate_id=candidate.id,
                to_email=email.to,
                subject=email.subject,
                content=email.body,
                email_type=email.email_type,
            ))
        return result

    def _notify(
        self,
        offer: Offer,
        template_type: TemplateType,
        link: str | None = None,
        notes: str | None = None,
    ) -> None:
        """Best-effort negotiation email; failures are logged, never raised."""
        candidate = self.db.get_candidate(offer.candidate_id, offer.user_id) if offer.candidate_id else None
        if candidate is None or not candidate.email:
            log.info("No candidate email for offer %s, skipping %s email", offer.id, template_type.value)
            return

        subject, content = self._template_text(offer.user_id, template_type)
        if link:
            content = with_response_link(content, link)
        result = self._send_offer_email(offer, candidate, subject, content, template_type, link=link, notes=notes)
        if not result.ok:
            log.warning("%s email for offer %s failed: %s", template_type.value, offer.id, result.error)

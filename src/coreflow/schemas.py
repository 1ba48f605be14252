"""Data models for the hiring pipeline, email workflows and offers."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class CandidateStage(str, Enum):
    NEW = "New"
    SCREENING = "Screening"
    INTERVIEW = "Interview"
    OFFER = "Offer"
    HIRED = "Hired"
    REJECTED = "Rejected"


class TemplateType(str, Enum):
    SCREENING = "Screening"
    INTERVIEW = "Interview"
    RESCHEDULE = "Reschedule"
    OFFER = "Offer"
    OFFER_ACCEPTED = "Offer Accepted"
    OFFER_DECLINED = "Offer Declined"
    COUNTER_OFFER_RESPONSE = "Counter Offer Response"
    HIRED = "Hired"
    REJECTION = "Rejection"
    CUSTOM = "Custom"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class OfferStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class SalaryPeriod(str, Enum):
    HOURLY = "hourly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class NegotiationEventType(str, Enum):
    COUNTER_OFFER = "counter_offer"
    COUNTER_OFFER_RESPONSE = "counter_offer_response"
    COUNTER_OFFER_ACCEPTED = "counter_offer_accepted"
    COUNTER_OFFER_DECLINED = "counter_offer_declined"


class ScheduledSendStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"


# ---------------------------------------------------------------------------
# Users and jobs
# ---------------------------------------------------------------------------

class UserProfile(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str = ""
    email: str = ""
    company: str = ""
    created_at: datetime = Field(default_factory=datetime.now)


class Job(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str = ""
    title: str = ""
    company: str = ""
    created_at: datetime = Field(default_factory=datetime.now)


class ProfileUpdate(BaseModel):
    name: str
    email: str
    company: str = ""


class JobCreate(BaseModel):
    title: str
    company: str = ""


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------

class Candidate(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str = ""
    name: str = ""
    email: str = ""
    stage: CandidateStage = CandidateStage.NEW
    source: str = ""
    match_score: float | None = Field(default=None, ge=0, le=100)
    job_id: str | None = None
    role: str = ""
    cv_file_url: str = ""
    is_test: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class CandidateCreate(BaseModel):
    name: str
    email: str = ""
    source: str = ""
    match_score: float | None = Field(default=None, ge=0, le=100)
    job_id: str | None = None
    role: str = ""
    is_test: bool = False


class CvUploadRequest(BaseModel):
    cv_file_url: str
    email: str = ""


class InterviewDetails(BaseModel):
    """Meeting data passed along when an Interview workflow is triggered."""

    date: str = ""
    time: str = ""
    duration: str = ""
    interview_type: str = ""
    meeting_link: str = ""
    address: str = ""
    old_date: str = ""
    old_time: str = ""


class StageChangeRequest(BaseModel):
    stage: CandidateStage
    interview: InterviewDetails | None = None


# ---------------------------------------------------------------------------
# Templates and workflows
# ---------------------------------------------------------------------------

class EmailTemplate(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str = ""
    name: str = ""
    type: TemplateType = TemplateType.CUSTOM
    subject: str = ""
    content: str = ""
    created_at: datetime = Field(default_factory=datetime.now)


class EmailTemplateCreate(BaseModel):
    name: str
    type: TemplateType
    subject: str
    content: str


class EmailWorkflow(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str = ""
    name: str = ""
    trigger_stage: CandidateStage
    email_template_id: str
    min_match_score: float | None = Field(default=None, ge=0, le=100)
    source_filter: list[str] = Field(default_factory=list)
    enabled: bool = True
    delay_minutes: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class EmailWorkflowCreate(BaseModel):
    name: str
    trigger_stage: CandidateStage
    email_template_id: str
    min_match_score: float | None = Field(default=None, ge=0, le=100)
    source_filter: list[str] = Field(default_factory=list)
    enabled: bool = True
    delay_minutes: int = Field(default=0, ge=0)


class EmailWorkflowUpdate(BaseModel):
    name: str | None = None
    trigger_stage: CandidateStage | None = None
    email_template_id: str | None = None
    min_match_score: float | None = Field(default=None, ge=0, le=100)
    source_filter: list[str] | None = None
    enabled: bool | None = None
    delay_minutes: int | None = Field(default=None, ge=0)


class WorkflowExecution(BaseModel):
    id: str = Field(default_factory=_new_id)
    workflow_id: str
    candidate_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    email_log_id: str | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class EmailLog(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str = ""
    candidate_id: str | None = None
    to_email: str = ""
    subject: str = ""
    content: str = ""
    email_type: str = TemplateType.CUSTOM.value
    status: str = "sent"
    sent_at: datetime = Field(default_factory=datetime.now)


class ScheduledSend(BaseModel):
    id: str = Field(default_factory=_new_id)
    execution_id: str
    workflow_id: str
    candidate_id: str
    user_id: str
    stage: CandidateStage
    due_at: datetime
    status: ScheduledSendStatus = ScheduledSendStatus.QUEUED
    attempts: int = 0
    interview: InterviewDetails | None = None
    created_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------

class OfferTerms(BaseModel):
    """The negotiable part of an offer. Unset fields mean "unchanged"."""

    salary_amount: float | None = None
    salary_currency: str | None = None
    salary_period: SalaryPeriod | None = None
    start_date: date | None = None
    benefits: list[str] | None = None


class NegotiationEvent(BaseModel):
    sequence: int
    timestamp: datetime = Field(default_factory=datetime.now)
    type: NegotiationEventType
    terms: OfferTerms | None = None
    notes: str = ""


class Offer(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str = ""
    candidate_id: str | None = None
    job_id: str = ""
    position_title: str = ""
    salary_amount: float | None = None
    salary_currency: str = "USD"
    salary_period: SalaryPeriod = SalaryPeriod.YEARLY
    start_date: date | None = None
    benefits: list[str] = Field(default_factory=list)
    notes: str = ""
    status: OfferStatus = OfferStatus.DRAFT
    expires_at: datetime | None = None
    offer_token: str | None = None
    offer_token_expires_at: datetime | None = None
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    responded_at: datetime | None = None
    response: str | None = None
    negotiation_history: list[NegotiationEvent] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def terms(self) -> OfferTerms:
        return OfferTerms(
            salary_amount=self.salary_amount,
            salary_currency=self.salary_currency,
            salary_period=self.salary_period,
            start_date=self.start_date,
            benefits=list(self.benefits),
        )


class OfferCreate(BaseModel):
    candidate_id: str | None = None
    job_id: str
    position_title: str
    salary_amount: float | None = None
    salary_currency: str = "USD"
    salary_period: SalaryPeriod = SalaryPeriod.YEARLY
    start_date: date | None = None
    benefits: list[str] = Field(default_factory=list)
    notes: str = ""
    expires_at: datetime | None = None


class OfferUpdate(BaseModel):
    position_title: str | None = None
    salary_amount: float | None = None
    salary_currency: str | None = None
    salary_period: SalaryPeriod | None = None
    start_date: date | None = None
    benefits: list[str] | None = None
    notes: str | None = None
    expires_at: datetime | None = None


class OfferLinkRequest(BaseModel):
    candidate_id: str


class OfferResponseRequest(BaseModel):
    response: str | None = None


class CounterOfferRequest(OfferTerms):
    notes: str = ""

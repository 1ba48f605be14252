"""Candidate pipeline operations and workflow configuration.

Every stage change goes through the same three steps: the guard decides,
the candidate row is updated, then the workflow engine sends whatever the
new stage calls for.
"""

from __future__ import annotations

import logging
from datetime import datetime

from coreflow.database import Database
from coreflow.engine import WorkflowEngine
from coreflow.errors import NotFoundError, TransitionRejected, ValidationError
from coreflow.guard import TransitionContext, authorize_transition
from coreflow.schemas import (
    Candidate,
    CandidateCreate,
    CandidateStage,
    EmailLog,
    EmailTemplate,
    EmailTemplateCreate,
    EmailWorkflow,
    EmailWorkflowCreate,
    EmailWorkflowUpdate,
    InterviewDetails,
    Job,
    TemplateType,
    UserProfile,
    WorkflowExecution,
)
from coreflow.templates import (
    TemplateSelection,
    is_template_valid_for_stage,
    valid_templates_for_stage,
)

log = logging.getLogger(__name__)

SKIP_IF_SENT_STAGES = frozenset({CandidateStage.SCREENING, CandidateStage.OFFER})


class CandidatePipeline:
    def __init__(self, db: Database, engine: WorkflowEngine) -> None:
        self.db = db
        self.engine = engine

    # -- Profiles and jobs -------------------------------------------------------

    def save_profile(self, user_id: str, name: str, email: str, company: str = "") -> UserProfile:
        existing = self.db.get_user(user_id)
        user = UserProfile(
            id=user_id,
            name=name,
            email=email,
            company=company,
            created_at=existing.created_at if existing else datetime.now(),
        )
        self.db.save_user(user)
        return user

    def create_job(self, user_id: str, title: str, company: str = "") -> Job:
        job = Job(user_id=user_id, title=title, company=company)
        self.db.save_job(job)
        return job

    # -- Candidates ----------------------------------------------------------------

    def create_candidate(self, user_id: str, data: CandidateCreate) -> Candidate:
        """Add a sourced candidate. New candidates never receive automated email."""
        if data.job_id and self.db.get_job(data.job_id, user_id) is None:
            raise NotFoundError("Job not found")
        candidate = Candidate(user_id=user_id, stage=CandidateStage.NEW, **data.model_dump())
        self.db.save_candidate(candidate)
        log.info("Created candidate %s (%s)", candidate.id, candidate.name)
        return candidate

    def get_candidate(self, candidate_id: str, user_id: str) -> Candidate:
        candidate = self.db.get_candidate(candidate_id, user_id)
        if candidate is None:
            raise NotFoundError("Candidate not found")
        return candidate

    def list_candidates(self, user_id: str, stage: CandidateStage | None = None) -> list[Candidate]:
        return self.db.list_candidates(user_id, stage)

    def move_stage(
        self,
        candidate_id: str,
        user_id: str,
        to_stage: CandidateStage,
        interview: InterviewDetails | None = None,
    ) -> Candidate:
        """Manual stage change. Raises TransitionRejected with the guard's reason."""
        candidate = self.get_candidate(candidate_id, user_id)
        context = TransitionContext(
            workflows=self.db.list_workflows(user_id, enabled_only=True),
            offers=self.db.list_offers(user_id, candidate_id=candidate.id),
        )
        decision = authorize_transition(candidate, candidate.stage, to_stage, context)
        if not decision.allowed:
            log.info("Rejected move of %s to %s: %s", candidate.id, to_stage.value, decision.reason)
            raise TransitionRejected(decision.reason)

        if not self.db.update_candidate(candidate.id, {"stage": to_stage}, expected_stage=candidate.stage):
            raise TransitionRejected("The candidate's stage changed in the meantime. Refresh and try again.")
        log.info("Moved candidate %s from %s to %s", candidate.id, candidate.stage.value, to_stage.value)

        # Screening and Offer emails may already have gone out via CV upload or offer send
        self.engine.execute(
            candidate.id,
            to_stage,
            user_id,
            skip_if_already_sent=to_stage in SKIP_IF_SENT_STAGES,
            interview=interview,
        )
        return self.get_candidate(candidate_id, user_id)

    def send_interview_email(self, candidate_id: str, user_id: str, interview: InterviewDetails) -> list[WorkflowExecution]:
        """Run the Interview workflows once the recruiter has booked the meeting."""
        candidate = self.get_candidate(candidate_id, user_id)
        if candidate.stage != CandidateStage.INTERVIEW:
            raise ValidationError('Move the candidate to the "Interview" stage before scheduling.')
        return self.engine.execute(candidate.id, CandidateStage.INTERVIEW, user_id, interview=interview)

    def reschedule_interview(self, candidate_id: str, user_id: str, interview: InterviewDetails) -> EmailLog:
        """Tell the candidate their interview moved.

        Uses the user's Reschedule template, or their Interview template when
        they have no Reschedule one.
        """
        candidate = self.get_candidate(candidate_id, user_id)
        if candidate.stage != CandidateStage.INTERVIEW:
            raise ValidationError('Only candidates in the "Interview" stage can be rescheduled.')
        if not (interview.date and interview.time):
            raise ValidationError("A new interview date and time are required.")

        template = (
            self.db.find_template_by_type(user_id, TemplateType.RESCHEDULE)
            or self.db.find_template_by_type(user_id, TemplateType.INTERVIEW)
        )
        if template is None:
            raise ValidationError("Create a Reschedule or Interview email template first.")

        entry = self.engine.send_template(candidate, template, interview)
        log.info("Sent reschedule notice to candidate %s", candidate.id)
        return entry

    def email_history(self, candidate_id: str, user_id: str) -> list[EmailLog]:
        candidate = self.get_candidate(candidate_id, user_id)
        return self.db.list_email_logs(candidate.id)

    def record_cv_upload(self, candidate_id: str, user_id: str, cv_file_url: str, email: str = "") -> Candidate:
        """The only way out of New: a CV upload moves the candidate to Screening."""
        candidate = self.get_candidate(candidate_id, user_id)
        updates: dict = {"cv_file_url": cv_file_url}
        if email:
            updates["email"] = email

        promote = candidate.stage == CandidateStage.NEW
        if promote:
            updates["stage"] = CandidateStage.SCREENING
        self.db.update_candidate(candidate.id, updates)

        if promote:
            log.info("Candidate %s uploaded a CV, moved to Screening", candidate.id)
            self.engine.execute(candidate.id, CandidateStage.SCREENING, user_id, skip_if_already_sent=True)
        return self.get_candidate(candidate_id, user_id)

    def delete_candidate(self, candidate_id: str, user_id: str) -> None:
        candidate = self.get_candidate(candidate_id, user_id)
        if self.db.count_executions_for_candidate(candidate.id):
            raise ValidationError("Candidates with workflow history cannot be deleted.")
        self.db.delete_candidate(candidate.id)


class WorkflowRegistry:
    """Email templates and the workflows that attach them to stages."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # -- Templates -------------------------------------------------------------------

    def create_template(self, user_id: str, data: EmailTemplateCreate) -> EmailTemplate:
        template = EmailTemplate(user_id=user_id, **data.model_dump())
        self.db.save_template(template)
        return template

    def list_templates(self, user_id: str) -> list[EmailTemplate]:
        return self.db.list_templates(user_id)

    def templates_for_stage(
        self,
        user_id: str,
        stage: CandidateStage,
        selected_id: str | None = None,
    ) -> TemplateSelection:
        return valid_templates_for_stage(stage, self.db.list_templates(user_id), selected_id)

    # -- Workflows -------------------------------------------------------------------

    def list_workflows(self, user_id: str) -> list[EmailWorkflow]:
        return self.db.list_workflows(user_id)

    def get_workflow(self, workflow_id: str, user_id: str) -> EmailWorkflow:
        workflow = self.db.get_workflow(workflow_id, user_id)
        if workflow is None:
            raise NotFoundError("Workflow not found")
        return workflow

    def create_workflow(self, user_id: str, data: EmailWorkflowCreate) -> EmailWorkflow:
        workflow = EmailWorkflow(user_id=user_id, **data.model_dump())
        self._validate(workflow)
        self.db.save_workflow(workflow)
        log.info("Created workflow '%s' for stage %s", workflow.name, workflow.trigger_stage.value)
        return workflow

    def update_workflow(self, workflow_id: str, user_id: str, data: EmailWorkflowUpdate) -> EmailWorkflow:
        current = self.get_workflow(workflow_id, user_id)
        workflow = current.model_copy(update={
            **data.model_dump(exclude_unset=True),
            "updated_at": datetime.now(),
        })
        # model_copy skips validation
        workflow = EmailWorkflow.model_validate(workflow.model_dump())
        self._validate(workflow)
        self.db.save_workflow(workflow)
        return workflow

    def delete_workflow(self, workflow_id: str, user_id: str) -> None:
        self.get_workflow(workflow_id, user_id)
        self.db.delete_workflow(workflow_id)

    def list_executions(
        self,
        user_id: str,
        workflow_id: str | None = None,
        candidate_id: str | None = None,
    ) -> list[WorkflowExecution]:
        return self.db.list_executions(user_id, workflow_id=workflow_id, candidate_id=candidate_id)

    def _validate(self, workflow: EmailWorkflow) -> None:
        if workflow.trigger_stage == CandidateStage.NEW:
            raise ValidationError('Workflows cannot be triggered by the "New" stage.')

        template = self.db.get_template(workflow.email_template_id, workflow.user_id)
        if template is None:
            raise NotFoundError("Email template not found")
        if not is_template_valid_for_stage(workflow.trigger_stage, template):
            raise ValidationError(
                f'Template type "{template.type.value}" cannot be used for the '
                f'"{workflow.trigger_stage.value}" stage.'
            )

        if workflow.enabled:
            clash = [
                w for w in self.db.list_workflows(workflow.user_id, workflow.trigger_stage, enabled_only=True)
                if w.id != workflow.id
            ]
            if clash:
                raise ValidationError(
                    f'An enabled workflow already exists for the "{workflow.trigger_stage.value}" stage '
                    f'("{clash[0].name}"). Disable it first.'
                )

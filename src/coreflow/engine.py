"""Workflow execution engine: turns stage changes into templated emails."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta

from coreflow.config import Config
from coreflow.database import Database
from coreflow.errors import DeliveryError, NotFoundError, ValidationError
from coreflow.guard import ACTIVE_OFFER_STATUSES
from coreflow.matching import find_matching_workflows
from coreflow.placeholders import (
    SAMPLE_CONTEXT,
    candidate_context,
    interview_context,
    offer_context,
    render,
)
from coreflow.schemas import (
    Candidate,
    CandidateStage,
    EmailLog,
    EmailTemplate,
    EmailWorkflow,
    ExecutionStatus,
    InterviewDetails,
    ScheduledSend,
    WorkflowExecution,
)
from coreflow.templates import is_template_valid_for_stage
from coreflow.tools.email import EmailSender, OutgoingEmail, SendResult, make_sender

log = logging.getLogger(__name__)

TEST_SUBJECT_PREFIX = "[TEST] "


def has_real_application(candidate: Candidate) -> bool:
    """Test candidates only receive email once they actually applied."""
    return candidate.source == "direct_application" or bool(candidate.cv_file_url)


class WorkflowEngine:
    def __init__(self, db: Database, config: Config, sender: EmailSender | None = None) -> None:
        self.db = db
        self.config = config
        self.sender = sender or make_sender(config)

    # -- Stage-triggered execution ---------------------------------------------

    def execute(
        self,
        candidate_id: str,
        new_stage: CandidateStage,
        user_id: str,
        skip_if_already_sent: bool = False,
        interview: InterviewDetails | None = None,
    ) -> list[WorkflowExecution]:
        """Run every matching workflow for a candidate that just entered `new_stage`.

        Returns the execution records created, one per matched workflow.
        Missing candidates are a silent no-op, and delivery failures are
        recorded on the execution rather than raised.
        """
        if new_stage == CandidateStage.NEW:
            return []
        if new_stage == CandidateStage.INTERVIEW and interview is None:
            log.info("Interview workflows for %s wait for interview details", candidate_id)
            return []

        candidate = self.db.get_candidate(candidate_id, user_id)
        if candidate is None:
            log.info("Candidate %s not found for user %s, nothing to execute", candidate_id, user_id)
            return []
        candidate = candidate.model_copy(update={"stage": new_stage})

        workflows = self.db.list_workflows(user_id, trigger_stage=new_stage, enabled_only=True)
        matched = find_matching_workflows(candidate, workflows)
        if not matched:
            log.info("No workflows matched %s at stage %s", candidate_id, new_stage.value)
            return []

        executions = []
        for workflow in matched:
            execution = self._run_workflow(workflow, candidate, skip_if_already_sent, interview)
            if execution is not None:
                executions.append(execution)
        return executions

    def _run_workflow(
        self,
        workflow: EmailWorkflow,
        candidate: Candidate,
        skip_if_already_sent: bool,
        interview: InterviewDetails | None,
        allow_delay: bool = True,
    ) -> WorkflowExecution | None:
        template = self.db.get_template(workflow.email_template_id, workflow.user_id)
        if template is None:
            return self._record(workflow, candidate, ExecutionStatus.FAILED, "Email template not found")

        if skip_if_already_sent and (
            self.db.has_sent_email_of_type(candidate.id, template.type.value)
            or self.db.has_execution(workflow.id, candidate.id, ExecutionStatus.SENT)
        ):
            return self._record(
                workflow, candidate, ExecutionStatus.SKIPPED,
                f"{template.type.value} email already sent to this candidate",
            )

        if not is_template_valid_for_stage(workflow.trigger_stage, template):
            return self._record(
                workflow, candidate, ExecutionStatus.SKIPPED,
                f"Template type {template.type.value} is not valid for the {workflow.trigger_stage.value} stage",
            )

        if not candidate.email:
            return self._record(workflow, candidate, ExecutionStatus.SKIPPED, "Candidate has no email address")

        if candidate.is_test and not has_real_application(candidate):
            return self._record(
                workflow, candidate, ExecutionStatus.SKIPPED,
                "Test candidate has not submitted a real application",
            )

        execution = WorkflowExecution(workflow_id=workflow.id, candidate_id=candidate.id)
        try:
            self.db.insert_execution(execution)
        except sqlite3.IntegrityError:
            log.info(
                "Workflow %s already has a pending execution for %s, not sending twice",
                workflow.id, candidate.id,
            )
            return None

        if allow_delay and workflow.delay_minutes > 0:
            send = ScheduledSend(
                execution_id=execution.id,
                workflow_id=workflow.id,
                candidate_id=candidate.id,
                user_id=workflow.user_id,
                stage=workflow.trigger_stage,
                due_at=datetime.now() + timedelta(minutes=workflow.delay_minutes),
                interview=interview,
            )
            self.db.insert_scheduled_send(send)
            log.info(
                "Queued workflow '%s' for %s, due %s",
                workflow.name, candidate.id, send.due_at.isoformat(timespec="seconds"),
            )
            return execution

        return self._deliver(execution, workflow, template, candidate, interview)

    def _deliver(
        self,
        execution: WorkflowExecution,
        workflow: EmailWorkflow,
        template: EmailTemplate,
        candidate: Candidate,
        interview: InterviewDetails | None = None,
    ) -> WorkflowExecution:
        context = self._build_context(candidate, interview)
        email = OutgoingEmail(
            to=candidate.email,
            subject=render(template.subject, context),
            body=render(template.content, context),
            from_name=context["your_name"],
            email_type=template.type.value,
            metadata={"workflow_id": workflow.id, "candidate_id": candidate.id},
        )

        try:
            result = self.sender(email)
        except Exception as e:
            log.exception("Email sender raised for workflow %s", workflow.id)
            result = SendResult(ok=False, error=str(e))

        if result.ok:
            entry = EmailLog(
                user_id=workflow.user_id,
                candidate_id=candidate.id,
                to_email=email.to,
                subject=email.subject,
                content=email.body,
                email_type=email.email_type,
            )
            self.db.insert_email_log(entry)
            self.db.complete_execution(execution.id, ExecutionStatus.SENT, email_log_id=entry.id)
            log.info("Workflow '%s' sent %s email to %s", workflow.name, email.email_type, email.to)
        else:
            self.db.complete_execution(execution.id, ExecutionStatus.FAILED, error_message=result.error)
            log.warning("Workflow '%s' failed for %s: %s", workflow.name, candidate.id, result.error)

        return self.db.get_execution(execution.id) or execution

    def _build_context(self, candidate: Candidate, interview: InterviewDetails | None) -> dict[str, str]:
        job = self.db.get_job(candidate.job_id) if candidate.job_id else None
        user = self.db.get_user(candidate.user_id)
        context = candidate_context(candidate, job, user)
        if interview is not None:
            context.update(interview_context(interview))

        if candidate.stage == CandidateStage.OFFER:
            offers = [
                o for o in self.db.list_offers(candidate.user_id, candidate_id=candidate.id)
                if o.status in ACTIVE_OFFER_STATUSES
            ]
            if offers:
                offer = offers[0]
                link = self.response_link(offer.offer_token) if offer.offer_token else None
                context.update(offer_context(offer, response_link=link))
        return context

    def _record(
        self,
        workflow: EmailWorkflow,
        candidate: Candidate,
        status: ExecutionStatus,
        reason: str,
    ) -> WorkflowExecution:
        execution = WorkflowExecution(
            workflow_id=workflow.id,
            candidate_id=candidate.id,
            status=status,
            error_message=reason,
        )
        self.db.insert_execution(execution)
        log.info("Workflow '%s' %s for %s: %s", workflow.name, status.value, candidate.id, reason)
        return execution

    def response_link(self, token: str) -> str:
        return f"{self.config.frontend_url}/offers/respond/{token}"

    # -- Deferred sends ---------------------------------------------------------

    def process_due_sends(self, now: datetime | None = None) -> int:
        """Deliver every queued send that is due. Returns how many were processed."""
        now = now or datetime.now()
        processed = 0

        for send in self.db.list_due_sends(now):
            if not self.db.claim_scheduled_send(send.id):
                continue
            processed += 1
            try:
                self._process_send(send)
            except Exception as e:
                log.exception("Scheduled send %s failed", send.id)
                self.db.complete_execution(
                    send.execution_id, ExecutionStatus.FAILED, error_message=str(e),
                )
            finally:
                self.db.finish_scheduled_send(send.id)

        if processed:
            log.info("Processed %d scheduled sends", processed)
        return processed

    def _process_send(self, send: ScheduledSend) -> None:
        execution = self.db.get_execution(send.execution_id)
        if execution is None or execution.status != ExecutionStatus.PENDING:
            return

        candidate = self.db.get_candidate(send.candidate_id, send.user_id)
        if candidate is None:
            self.db.complete_execution(
                execution.id, ExecutionStatus.FAILED, error_message="Candidate no longer exists",
            )
            return

        workflow = self.db.get_workflow(send.workflow_id, send.user_id)
        template = (
            self.db.get_template(workflow.email_template_id, send.user_id) if workflow else None
        )
        if workflow is None or template is None:
            self.db.complete_execution(
                execution.id, ExecutionStatus.FAILED,
                error_message="Workflow or email template no longer exists",
            )
            return
        if not candidate.email:
            self.db.complete_execution(
                execution.id, ExecutionStatus.FAILED, error_message="Candidate has no email address",
            )
            return

        candidate = candidate.model_copy(update={"stage": send.stage})
        self._deliver(execution, workflow, template, candidate, send.interview)

    # -- Manual operations ------------------------------------------------------

    def send_template(
        self,
        candidate: Candidate,
        template: EmailTemplate,
        interview: InterviewDetails | None = None,
    ) -> EmailLog:
        """Send one template to a candidate outside any workflow and log it."""
        if not candidate.email:
            raise ValidationError("Candidate has no email address.")

        context = self._build_context(candidate, interview)
        email = OutgoingEmail(
            to=candidate.email,
            subject=render(template.subject, context),
            body=render(template.content, context),
            from_name=context["your_name"],
            email_type=template.type.value,
            metadata={"template_id": template.id, "candidate_id": candidate.id},
        )
        result = self.sender(email)
        if not result.ok:
            raise DeliveryError(f"Failed to send {template.type.value} email: {result.error}")

        entry = EmailLog(
            user_id=candidate.user_id,
            candidate_id=candidate.id,
            to_email=email.to,
            subject=email.subject,
            content=email.body,
            email_type=email.email_type,
        )
        self.db.insert_email_log(entry)
        log.info("Sent %s email to %s", email.email_type, email.to)
        return entry

    def send_test(self, workflow_id: str, user_id: str, candidate_id: str | None = None) -> SendResult:
        """Send a workflow's email to the requesting user. Nothing is logged."""
        workflow = self.db.get_workflow(workflow_id, user_id)
        if workflow is None:
            raise NotFoundError("Workflow not found")
        template = self.db.get_template(workflow.email_template_id, user_id)
        if template is None:
            raise NotFoundError("Email template not found")
        user = self.db.get_user(user_id)
        if user is None or not user.email:
            raise ValidationError("Add an email address to your profile to receive test emails")

        context = dict(SAMPLE_CONTEXT)
        context["your_name"] = user.name or "Recruiter"
        context["offer_response_link"] = self.response_link("test-token")
        if candidate_id:
            candidate = self.db.get_candidate(candidate_id, user_id)
            if candidate is None:
                raise NotFoundError("Candidate not found")
            context.update(self._build_context(candidate, None))

        result = self.sender(OutgoingEmail(
            to=user.email,
            subject=TEST_SUBJECT_PREFIX + render(template.subject, context),
            body=render(template.content, context),
            from_name=context["your_name"],
            email_type=template.type.value,
            metadata={"workflow_id": workflow.id, "test": "true"},
        ))
        if not result.ok:
            raise DeliveryError(f"Failed to send test email: {result.error}")
        log.info("Sent test email for workflow '%s' to %s", workflow.name, user.email)
        return result

    def retry_execution(self, execution_id: str, user_id: str) -> WorkflowExecution:
        """Re-run a failed execution right away as a new execution record."""
        execution = self.db.get_execution(execution_id)
        workflow = self.db.get_workflow(execution.workflow_id, user_id) if execution else None
        if execution is None or workflow is None:
            raise NotFoundError("Execution not found")
        if execution.status != ExecutionStatus.FAILED:
            raise ValidationError("Only failed executions can be retried")

        candidate = self.db.get_candidate(execution.candidate_id, user_id)
        if candidate is None:
            raise NotFoundError("Candidate not found")

        candidate = candidate.model_copy(update={"stage": workflow.trigger_stage})
        retried = self._run_workflow(workflow, candidate, False, None, allow_delay=False)
        if retried is None:
            raise ValidationError("This workflow is already being sent to the candidate")
        return retried

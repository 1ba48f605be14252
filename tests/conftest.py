"""Shared fixtures: a throwaway database, a recording email sender, services."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from coreflow.config import Config
from coreflow.database import Database
from coreflow.engine import WorkflowEngine
from coreflow.offers import OfferService
from coreflow.pipeline import CandidatePipeline, WorkflowRegistry
from coreflow.schemas import (
    Candidate,
    CandidateStage,
    EmailTemplate,
    EmailWorkflow,
    Job,
    TemplateType,
    UserProfile,
)
from coreflow.tools.email import OutgoingEmail, SendResult

USER_ID = "user-1"


class RecordingSender:
    """Stands in for the email transport and remembers every message."""

    def __init__(self) -> None:
        self.sent: list[OutgoingEmail] = []
        self.fail_with: str | None = None

    def __call__(self, email: OutgoingEmail) -> SendResult:
        if self.fail_with:
            return SendResult(ok=False, error=self.fail_with)
        self.sent.append(email)
        return SendResult(ok=True, message_id=f"<{len(self.sent)}@test>")


@pytest.fixture
def config():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Config(
            db_path=Path(tmpdir) / "test.db",
            frontend_url="https://app.example.com/",
            jwt_secret="test-secret",
        )


@pytest.fixture
def db(config: Config):
    database = Database(config.db_path)
    yield database
    database.close()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def engine(db: Database, config: Config, sender: RecordingSender):
    return WorkflowEngine(db, config, sender)


@pytest.fixture
def pipeline(db: Database, engine: WorkflowEngine):
    return CandidatePipeline(db, engine)


@pytest.fixture
def registry(db: Database):
    return WorkflowRegistry(db)


@pytest.fixture
def offers(db: Database, engine: WorkflowEngine):
    return OfferService(db, engine)


@pytest.fixture
def user(db: Database):
    profile = UserProfile(id=USER_ID, name="Rita Recruiter", email="rita@acme.test", company="Acme")
    db.save_user(profile)
    return profile


@pytest.fixture
def job(db: Database, user: UserProfile):
    j = Job(user_id=user.id, title="Backend Engineer", company="Acme")
    db.save_job(j)
    return j


def add_template(db: Database, template_type: TemplateType, subject: str = "", content: str = "") -> EmailTemplate:
    t = EmailTemplate(
        user_id=USER_ID,
        name=f"{template_type.value} template",
        type=template_type,
        subject=subject or f"{template_type.value} for {{candidate_name}}",
        content=content or f"Hi {{candidate_name}}, about {{job_title}} at {{company_name}}.",
    )
    db.save_template(t)
    return t


def add_workflow(db: Database, stage: CandidateStage, template: EmailTemplate, **kwargs) -> EmailWorkflow:
    w = EmailWorkflow(
        user_id=USER_ID,
        name=f"{stage.value} workflow",
        trigger_stage=stage,
        email_template_id=template.id,
        **kwargs,
    )
    db.save_workflow(w)
    return w


def add_candidate(db: Database, stage: CandidateStage = CandidateStage.SCREENING, **kwargs) -> Candidate:
    fields = {"name": "Alice Smith", "email": "alice@example.com", "source": "linkedin"}
    fields.update(kwargs)
    c = Candidate(user_id=USER_ID, stage=stage, **fields)
    db.save_candidate(c)
    return c

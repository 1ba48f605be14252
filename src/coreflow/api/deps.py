"""Service container shared by the routes through app.state."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from coreflow.config import Config
from coreflow.database import Database
from coreflow.engine import WorkflowEngine
from coreflow.offers import OfferService
from coreflow.pipeline import CandidatePipeline, WorkflowRegistry
from coreflow.tools.email import EmailSender


@dataclass
class Services:
    config: Config
    db: Database
    engine: WorkflowEngine
    pipeline: CandidatePipeline
    registry: WorkflowRegistry
    offers: OfferService


def build_services(config: Config, sender: EmailSender | None = None) -> Services:
    db = Database(config.db_path)
    engine = WorkflowEngine(db, config, sender)
    return Services(
        config=config,
        db=db,
        engine=engine,
        pipeline=CandidatePipeline(db, engine),
        registry=WorkflowRegistry(db),
        offers=OfferService(db, engine),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services

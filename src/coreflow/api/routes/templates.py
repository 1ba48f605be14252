"""Email template routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from coreflow.api.auth import get_current_user_id
from coreflow.api.deps import Services, get_services
from coreflow.schemas import CandidateStage, EmailTemplate, EmailTemplateCreate
from coreflow.templates import TemplateSelection

router = APIRouter()


@router.get("")
def list_templates(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> list[EmailTemplate]:
    return services.registry.list_templates(user_id)


@router.post("", status_code=201)
def create_template(
    body: EmailTemplateCreate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> EmailTemplate:
    return services.registry.create_template(user_id, body)


@router.get("/for-stage/{stage}")
def templates_for_stage(
    stage: CandidateStage,
    selected_id: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> TemplateSelection:
    return services.registry.templates_for_stage(user_id, stage, selected_id)

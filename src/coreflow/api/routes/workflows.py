"""Email workflow routes, execution log and test sends."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from coreflow.api.auth import get_current_user_id
from coreflow.api.deps import Services, get_services
from coreflow.schemas import (
    EmailWorkflow,
    EmailWorkflowCreate,
    EmailWorkflowUpdate,
    WorkflowExecution,
)

router = APIRouter()


@router.get("")
def list_workflows(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> list[EmailWorkflow]:
    return services.registry.list_workflows(user_id)


@router.post("", status_code=201)
def create_workflow(
    body: EmailWorkflowCreate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> EmailWorkflow:
    return services.registry.create_workflow(user_id, body)


# Registered before /{workflow_id} routes so "executions" is not read as an id
@router.get("/executions")
def list_executions(
    workflow_id: str | None = Query(None),
    candidate_id: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> list[WorkflowExecution]:
    return services.registry.list_executions(user_id, workflow_id, candidate_id)


@router.post("/executions/{execution_id}/retry")
def retry_execution(
    execution_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> WorkflowExecution:
    return services.engine.retry_execution(execution_id, user_id)


@router.patch("/{workflow_id}")
def update_workflow(
    workflow_id: str,
    body: EmailWorkflowUpdate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> EmailWorkflow:
    return services.registry.update_workflow(workflow_id, user_id, body)


@router.delete("/{workflow_id}", status_code=204)
def delete_workflow(
    workflow_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> None:
    services.registry.delete_workflow(workflow_id, user_id)


@router.post("/{workflow_id}/test")
def send_test_email(
    workflow_id: str,
    candidate_id: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> dict:
    services.engine.send_test(workflow_id, user_id, candidate_id)
    return {"status": "ok"}

"""Candidate routes: creation, stage moves, interviews, CV uploads and email history."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from coreflow.api.auth import get_current_user_id
from coreflow.api.deps import Services, get_services
from coreflow.schemas import (
    Candidate,
    CandidateCreate,
    CandidateStage,
    CvUploadRequest,
    EmailLog,
    InterviewDetails,
    StageChangeRequest,
    WorkflowExecution,
)

router = APIRouter()


@router.post("", status_code=201)
def create_candidate(
    body: CandidateCreate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Candidate:
    return services.pipeline.create_candidate(user_id, body)


@router.get("")
def list_candidates(
    stage: CandidateStage | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> list[Candidate]:
    return services.pipeline.list_candidates(user_id, stage)


@router.get("/{candidate_id}")
def get_candidate(
    candidate_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Candidate:
    return services.pipeline.get_candidate(candidate_id, user_id)


@router.delete("/{candidate_id}", status_code=204)
def delete_candidate(
    candidate_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> None:
    services.pipeline.delete_candidate(candidate_id, user_id)


@router.post("/{candidate_id}/stage")
def change_stage(
    candidate_id: str,
    body: StageChangeRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Candidate:
    return services.pipeline.move_stage(candidate_id, user_id, body.stage, body.interview)


@router.post("/{candidate_id}/interview")
def schedule_interview(
    candidate_id: str,
    body: InterviewDetails,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> list[WorkflowExecution]:
    return services.pipeline.send_interview_email(candidate_id, user_id, body)


@router.post("/{candidate_id}/cv-uploaded")
def cv_uploaded(
    candidate_id: str,
    body: CvUploadRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Candidate:
    return services.pipeline.record_cv_upload(candidate_id, user_id, body.cv_file_url, body.email)


@router.post("/{candidate_id}/interview/reschedule")
def reschedule_interview(
    candidate_id: str,
    body: InterviewDetails,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> EmailLog:
    return services.pipeline.reschedule_interview(candidate_id, user_id, body)


@router.get("/{candidate_id}/emails")
def email_history(
    candidate_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> list[EmailLog]:
    return services.pipeline.email_history(candidate_id, user_id)

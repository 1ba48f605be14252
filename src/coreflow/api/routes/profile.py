"""Recruiter profile and jobs (the data behind {your_name} and {company_name})."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from coreflow.api.auth import get_current_user_id
from coreflow.api.deps import Services, get_services
from coreflow.errors import NotFoundError
from coreflow.schemas import Job, JobCreate, ProfileUpdate, UserProfile

router = APIRouter()


@router.get("/profile")
def get_profile(user_id: str = Depends(get_current_user_id), services: Services = Depends(get_services)) -> UserProfile:
    user = services.db.get_user(user_id)
    if user is None:
        raise NotFoundError("Profile not found")
    return user


@router.put("/profile")
def update_profile(
    body: ProfileUpdate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> UserProfile:
    return services.pipeline.save_profile(user_id, body.name, body.email, body.company)


@router.post("/jobs")
def create_job(
    body: JobCreate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Job:
    return services.pipeline.create_job(user_id, body.title, body.company)

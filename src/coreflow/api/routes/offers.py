"""Recruiter-side offer routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from coreflow.api.auth import get_current_user_id
from coreflow.api.deps import Services, get_services
from coreflow.schemas import (
    Offer,
    OfferCreate,
    OfferLinkRequest,
    OfferStatus,
    OfferTerms,
    OfferUpdate,
)

router = APIRouter()


class CounterResponseRequest(BaseModel):
    terms: OfferTerms
    notes: str = ""


class CounterDeclineRequest(BaseModel):
    notes: str | None = None


@router.get("")
def list_offers(
    candidate_id: str | None = Query(None),
    status: OfferStatus | None = Query(None),
    general_only: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> list[Offer]:
    return services.offers.list_offers(user_id, candidate_id, status, general_only)


@router.post("", status_code=201)
def create_offer(
    body: OfferCreate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Offer:
    return services.offers.create(user_id, body)


@router.get("/{offer_id}")
def get_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Offer:
    return services.offers.get(offer_id, user_id)


@router.patch("/{offer_id}")
def update_offer(
    offer_id: str,
    body: OfferUpdate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Offer:
    return services.offers.update(offer_id, user_id, body)


@router.post("/{offer_id}/link")
def link_offer(
    offer_id: str,
    body: OfferLinkRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Offer:
    return services.offers.link_to_candidate(offer_id, user_id, body.candidate_id)


@router.post("/{offer_id}/send")
def send_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Offer:
    return services.offers.send(offer_id, user_id)


@router.post("/{offer_id}/expire")
def expire_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Offer:
    return services.offers.expire(offer_id, user_id)


@router.post("/{offer_id}/counter/respond")
def respond_to_counter(
    offer_id: str,
    body: CounterResponseRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Offer:
    return services.offers.respond_to_counter_offer(offer_id, user_id, body.terms, body.notes)


@router.post("/{offer_id}/counter/accept")
def accept_counter(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Offer:
    return services.offers.accept_counter_offer(offer_id, user_id)


@router.post("/{offer_id}/counter/decline")
def decline_counter(
    offer_id: str,
    body: CounterDeclineRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Offer:
    return services.offers.decline_counter_offer(offer_id, user_id, body.notes if body else None)

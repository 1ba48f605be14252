"""Candidate-facing offer routes, authorized by the offer token alone."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from coreflow.api.deps import Services, get_services
from coreflow.schemas import (
    CounterOfferRequest,
    NegotiationEvent,
    Offer,
    OfferResponseRequest,
    OfferStatus,
    SalaryPeriod,
)

router = APIRouter()


class PublicOffer(BaseModel):
    """What the candidate sees: no recruiter notes or internal ids."""

    position_title: str
    salary_amount: float | None
    salary_currency: str
    salary_period: SalaryPeriod
    start_date: str | None
    benefits: list[str]
    status: OfferStatus
    expires_at: str | None
    negotiation_history: list[NegotiationEvent]

    @classmethod
    def from_offer(cls, offer: Offer) -> "PublicOffer":
        return cls(
            position_title=offer.position_title,
            salary_amount=offer.salary_amount,
            salary_currency=offer.salary_currency,
            salary_period=offer.salary_period,
            start_date=offer.start_date.isoformat() if offer.start_date else None,
            benefits=offer.benefits,
            status=offer.status,
            expires_at=offer.expires_at.isoformat() if offer.expires_at else None,
            negotiation_history=offer.negotiation_history,
        )


@router.get("/{token}")
def view_offer(token: str, services: Services = Depends(get_services)) -> PublicOffer:
    return PublicOffer.from_offer(services.offers.view_by_token(token))


@router.post("/{token}/accept")
def accept_offer(
    token: str,
    body: OfferResponseRequest | None = None,
    services: Services = Depends(get_services),
) -> PublicOffer:
    offer = services.offers.accept_by_token(token, body.response if body else None)
    return PublicOffer.from_offer(offer)


@router.post("/{token}/decline")
def decline_offer(
    token: str,
    body: OfferResponseRequest | None = None,
    services: Services = Depends(get_services),
) -> PublicOffer:
    offer = services.offers.decline_by_token(token, body.response if body else None)
    return PublicOffer.from_offer(offer)


@router.post("/{token}/counter")
def counter_offer(
    token: str,
    body: CounterOfferRequest,
    services: Services = Depends(get_services),
) -> PublicOffer:
    return PublicOffer.from_offer(services.offers.counter_offer_by_token(token, body))

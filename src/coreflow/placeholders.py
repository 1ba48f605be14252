"""Placeholder vocabulary and the formatting rules behind each value."""

from __future__ import annotations

import re
from datetime import date, datetime

from coreflow.schemas import (
    Candidate,
    InterviewDetails,
    Job,
    Offer,
    OfferTerms,
    SalaryPeriod,
    UserProfile,
)

PLACEHOLDERS: frozenset[str] = frozenset({
    "candidate_name",
    "job_title",
    "position_title",
    "company_name",
    "salary",
    "salary_amount",
    "salary_currency",
    "salary_period",
    "start_date",
    "expires_at",
    "benefits",
    "benefits_list",
    "interview_date",
    "interview_time",
    "interview_duration",
    "interview_type",
    "meeting_link",
    "address",
    "old_interview_date",
    "old_interview_time",
    "previous_interview_time",
    "new_interview_time",
    "offer_response_link",
    "your_name",
    "notes",
})

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

_PERIOD_TEXT = {
    SalaryPeriod.YEARLY: "per year",
    SalaryPeriod.MONTHLY: "per month",
    SalaryPeriod.HOURLY: "per hour",
}

RESPONSE_LINK_SECTION = (
    "\n\n---\n\nPlease click the link below to view the full offer details "
    "and accept or decline:\n{link}"
)

# Filled in for test sends that have no real candidate behind them
SAMPLE_CONTEXT: dict[str, str] = {
    "candidate_name": "John Doe",
    "job_title": "Software Engineer",
    "position_title": "Software Engineer",
    "company_name": "Our Company",
    "interview_date": "Monday, January 15, 2024",
    "interview_time": "10:00 AM",
    "interview_duration": "1 hour",
    "interview_type": "Video Call",
    "meeting_link": "https://meet.google.com/xxx-yyyy-zzz",
    "address": "123 Main St, City, State 12345",
    "previous_interview_time": "Monday, January 8, 2024 at 2:00 PM",
    "new_interview_time": "Monday, January 15, 2024 at 10:00 AM",
    "old_interview_date": "Monday, January 8, 2024",
    "old_interview_time": "2:00 PM",
    "salary": "$100,000 per year",
    "salary_amount": "100,000",
    "salary_currency": "USD",
    "salary_period": "per year",
    "start_date": "February 1, 2024",
    "expires_at": "January 31, 2024",
    "benefits": "Benefits:\n• Health insurance\n• 401k\n• Paid time off",
    "benefits_list": "• Health insurance\n• 401k\n• Paid time off",
    "notes": "We are excited to have you join our team!",
}


def render(text: str, context: dict[str, str]) -> str:
    """Substitute `{name}` for every name present in `context`.

    Unknown placeholders, and known ones without a value, are left verbatim.
    """
    def _sub(m: re.Match) -> str:
        name = m.group(1)
        if name in PLACEHOLDERS and name in context:
            return context[name]
        return m.group(0)

    return _PLACEHOLDER_RE.sub(_sub, text)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def format_salary(amount: float | None, currency: str = "USD", period: SalaryPeriod = SalaryPeriod.YEARLY) -> str:
    """'$90,000 per year', or 'To be discussed' when no amount is set."""
    if amount is None:
        return "To be discussed"
    symbol = "$" if currency == "USD" else currency
    return f"{symbol}{format_amount(amount)} {_PERIOD_TEXT[SalaryPeriod(period)]}"


def format_date(value: date | datetime | None, default: str = "TBD") -> str:
    if value is None:
        return default
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def format_benefits(benefits: list[str] | None) -> str:
    return "\n".join(f"• {b}" for b in benefits or [])


# ---------------------------------------------------------------------------
# Context builders
# ---------------------------------------------------------------------------

def candidate_context(
    candidate: Candidate,
    job: Job | None = None,
    user: UserProfile | None = None,
) -> dict[str, str]:
    return {
        "candidate_name": candidate.name,
        "job_title": (job.title if job and job.title else candidate.role),
        "company_name": _company_name(job, user),
        "your_name": (user.name if user and user.name else "Recruiter"),
    }


def interview_context(interview: InterviewDetails) -> dict[str, str]:
    ctx: dict[str, str] = {}
    pairs = {
        "interview_date": interview.date,
        "interview_time": interview.time,
        "interview_duration": interview.duration,
        "interview_type": interview.interview_type,
        "meeting_link": interview.meeting_link,
        "address": interview.address,
        "old_interview_date": interview.old_date,
        "old_interview_time": interview.old_time,
    }
    for key, value in pairs.items():
        if value:
            ctx[key] = value
    if interview.date and interview.time:
        ctx["new_interview_time"] = f"{interview.date} at {interview.time}"
    if interview.old_date and interview.old_time:
        ctx["previous_interview_time"] = f"{interview.old_date} at {interview.old_time}"
    return ctx


def offer_context(
    offer: Offer,
    terms: OfferTerms | None = None,
    response_link: str | None = None,
) -> dict[str, str]:
    """Values for an offer email. `terms` overrides the offer's own terms."""
    current = offer.terms()
    if terms is not None:
        current = current.model_copy(update=terms.model_dump(exclude_none=True))

    currency = current.salary_currency or "USD"
    period = current.salary_period or SalaryPeriod.YEARLY
    benefits_list = format_benefits(current.benefits)

    ctx = {
        "position_title": offer.position_title,
        "job_title": offer.position_title,
        "salary": format_salary(current.salary_amount, currency, period),
        "salary_amount": (
            format_amount(current.salary_amount) if current.salary_amount is not None else "TBD"
        ),
        "salary_currency": currency,
        "salary_period": _PERIOD_TEXT[SalaryPeriod(period)],
        "start_date": format_date(current.start_date),
        "expires_at": format_date(offer.expires_at, default="No expiration"),
        "benefits": f"Benefits:\n{benefits_list}" if benefits_list else "",
        "benefits_list": benefits_list,
        "notes": offer.notes,
    }
    if response_link:
        ctx["offer_response_link"] = response_link
    return ctx


def with_response_link(content: str, link: str) -> str:
    """Append the response-link section unless the template places it itself."""
    if "{offer_response_link}" in content:
        return content
    return content + RESPONSE_LINK_SECTION.format(link=link)


def _company_name(job: Job | None, user: UserProfile | None) -> str:
    if job and job.company:
        return job.company
    if user and user.company:
        return user.company
    return "Our Company"

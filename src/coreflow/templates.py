"""Which email templates may be attached to which pipeline stage."""

from __future__ import annotations

from pydantic import BaseModel, Field

from coreflow.schemas import CandidateStage, EmailTemplate, TemplateType

# Stage -> template types a workflow for that stage may use.
# New has no entry: sourcing never sends automated email.
STAGE_TEMPLATE_TYPES: dict[CandidateStage, frozenset[TemplateType]] = {
    CandidateStage.NEW: frozenset(),
    CandidateStage.SCREENING: frozenset({TemplateType.SCREENING}),
    CandidateStage.INTERVIEW: frozenset({TemplateType.INTERVIEW, TemplateType.RESCHEDULE}),
    CandidateStage.OFFER: frozenset({TemplateType.OFFER}),
    CandidateStage.HIRED: frozenset({TemplateType.HIRED}),
    CandidateStage.REJECTED: frozenset({TemplateType.REJECTION}),
}

# Sent only by the offer negotiation flow, never by a stage workflow
OFFER_ONLY_TEMPLATE_TYPES: frozenset[TemplateType] = frozenset({
    TemplateType.OFFER_ACCEPTED,
    TemplateType.OFFER_DECLINED,
    TemplateType.COUNTER_OFFER_RESPONSE,
})


class TemplateSelection(BaseModel):
    templates: list[EmailTemplate] = Field(default_factory=list)
    invalid_selection_warning: bool = False
    warning_message: str | None = None


def is_template_valid_for_stage(stage: CandidateStage, template: EmailTemplate) -> bool:
    if template.type in OFFER_ONLY_TEMPLATE_TYPES:
        return False
    return template.type in STAGE_TEMPLATE_TYPES.get(stage, frozenset())


def valid_templates_for_stage(
    stage: CandidateStage,
    all_templates: list[EmailTemplate],
    currently_selected_id: str | None = None,
) -> TemplateSelection:
    """Filter `all_templates` down to the ones usable for `stage`.

    A currently selected template that no longer qualifies is kept in the
    result so an edit form can still display it, and a warning is attached.
    """
    valid = [t for t in all_templates if is_template_valid_for_stage(stage, t)]
    warning_message = None

    if currently_selected_id and not any(t.id == currently_selected_id for t in valid):
        selected = next((t for t in all_templates if t.id == currently_selected_id), None)
        if selected is not None:
            valid.append(selected)
            warning_message = (
                f'Template "{selected.name}" ({selected.type.value}) is not valid '
                f'for the {stage.value} stage. Please choose another template.'
            )

    return TemplateSelection(
        templates=valid,
        invalid_selection_warning=warning_message is not None,
        warning_message=warning_message,
    )

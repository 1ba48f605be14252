"""Stage -> template resolution."""

from __future__ import annotations

from coreflow.schemas import CandidateStage, EmailTemplate, TemplateType
from coreflow.templates import (
    OFFER_ONLY_TEMPLATE_TYPES,
    is_template_valid_for_stage,
    valid_templates_for_stage,
)


def _templates() -> list[EmailTemplate]:
    return [EmailTemplate(name=t.value, type=t) for t in TemplateType]


def test_offer_only_types_never_offered_for_any_stage():
    templates = _templates()
    for stage in CandidateStage:
        selection = valid_templates_for_stage(stage, templates)
        assert not {t.type for t in selection.templates} & OFFER_ONLY_TEMPLATE_TYPES


def test_screening_gets_only_screening_templates():
    selection = valid_templates_for_stage(CandidateStage.SCREENING, _templates())
    assert [t.type for t in selection.templates] == [TemplateType.SCREENING]
    assert selection.invalid_selection_warning is False
    assert selection.warning_message is None


def test_interview_accepts_interview_and_reschedule():
    selection = valid_templates_for_stage(CandidateStage.INTERVIEW, _templates())
    assert {t.type for t in selection.templates} == {TemplateType.INTERVIEW, TemplateType.RESCHEDULE}


def test_rejected_stage_uses_rejection_templates():
    selection = valid_templates_for_stage(CandidateStage.REJECTED, _templates())
    assert [t.type for t in selection.templates] == [TemplateType.REJECTION]


def test_new_stage_has_no_templates():
    assert valid_templates_for_stage(CandidateStage.NEW, _templates()).templates == []


def test_invalid_current_selection_is_kept_with_warning():
    templates = _templates()
    custom = next(t for t in templates if t.type == TemplateType.CUSTOM)

    selection = valid_templates_for_stage(CandidateStage.HIRED, templates, currently_selected_id=custom.id)

    assert custom in selection.templates
    assert selection.invalid_selection_warning is True
    assert "Custom" in selection.warning_message


def test_valid_current_selection_has_no_warning():
    templates = _templates()
    hired = next(t for t in templates if t.type == TemplateType.HIRED)
    selection = valid_templates_for_stage(CandidateStage.HIRED, templates, currently_selected_id=hired.id)
    assert selection.templates == [hired]
    assert selection.invalid_selection_warning is False
    assert selection.warning_message is None


def test_is_template_valid_for_stage():
    accepted = EmailTemplate(name="x", type=TemplateType.OFFER_ACCEPTED)
    offer = EmailTemplate(name="y", type=TemplateType.OFFER)
    assert not is_template_valid_for_stage(CandidateStage.OFFER, accepted)
    assert is_template_valid_for_stage(CandidateStage.OFFER, offer)
    assert not is_template_valid_for_stage(CandidateStage.HIRED, offer)

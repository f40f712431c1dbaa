"""
Wizard View

Read-only projection of the wizard for the presentation layer: current
phase, the visible questions of the current section, errors, the pricing
breakdown and per-person completion counts.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from filing_portal.domain.aggregates import BusinessRecord, Filing, PersonRecord
from filing_portal.pricing.calculator import PricingCalculator
from filing_portal.schema.models import Question, Section
from filing_portal.validation.validator import validate_all_sections_for_role, validate_section
from filing_portal.validation.visibility import visible_questions

from .context import RecordSnapshot, WizardContext
from .phases import phase_info
from .reducer import clamp_index, pending_dependents, role_sections
from .state import WizardState


class QuestionView(BaseModel):
    id: str
    name: str
    type: str
    label: str = ""
    help_text: Optional[str] = None
    required: bool = False
    options: List[Dict[str, str]] = Field(default_factory=list)
    value: Any = None
    fields: List["QuestionView"] = Field(default_factory=list)


class SectionView(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    questions: List[QuestionView] = Field(default_factory=list)


class RecordCompletion(BaseModel):
    """How far one person (or the business record) has got."""
    record_id: str
    role: str
    label: str
    sections_total: int
    sections_complete: int
    missing_fields: int
    complete: bool


class WizardView(BaseModel):
    filing_id: str
    kind: str
    status: str
    reference_number: Optional[str] = None

    phase: str
    step: int
    total_steps: int
    step_label: str

    role: Optional[str] = None
    record_id: Optional[str] = None
    section_index: int = 0
    sections: List[Dict[str, str]] = Field(default_factory=list)
    current_section: Optional[SectionView] = None

    errors: Dict[str, str] = Field(default_factory=dict)
    notice: Optional[Dict[str, Any]] = None

    pricing: Dict[str, Any] = Field(default_factory=dict)
    amount_due: Dict[str, Any] = Field(default_factory=dict)
    completion: List[RecordCompletion] = Field(default_factory=list)

    total_dependents: int = 0
    current_dependent_index: int = 0
    pending_dependents: int = 0


def question_view(question: Question, value: Any) -> QuestionView:
    return QuestionView(
        id=question.id,
        name=question.name,
        type=question.type.value,
        label=question.label,
        help_text=question.help_text,
        required=question.validation.required,
        options=[{"value": o.value, "label": o.label} for o in question.options],
        value=value,
        fields=[question_view(sub, None) for sub in question.fields],
    )


def section_view(section: Section, answers) -> SectionView:
    return SectionView(
        id=section.id,
        title=section.title,
        description=section.description,
        questions=[question_view(q, answers.get(q.name)) for q in visible_questions(section, answers)],
    )


def record_completion(context: WizardContext, record: RecordSnapshot, state: WizardState) -> RecordCompletion:
    sections = role_sections(context, record)
    done = sum(1 for s in sections if validate_section(s, record.answers).valid)
    result = validate_all_sections_for_role(context.schema, record.role.value, record.answers)
    return RecordCompletion(
        record_id=str(record.id),
        role=record.role.value,
        label=record.label,
        sections_total=len(sections),
        sections_complete=done,
        missing_fields=result.total_missing_fields,
        complete=record.complete or state.is_completed(record.id),
    )


def build_view(
    state: WizardState,
    context: WizardContext,
    filing: Filing,
    pricing: PricingCalculator,
    persons: List[PersonRecord],
    business: Optional[BusinessRecord] = None,
) -> WizardView:
    """Project state and context into a WizardView."""
    info = phase_info(state.phase, context.kind)

    sections: List[Dict[str, str]] = []
    current = None
    index = state.section_index
    record = context.record(state.record_id) if state.phase.is_active else None
    if record is not None:
        visible = role_sections(context, record)
        sections = [{"id": s.id, "title": s.title} for s in visible]
        if visible:
            index = clamp_index(state.section_index, len(visible))
            current = section_view(visible[index], record.answers)

    # price what the user sees, unflushed answers included
    priced_persons = []
    for person in persons:
        snapshot = context.record(person.id)
        priced_persons.append(person.model_copy(update={"answers": dict(snapshot.answers)}) if snapshot else person)
    priced_business = business
    if business is not None and context.record(business.id) is not None:
        priced_business = business.model_copy(update={"answers": dict(context.record(business.id).answers)})

    breakdown = pricing.compute_total(filing, priced_persons, context.schema, priced_business)
    due = pricing.amount_due(filing, breakdown)

    return WizardView(
        filing_id=str(filing.id),
        kind=filing.kind.value,
        status=filing.status.value,
        reference_number=filing.reference_number,
        phase=state.phase.value,
        step=info.step,
        total_steps=info.total,
        step_label=info.label,
        role=state.role.value if state.role else None,
        record_id=str(state.record_id) if state.record_id else None,
        section_index=index,
        sections=sections,
        current_section=current,
        errors=dict(state.errors),
        notice=state.notice.to_dict() if state.notice else None,
        pricing=breakdown.model_dump(mode="json"),
        amount_due=due.model_dump(mode="json"),
        completion=[record_completion(context, r, state) for r in context.records],
        total_dependents=len(context.dependents()),
        current_dependent_index=state.current_dependent_index,
        pending_dependents=len(pending_dependents(state, context)),
    )

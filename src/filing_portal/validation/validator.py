"""Section and role validation.

Validation never raises: every problem is returned as data keyed by
question id, or ``{questionId}.{index}.{fieldName}`` for repeater items.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from filing_portal.schema.models import Question, QuestionType, Schema, Section

from .visibility import evaluate_condition, sections_for_role, visible_questions

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class SectionValidation:
    """Result of validating one section."""
    valid: bool
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class MissingSection:
    """A visible section that still has problems."""
    section_id: str
    section_title: str
    section_index: int
    missing_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_id": self.section_id,
            "section_title": self.section_title,
            "section_index": self.section_index,
            "missing_fields": list(self.missing_fields),
        }


@dataclass
class RoleValidation:
    """Result of validating every visible section of a role."""
    valid: bool
    errors: Dict[str, str] = field(default_factory=dict)
    missing_sections: List[MissingSection] = field(default_factory=list)
    total_missing_fields: int = 0

    @property
    def first_missing_index(self) -> Optional[int]:
        if not self.missing_sections:
            return None
        return self.missing_sections[0].section_index


def is_empty(value: Any) -> bool:
    """None, blank strings and empty collections count as unanswered."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _label(question: Question) -> str:
    return question.label or question.id


def _parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _is_calendar_date(value: Any) -> bool:
    if isinstance(value, date):
        return True
    text = str(value).strip()
    if not _DATE_PATTERN.match(text):
        return False
    try:
        date.fromisoformat(text)
    except ValueError:
        return False
    return True


def _type_error(question: Question, value: Any) -> Optional[str]:
    """Type specific check for a non-empty answer."""
    qtype = question.type
    rules = question.validation

    if qtype == QuestionType.NUMBER:
        number = _parse_number(value)
        if number is None:
            return "Please enter a valid number"
        if rules.min is not None and number < rules.min:
            return f"Value must be at least {rules.min:g}"
        if rules.max is not None and number > rules.max:
            return f"Value must be at most {rules.max:g}"

    elif qtype == QuestionType.DATE:
        if not _is_calendar_date(value):
            return "Please enter a valid date (YYYY-MM-DD)"

    elif qtype in (QuestionType.SELECT, QuestionType.RADIO):
        if question.options and str(value) not in question.option_values:
            return "Please select a valid option"

    elif qtype == QuestionType.CHECKBOX:
        selected = value if isinstance(value, list) else [value]
        if question.options:
            for item in selected:
                if str(item) not in question.option_values:
                    return f"Invalid option: {item}"

    elif qtype == QuestionType.EMAIL:
        if "@" not in str(value):
            return "Please enter a valid email address"

    elif qtype == QuestionType.PHONE:
        cleaned = re.sub(r"[\s\-\(\)\.\+]", "", str(value))
        if len(cleaned) < 10 or not cleaned.isdigit():
            return "Please enter a valid phone number"

    if rules.pattern and not isinstance(value, (list, dict)):
        try:
            if not re.search(rules.pattern, str(value)):
                return f"{_label(question)} has an invalid format"
        except re.error:
            return None

    return None


def _validate_question(
    question: Question,
    value: Any,
    context: Mapping[str, Any],
    key: str,
    errors: Dict[str, str],
) -> None:
    rules = question.validation
    required = rules.required or (
        rules.conditional_required is not None
        and evaluate_condition(rules.conditional_required, context)
    )

    if is_empty(value):
        if required:
            errors[key] = f"{_label(question)} is required"
        return

    if question.is_repeater:
        if not isinstance(value, list):
            errors[key] = f"{_label(question)} must be a list"
            return
        for index, item in enumerate(value):
            if not isinstance(item, dict):
                errors[f"{key}.{index}"] = "Invalid entry"
                continue
            for sub in question.fields:
                # sub-field conditionals read the item, not the record
                if not evaluate_condition(sub.conditional, item):
                    continue
                _validate_question(sub, item.get(sub.name), item, f"{key}.{index}.{sub.name}", errors)
        return

    message = _type_error(question, value)
    if message:
        errors[key] = message


def validate_section(
    section: Section,
    answers: Mapping[str, Any],
    role: Optional[str] = None,
) -> SectionValidation:
    """
    Validate every visible question of a section.

    Args:
        section: Section to check
        answers: Current answer map of the record
        role: When given, questions not declared for the role are skipped

    Returns:
        SectionValidation with errors keyed by question id
    """
    errors: Dict[str, str] = {}
    for question in visible_questions(section, answers, role):
        _validate_question(question, answers.get(question.name), answers, question.id, errors)
    return SectionValidation(valid=not errors, errors=errors)


def validate_all_sections_for_role(
    schema: Schema,
    role: str,
    answers: Mapping[str, Any],
) -> RoleValidation:
    """
    Validate every section visible to a role, not only the displayed one.

    Hidden sections and hidden questions are never counted.

    Returns:
        RoleValidation with per-section missing fields and their total
    """
    errors: Dict[str, str] = {}
    missing: List[MissingSection] = []

    for index, section in enumerate(sections_for_role(schema, role, answers)):
        result = validate_section(section, answers)
        if result.valid:
            continue
        errors.update(result.errors)
        missing.append(MissingSection(
            section_id=section.id,
            section_title=section.title,
            section_index=index,
            missing_fields=list(result.errors.keys()),
        ))

    total = sum(len(m.missing_fields) for m in missing)
    return RoleValidation(
        valid=not missing,
        errors=errors,
        missing_sections=missing,
        total_missing_fields=total,
    )


def summarize_missing(missing_sections: List[MissingSection], total_missing_fields: int) -> str:
    """One line summary naming at most three sections."""
    titles = [m.section_title for m in missing_sections]
    shown = ", ".join(titles[:3])
    if len(titles) > 3:
        shown += f" and {len(titles) - 3} more"
    noun = "field" if total_missing_fields == 1 else "fields"
    return f"{total_missing_fields} required {noun} missing in: {shown}"

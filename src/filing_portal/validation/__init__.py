"""Visibility and validation engine."""

from .visibility import (
    evaluate_condition,
    fields_to_clear,
    is_visible,
    sections_for_role,
    visible_questions,
)
from .validator import (
    MissingSection,
    RoleValidation,
    SectionValidation,
    is_empty,
    summarize_missing,
    validate_all_sections_for_role,
    validate_section,
)

__all__ = [
    "evaluate_condition",
    "fields_to_clear",
    "is_visible",
    "sections_for_role",
    "visible_questions",
    "MissingSection",
    "RoleValidation",
    "SectionValidation",
    "is_empty",
    "summarize_missing",
    "validate_all_sections_for_role",
    "validate_section",
]

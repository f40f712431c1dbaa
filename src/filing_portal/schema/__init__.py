"""Declarative filing schemas."""

from .models import (
    EXCLUDED_STEPS,
    Condition,
    Option,
    PricingRule,
    PricingSchema,
    Question,
    QuestionType,
    Schema,
    Section,
    ValidationRules,
)
from .registry import SchemaRegistry, find_condition_cycle, get_schema_registry

__all__ = [
    "EXCLUDED_STEPS",
    "Condition",
    "Option",
    "PricingRule",
    "PricingSchema",
    "Question",
    "QuestionType",
    "Schema",
    "Section",
    "ValidationRules",
    "SchemaRegistry",
    "find_condition_cycle",
    "get_schema_registry",
]

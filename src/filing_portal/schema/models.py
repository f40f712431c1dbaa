"""Schema model.

Declarative tree of Sections -> Questions for one (year, kind). Pure data:
visibility and validation live in the ``validation`` package. Definitions
are read from JSON documents shaped as ``{"header", "steps", "questions",
"pricing"}``; questions are attached to their step by the ``step`` key.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from filing_portal.domain.exceptions import SchemaError


# Steps handled outside the section flow (setup dialog, review screen, payment)
EXCLUDED_STEPS = ("filing_setup", "review", "payment")


class QuestionType(Enum):
    """Types of questions."""
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    PHONE = "phone"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    FILE = "file"
    REPEATER = "repeater"


@dataclass(frozen=True)
class Condition:
    """
    A conditional clause.

    Either a leaf (``parent_question_id`` + ``operator`` + ``value``/``values``)
    or a compound clause whose children must all (``all_of``) or any
    (``any_of``) hold.
    """
    parent_question_id: Optional[str] = None
    operator: str = "equals"
    value: Any = None
    values: Tuple[Any, ...] = ()
    all_of: Tuple["Condition", ...] = ()
    any_of: Tuple["Condition", ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Condition"]:
        if not data:
            return None
        if isinstance(data.get("and"), list):
            return cls(all_of=tuple(cls.from_dict(c) for c in data["and"] if c))
        if isinstance(data.get("or"), list):
            return cls(any_of=tuple(cls.from_dict(c) for c in data["or"] if c))
        if not data.get("parentQuestionId"):
            return None
        values = data.get("values")
        return cls(
            parent_question_id=data["parentQuestionId"],
            operator=data.get("operator", "equals"),
            value=data.get("value"),
            values=tuple(values) if isinstance(values, list) else (),
        )

    @property
    def is_compound(self) -> bool:
        return bool(self.all_of or self.any_of)

    def references(self) -> List[str]:
        """Answer keys this clause reads."""
        if self.is_compound:
            refs: List[str] = []
            for child in self.all_of + self.any_of:
                refs.extend(child.references())
            return refs
        return [self.parent_question_id] if self.parent_question_id else []


@dataclass(frozen=True)
class Option:
    value: str
    label: str = ""


@dataclass(frozen=True)
class ValidationRules:
    required: bool = False
    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    conditional_required: Optional[Condition] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ValidationRules":
        if not data:
            return cls()
        cond_required = data.get("conditionalRequired") or {}
        return cls(
            required=bool(data.get("required", False)),
            pattern=data.get("pattern"),
            min=data.get("min"),
            max=data.get("max"),
            conditional_required=Condition.from_dict(cond_required.get("when")),
        )


def _roles(raw: Optional[List[str]]) -> Tuple[str, ...]:
    return tuple(str(r).lower() for r in (raw or []))


@dataclass(frozen=True)
class Question:
    """A single question. ``name`` is the answer key, ``id`` keys errors."""
    id: str
    name: str
    type: QuestionType
    label: str = ""
    options: Tuple[Option, ...] = ()
    validation: ValidationRules = field(default_factory=ValidationRules)
    conditional: Optional[Condition] = None
    visible_for_roles: Tuple[str, ...] = ()
    step: Optional[str] = None
    order: int = 0
    help_text: Optional[str] = None
    fields: Tuple["Question", ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        try:
            qid = data["id"]
            qtype = QuestionType(data.get("type", "text"))
        except KeyError as e:
            raise SchemaError(f"Question is missing {e}") from e
        except ValueError as e:
            raise SchemaError(f"Question {data.get('id')}: {e}") from e

        return cls(
            id=qid,
            name=data.get("name") or qid,
            type=qtype,
            label=data.get("label", ""),
            options=tuple(
                Option(value=str(o["value"]), label=o.get("label", str(o["value"])))
                for o in data.get("options") or []
            ),
            validation=ValidationRules.from_dict(data.get("validation")),
            conditional=Condition.from_dict(data.get("conditional")),
            visible_for_roles=_roles(data.get("visibleForRoles")),
            step=data.get("step"),
            order=int(data.get("order") or 0),
            help_text=data.get("helpText"),
            fields=tuple(cls.from_dict(f) for f in data.get("fields") or []),
        )

    @property
    def is_repeater(self) -> bool:
        return self.type == QuestionType.REPEATER

    @property
    def option_values(self) -> List[str]:
        return [o.value for o in self.options]

    def matches_role(self, role: str) -> bool:
        return not self.visible_for_roles or str(role).lower() in self.visible_for_roles


@dataclass(frozen=True)
class Section:
    """A wizard section (a schema "step") with its ordered questions."""
    id: str
    title: str
    order: int = 0
    description: Optional[str] = None
    visible_for_roles: Tuple[str, ...] = ()
    conditional: Optional[Condition] = None
    any_question_visible: bool = False
    questions: Tuple[Question, ...] = ()

    def matches_role(self, role: str) -> bool:
        return not self.visible_for_roles or str(role).lower() in self.visible_for_roles

    def questions_for_role(self, role: str) -> List[Question]:
        return [q for q in self.questions if q.matches_role(role)]


@dataclass(frozen=True)
class PricingRule:
    description: str
    amount: Decimal
    condition: Optional[Condition] = None


@dataclass(frozen=True)
class PricingSchema:
    base_fee: Decimal
    currency: str = "CAD"
    tax_rate: Optional[Decimal] = None
    rules: Tuple[PricingRule, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["PricingSchema"]:
        if not data:
            return None
        tax_rate = data.get("taxRate")
        return cls(
            base_fee=Decimal(str(data.get("baseFee", 0))),
            currency=data.get("currency", "CAD"),
            tax_rate=Decimal(str(tax_rate)) if tax_rate is not None else None,
            rules=tuple(
                PricingRule(
                    description=r.get("description", ""),
                    amount=Decimal(str(r.get("amount", 0))),
                    condition=Condition.from_dict(r.get("condition")),
                )
                for r in data.get("rules") or []
            ),
        )


@dataclass(frozen=True)
class Schema:
    """Immutable schema for one (year, kind)."""
    year: int
    kind: str
    title: str = ""
    sections: Tuple[Section, ...] = ()
    pricing: Optional[PricingSchema] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], year: int, kind: str) -> "Schema":
        """Build a schema from a JSON document, grouping questions by step."""
        if "steps" not in data or "questions" not in data:
            raise SchemaError(f"Schema {year}/{kind} needs 'steps' and 'questions'")

        questions = [Question.from_dict(q) for q in data["questions"]]
        by_step: Dict[str, List[Question]] = {}
        for question in questions:
            by_step.setdefault(question.step, []).append(question)

        sections = []
        for step in data["steps"]:
            if step["id"] in EXCLUDED_STEPS:
                continue
            conditional = step.get("conditional") or {}
            step_questions = sorted(by_step.get(step["id"], []), key=lambda q: q.order)
            sections.append(Section(
                id=step["id"],
                title=step.get("title", step["id"]),
                order=int(step.get("order") or 0),
                description=step.get("description"),
                visible_for_roles=_roles(step.get("visibleForRoles")),
                conditional=Condition.from_dict(conditional),
                any_question_visible=bool(conditional.get("anyQuestionVisible")),
                questions=tuple(step_questions),
            ))
        sections.sort(key=lambda s: s.order)

        header = data.get("header") or {}
        return cls(
            year=year,
            kind=kind,
            title=header.get("title", ""),
            sections=tuple(sections),
            pricing=PricingSchema.from_dict(data.get("pricing")),
        )

    def iter_questions(self) -> Iterator[Question]:
        for section in self.sections:
            yield from section.questions

    def get_section(self, section_id: str) -> Optional[Section]:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def get_question(self, key: str) -> Optional[Question]:
        """Find a top-level question by id or answer key."""
        for question in self.iter_questions():
            if question.id == key or question.name == key:
                return question
        return None

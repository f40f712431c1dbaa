"""Visibility engine.

Decides which sections and questions are shown for a role, given the
current answer map. Every function here is a pure function of its
arguments; the answer map is never modified.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

from filing_portal.schema.models import Condition, Question, Schema, Section

logger = logging.getLogger(__name__)


def evaluate_condition(
    condition: Optional[Condition],
    answers: Mapping[str, Any],
    unknown: bool = True,
) -> bool:
    """
    Evaluate a (possibly compound) clause. No clause means visible.

    Args:
        condition: Clause to evaluate
        answers: Current answer map
        unknown: Result of a clause whose operator is not recognised
    """
    if condition is None:
        return True
    if condition.all_of:
        return all(evaluate_condition(c, answers, unknown) for c in condition.all_of)
    if condition.any_of:
        return any(evaluate_condition(c, answers, unknown) for c in condition.any_of)
    return _evaluate_clause(condition, answers, unknown)


def _evaluate_clause(condition: Condition, answers: Mapping[str, Any], unknown: bool) -> bool:
    actual = answers.get(condition.parent_question_id)
    operator = condition.operator
    expected = condition.value
    values = condition.values

    if operator == "equals":
        return actual == expected
    if operator == "notEquals":
        return actual != expected
    if operator == "notEqualsStrict":
        # unanswered does not pass
        if actual is None:
            return False
        return actual != expected
    if operator in ("oneOf", "in"):
        return actual in values
    if operator == "notIn":
        return actual not in values
    if operator == "contains":
        return isinstance(actual, list) and expected in actual
    if operator == "notContains":
        return not isinstance(actual, list) or expected not in actual
    if operator == "hasAny":
        return isinstance(actual, list) and any(v in actual for v in values)
    if operator == "greaterThan":
        try:
            return float(actual) > float(expected)
        except (TypeError, ValueError):
            return False

    logger.debug(f"Unknown conditional operator {operator!r}, evaluating to {unknown}")
    return unknown


def is_visible(
    element: Union[Question, Section],
    answers: Mapping[str, Any],
    role: Optional[str] = None,
) -> bool:
    """
    Check whether a question or section is shown.

    Args:
        element: Question or Section
        answers: Current answer map
        role: When given, elements not declared for this role are hidden

    Returns:
        True if the element should be displayed
    """
    if role is not None and not element.matches_role(role):
        return False

    if isinstance(element, Question):
        return evaluate_condition(element.conditional, answers)

    if element.conditional is not None and not evaluate_condition(element.conditional, answers):
        return False
    if element.any_question_visible:
        questions = element.questions_for_role(role) if role is not None else element.questions
        return any(evaluate_condition(q.conditional, answers) for q in questions)
    return True


def visible_questions(
    section: Section,
    answers: Mapping[str, Any],
    role: Optional[str] = None,
) -> List[Question]:
    """Questions of a section that are currently shown, in order."""
    return [q for q in section.questions if is_visible(q, answers, role)]


def sections_for_role(schema: Schema, role: str, answers: Mapping[str, Any]) -> List[Section]:
    """
    Visible sections for a role, each narrowed to the role's questions.

    Args:
        schema: Loaded schema
        role: Record role (primary, spouse, dependent, corporate, trust)
        answers: Current answer map

    Returns:
        Ordered list of sections to walk through
    """
    result = []
    for section in schema.sections:
        if not is_visible(section, answers, role):
            continue
        result.append(dataclasses.replace(section, questions=tuple(section.questions_for_role(role))))
    return result


def _visible_keys(schema: Schema, role: str, answers: Mapping[str, Any]) -> Set[str]:
    keys = set()
    for section in sections_for_role(schema, role, answers):
        for question in visible_questions(section, answers):
            keys.add(question.name)
    return keys


def fields_to_clear(
    schema: Schema,
    role: str,
    before: Mapping[str, Any],
    after: Mapping[str, Any],
) -> List[str]:
    """
    Answer keys that an answer change has hidden and that still hold a value.

    Clearing one key can hide further questions, so this repeats until no
    more keys drop out.

    Args:
        schema: Loaded schema
        role: Record role
        before: Answers before the change
        after: Answers after the change

    Returns:
        Keys to remove from the answer map, in schema order
    """
    shown_before = _visible_keys(schema, role, before)
    current: Dict[str, Any] = dict(after)
    cleared: Set[str] = set()

    while True:
        shown_now = _visible_keys(schema, role, current)
        dropped = {
            key for key in shown_before - shown_now
            if key not in cleared and current.get(key) not in (None, "", [])
        }
        if not dropped:
            break
        for key in dropped:
            current.pop(key, None)
        cleared |= dropped

    order = [q.name for q in schema.iter_questions()]
    return [key for key in order if key in cleared]


def apply_answers(
    schema: Schema,
    role: str,
    before: Mapping[str, Any],
    changes: Mapping[str, Any],
) -> Tuple[Dict[str, Any], List[str]]:
    """
    Answer map after a change, with the answers the change hid removed.

    A ``None`` value in ``changes`` removes that key.

    Returns:
        (answers after the change, keys that were cleared because they are hidden now)
    """
    after: Dict[str, Any] = dict(before)
    for key, value in changes.items():
        if value is None:
            after.pop(key, None)
        else:
            after[key] = value
    cleared = fields_to_clear(schema, role, before, after)
    for key in cleared:
        after.pop(key, None)
    return after, cleared

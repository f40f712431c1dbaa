"""Tests for the visibility engine."""

import pytest

from factories import dependent_item, primary_answers
from filing_portal.schema.models import Condition
from filing_portal.validation.visibility import (
    apply_answers,
    evaluate_condition,
    fields_to_clear,
    is_visible,
    sections_for_role,
    visible_questions,
)


def section_ids(sections):
    return [s.id for s in sections]


class TestEvaluateCondition:
    """Operator semantics of a single clause."""

    def test_no_condition_is_visible(self):
        assert evaluate_condition(None, {}) is True

    def test_equals_and_not_equals(self):
        cond = Condition(parent_question_id="a", operator="equals", value="YES")
        assert evaluate_condition(cond, {"a": "YES"}) is True
        assert evaluate_condition(cond, {"a": "NO"}) is False

        cond = Condition(parent_question_id="a", operator="notEquals", value="YES")
        assert evaluate_condition(cond, {}) is True
        assert evaluate_condition(cond, {"a": "YES"}) is False

    def test_not_equals_strict_requires_an_answer(self):
        cond = Condition(parent_question_id="a", operator="notEqualsStrict", value="SINGLE")
        assert evaluate_condition(cond, {}) is False
        assert evaluate_condition(cond, {"a": "SINGLE"}) is False
        assert evaluate_condition(cond, {"a": "MARRIED"}) is True

    def test_membership_operators(self):
        one_of = Condition(parent_question_id="a", operator="oneOf", values=("X", "Y"))
        not_in = Condition(parent_question_id="a", operator="notIn", values=("X", "Y"))
        assert evaluate_condition(one_of, {"a": "Y"}) is True
        assert evaluate_condition(one_of, {"a": "Z"}) is False
        assert evaluate_condition(not_in, {"a": "Z"}) is True
        assert evaluate_condition(not_in, {"a": "X"}) is False

    def test_list_operators(self):
        contains = Condition(parent_question_id="a", operator="contains", value="RENTAL")
        not_contains = Condition(parent_question_id="a", operator="notContains", value="RENTAL")
        has_any = Condition(parent_question_id="a", operator="hasAny", values=("X", "RENTAL"))

        assert evaluate_condition(contains, {"a": ["EMPLOYMENT", "RENTAL"]}) is True
        assert evaluate_condition(contains, {"a": "RENTAL"}) is False
        assert evaluate_condition(not_contains, {}) is True
        assert evaluate_condition(not_contains, {"a": ["RENTAL"]}) is False
        assert evaluate_condition(has_any, {"a": ["RENTAL"]}) is True
        assert evaluate_condition(has_any, {"a": []}) is False

    def test_greater_than(self):
        cond = Condition(parent_question_id="a", operator="greaterThan", value=10)
        assert evaluate_condition(cond, {"a": 11}) is True
        assert evaluate_condition(cond, {"a": "10"}) is False
        assert evaluate_condition(cond, {"a": "abc"}) is False
        assert evaluate_condition(cond, {}) is False

    def test_compound_clauses(self):
        yes = Condition(parent_question_id="a", operator="equals", value="YES")
        big = Condition(parent_question_id="b", operator="greaterThan", value=5)

        both = Condition(all_of=(yes, big))
        either = Condition(any_of=(yes, big))
        answers = {"a": "YES", "b": 1}

        assert evaluate_condition(both, answers) is False
        assert evaluate_condition(either, answers) is True

    def test_unknown_operator_is_visible(self):
        cond = Condition(parent_question_id="a", operator="matchesRegex", value=".*")
        assert evaluate_condition(cond, {}) is True

    def test_unknown_operator_can_fail_closed(self):
        cond = Condition(parent_question_id="a", operator="matchesRegex", value=".*")
        either = Condition(any_of=(cond,))
        assert evaluate_condition(cond, {}, unknown=False) is False
        assert evaluate_condition(either, {}, unknown=False) is False

    def test_from_dict_compound(self):
        cond = Condition.from_dict({
            "or": [
                {"parentQuestionId": "a", "operator": "equals", "value": 1},
                {"parentQuestionId": "b", "operator": "equals", "value": 2},
            ]
        })
        assert cond.is_compound
        assert cond.references() == ["a", "b"]


class TestSectionsForRole:
    """Role filtering and section level conditionals."""

    def test_single_employed_primary(self, individual_schema):
        sections = sections_for_role(individual_schema, "primary", primary_answers())
        assert section_ids(sections) == [
            "personal_info", "marital_status", "dependants", "income", "deductions",
        ]

    def test_excluded_steps_are_not_sections(self, individual_schema):
        ids = [s.id for s in individual_schema.sections]
        assert "filing_setup" not in ids
        assert "review" not in ids
        assert "payment" not in ids

    def test_conditional_sections(self, individual_schema):
        answers = primary_answers(**{"income.sources": ["EMPLOYMENT", "SELF_EMPLOYMENT", "RENTAL"]})
        ids = section_ids(sections_for_role(individual_schema, "primary", answers))
        assert "self_employment" in ids
        assert "rental" in ids
        assert ids.index("self_employment") < ids.index("rental")

    def test_dependent_role_narrowing(self, individual_schema):
        answers = {"income.sources": ["NONE"]}
        sections = sections_for_role(individual_schema, "dependent", answers)

        assert section_ids(sections) == ["personal_info", "income"]
        personal = sections[0]
        names = [q.name for q in personal.questions]
        assert "personalInfo.email" not in names
        assert "personalInfo.sin" in names

    def test_rental_section_hidden_for_dependents(self, individual_schema):
        answers = {"income.sources": ["RENTAL"]}
        ids = section_ids(sections_for_role(individual_schema, "dependent", answers))
        assert "rental" not in ids

    def test_any_question_visible_section(self, individual_schema):
        # no income source picked: neither deduction question shows
        answers = primary_answers(**{"income.sources": ["NONE"]})
        answers.pop("income.employmentAmount")
        ids = section_ids(sections_for_role(individual_schema, "primary", answers))
        assert "deductions" not in ids

        # childcare shows for a primary with dependants and income
        answers = primary_answers(**{
            "income.sources": ["INVESTMENT"],
            "dependants.hasDependants": "YES",
            "dependants.list": [dependent_item("Kid One", earns_income=False)],
        })
        sections = sections_for_role(individual_schema, "primary", answers)
        deductions = [s for s in sections if s.id == "deductions"]
        assert len(deductions) == 1
        visible = [q.name for q in visible_questions(deductions[0], answers)]
        assert visible == ["deductions.childcare"]

    def test_answers_are_not_modified(self, individual_schema):
        answers = primary_answers()
        before = dict(answers)
        sections_for_role(individual_schema, "primary", answers)
        assert answers == before


class TestIsVisible:

    def test_role_restricted_question(self, individual_schema):
        email = individual_schema.get_question("personalInfo.email")
        assert is_visible(email, {}, "primary") is True
        assert is_visible(email, {}, "dependent") is False
        assert is_visible(email, {}) is True

    def test_question_conditional(self, individual_schema):
        amount = individual_schema.get_question("income.employmentAmount")
        assert is_visible(amount, {"income.sources": ["EMPLOYMENT"]}) is True
        assert is_visible(amount, {"income.sources": ["RENTAL"]}) is False


class TestFieldsToClear:
    """Answers hidden by an answer change."""

    def test_dropping_an_income_source_clears_its_section(self, individual_schema):
        before = primary_answers(**{
            "income.sources": ["EMPLOYMENT", "SELF_EMPLOYMENT"],
            "selfEmployment.businessName": "Ada's Engines",
            "selfEmployment.grossIncome": 12000,
            "selfEmployment.hasVehicle": "YES",
            "selfEmployment.vehicleKm": 800,
        })
        after = dict(before, **{"income.sources": ["EMPLOYMENT"]})

        cleared = fields_to_clear(individual_schema, "primary", before, after)
        assert cleared == [
            "selfEmployment.businessName",
            "selfEmployment.grossIncome",
            "selfEmployment.hasVehicle",
            "selfEmployment.vehicleKm",
        ]

    def test_single_marital_status_clears_change_questions(self, individual_schema):
        before = primary_answers(**{
            "maritalStatus.status": "MARRIED",
            "maritalStatus.statusChanged": "YES",
            "maritalStatus.dateOfChange": "2025-06-01",
        })
        after = dict(before, **{"maritalStatus.status": "SINGLE"})

        cleared = fields_to_clear(individual_schema, "primary", before, after)
        assert set(cleared) == {"maritalStatus.statusChanged", "maritalStatus.dateOfChange"}

    def test_hidden_but_empty_answers_are_not_listed(self, individual_schema):
        before = primary_answers(**{"income.sources": ["EMPLOYMENT", "SELF_EMPLOYMENT"]})
        after = dict(before, **{"income.sources": ["EMPLOYMENT"]})
        assert fields_to_clear(individual_schema, "primary", before, after) == []

    def test_no_change_clears_nothing(self, individual_schema):
        answers = primary_answers()
        assert fields_to_clear(individual_schema, "primary", answers, dict(answers)) == []

    @pytest.mark.parametrize("role", ["primary", "spouse"])
    def test_rental_properties_cleared(self, individual_schema, role):
        before = primary_answers(**{
            "income.sources": ["RENTAL"],
            "rental.properties": [{"address": "1 Main St", "grossRent": 1200}],
        })
        before.pop("income.employmentAmount")
        after = dict(before, **{"income.sources": ["INVESTMENT"]})
        assert fields_to_clear(individual_schema, role, before, after) == ["rental.properties"]

    def test_apply_answers_removes_and_clears(self, individual_schema):
        before = primary_answers(**{
            "income.sources": ["EMPLOYMENT", "SELF_EMPLOYMENT"],
            "selfEmployment.businessName": "Ada's Engines",
            "personalInfo.phone": "555-0100",
        })
        after, cleared = apply_answers(
            individual_schema, "primary", before,
            {"income.sources": ["EMPLOYMENT"], "personalInfo.phone": None},
        )

        assert cleared == ["selfEmployment.businessName"]
        assert after["income.sources"] == ["EMPLOYMENT"]
        assert "personalInfo.phone" not in after
        assert "selfEmployment.businessName" not in after
        assert before["personalInfo.phone"] == "555-0100"

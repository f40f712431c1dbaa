"""Tests for section and role validation."""

from factories import corporate_answers, dependent_item, primary_answers
from filing_portal.validation.validator import (
    MissingSection,
    is_empty,
    summarize_missing,
    validate_all_sections_for_role,
    validate_section,
)


class TestIsEmpty:

    def test_empty_values(self):
        assert is_empty(None)
        assert is_empty("")
        assert is_empty("   ")
        assert is_empty([])
        assert is_empty({})

    def test_non_empty_values(self):
        assert not is_empty(0)
        assert not is_empty(False)
        assert not is_empty("x")
        assert not is_empty(["NONE"])


class TestValidateSection:
    """Per-section validation."""

    def test_complete_section_is_valid(self, individual_schema):
        section = individual_schema.get_section("personal_info")
        result = validate_section(section, primary_answers())
        assert result.valid
        assert result.errors == {}

    def test_required_fields(self, individual_schema):
        section = individual_schema.get_section("personal_info")
        answers = primary_answers()
        del answers["personalInfo.firstName"]
        answers["personalInfo.lastName"] = "   "

        result = validate_section(section, answers)
        assert not result.valid
        assert result.errors == {
            "personalInfo.firstName": "First name is required",
            "personalInfo.lastName": "Last name is required",
        }

    def test_pattern_and_type_checks(self, individual_schema):
        section = individual_schema.get_section("personal_info")
        answers = primary_answers(**{
            "personalInfo.sin": "12345",
            "personalInfo.email": "not-an-email",
            "personalInfo.dateOfBirth": "2025-02-30",
            "personalInfo.phone": "555",
        })

        errors = validate_section(section, answers).errors
        assert errors["personalInfo.sin"] == "Social Insurance Number has an invalid format"
        assert errors["personalInfo.email"] == "Please enter a valid email address"
        assert errors["personalInfo.dateOfBirth"] == "Please enter a valid date (YYYY-MM-DD)"
        assert errors["personalInfo.phone"] == "Please enter a valid phone number"

    def test_email_only_needs_an_at_sign(self, individual_schema):
        section = individual_schema.get_section("personal_info")
        assert validate_section(section, primary_answers(**{"personalInfo.email": "ada@localhost"})).valid

    def test_number_bounds(self, individual_schema):
        section = individual_schema.get_section("income")
        errors = validate_section(section, primary_answers(**{"income.employmentAmount": -5})).errors
        assert errors == {"income.employmentAmount": "Value must be at least 0"}

        errors = validate_section(section, primary_answers(**{"income.employmentAmount": "lots"})).errors
        assert errors == {"income.employmentAmount": "Please enter a valid number"}

    def test_numbers_with_thousands_separators(self, individual_schema):
        section = individual_schema.get_section("income")
        result = validate_section(section, primary_answers(**{"income.employmentAmount": "85,000"}))
        assert result.valid

    def test_checkbox_options(self, individual_schema):
        section = individual_schema.get_section("income")
        answers = primary_answers(**{"income.sources": ["EMPLOYMENT", "LOTTERY"]})
        errors = validate_section(section, answers).errors
        assert errors["income.sources"] == "Invalid option: LOTTERY"

    def test_hidden_required_question_is_skipped(self, individual_schema):
        section = individual_schema.get_section("income")
        answers = primary_answers(**{"income.sources": ["INVESTMENT"]})
        answers.pop("income.employmentAmount")
        assert validate_section(section, answers).valid

    def test_conditional_required(self, individual_schema):
        section = individual_schema.get_section("marital_status")
        answers = primary_answers(**{
            "maritalStatus.status": "MARRIED",
            "maritalStatus.statusChanged": "YES",
        })
        errors = validate_section(section, answers).errors
        assert errors == {"maritalStatus.dateOfChange": "Date your status changed is required"}

        answers["maritalStatus.statusChanged"] = "NO"
        assert validate_section(section, answers).valid

    def test_repeater_items(self, individual_schema):
        section = individual_schema.get_section("dependants")
        answers = primary_answers(**{
            "dependants.hasDependants": "YES",
            "dependants.list": [
                dependent_item("Kid One", earns_income=True),
                dependent_item("", earns_income=False, relationship="COUSIN"),
            ],
        })

        errors = validate_section(section, answers).errors
        assert errors == {
            "dependants.list.1.fullName": "Full name is required",
            "dependants.list.1.relationship": "Please select a valid option",
        }

    def test_repeater_subfield_conditionals_read_the_item(self, individual_schema):
        section = individual_schema.get_section("dependants")
        item = dependent_item("Kid One", earns_income=False, estimatedIncome=-1)
        answers = primary_answers(**{"dependants.hasDependants": "YES", "dependants.list": [item]})
        # estimatedIncome is hidden for a dependant that earns nothing
        assert validate_section(section, answers).valid

    def test_required_repeater(self, corporate_schema):
        section = corporate_schema.get_section("shareholders")
        errors = validate_section(section, corporate_answers(shareholders=[])).errors
        assert errors == {"shareholders": "Shareholders is required"}

    def test_role_filter(self, individual_schema):
        section = individual_schema.get_section("personal_info")
        answers = primary_answers()
        del answers["personalInfo.email"]
        assert not validate_section(section, answers, role="primary").valid
        assert validate_section(section, answers, role="dependent").valid


class TestValidateAllSectionsForRole:
    """Completeness of a whole role."""

    def test_complete_primary(self, individual_schema):
        result = validate_all_sections_for_role(individual_schema, "primary", primary_answers())
        assert result.valid
        assert result.total_missing_fields == 0
        assert result.first_missing_index is None

    def test_empty_primary(self, individual_schema):
        result = validate_all_sections_for_role(individual_schema, "primary", {})

        assert not result.valid
        assert [m.section_id for m in result.missing_sections] == [
            "personal_info", "marital_status", "dependants", "income",
        ]
        assert result.total_missing_fields == 8
        assert result.first_missing_index == 0

    def test_missing_section_index_counts_visible_sections(self, individual_schema):
        answers = primary_answers()
        del answers["income.employmentAmount"]
        result = validate_all_sections_for_role(individual_schema, "primary", answers)

        assert result.first_missing_index == 3
        assert result.missing_sections[0].section_id == "income"
        assert result.missing_sections[0].missing_fields == ["income.employmentAmount"]

    def test_hidden_sections_are_not_counted(self, individual_schema):
        # self-employment questions are required, but the section is hidden
        result = validate_all_sections_for_role(individual_schema, "primary", primary_answers())
        assert "self_employment" not in [m.section_id for m in result.missing_sections]

    def test_complete_corporation(self, corporate_schema):
        result = validate_all_sections_for_role(corporate_schema, "corporate", corporate_answers())
        assert result.valid

    def test_payroll_required_when_employees(self, corporate_schema):
        answers = corporate_answers(**{"financials.hasEmployees": "YES"})
        result = validate_all_sections_for_role(corporate_schema, "corporate", answers)

        assert [m.section_id for m in result.missing_sections] == ["payroll"]
        assert result.total_missing_fields == 2
        assert result.first_missing_index == 2


class TestSummarizeMissing:

    def test_names_at_most_three_sections(self):
        missing = [
            MissingSection(section_id=str(i), section_title=f"Section {i}", section_index=i, missing_fields=["x"])
            for i in range(5)
        ]
        assert summarize_missing(missing, 5) == (
            "5 required fields missing in: Section 0, Section 1, Section 2 and 2 more"
        )

    def test_singular(self):
        missing = [MissingSection(section_id="a", section_title="Income", section_index=0, missing_fields=["x"])]
        assert summarize_missing(missing, 1) == "1 required field missing in: Income"

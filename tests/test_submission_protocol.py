"""Tests for the submission protocol."""

import logging
import re
from decimal import Decimal
from uuid import uuid4

import pytest

from factories import (
    FlakyBackend,
    corporate_answers,
    create_business,
    create_individual,
    dependent_answers,
    primary_answers,
    spouse_answers,
    trust_answers,
)
from filing_portal.domain.aggregates import (
    FilingKind,
    FilingStatus,
    PersonRecord,
    RecordRole,
    RecordStatus,
)
from filing_portal.domain.exceptions import ConflictError, GateError
from filing_portal.pricing.calculator import PricingCalculator
from filing_portal.submission import (
    SubmissionFatal,
    SubmissionOk,
    SubmissionProtocol,
    SubmissionRejected,
    SubmissionRetryable,
    generate_reference_number,
    normalize_identity_key,
    to_base36,
)

REFERENCE = re.compile(r"^JJ-[0-9A-Z]{8}$")


@pytest.fixture
def protocol(backend, registry, settings):
    return SubmissionProtocol(backend, registry, PricingCalculator(settings.pricing), reference_prefix="JJ")


def status_writes(backend):
    return [w for w in backend.writes if w.startswith("status:")]


async def add_person(backend, filing, role, answers, ordinal=None):
    return await backend.save_person_record(
        PersonRecord(filing_id=filing.id, role=role, answers=answers, ordinal=ordinal)
    )


class TestReferenceNumbers:

    def test_to_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"
        with pytest.raises(ValueError):
            to_base36(-1)

    def test_format(self):
        reference = generate_reference_number("JJ", now_ms=1_700_000_000_000)
        assert REFERENCE.match(reference)
        assert reference.startswith("JJ-" + to_base36(1_700_000_000_000)[-4:].upper())

    def test_normalize_identity_key(self):
        assert normalize_identity_key("123 456 789") == normalize_identity_key("123456789")
        assert normalize_identity_key(" T 1234\t5678 ") == "t12345678"
        assert normalize_identity_key(None) == ""


class TestIndividualSubmission:

    @pytest.mark.asyncio
    async def test_successful_submission(self, backend, protocol):
        filing, primary = await create_individual(backend, primary=primary_answers())

        result = await protocol.submit(filing.id)

        assert isinstance(result, SubmissionOk)
        assert result.ok and not result.retryable
        assert REFERENCE.match(result.reference_number)
        stored = await backend.get_filing(filing.id)
        assert stored.status == FilingStatus.UNDER_REVIEW
        assert stored.reference_number == result.reference_number
        assert stored.total_price == Decimal("169.49")
        assert stored.paid_amount == Decimal("169.49")
        assert stored.submitted_at is not None
        assert (await backend.get_person_record(primary.id)).status == RecordStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_submission_logs_carry_component(self, backend, protocol, caplog):
        caplog.set_level(logging.INFO, logger="filing_portal.submission.protocol")
        filing, _ = await create_individual(backend, primary=primary_answers())

        await protocol.submit(filing.id)

        records = [r for r in caplog.records if r.name == "filing_portal.submission.protocol"]
        assert any("submitted with reference" in r.getMessage() for r in records)
        assert all(r.extra_data == {"component": "submission"} for r in records)

    @pytest.mark.asyncio
    async def test_gate_aggregates_every_incomplete_person(self, backend, protocol):
        filing, _ = await create_individual(
            backend, primary=primary_answers(**{"maritalStatus.status": "MARRIED"}),
        )
        spouse_data = spouse_answers()
        del spouse_data["personalInfo.sin"]
        await add_person(backend, filing, RecordRole.SPOUSE, spouse_data)
        await add_person(backend, filing, RecordRole.DEPENDENT, {"personalInfo.firstName": "Kid"}, ordinal=0)

        result = await protocol.submit(filing.id)

        assert isinstance(result, SubmissionRejected)
        assert isinstance(result.error, GateError)
        assert "William King" in result.reason
        assert "Dependent 1" in result.reason
        roles = {m["role"] for m in result.error.missing_sections}
        assert roles == {"spouse", "dependent"}
        assert result.error.total_missing_fields == 1 + 4

        # nothing written
        assert status_writes(backend) == []
        assert (await backend.get_filing(filing.id)).status == FilingStatus.DRAFT

    @pytest.mark.asyncio
    async def test_no_persons(self, backend, protocol):
        filing, _ = await create_individual(backend)
        result = await protocol.submit(filing.id)
        assert isinstance(result, SubmissionRejected)
        assert isinstance(result.error, GateError)

    @pytest.mark.asyncio
    async def test_household_submission_completes_every_record(self, backend, protocol):
        filing, primary = await create_individual(
            backend, primary=primary_answers(**{"maritalStatus.status": "MARRIED"}),
        )
        spouse = await add_person(backend, filing, RecordRole.SPOUSE, spouse_answers())
        kid_answers = dict(dependent_answers(), **{
            "personalInfo.firstName": "Kid",
            "personalInfo.lastName": "Lovelace",
            "personalInfo.dateOfBirth": "2008-04-01",
        })
        kid = await add_person(backend, filing, RecordRole.DEPENDENT, kid_answers, ordinal=0)

        result = await protocol.submit(filing.id)

        assert isinstance(result, SubmissionOk)
        for record in (primary, spouse, kid):
            assert (await backend.get_person_record(record.id)).status == RecordStatus.COMPLETED
        # three base fees plus 13% tax
        assert result.filing.total_price == Decimal("508.47")


class TestAmendments:

    @pytest.mark.asyncio
    async def test_reference_number_is_reused(self, backend, protocol):
        filing, _ = await create_individual(
            backend,
            primary=primary_answers(),
            status=FilingStatus.IN_PROGRESS,
            reference_number="JJ-AB12CD",
            paid_amount=Decimal("150"),
        )

        result = await protocol.submit(filing.id)

        assert isinstance(result, SubmissionOk)
        assert result.reference_number == "JJ-AB12CD"
        assert (await backend.get_filing(filing.id)).reference_number == "JJ-AB12CD"

    @pytest.mark.asyncio
    async def test_submitted_filing_cannot_be_submitted_again(self, backend, protocol):
        filing, _ = await create_individual(backend, primary=primary_answers(), status=FilingStatus.UNDER_REVIEW)
        result = await protocol.submit(filing.id)
        assert isinstance(result, SubmissionFatal)
        assert status_writes(backend) == []

    @pytest.mark.asyncio
    async def test_unknown_filing(self, protocol):
        result = await protocol.submit(uuid4())
        assert isinstance(result, SubmissionFatal)


class TestDuplicateIdentity:
    """A business number or trust account may only be filed once per owner and year."""

    @pytest.mark.asyncio
    async def test_whitespace_variants_are_duplicates(self, backend, protocol):
        await create_business(
            backend, answers=corporate_answers(**{"corpInfo.businessNumber": "123456789"}),
            status=FilingStatus.UNDER_REVIEW,
        )
        filing, _ = await create_business(
            backend, answers=corporate_answers(**{"corpInfo.businessNumber": "123 456 789"}),
        )

        result = await protocol.submit(filing.id)

        assert isinstance(result, SubmissionRejected)
        assert isinstance(result.error, ConflictError)
        assert result.error.conflicting_status == "UNDER_REVIEW"
        assert "already under review" in result.reason
        assert '"Analytical Engines Inc."' in result.reason
        assert status_writes(backend) == []

    @pytest.mark.asyncio
    async def test_message_for_draft_sibling(self, backend, protocol):
        await create_business(backend, answers=corporate_answers())
        filing, _ = await create_business(backend, answers=corporate_answers())

        result = await protocol.submit(filing.id)
        assert "already in progress" in result.reason

    @pytest.mark.asyncio
    async def test_message_for_flagged_sibling(self, backend, protocol):
        _, existing = await create_business(backend, answers=corporate_answers(), status=FilingStatus.COMPLETED)
        await backend.set_record_status(existing.id, RecordStatus.FLAGGED)
        filing, _ = await create_business(backend, answers=corporate_answers())

        result = await protocol.submit(filing.id)
        assert "flagged for review" in result.reason

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [FilingStatus.COMPLETED, FilingStatus.APPROVED])
    async def test_message_for_finished_sibling(self, backend, protocol, status):
        await create_business(backend, answers=corporate_answers(), status=status)
        filing, _ = await create_business(backend, answers=corporate_answers())

        result = await protocol.submit(filing.id)

        assert isinstance(result, SubmissionRejected)
        assert result.reason == (
            'A 2025 corporate filing with this Business Number for "Analytical Engines Inc." '
            "has already been completed."
        )
        assert result.error.conflicting_status == status.value

    @pytest.mark.asyncio
    async def test_message_for_rejected_sibling(self, backend, protocol):
        await create_business(backend, answers=corporate_answers(), status=FilingStatus.REJECTED)
        filing, _ = await create_business(backend, answers=corporate_answers())

        result = await protocol.submit(filing.id)

        assert isinstance(result, SubmissionRejected)
        assert result.reason == (
            "A corporate filing with this Business Number already exists. "
            "Please use a unique Business Number or edit the existing filing."
        )
        assert status_writes(backend) == []

    @pytest.mark.asyncio
    async def test_other_owner_is_not_a_duplicate(self, backend, protocol):
        await create_business(backend, answers=corporate_answers(), owner_id="someone-else")
        filing, _ = await create_business(backend, answers=corporate_answers())

        assert isinstance(await protocol.submit(filing.id), SubmissionOk)

    @pytest.mark.asyncio
    async def test_other_year_is_not_a_duplicate(self, backend, protocol):
        await create_business(backend, answers=corporate_answers(), tax_year=2024)
        filing, _ = await create_business(backend, answers=corporate_answers())

        assert isinstance(await protocol.submit(filing.id), SubmissionOk)

    @pytest.mark.asyncio
    async def test_unknown_year_counts_as_same_year(self, backend, protocol):
        await create_business(backend, answers=corporate_answers(), tax_year=None)
        filing, _ = await create_business(backend, answers=corporate_answers())

        result = await protocol.submit(filing.id)
        assert isinstance(result, SubmissionRejected)
        assert isinstance(result.error, ConflictError)

    @pytest.mark.asyncio
    async def test_trust_account_numbers(self, backend, protocol):
        await create_business(
            backend, kind=FilingKind.TRUST,
            answers=trust_answers(**{"trustInfo.accountNumber": "T12345678"}),
        )
        filing, _ = await create_business(
            backend, kind=FilingKind.TRUST,
            answers=trust_answers(**{"trustInfo.accountNumber": "t 12345678"}),
        )

        result = await protocol.submit(filing.id)
        assert isinstance(result.error, ConflictError)
        assert "Trust Account Number" in result.reason

    @pytest.mark.asyncio
    async def test_completeness_is_checked_before_duplicates(self, backend, protocol):
        await create_business(backend, answers=corporate_answers())
        answers = corporate_answers()
        del answers["corpInfo.legalName"]
        filing, _ = await create_business(backend, answers=answers)

        result = await protocol.submit(filing.id)
        assert isinstance(result.error, GateError)
        assert "Name is required" in result.reason


class TestPartialFailure:
    """Every commit step is idempotent, so a failed submission can be re-run."""

    @pytest.mark.asyncio
    async def test_retry_after_parent_update_failed(self, registry, settings):
        backend = FlakyBackend()
        protocol = SubmissionProtocol(backend, registry, PricingCalculator(settings.pricing), reference_prefix="JJ")
        filing, primary = await create_individual(backend, primary=primary_answers())
        backend.fail("save_filing")

        first = await protocol.submit(filing.id)

        assert isinstance(first, SubmissionRetryable)
        assert first.retryable
        assert first.operation == "save_filing"
        # children were committed, the parent was not
        assert (await backend.get_person_record(primary.id)).status == RecordStatus.COMPLETED
        assert (await backend.get_filing(filing.id)).status == FilingStatus.DRAFT

        second = await protocol.submit(filing.id)
        assert isinstance(second, SubmissionOk)
        assert (await backend.get_filing(filing.id)).status == FilingStatus.UNDER_REVIEW

    @pytest.mark.asyncio
    async def test_failure_while_marking_children(self, registry, settings):
        backend = FlakyBackend()
        protocol = SubmissionProtocol(backend, registry, PricingCalculator(settings.pricing), reference_prefix="JJ")
        filing, _ = await create_individual(backend, primary=primary_answers())
        backend.fail("set_record_status")

        result = await protocol.submit(filing.id)
        assert isinstance(result, SubmissionRetryable)
        assert result.to_dict()["result"] == "retryable"
        assert isinstance(await protocol.submit(filing.id), SubmissionOk)

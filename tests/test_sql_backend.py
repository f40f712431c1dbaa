"""Tests for the SQLAlchemy filing backend on in-memory SQLite."""

from decimal import Decimal
from uuid import uuid4

import pytest

from factories import corporate_answers, create_business, create_individual, primary_answers
from filing_portal.config.settings import DatabaseSettings
from filing_portal.domain.aggregates import (
    FilingKind,
    FilingStatus,
    RecordRole,
    RecordStatus,
    WizardProgress,
)
from filing_portal.domain.exceptions import RecordNotFoundError
from filing_portal.persistence.engine import create_engine, get_session_factory, init_database
from filing_portal.persistence.locks import FilingLockRegistry
from filing_portal.persistence.record_service import FilingRecordService
from filing_portal.persistence.sql_backend import SqlFilingBackend
from filing_portal.pricing.calculator import PricingCalculator
from filing_portal.submission import SubmissionOk, SubmissionProtocol


async def make_backend():
    engine = create_engine(DatabaseSettings(url="sqlite+aiosqlite:///:memory:"))
    await init_database(engine)
    return engine, SqlFilingBackend(get_session_factory(engine))


class TestFilings:

    @pytest.mark.asyncio
    async def test_save_and_get(self):
        engine, backend = await make_backend()
        try:
            filing, _ = await create_individual(backend, jurisdiction="AB")

            stored = await backend.get_filing(filing.id)
            assert stored.id == filing.id
            assert stored.owner_id == "user-1"
            assert stored.tax_year == 2025
            assert stored.kind == FilingKind.INDIVIDUAL
            assert stored.status == FilingStatus.DRAFT
            assert stored.jurisdiction == "AB"
            assert stored.paid_amount == Decimal("0")
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_update_keeps_one_row(self):
        engine, backend = await make_backend()
        try:
            filing, _ = await create_individual(backend)
            updated = filing.model_copy(update={
                "status": FilingStatus.UNDER_REVIEW,
                "reference_number": "JJ-AB12CD34",
                "total_price": Decimal("169.49"),
            })
            await backend.save_filing(updated)

            stored = await backend.get_filing(filing.id)
            assert stored.status == FilingStatus.UNDER_REVIEW
            assert stored.reference_number == "JJ-AB12CD34"
            assert stored.total_price == Decimal("169.49")
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_missing_filing(self):
        engine, backend = await make_backend()
        try:
            assert await backend.get_filing(uuid4()) is None
        finally:
            await engine.dispose()


class TestRecords:

    @pytest.mark.asyncio
    async def test_person_records_in_creation_order(self):
        engine, backend = await make_backend()
        try:
            filing, primary = await create_individual(backend, primary=primary_answers())
            service = FilingRecordService(backend, locks=FilingLockRegistry())
            spouse = await service.add_person(filing.id, RecordRole.SPOUSE)
            kid = await service.add_person(filing.id, RecordRole.DEPENDENT)

            records = await backend.list_person_records(filing.id)
            assert [r.id for r in records] == [primary.id, spouse.id, kid.id]
            assert records[0].answers == primary_answers()
            assert records[2].ordinal == 0
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_update_answers_merges_and_deletes(self):
        engine, backend = await make_backend()
        try:
            _, record = await create_individual(backend, primary={"a": 1, "b": [1, 2]})

            await backend.update_answers(record.id, {"a": None, "c": {"nested": True}})

            stored = await backend.get_person_record(record.id)
            assert stored.answers == {"b": [1, 2], "c": {"nested": True}}
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_set_status_on_person_and_business(self):
        engine, backend = await make_backend()
        try:
            _, person = await create_individual(backend, primary={})
            _, business = await create_business(backend, answers=corporate_answers())

            await backend.set_record_status(person.id, RecordStatus.COMPLETED)
            await backend.set_record_status(business.id, RecordStatus.FLAGGED)

            assert (await backend.get_person_record(person.id)).status == RecordStatus.COMPLETED
            assert (await backend.get_business_record(business.id)).status == RecordStatus.FLAGGED
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_unknown_record(self):
        engine, backend = await make_backend()
        try:
            with pytest.raises(RecordNotFoundError):
                await backend.update_answers(uuid4(), {"a": 1})
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_find_business_records(self):
        engine, backend = await make_backend()
        try:
            await create_business(backend, answers=corporate_answers())
            await create_business(backend, answers=corporate_answers())
            await create_business(backend, answers=corporate_answers(), owner_id="someone-else")
            await create_business(backend, kind=FilingKind.TRUST, answers={})

            found = await backend.find_business_records(FilingKind.CORPORATE, "user-1")
            assert len(found) == 2
            assert all(r.kind == FilingKind.CORPORATE for r in found)
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_record_for_filing(self):
        engine, backend = await make_backend()
        try:
            filing, record = await create_business(backend, answers=corporate_answers())
            found = await backend.get_business_record_for_filing(filing.id)
            assert found.id == record.id
            assert found.answers == corporate_answers()
        finally:
            await engine.dispose()


class TestProgress:

    @pytest.mark.asyncio
    async def test_progress_round_trips_through_the_filing(self):
        engine, backend = await make_backend()
        try:
            filing, primary = await create_individual(backend, primary={})
            progress = WizardProgress(phase="PRIMARY_ACTIVE", section_index=2, record_id=primary.id)

            await backend.save_progress(filing.id, progress)

            stored = (await backend.get_filing(filing.id)).wizard_progress
            assert stored.phase == "PRIMARY_ACTIVE"
            assert stored.section_index == 2
            assert stored.record_id == primary.id
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_progress_for_missing_filing(self):
        engine, backend = await make_backend()
        try:
            with pytest.raises(RecordNotFoundError):
                await backend.save_progress(uuid4(), WizardProgress(phase="REVIEW"))
        finally:
            await engine.dispose()


class TestSubmission:

    @pytest.mark.asyncio
    async def test_submit_against_sql(self, registry, settings):
        engine, backend = await make_backend()
        try:
            filing, primary = await create_individual(backend, primary=primary_answers())
            protocol = SubmissionProtocol(backend, registry, PricingCalculator(settings.pricing))

            result = await protocol.submit(filing.id)

            assert isinstance(result, SubmissionOk)
            stored = await backend.get_filing(filing.id)
            assert stored.status == FilingStatus.UNDER_REVIEW
            assert stored.total_price == Decimal("169.49")
            assert (await backend.get_person_record(primary.id)).status == RecordStatus.COMPLETED
        finally:
            await engine.dispose()

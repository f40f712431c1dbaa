"""Async SQL filing backend.

Implements IFilingBackend and IProgressStore with SQLAlchemy async
sessions. Each call runs in its own session and commits on success.
Database failures surface as TransportError.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from filing_portal.domain.aggregates import (
    BusinessRecord,
    Filing,
    FilingKind,
    FilingStatus,
    PersonRecord,
    RecordRole,
    RecordStatus,
    WizardProgress,
)
from filing_portal.domain.exceptions import RecordNotFoundError, TransportError
from filing_portal.domain.repositories import IFilingBackend, IProgressStore

from .models import BusinessRecordRow, FilingRow, PersonRecordRow

logger = logging.getLogger(__name__)


# =============================================================================
# ROW <-> MODEL MAPPING
# =============================================================================

def _filing_from_row(row: FilingRow) -> Filing:
    progress = WizardProgress.model_validate(row.wizard_progress) if row.wizard_progress else None
    return Filing(
        id=UUID(row.id),
        owner_id=row.owner_id,
        tax_year=row.tax_year,
        kind=FilingKind(row.kind),
        status=FilingStatus(row.status),
        reference_number=row.reference_number,
        total_price=row.total_price,
        paid_amount=row.paid_amount,
        jurisdiction=row.jurisdiction,
        wizard_progress=progress,
        submitted_at=row.submitted_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply_filing(row: FilingRow, filing: Filing) -> None:
    row.owner_id = filing.owner_id
    row.tax_year = filing.tax_year
    row.kind = filing.kind.value
    row.status = filing.status.value
    row.reference_number = filing.reference_number
    row.total_price = filing.total_price
    row.paid_amount = filing.paid_amount
    row.jurisdiction = filing.jurisdiction
    row.wizard_progress = filing.wizard_progress.model_dump(mode="json") if filing.wizard_progress else None
    row.submitted_at = filing.submitted_at
    row.created_at = filing.created_at
    row.updated_at = datetime.utcnow()


def _person_from_row(row: PersonRecordRow) -> PersonRecord:
    return PersonRecord(
        id=UUID(row.id),
        filing_id=UUID(row.filing_id),
        role=RecordRole(row.role),
        ordinal=row.ordinal,
        answers=dict(row.answers or {}),
        status=RecordStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _business_from_row(row: BusinessRecordRow) -> BusinessRecord:
    return BusinessRecord(
        id=UUID(row.id),
        filing_id=UUID(row.filing_id),
        owner_id=row.owner_id,
        kind=FilingKind(row.kind),
        answers=dict(row.answers or {}),
        status=RecordStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlFilingBackend(IFilingBackend, IProgressStore):
    """
    SQLAlchemy implementation of the storage contracts.

    Usage:
        engine = create_engine(settings.database)
        await init_database(engine)
        backend = SqlFilingBackend(get_session_factory(engine))
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error during {operation}: {e}")
            raise TransportError(f"Database error during {operation}", operation=operation) from e
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # -------------------------------------------------------------------------
    # Filings
    # -------------------------------------------------------------------------

    async def get_filing(self, filing_id: UUID) -> Optional[Filing]:
        async with self._session("get_filing") as session:
            row = await session.get(FilingRow, str(filing_id))
            return _filing_from_row(row) if row else None

    async def save_filing(self, filing: Filing) -> Filing:
        async with self._session("save_filing") as session:
            row = await session.get(FilingRow, str(filing.id))
            if row is None:
                row = FilingRow(id=str(filing.id))
                session.add(row)
            _apply_filing(row, filing)
            await session.flush()
            return _filing_from_row(row)

    # -------------------------------------------------------------------------
    # Person records
    # -------------------------------------------------------------------------

    async def list_person_records(self, filing_id: UUID) -> List[PersonRecord]:
        async with self._session("list_person_records") as session:
            result = await session.execute(
                select(PersonRecordRow)
                .where(PersonRecordRow.filing_id == str(filing_id))
                .order_by(PersonRecordRow.created_at)
            )
            return [_person_from_row(row) for row in result.scalars().all()]

    async def get_person_record(self, record_id: UUID) -> Optional[PersonRecord]:
        async with self._session("get_person_record") as session:
            row = await session.get(PersonRecordRow, str(record_id))
            return _person_from_row(row) if row else None

    async def save_person_record(self, record: PersonRecord) -> PersonRecord:
        async with self._session("save_person_record") as session:
            row = await session.get(PersonRecordRow, str(record.id))
            if row is None:
                row = PersonRecordRow(id=str(record.id), filing_id=str(record.filing_id), created_at=record.created_at)
                session.add(row)
            row.role = record.role.value
            row.ordinal = record.ordinal
            row.answers = dict(record.answers)
            row.status = record.status.value
            row.updated_at = datetime.utcnow()
            await session.flush()
            return _person_from_row(row)

    # -------------------------------------------------------------------------
    # Business records
    # -------------------------------------------------------------------------

    async def get_business_record(self, record_id: UUID) -> Optional[BusinessRecord]:
        async with self._session("get_business_record") as session:
            row = await session.get(BusinessRecordRow, str(record_id))
            return _business_from_row(row) if row else None

    async def get_business_record_for_filing(self, filing_id: UUID) -> Optional[BusinessRecord]:
        async with self._session("get_business_record_for_filing") as session:
            result = await session.execute(
                select(BusinessRecordRow).where(BusinessRecordRow.filing_id == str(filing_id))
            )
            row = result.scalars().first()
            return _business_from_row(row) if row else None

    async def save_business_record(self, record: BusinessRecord) -> BusinessRecord:
        async with self._session("save_business_record") as session:
            row = await session.get(BusinessRecordRow, str(record.id))
            if row is None:
                row = BusinessRecordRow(id=str(record.id), filing_id=str(record.filing_id), created_at=record.created_at)
                session.add(row)
            row.owner_id = record.owner_id
            row.kind = record.kind.value
            row.answers = dict(record.answers)
            row.status = record.status.value
            row.updated_at = datetime.utcnow()
            await session.flush()
            return _business_from_row(row)

    async def find_business_records(self, kind: FilingKind, owner_id: str) -> List[BusinessRecord]:
        async with self._session("find_business_records") as session:
            result = await session.execute(
                select(BusinessRecordRow).where(
                    BusinessRecordRow.kind == FilingKind(kind).value,
                    BusinessRecordRow.owner_id == owner_id,
                )
            )
            return [_business_from_row(row) for row in result.scalars().all()]

    # -------------------------------------------------------------------------
    # Shared record operations
    # -------------------------------------------------------------------------

    async def _get_record_row(self, session: AsyncSession, record_id: UUID):
        row = await session.get(PersonRecordRow, str(record_id))
        if row is None:
            row = await session.get(BusinessRecordRow, str(record_id))
        if row is None:
            raise RecordNotFoundError(f"Record {record_id} not found")
        return row

    async def update_answers(self, record_id: UUID, answers: Dict[str, Any]) -> None:
        async with self._session("update_answers") as session:
            row = await self._get_record_row(session, record_id)
            merged = dict(row.answers or {})
            for key, value in answers.items():
                if value is None:
                    merged.pop(key, None)
                else:
                    merged[key] = value
            # new object so the JSON column is seen as changed
            row.answers = merged
            row.updated_at = datetime.utcnow()

    async def set_record_status(self, record_id: UUID, status: RecordStatus) -> None:
        async with self._session("set_record_status") as session:
            row = await self._get_record_row(session, record_id)
            row.status = RecordStatus(status).value
            row.updated_at = datetime.utcnow()

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    async def save_progress(self, filing_id: UUID, progress: WizardProgress) -> None:
        async with self._session("save_progress") as session:
            row = await session.get(FilingRow, str(filing_id))
            if row is None:
                raise RecordNotFoundError(f"Filing {filing_id} not found")
            row.wizard_progress = progress.model_dump(mode="json")

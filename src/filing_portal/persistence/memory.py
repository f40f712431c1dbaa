"""In-memory filing backend.

Keeps deep copies of every stored model so callers never share mutable
state with the store. Used by tests and local development.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from filing_portal.domain.aggregates import (
    BusinessRecord,
    Filing,
    FilingKind,
    PersonRecord,
    RecordStatus,
    WizardProgress,
)
from filing_portal.domain.exceptions import RecordNotFoundError
from filing_portal.domain.repositories import IFilingBackend, IProgressStore

logger = logging.getLogger(__name__)


class InMemoryFilingBackend(IFilingBackend, IProgressStore):
    """
    Dictionary backed implementation of the storage contracts.

    Args:
        latency: Seconds every operation waits before running. Zero still
            yields to the event loop once, like a real round trip.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._filings: Dict[UUID, Filing] = {}
        self._persons: Dict[UUID, PersonRecord] = {}
        self._businesses: Dict[UUID, BusinessRecord] = {}
        self.writes: List[str] = []

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    # -------------------------------------------------------------------------
    # Filings
    # -------------------------------------------------------------------------

    async def get_filing(self, filing_id: UUID) -> Optional[Filing]:
        await self._round_trip()
        filing = self._filings.get(filing_id)
        return filing.model_copy(deep=True) if filing else None

    async def save_filing(self, filing: Filing) -> Filing:
        await self._round_trip()
        stored = filing.model_copy(deep=True)
        stored.touch()
        self._filings[stored.id] = stored
        self.writes.append(f"filing:{stored.id}")
        return stored.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Person records
    # -------------------------------------------------------------------------

    async def list_person_records(self, filing_id: UUID) -> List[PersonRecord]:
        await self._round_trip()
        records = [r for r in self._persons.values() if r.filing_id == filing_id]
        records.sort(key=lambda r: r.created_at)
        return [r.model_copy(deep=True) for r in records]

    async def get_person_record(self, record_id: UUID) -> Optional[PersonRecord]:
        await self._round_trip()
        record = self._persons.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def save_person_record(self, record: PersonRecord) -> PersonRecord:
        await self._round_trip()
        stored = record.model_copy(deep=True)
        self._persons[stored.id] = stored
        self.writes.append(f"person:{stored.id}")
        return stored.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Business records
    # -------------------------------------------------------------------------

    async def get_business_record(self, record_id: UUID) -> Optional[BusinessRecord]:
        await self._round_trip()
        record = self._businesses.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def get_business_record_for_filing(self, filing_id: UUID) -> Optional[BusinessRecord]:
        await self._round_trip()
        for record in self._businesses.values():
            if record.filing_id == filing_id:
                return record.model_copy(deep=True)
        return None

    async def save_business_record(self, record: BusinessRecord) -> BusinessRecord:
        await self._round_trip()
        stored = record.model_copy(deep=True)
        self._businesses[stored.id] = stored
        self.writes.append(f"business:{stored.id}")
        return stored.model_copy(deep=True)

    async def find_business_records(self, kind: FilingKind, owner_id: str) -> List[BusinessRecord]:
        await self._round_trip()
        return [
            r.model_copy(deep=True)
            for r in self._businesses.values()
            if r.kind == kind and r.owner_id == owner_id
        ]

    # -------------------------------------------------------------------------
    # Shared record operations
    # -------------------------------------------------------------------------

    def _find_record(self, record_id: UUID):
        record = self._persons.get(record_id) or self._businesses.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Record {record_id} not found")
        return record

    async def update_answers(self, record_id: UUID, answers: Dict[str, Any]) -> None:
        await self._round_trip()
        record = self._find_record(record_id)
        for key, value in answers.items():
            if value is None:
                record.answers.pop(key, None)
            else:
                record.answers[key] = value
        record.updated_at = datetime.utcnow()
        self.writes.append(f"answers:{record_id}")

    async def set_record_status(self, record_id: UUID, status: RecordStatus) -> None:
        await self._round_trip()
        record = self._find_record(record_id)
        record.status = status
        record.updated_at = datetime.utcnow()
        self.writes.append(f"status:{record_id}:{status.value}")

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    async def save_progress(self, filing_id: UUID, progress: WizardProgress) -> None:
        await self._round_trip()
        filing = self._filings.get(filing_id)
        if filing is None:
            raise RecordNotFoundError(f"Filing {filing_id} not found")
        filing.wizard_progress = progress.model_copy()
        self.writes.append(f"progress:{filing_id}")

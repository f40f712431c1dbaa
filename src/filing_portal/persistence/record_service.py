"""Serialized creation of child records.

Adding a person or the business record of a filing goes through the
filing's lock, held across the whole backend round trip. Concurrent
"add primary" requests therefore end with exactly one primary record.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID

from filing_portal.domain.aggregates import (
    BusinessRecord,
    Filing,
    PersonRecord,
    RecordRole,
)
from filing_portal.domain.exceptions import TransitionError
from filing_portal.domain.repositories import IFilingBackend

from .locks import FilingLockRegistry, get_lock_registry

logger = logging.getLogger(__name__)


def dependent_prefill(dependent: Mapping[str, Any]) -> Dict[str, Any]:
    """Answers copied from a dependants-list item into the new dependent record."""
    answers: Dict[str, Any] = {}
    parts = str(dependent.get("fullName") or "").split()
    if parts:
        answers["personalInfo.firstName"] = parts[0]
        if len(parts) > 1:
            answers["personalInfo.lastName"] = " ".join(parts[1:])
    if dependent.get("dateOfBirth"):
        answers["personalInfo.dateOfBirth"] = dependent["dateOfBirth"]
    return answers


def _identity(answers: Mapping[str, Any]) -> Tuple[str, str]:
    name = " ".join(
        str(answers.get(key) or "") for key in ("personalInfo.firstName", "personalInfo.lastName")
    )
    return " ".join(name.split()).casefold(), str(answers.get("personalInfo.dateOfBirth") or "")


def _same_person(wanted: Tuple[str, str], existing: Tuple[str, str]) -> bool:
    return wanted == existing


def _same_name(wanted: Tuple[str, str], existing: Tuple[str, str]) -> bool:
    return bool(wanted[0]) and wanted[0] == existing[0]


def _same_birth_date(wanted: Tuple[str, str], existing: Tuple[str, str]) -> bool:
    return bool(wanted[1]) and wanted[1] == existing[1]


def unmatched_dependents(
    items: Sequence[Mapping[str, Any]],
    existing: Sequence[Mapping[str, Any]],
) -> List[Mapping[str, Any]]:
    """
    Dependants-list items that have no dependent record yet.

    Items are paired with the answers of existing dependent records on name
    and date of birth, then on name alone, then on date of birth alone. Each
    record pairs with at most one item.

    Args:
        items: Dependants-list items
        existing: Answers of the dependent records already created

    Returns:
        Unpaired items, in list order
    """
    wanted = [_identity(dependent_prefill(item)) for item in items]
    available: List[Optional[Tuple[str, str]]] = [_identity(answers) for answers in existing]
    paired = set()

    for matches in (_same_person, _same_name, _same_birth_date):
        for i, identity in enumerate(wanted):
            if i in paired:
                continue
            for j, other in enumerate(available):
                if other is not None and matches(identity, other):
                    paired.add(i)
                    available[j] = None
                    break

    return [item for i, item in enumerate(items) if i not in paired]


class FilingRecordService:
    """
    Creates person and business records one at a time per filing.

    Usage:
        service = FilingRecordService(backend)
        primary = await service.add_person(filing_id, RecordRole.PRIMARY)
    """

    def __init__(self, backend: IFilingBackend, locks: Optional[FilingLockRegistry] = None):
        self.backend = backend
        self.locks = locks or get_lock_registry()

    async def add_person(
        self,
        filing_id: UUID,
        role: RecordRole,
        answers: Optional[Mapping[str, Any]] = None,
    ) -> PersonRecord:
        """
        Add a person to a filing.

        Primary and spouse are singletons: asking for one that already
        exists returns the existing record instead of creating another.

        Args:
            filing_id: Owning filing
            role: primary, spouse or dependent
            answers: Initial answers

        Returns:
            The new or existing person record
        """
        if not role.is_person:
            raise TransitionError(f"{role.value} is not a person role")

        async with self.locks.hold(filing_id):
            existing = await self.backend.list_person_records(filing_id)

            if role in (RecordRole.PRIMARY, RecordRole.SPOUSE):
                for record in existing:
                    if record.role == role:
                        logger.warning(f"{role.value.title()} record already exists for filing {filing_id}, returning it")
                        return record

            ordinal = None
            if role == RecordRole.DEPENDENT:
                ordinal = sum(1 for r in existing if r.role == RecordRole.DEPENDENT)

            record = PersonRecord(
                filing_id=filing_id,
                role=role,
                ordinal=ordinal,
                answers=dict(answers or {}),
            )
            saved = await self.backend.save_person_record(record)
            logger.info(f"Created {role.value} record {saved.id} for filing {filing_id}")
            return saved

    async def add_dependents(
        self,
        filing_id: UUID,
        dependents: Sequence[Mapping[str, Any]],
    ) -> List[PersonRecord]:
        """Create one dependent record per list item, in list order."""
        created = []
        for dependent in dependents:
            created.append(await self.add_person(filing_id, RecordRole.DEPENDENT, dependent_prefill(dependent)))
        return created

    async def ensure_business_record(self, filing: Filing) -> BusinessRecord:
        """Get the business record of a CORPORATE/TRUST filing, creating it once."""
        if not filing.kind.is_business:
            raise TransitionError(f"{filing.kind.value} filings have no business record")

        async with self.locks.hold(filing.id):
            record = await self.backend.get_business_record_for_filing(filing.id)
            if record is not None:
                return record
            record = BusinessRecord(filing_id=filing.id, owner_id=filing.owner_id, kind=filing.kind)
            saved = await self.backend.save_business_record(record)
            logger.info(f"Created {filing.kind.value.lower()} record {saved.id} for filing {filing.id}")
            return saved

"""
Wizard Context

Read-only facts the reducer decides on: the filing's kind and status, its
schema, and a snapshot of every child record with unflushed answers already
merged in. Built by the orchestrator after each backend round trip.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID

from filing_portal.config.settings import WizardSettings
from filing_portal.domain.aggregates import (
    BusinessRecord,
    Filing,
    FilingKind,
    FilingStatus,
    PersonRecord,
    RecordRole,
    WizardProgress,
)
from filing_portal.persistence.record_service import unmatched_dependents
from filing_portal.schema.models import Schema

_INCOME_YES = ("YES", "yes", "true", True)


@dataclass(frozen=True)
class RecordSnapshot:
    """A child record as the wizard sees it."""
    id: UUID
    role: RecordRole
    answers: Mapping[str, Any]
    ordinal: Optional[int] = None
    complete: bool = False
    label: str = ""


@dataclass(frozen=True)
class WizardContext:
    kind: FilingKind
    schema: Schema
    records: Tuple[RecordSnapshot, ...] = ()
    filing_status: FilingStatus = FilingStatus.DRAFT
    reference_number: Optional[str] = None
    progress: Optional[WizardProgress] = None
    eligible_marital_statuses: Tuple[str, ...] = ("MARRIED", "COMMON_LAW")
    marital_status_key: str = "maritalStatus.status"
    dependents_list_key: str = "dependants.list"

    @classmethod
    def build(
        cls,
        filing: Filing,
        schema: Schema,
        persons: Sequence[PersonRecord] = (),
        business: Optional[BusinessRecord] = None,
        settings: Optional[WizardSettings] = None,
        pending: Optional[Callable[[UUID], Dict[str, Any]]] = None,
    ) -> "WizardContext":
        """
        Snapshot a filing for the reducer.

        Args:
            filing: The filing being edited
            schema: Its schema
            persons: Person records (INDIVIDUAL)
            business: Business record (CORPORATE/TRUST)
            settings: Wizard settings; defaults are used when omitted
            pending: Returns staged, not yet written answers of a record
        """
        settings = settings or WizardSettings()
        records: List[RecordSnapshot] = []
        for record in ([business] if business is not None else list(persons)):
            answers = dict(record.answers)
            if pending is not None:
                for key, value in pending(record.id).items():
                    if value is None:
                        answers.pop(key, None)
                    else:
                        answers[key] = value
            records.append(RecordSnapshot(
                id=record.id,
                role=record.role,
                answers=answers,
                ordinal=getattr(record, "ordinal", None),
                complete=record.is_complete,
                label=record.display_name,
            ))

        return cls(
            kind=filing.kind,
            schema=schema,
            records=tuple(records),
            filing_status=filing.status,
            reference_number=filing.reference_number,
            progress=filing.wizard_progress,
            eligible_marital_statuses=tuple(settings.eligible_marital_statuses),
            marital_status_key=settings.marital_status_key,
            dependents_list_key=settings.dependents_list_key,
        )

    @property
    def is_reopened(self) -> bool:
        """Submitted before and sent back for amendment."""
        return bool(self.reference_number) and self.filing_status == FilingStatus.IN_PROGRESS

    def record(self, record_id: Optional[UUID]) -> Optional[RecordSnapshot]:
        for record in self.records:
            if record.id == record_id:
                return record
        return None

    def first_record(self, role: RecordRole) -> Optional[RecordSnapshot]:
        for record in self.records:
            if record.role == role:
                return record
        return None

    def dependents(self) -> List[RecordSnapshot]:
        """Dependent records in creation order."""
        found = [r for r in self.records if r.role == RecordRole.DEPENDENT]
        return sorted(found, key=lambda r: r.ordinal if r.ordinal is not None else 0)

    @property
    def primary_answers(self) -> Mapping[str, Any]:
        primary = self.first_record(RecordRole.PRIMARY)
        return primary.answers if primary else {}

    def marital_status(self) -> Any:
        return self.primary_answers.get(self.marital_status_key)

    def declared_dependents(self) -> List[Mapping[str, Any]]:
        """Items of the primary filer's dependants list."""
        items = self.primary_answers.get(self.dependents_list_key)
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    def income_earners(self) -> List[Mapping[str, Any]]:
        """Declared dependents flagged as earning income."""
        return [item for item in self.declared_dependents() if item.get("earnsIncome") in _INCOME_YES]

    def earners_without_record(self) -> List[Mapping[str, Any]]:
        """Income earners that no dependent record stands for yet, in list order."""
        return unmatched_dependents(self.income_earners(), [record.answers for record in self.dependents()])

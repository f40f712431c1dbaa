"""Submission protocol.

Moves a filing from DRAFT/IN_PROGRESS to UNDER_REVIEW. Preconditions are
checked in order and before any write:

1. completeness gate (every person, or the business record)
2. duplicate-identity gate (CORPORATE/TRUST only)

Only then the commit runs, in this order:

a. mark every child record COMPLETED
b. reuse the reference number or generate one
c. update the parent filing (status, reference, paid amount, timestamp)

Each commit step writes terminal values, so re-running the whole sequence
after a partial failure is safe.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from filing_portal.config.settings import get_settings
from filing_portal.domain.aggregates import (
    BusinessRecord,
    Filing,
    FilingKind,
    FilingStatus,
    PersonRecord,
    RecordStatus,
)
from filing_portal.domain.exceptions import (
    ConflictError,
    GateError,
    RecordNotFoundError,
    SchemaError,
    TransportError,
)
from filing_portal.domain.repositories import IFilingBackend
from filing_portal.logging_config import get_logger
from filing_portal.pricing.calculator import PricingCalculator, ordered_persons
from filing_portal.schema.models import Schema
from filing_portal.schema.registry import SchemaRegistry
from filing_portal.validation.validator import summarize_missing, validate_all_sections_for_role

from .reference import generate_reference_number, normalize_identity_key
from .results import (
    SubmissionFatal,
    SubmissionOk,
    SubmissionRejected,
    SubmissionResult,
    SubmissionRetryable,
)

logger = get_logger(__name__, component="submission")

_KIND_WORDING = {
    FilingKind.CORPORATE: ("corporate filing", "Business Number"),
    FilingKind.TRUST: ("trust filing", "Trust Account Number"),
}


def duplicate_message(
    kind: FilingKind,
    candidate: BusinessRecord,
    candidate_filing: Optional[Filing],
) -> str:
    """User facing message for a duplicate, worded by the existing record's status."""
    noun, key_label = _KIND_WORDING[kind]
    name = f' for "{candidate.display_name}"' if candidate.display_name else ""
    year = f"{candidate_filing.tax_year} " if candidate_filing and candidate_filing.tax_year else ""
    status = candidate_filing.status if candidate_filing else None

    if candidate.status == RecordStatus.FLAGGED:
        return (
            f"A {year}{noun} with this {key_label}{name} has been flagged for review. "
            f"Please contact support before filing again."
        )
    if status in (FilingStatus.DRAFT, FilingStatus.IN_PROGRESS):
        return (
            f"A {year}{noun} with this {key_label}{name} is already in progress. "
            f"Please continue the existing filing instead."
        )
    if status == FilingStatus.UNDER_REVIEW:
        return (
            f"A {year}{noun} with this {key_label}{name} is already under review. "
            f"You cannot submit another one until it is processed."
        )
    if status in (FilingStatus.COMPLETED, FilingStatus.APPROVED):
        return f"A {year}{noun} with this {key_label}{name} has already been completed."
    return f"A {noun} with this {key_label} already exists. Please use a unique {key_label} or edit the existing filing."


class SubmissionProtocol:
    """
    Runs the submission of one filing.

    Usage:
        protocol = SubmissionProtocol(backend, registry)
        result = await protocol.submit(filing_id)
        if result.retryable:
            ...
    """

    def __init__(
        self,
        backend: IFilingBackend,
        registry: SchemaRegistry,
        pricing: Optional[PricingCalculator] = None,
        reference_prefix: Optional[str] = None,
    ):
        self.backend = backend
        self.registry = registry
        self.pricing = pricing or PricingCalculator()
        self.reference_prefix = reference_prefix or get_settings().wizard.reference_prefix

    async def submit(self, filing_id) -> SubmissionResult:
        """
        Submit a filing for review.

        Args:
            filing_id: Filing to submit

        Returns:
            SubmissionOk, SubmissionRejected (gate or conflict, nothing
            written), SubmissionRetryable (backend failure) or
            SubmissionFatal
        """
        try:
            filing = await self.backend.get_filing(filing_id)
            if filing is None:
                return SubmissionFatal(f"Filing {filing_id} not found")
            if not filing.status.is_resumable:
                return SubmissionFatal(
                    f"Filing is {filing.status.value} and cannot be submitted"
                )

            try:
                schema = self.registry.get_schema(filing.tax_year, filing.kind)
            except SchemaError as e:
                logger.error(f"No usable schema for filing {filing.id}: {e}")
                return SubmissionFatal(str(e))

            if filing.kind.is_business:
                return await self._submit_business(filing, schema)
            return await self._submit_individual(filing, schema)

        except TransportError as e:
            logger.warning(f"Submission of filing {filing_id} failed in transport: {e.message}")
            return SubmissionRetryable(e.message, operation=e.operation)
        except RecordNotFoundError as e:
            logger.error(f"Submission of filing {filing_id} lost a record: {e.message}")
            return SubmissionFatal(e.message)

    # -------------------------------------------------------------------------
    # INDIVIDUAL
    # -------------------------------------------------------------------------

    async def _submit_individual(self, filing: Filing, schema: Schema) -> SubmissionResult:
        persons = await self.backend.list_person_records(filing.id)

        gate = self.check_persons_complete(schema, persons)
        if gate is not None:
            logger.info(f"Filing {filing.id} blocked by completeness gate: {gate.message}")
            return SubmissionRejected(gate)

        return await self._commit(filing, schema, [p.id for p in persons], persons=persons)

    @staticmethod
    def check_persons_complete(schema: Schema, persons: Sequence[PersonRecord]) -> Optional[GateError]:
        """
        Validate every person independently and aggregate all failures.

        Returns:
            GateError summarising every incomplete person, or None
        """
        if not persons:
            return GateError("Please add the primary filer's information before submitting.")

        failures: List[Tuple[PersonRecord, object]] = []
        for person in ordered_persons(persons):
            result = validate_all_sections_for_role(schema, person.role.value, person.answers)
            if not result.valid:
                failures.append((person, result))

        if not failures:
            return None

        parts = []
        missing_sections = []
        total = 0
        for person, result in failures:
            parts.append(f"{person.display_name}: {summarize_missing(result.missing_sections, result.total_missing_fields)}")
            total += result.total_missing_fields
            for section in result.missing_sections:
                missing_sections.append({
                    "record_id": str(person.id),
                    "role": person.role.value,
                    "person": person.display_name,
                    **section.to_dict(),
                })

        return GateError(
            "Please complete all required fields before submitting. " + "; ".join(parts),
            missing_sections=missing_sections,
            total_missing_fields=total,
        )

    # -------------------------------------------------------------------------
    # CORPORATE / TRUST
    # -------------------------------------------------------------------------

    async def _submit_business(self, filing: Filing, schema: Schema) -> SubmissionResult:
        record = await self.backend.get_business_record_for_filing(filing.id)
        if record is None:
            return SubmissionFatal(f"Filing {filing.id} has no {filing.kind.value.lower()} record")

        gate = self.check_business_complete(schema, record)
        if gate is not None:
            logger.info(f"Filing {filing.id} blocked by completeness gate: {gate.message}")
            return SubmissionRejected(gate)

        conflict = await self.check_duplicate_identity(filing, record)
        if conflict is not None:
            logger.info(f"Filing {filing.id} blocked by duplicate gate: {conflict.message}")
            return SubmissionRejected(conflict)

        return await self._commit(filing, schema, [record.id], business=record)

    @staticmethod
    def check_business_complete(schema: Schema, record: BusinessRecord) -> Optional[GateError]:
        """The business record must validate and carry an identifying key and a name."""
        result = validate_all_sections_for_role(schema, record.role.value, record.answers)
        _, key_label = _KIND_WORDING[record.kind]
        problems = []
        if not result.valid:
            problems.append(summarize_missing(result.missing_sections, result.total_missing_fields))
        if not normalize_identity_key(record.identity_key):
            problems.append(f"{key_label} is required")
        if not record.display_name.strip():
            problems.append("Name is required")

        if not problems:
            return None
        return GateError(
            "Please complete all required fields before submitting. " + "; ".join(problems),
            missing_sections=[m.to_dict() for m in result.missing_sections],
            total_missing_fields=result.total_missing_fields,
            first_section_index=result.first_missing_index,
        )

    async def check_duplicate_identity(self, filing: Filing, record: BusinessRecord) -> Optional[ConflictError]:
        """
        Look for a sibling business record with the same identifying key.

        Siblings are records of the same kind and owner, excluding this
        record. A sibling matches when its normalized key is equal and its
        tax year equals this filing's year or cannot be determined.
        Every sibling is examined before deciding.
        """
        key = normalize_identity_key(record.identity_key)
        siblings = await self.backend.find_business_records(filing.kind, filing.owner_id)

        matches: List[Tuple[BusinessRecord, Optional[Filing]]] = []
        for candidate in siblings:
            if candidate.id == record.id:
                continue
            if normalize_identity_key(candidate.identity_key) != key:
                continue
            candidate_filing = await self.backend.get_filing(candidate.filing_id)
            candidate_year = candidate_filing.tax_year if candidate_filing else None
            if filing.tax_year is None or candidate_year is None or candidate_year == filing.tax_year:
                matches.append((candidate, candidate_filing))

        if not matches:
            return None

        candidate, candidate_filing = matches[0]
        return ConflictError(
            duplicate_message(filing.kind, candidate, candidate_filing),
            conflicting_record_id=candidate.id,
            conflicting_status=(candidate_filing.status.value if candidate_filing else candidate.status.value),
        )

    # -------------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------------

    async def _commit(
        self,
        filing: Filing,
        schema: Schema,
        child_ids: Sequence,
        persons: Sequence[PersonRecord] = (),
        business: Optional[BusinessRecord] = None,
    ) -> SubmissionResult:
        # (a) children
        for child_id in child_ids:
            await self.backend.set_record_status(child_id, RecordStatus.COMPLETED)
        logger.info(f"Marked {len(child_ids)} record(s) complete for filing {filing.id}")

        # (b) reference number never changes once assigned
        reference = filing.reference_number or generate_reference_number(self.reference_prefix)

        # (c) parent
        breakdown = self.pricing.compute_total(filing, persons, schema, business)
        now = datetime.utcnow()
        updated = filing.model_copy(update={
            "status": FilingStatus.UNDER_REVIEW,
            "reference_number": reference,
            "total_price": breakdown.total,
            "paid_amount": breakdown.total,
            "submitted_at": now,
            "updated_at": now,
        })
        saved = await self.backend.save_filing(updated)
        logger.info(f"Filing {filing.id} submitted with reference {reference}")
        return SubmissionOk(saved)

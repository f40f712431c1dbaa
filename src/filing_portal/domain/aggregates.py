"""
Domain Aggregates for the filing portal.

A Filing is the aggregate root. It owns either a household of PersonRecords
(INDIVIDUAL filings) or exactly one BusinessRecord (CORPORATE and TRUST
filings). Status and reference number of a Filing are only changed by the
submission protocol.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


# =============================================================================
# ENUMERATIONS
# =============================================================================

class FilingKind(str, Enum):
    """What is being filed for."""
    INDIVIDUAL = "INDIVIDUAL"
    CORPORATE = "CORPORATE"
    TRUST = "TRUST"

    @property
    def root_role(self) -> "RecordRole":
        """Role the wizard starts with for this kind."""
        return _ROOT_ROLES[self]

    @property
    def is_business(self) -> bool:
        return self is not FilingKind.INDIVIDUAL


class FilingStatus(str, Enum):
    """Lifecycle status of a filing."""
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"

    @property
    def is_resumable(self) -> bool:
        """Whether the wizard may continue editing a filing in this status."""
        return self in (FilingStatus.DRAFT, FilingStatus.IN_PROGRESS)


class RecordRole(str, Enum):
    """Role of the answer set the wizard is currently editing."""
    PRIMARY = "primary"
    SPOUSE = "spouse"
    DEPENDENT = "dependent"
    CORPORATE = "corporate"
    TRUST = "trust"

    @property
    def is_person(self) -> bool:
        return self in (RecordRole.PRIMARY, RecordRole.SPOUSE, RecordRole.DEPENDENT)


class RecordStatus(str, Enum):
    """Status of a child record."""
    DRAFT = "DRAFT"
    COMPLETED = "COMPLETED"
    FLAGGED = "FLAGGED"
    VERIFIED = "VERIFIED"


_ROOT_ROLES = {
    FilingKind.INDIVIDUAL: RecordRole.PRIMARY,
    FilingKind.CORPORATE: RecordRole.CORPORATE,
    FilingKind.TRUST: RecordRole.TRUST,
}

# Answer keys holding the identifying key and display name of a business record
BUSINESS_IDENTITY_KEYS = {
    FilingKind.CORPORATE: ("corpInfo.businessNumber", "corpInfo.legalName"),
    FilingKind.TRUST: ("trustInfo.accountNumber", "trustInfo.name"),
}


# =============================================================================
# WIZARD PROGRESS
# =============================================================================

class WizardProgress(BaseModel):
    """
    Resumable pointer into the wizard, stored on the Filing.

    Written best-effort after every section move and on save-and-exit.
    """
    phase: str = Field(description="Wizard phase name")
    section_index: int = Field(default=0, ge=0)
    record_id: Optional[UUID] = Field(default=None, description="Active person or business record")
    dependent_index: int = Field(default=0, ge=0)
    saved_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        """Pydantic configuration."""
        json_encoders = {UUID: str, datetime: lambda v: v.isoformat()}


# =============================================================================
# FILING AGGREGATE
# =============================================================================

class Filing(BaseModel):
    """
    Filing Aggregate Root.

    Invariants:
    - reference_number is assigned once and never changes afterwards
    - paid_amount only moves at submission time
    - never deleted by the core
    """

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(description="User that owns the filing")
    tax_year: Optional[int] = Field(default=None, description="Tax year; None when unknown")
    kind: FilingKind = Field(default=FilingKind.INDIVIDUAL)
    status: FilingStatus = Field(default=FilingStatus.DRAFT)

    reference_number: Optional[str] = Field(default=None)
    total_price: Decimal = Field(default=Decimal("0.00"))
    paid_amount: Decimal = Field(default=Decimal("0.00"))
    jurisdiction: Optional[str] = Field(default=None, description="Jurisdiction used for sales tax")

    wizard_progress: Optional[WizardProgress] = Field(default=None)

    submitted_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        """Pydantic configuration."""
        json_encoders = {UUID: str, datetime: lambda v: v.isoformat(), Decimal: str}

    @property
    def is_reopened(self) -> bool:
        """A previously submitted filing that was sent back for amendment."""
        return bool(self.reference_number) and self.status == FilingStatus.IN_PROGRESS

    @property
    def is_amendment(self) -> bool:
        """Already referenced and already (partly) paid."""
        return bool(self.reference_number) and self.paid_amount > 0

    def touch(self) -> None:
        self.updated_at = datetime.utcnow()


# =============================================================================
# CHILD RECORDS
# =============================================================================

class PersonRecord(BaseModel):
    """
    One person's answer set inside an INDIVIDUAL filing.

    Answers are a flat map of dotted keys, e.g. ``personalInfo.firstName``.
    """

    id: UUID = Field(default_factory=uuid4)
    filing_id: UUID
    role: RecordRole = Field(default=RecordRole.PRIMARY)
    ordinal: Optional[int] = Field(default=None, description="Creation order, dependents only")
    answers: Dict[str, Any] = Field(default_factory=dict)
    status: RecordStatus = Field(default=RecordStatus.DRAFT)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        """Pydantic configuration."""
        json_encoders = {UUID: str, datetime: lambda v: v.isoformat()}

    @property
    def is_complete(self) -> bool:
        return self.status == RecordStatus.COMPLETED

    @property
    def display_name(self) -> str:
        """Full name when both parts are answered, else a role based label."""
        first = str(self.answers.get("personalInfo.firstName") or "").strip()
        last = str(self.answers.get("personalInfo.lastName") or "").strip()
        if first and last:
            return f"{first} {last}"
        if self.role == RecordRole.PRIMARY:
            return "Primary Filer"
        if self.role == RecordRole.SPOUSE:
            return "Spouse"
        return f"Dependent {(self.ordinal or 0) + 1}"


class BusinessRecord(BaseModel):
    """The single answer set of a CORPORATE or TRUST filing."""

    id: UUID = Field(default_factory=uuid4)
    filing_id: UUID
    owner_id: str
    kind: FilingKind = Field(default=FilingKind.CORPORATE)
    answers: Dict[str, Any] = Field(default_factory=dict)
    status: RecordStatus = Field(default=RecordStatus.DRAFT)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        """Pydantic configuration."""
        json_encoders = {UUID: str, datetime: lambda v: v.isoformat()}

    @property
    def role(self) -> RecordRole:
        return self.kind.root_role

    @property
    def is_complete(self) -> bool:
        return self.status == RecordStatus.COMPLETED

    @property
    def identity_key(self) -> str:
        """Business number or trust account number, as answered."""
        key, _ = BUSINESS_IDENTITY_KEYS[self.kind]
        return str(self.answers.get(key) or "")

    @property
    def display_name(self) -> str:
        """Legal name or trust name, as answered."""
        _, key = BUSINESS_IDENTITY_KEYS[self.kind]
        return str(self.answers.get(key) or "")

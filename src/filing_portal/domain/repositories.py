"""
Repository Interfaces for the filing portal.

The core only talks to storage through these contracts. No transactional
guarantees are assumed beyond per-record atomicity. Implementations raise
TransportError for infrastructure failures.

Implementations:
- persistence.memory.InMemoryFilingBackend (tests, local development)
- persistence.sql_backend.SqlFilingBackend (SQLAlchemy async)
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from uuid import UUID

from .aggregates import (
    BusinessRecord,
    Filing,
    FilingKind,
    PersonRecord,
    RecordStatus,
    WizardProgress,
)


class IFilingBackend(ABC):
    """
    Create/read/update access to filings and their child records.
    """

    # -------------------------------------------------------------------------
    # Filings
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_filing(self, filing_id: UUID) -> Optional[Filing]:
        """
        Retrieve a filing by ID.

        Args:
            filing_id: Unique identifier of the filing

        Returns:
            The filing if found, None otherwise
        """
        pass

    @abstractmethod
    async def save_filing(self, filing: Filing) -> Filing:
        """
        Create or update a filing.

        Args:
            filing: The filing to store

        Returns:
            The stored filing
        """
        pass

    # -------------------------------------------------------------------------
    # Person records
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_person_records(self, filing_id: UUID) -> List[PersonRecord]:
        """
        Get all person records of a filing in creation order.

        Args:
            filing_id: Owning filing

        Returns:
            Person records, oldest first
        """
        pass

    @abstractmethod
    async def get_person_record(self, record_id: UUID) -> Optional[PersonRecord]:
        """Retrieve a person record by ID."""
        pass

    @abstractmethod
    async def save_person_record(self, record: PersonRecord) -> PersonRecord:
        """Create or update a person record."""
        pass

    # -------------------------------------------------------------------------
    # Business records
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_business_record(self, record_id: UUID) -> Optional[BusinessRecord]:
        """Retrieve a business record by ID."""
        pass

    @abstractmethod
    async def get_business_record_for_filing(self, filing_id: UUID) -> Optional[BusinessRecord]:
        """Retrieve the single business record of a CORPORATE or TRUST filing."""
        pass

    @abstractmethod
    async def save_business_record(self, record: BusinessRecord) -> BusinessRecord:
        """Create or update a business record."""
        pass

    @abstractmethod
    async def find_business_records(self, kind: FilingKind, owner_id: str) -> List[BusinessRecord]:
        """
        Query sibling business records.

        Args:
            kind: CORPORATE or TRUST
            owner_id: User owning the records

        Returns:
            Every business record of that kind owned by the user
        """
        pass

    # -------------------------------------------------------------------------
    # Shared record operations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def update_answers(self, record_id: UUID, answers: Dict[str, Any]) -> None:
        """
        Merge answers into a person or business record.

        Keys present in ``answers`` overwrite stored values; a value of None
        removes the key.

        Raises:
            RecordNotFoundError: If no record has this ID
        """
        pass

    @abstractmethod
    async def set_record_status(self, record_id: UUID, status: RecordStatus) -> None:
        """
        Set the status of a person or business record.

        Raises:
            RecordNotFoundError: If no record has this ID
        """
        pass


class IProgressStore(ABC):
    """Best-effort channel for the resumable wizard pointer."""

    @abstractmethod
    async def save_progress(self, filing_id: UUID, progress: WizardProgress) -> None:
        """
        Store the wizard progress snapshot of a filing.

        Args:
            filing_id: Filing the snapshot belongs to
            progress: Phase, section index, record and dependent pointers
        """
        pass

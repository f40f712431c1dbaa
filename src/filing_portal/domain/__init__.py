"""
Domain layer for the filing portal.

Aggregates, value objects, the error taxonomy and the storage contracts the
core depends on.
"""

from .aggregates import (
    BUSINESS_IDENTITY_KEYS,
    BusinessRecord,
    Filing,
    FilingKind,
    FilingStatus,
    PersonRecord,
    RecordRole,
    RecordStatus,
    WizardProgress,
)
from .value_objects import (
    AmountDue,
    PricingBreakdown,
    PricingItem,
    RecordRef,
)
from .exceptions import (
    ConflictError,
    FilingPortalError,
    GateError,
    RecordNotFoundError,
    SchemaCycleError,
    SchemaError,
    TransitionError,
    TransportError,
)
from .repositories import IFilingBackend, IProgressStore

__all__ = [
    # Aggregates
    "BUSINESS_IDENTITY_KEYS",
    "BusinessRecord",
    "Filing",
    "FilingKind",
    "FilingStatus",
    "PersonRecord",
    "RecordRole",
    "RecordStatus",
    "WizardProgress",
    # Value objects
    "AmountDue",
    "PricingBreakdown",
    "PricingItem",
    "RecordRef",
    # Errors
    "ConflictError",
    "FilingPortalError",
    "GateError",
    "RecordNotFoundError",
    "SchemaCycleError",
    "SchemaError",
    "TransitionError",
    "TransportError",
    # Repositories
    "IFilingBackend",
    "IProgressStore",
]

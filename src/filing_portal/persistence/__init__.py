"""Storage backends and serialized record creation."""

from .locks import FilingLockRegistry, get_lock_registry
from .memory import InMemoryFilingBackend
from .record_service import FilingRecordService, dependent_prefill, unmatched_dependents
from .sql_backend import SqlFilingBackend

__all__ = [
    "FilingLockRegistry",
    "get_lock_registry",
    "InMemoryFilingBackend",
    "FilingRecordService",
    "dependent_prefill",
    "unmatched_dependents",
    "SqlFilingBackend",
]

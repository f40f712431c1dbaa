"""
Error taxonomy for the filing portal.

Validation never raises; field problems are returned as data. The classes
below are raised by the backend and the wizard and are converted into user
facing notices by the orchestrator.
"""

from typing import Any, Dict, List, Optional


class FilingPortalError(Exception):
    """Base class for all filing portal errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": type(self).__name__, "message": self.message}


class GateError(FilingPortalError):
    """A role or a whole filing is not complete yet."""

    def __init__(
        self,
        message: str,
        missing_sections: Optional[List[Dict[str, Any]]] = None,
        total_missing_fields: int = 0,
        first_section_index: Optional[int] = None,
    ):
        self.missing_sections = missing_sections or []
        self.total_missing_fields = total_missing_fields
        self.first_section_index = first_section_index
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["missing_sections"] = self.missing_sections
        data["total_missing_fields"] = self.total_missing_fields
        return data


class ConflictError(FilingPortalError):
    """Another business record already uses the same identifying key."""

    def __init__(self, message: str, conflicting_record_id: Any = None, conflicting_status: Optional[str] = None):
        self.conflicting_record_id = conflicting_record_id
        self.conflicting_status = conflicting_status
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["conflicting_record_id"] = str(self.conflicting_record_id) if self.conflicting_record_id else None
        data["conflicting_status"] = self.conflicting_status
        return data


class TransportError(FilingPortalError):
    """The persistence backend was unreachable or rejected the request. Retryable."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class RecordNotFoundError(FilingPortalError):
    """A filing or child record does not exist."""


class TransitionError(FilingPortalError):
    """Raised when an invalid wizard transition is attempted."""

    def __init__(self, message: str, current_phase: Optional[str] = None, command: Optional[str] = None):
        self.current_phase = current_phase
        self.command = command
        super().__init__(message)


class SchemaError(FilingPortalError):
    """A schema definition is malformed."""


class SchemaCycleError(SchemaError):
    """Conditional clauses of a schema reference each other in a loop."""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__("Cyclic conditional reference: " + " -> ".join(cycle))

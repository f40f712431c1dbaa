"""Submission result type.

The submission protocol returns one of these instead of raising, so the
caller owns its retry policy.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from filing_portal.domain.aggregates import Filing
from filing_portal.domain.exceptions import ConflictError, GateError


@dataclass(frozen=True)
class SubmissionOk:
    """Filing is now UNDER_REVIEW."""
    filing: Filing

    ok = True
    retryable = False

    @property
    def reference_number(self) -> Optional[str]:
        return self.filing.reference_number

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": "ok",
            "filing_id": str(self.filing.id),
            "reference_number": self.filing.reference_number,
            "status": self.filing.status.value,
        }


@dataclass(frozen=True)
class SubmissionRejected:
    """A precondition failed. Nothing was written."""
    error: Union[GateError, ConflictError]

    ok = False
    retryable = False

    @property
    def reason(self) -> str:
        return self.error.message

    def to_dict(self) -> Dict[str, Any]:
        return {"result": "rejected", **self.error.to_dict()}


@dataclass(frozen=True)
class SubmissionRetryable:
    """
    The backend failed. Child records may already be marked complete;
    running the whole submission again is safe.
    """
    reason: str
    operation: Optional[str] = None

    ok = False
    retryable = True

    def to_dict(self) -> Dict[str, Any]:
        return {"result": "retryable", "reason": self.reason, "operation": self.operation}


@dataclass(frozen=True)
class SubmissionFatal:
    """Submitting cannot succeed without outside intervention."""
    reason: str

    ok = False
    retryable = False

    def to_dict(self) -> Dict[str, Any]:
        return {"result": "fatal", "reason": self.reason}


SubmissionResult = Union[SubmissionOk, SubmissionRejected, SubmissionRetryable, SubmissionFatal]

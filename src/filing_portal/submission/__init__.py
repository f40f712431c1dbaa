"""Submission protocol."""

from .protocol import SubmissionProtocol, duplicate_message
from .reference import generate_reference_number, normalize_identity_key, to_base36
from .results import (
    SubmissionFatal,
    SubmissionOk,
    SubmissionRejected,
    SubmissionResult,
    SubmissionRetryable,
)

__all__ = [
    "SubmissionProtocol",
    "duplicate_message",
    "generate_reference_number",
    "normalize_identity_key",
    "to_base36",
    "SubmissionFatal",
    "SubmissionOk",
    "SubmissionRejected",
    "SubmissionResult",
    "SubmissionRetryable",
]

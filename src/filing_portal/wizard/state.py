"""
Wizard State

The wizard's position as one explicit, frozen record. Every command produces
a new WizardState through ``reducer.transition``; nothing mutates a state in
place, so any command sequence can be replayed deterministically.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from filing_portal.domain.aggregates import RecordRole, WizardProgress
from filing_portal.domain.value_objects import RecordRef

from .phases import Phase


class NoticeKind:
    """Kinds of user facing notices."""
    INFO = "info"
    SAVED = "saved"
    GATE = "gate"
    CONFLICT = "conflict"
    TRANSPORT = "transport"
    FATAL = "fatal"


@dataclass(frozen=True)
class Notice:
    """A message shown above the current section."""
    kind: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.kind == NoticeKind.TRANSPORT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class WizardState:
    """
    Where the wizard is.

    Invariants:
    - exactly one phase is active
    - ``active`` is set in every *_ACTIVE phase and names an existing record
    - ``section_index`` lies within the visible sections of the active role
    """
    phase: Phase = Phase.IDLE
    section_index: int = 0
    active: Optional[RecordRef] = None

    # dependent tracking, kept locally so the next dependent can be chosen
    # without waiting for committed state
    total_dependents: int = 0
    current_dependent_index: int = 0
    created_dependent_ids: Tuple[UUID, ...] = ()
    completed_record_ids: Tuple[UUID, ...] = ()

    errors: Dict[str, str] = field(default_factory=dict)
    notice: Optional[Notice] = None

    @property
    def role(self) -> Optional[RecordRole]:
        return self.active.role if self.active else None

    @property
    def record_id(self) -> Optional[UUID]:
        return self.active.record_id if self.active else None

    @property
    def is_terminal(self) -> bool:
        return self.phase == Phase.SUBMITTED

    def evolve(self, **changes) -> "WizardState":
        """Copy with changes applied."""
        return replace(self, **changes)

    def with_notice(self, notice: Optional[Notice]) -> "WizardState":
        return replace(self, notice=notice)

    def is_completed(self, record_id: Optional[UUID]) -> bool:
        return record_id is not None and record_id in self.completed_record_ids

    def to_progress(self) -> WizardProgress:
        """Resumable snapshot stored on the filing."""
        return WizardProgress(
            phase=self.phase.value,
            section_index=self.section_index,
            record_id=self.record_id,
            dependent_index=self.current_dependent_index,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "section_index": self.section_index,
            "role": self.role.value if self.role else None,
            "record_id": str(self.record_id) if self.record_id else None,
            "total_dependents": self.total_dependents,
            "current_dependent_index": self.current_dependent_index,
            "created_dependent_ids": [str(i) for i in self.created_dependent_ids],
            "completed_record_ids": [str(i) for i in self.completed_record_ids],
            "errors": dict(self.errors),
            "notice": self.notice.to_dict() if self.notice else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WizardState":
        role = data.get("role")
        record_id = data.get("record_id")
        active = None
        if role:
            active = RecordRef(role=RecordRole(role), record_id=UUID(record_id) if record_id else None)
        notice = data.get("notice")
        return cls(
            phase=Phase(data.get("phase", Phase.IDLE.value)),
            section_index=int(data.get("section_index") or 0),
            active=active,
            total_dependents=int(data.get("total_dependents") or 0),
            current_dependent_index=int(data.get("current_dependent_index") or 0),
            created_dependent_ids=tuple(UUID(i) for i in data.get("created_dependent_ids") or []),
            completed_record_ids=tuple(UUID(i) for i in data.get("completed_record_ids") or []),
            errors=dict(data.get("errors") or {}),
            notice=Notice(
                kind=notice["kind"],
                message=notice["message"],
                details=dict(notice.get("details") or {}),
            ) if notice else None,
        )

"""Commands accepted by the wizard orchestrator."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from filing_portal.domain.aggregates import RecordRole, WizardProgress
from filing_portal.domain.exceptions import TransitionError


class CommandType(str, Enum):
    INIT = "INIT"
    ANSWER = "ANSWER"
    NEXT_SECTION = "NEXT_SECTION"
    PREV_SECTION = "PREV_SECTION"
    GO_TO_SECTION = "GO_TO_SECTION"
    GO_TO_ROLE = "GO_TO_ROLE"
    ADD_SPOUSE = "ADD_SPOUSE"
    SKIP_SPOUSE = "SKIP_SPOUSE"
    ADD_DEPENDENTS = "ADD_DEPENDENTS"
    SKIP_DEPENDENTS = "SKIP_DEPENDENTS"
    COMPLETE_PHASE = "COMPLETE_PHASE"
    SUBMIT = "SUBMIT"
    SAVE_AND_EXIT = "SAVE_AND_EXIT"
    RESTORE_PROGRESS = "RESTORE_PROGRESS"


# Commands that move between sections or records; pending answers are
# written before any of them runs.
NAVIGATION_COMMANDS = {
    CommandType.NEXT_SECTION,
    CommandType.PREV_SECTION,
    CommandType.GO_TO_SECTION,
    CommandType.GO_TO_ROLE,
    CommandType.ADD_SPOUSE,
    CommandType.SKIP_SPOUSE,
    CommandType.ADD_DEPENDENTS,
    CommandType.SKIP_DEPENDENTS,
    CommandType.COMPLETE_PHASE,
    CommandType.SUBMIT,
    CommandType.SAVE_AND_EXIT,
    CommandType.RESTORE_PROGRESS,
}


@dataclass(frozen=True)
class Command:
    """
    A user intent.

    Only the fields relevant to the command type are read:
    - ANSWER: answers (a None value clears the key)
    - GO_TO_SECTION: section_index
    - GO_TO_ROLE: role, record_id, section_index
    - ADD_SPOUSE: record_id (filled in once the spouse record exists)
    - ADD_DEPENDENTS: count (None creates one per income earner); record_ids
      of the created dependents are filled in by the orchestrator
    - RESTORE_PROGRESS: progress
    """
    type: CommandType
    answers: Dict[str, Any] = field(default_factory=dict)
    section_index: Optional[int] = None
    role: Optional[RecordRole] = None
    record_id: Optional[UUID] = None
    count: Optional[int] = None
    record_ids: Tuple[UUID, ...] = ()
    progress: Optional[WizardProgress] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Command":
        """Build a command from a JSON payload."""
        try:
            command_type = CommandType(str(data.get("type", "")).upper())
        except ValueError:
            raise TransitionError(f"Unknown command {data.get('type')!r}")

        progress = data.get("progress")
        return cls(
            type=command_type,
            answers=dict(data.get("answers") or {}),
            section_index=data.get("section_index"),
            role=RecordRole(data["role"]) if data.get("role") else None,
            record_id=UUID(str(data["record_id"])) if data.get("record_id") else None,
            count=data.get("count"),
            record_ids=tuple(UUID(str(i)) for i in data.get("record_ids") or []),
            progress=WizardProgress.model_validate(progress) if progress else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "answers": dict(self.answers),
            "section_index": self.section_index,
            "role": self.role.value if self.role else None,
            "record_id": str(self.record_id) if self.record_id else None,
            "count": self.count,
            "record_ids": [str(i) for i in self.record_ids],
            "progress": self.progress.model_dump(mode="json") if self.progress else None,
        }

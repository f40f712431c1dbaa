"""
Wizard Phases

Defines the wizard phases, the legal moves between them and the
step/label shown to the user for each phase.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional, Set

from filing_portal.domain.aggregates import FilingKind, RecordRole


class Phase(str, Enum):
    """Where the wizard currently is."""
    IDLE = "IDLE"
    PRIMARY_ACTIVE = "PRIMARY_ACTIVE"
    SPOUSE_CHECKPOINT = "SPOUSE_CHECKPOINT"
    SPOUSE_ACTIVE = "SPOUSE_ACTIVE"
    DEPENDENT_CHECKPOINT = "DEPENDENT_CHECKPOINT"
    DEPENDENT_ACTIVE = "DEPENDENT_ACTIVE"
    CORPORATE_ACTIVE = "CORPORATE_ACTIVE"
    TRUST_ACTIVE = "TRUST_ACTIVE"
    REVIEW = "REVIEW"
    SUBMITTED = "SUBMITTED"

    @property
    def is_active(self) -> bool:
        """A record is being edited section by section."""
        return self in _ACTIVE_ROLES

    @property
    def is_checkpoint(self) -> bool:
        return self in (Phase.SPOUSE_CHECKPOINT, Phase.DEPENDENT_CHECKPOINT)

    @property
    def role(self) -> Optional[RecordRole]:
        """Role edited in this phase, None outside active phases."""
        return _ACTIVE_ROLES.get(self)


_ACTIVE_ROLES: Dict[Phase, RecordRole] = {
    Phase.PRIMARY_ACTIVE: RecordRole.PRIMARY,
    Phase.SPOUSE_ACTIVE: RecordRole.SPOUSE,
    Phase.DEPENDENT_ACTIVE: RecordRole.DEPENDENT,
    Phase.CORPORATE_ACTIVE: RecordRole.CORPORATE,
    Phase.TRUST_ACTIVE: RecordRole.TRUST,
}

_ROLE_PHASES: Dict[RecordRole, Phase] = {role: phase for phase, role in _ACTIVE_ROLES.items()}

# Roles a filing kind may edit
KIND_ROLES: Dict[FilingKind, Set[RecordRole]] = {
    FilingKind.INDIVIDUAL: {RecordRole.PRIMARY, RecordRole.SPOUSE, RecordRole.DEPENDENT},
    FilingKind.CORPORATE: {RecordRole.CORPORATE},
    FilingKind.TRUST: {RecordRole.TRUST},
}

# Phases that may follow a completed role
NEXT_AFTER_ROLE: Dict[RecordRole, Phase] = {
    RecordRole.PRIMARY: Phase.SPOUSE_CHECKPOINT,
    RecordRole.SPOUSE: Phase.DEPENDENT_CHECKPOINT,
    RecordRole.DEPENDENT: Phase.DEPENDENT_CHECKPOINT,
    RecordRole.CORPORATE: Phase.REVIEW,
    RecordRole.TRUST: Phase.REVIEW,
}

_PERSON_ACTIVE = {Phase.PRIMARY_ACTIVE, Phase.SPOUSE_ACTIVE, Phase.DEPENDENT_ACTIVE}

# Legal phase changes. Staying in the same phase (section moves, switching
# to the next dependent) is always allowed and is not listed.
VALID_TRANSITIONS: Dict[Phase, Set[Phase]] = {
    # restoring progress may land anywhere
    Phase.IDLE: set(Phase) - {Phase.IDLE},
    Phase.PRIMARY_ACTIVE: {Phase.SPOUSE_CHECKPOINT} | _PERSON_ACTIVE,
    Phase.SPOUSE_CHECKPOINT: {Phase.SPOUSE_ACTIVE, Phase.DEPENDENT_CHECKPOINT} | _PERSON_ACTIVE,
    Phase.SPOUSE_ACTIVE: {Phase.DEPENDENT_CHECKPOINT} | _PERSON_ACTIVE,
    Phase.DEPENDENT_CHECKPOINT: {Phase.DEPENDENT_ACTIVE, Phase.REVIEW} | _PERSON_ACTIVE,
    Phase.DEPENDENT_ACTIVE: {Phase.DEPENDENT_CHECKPOINT} | _PERSON_ACTIVE,
    Phase.CORPORATE_ACTIVE: {Phase.REVIEW},
    Phase.TRUST_ACTIVE: {Phase.REVIEW},
    Phase.REVIEW: {Phase.SUBMITTED, Phase.CORPORATE_ACTIVE, Phase.TRUST_ACTIVE} | _PERSON_ACTIVE,
    Phase.SUBMITTED: set(),  # Terminal
}


def active_phase_for(role: RecordRole) -> Phase:
    """Active phase that edits a role."""
    return _ROLE_PHASES[RecordRole(role)]


def can_transition(from_phase: Phase, to_phase: Phase) -> bool:
    """Check if a phase change is legal."""
    if from_phase == to_phase:
        return from_phase not in (Phase.IDLE, Phase.SUBMITTED)
    return to_phase in VALID_TRANSITIONS.get(from_phase, set())


def role_allowed(kind: FilingKind, role: RecordRole) -> bool:
    return RecordRole(role) in KIND_ROLES[FilingKind(kind)]


# =============================================================================
# STEP INDICATOR
# =============================================================================

class PhaseInfo(NamedTuple):
    """Progress indicator shown above the wizard."""
    step: int
    total: int
    label: str


_INDIVIDUAL_INFO: Dict[Phase, PhaseInfo] = {
    Phase.IDLE: PhaseInfo(0, 5, "Getting Started"),
    Phase.PRIMARY_ACTIVE: PhaseInfo(1, 5, "Your Information"),
    Phase.SPOUSE_CHECKPOINT: PhaseInfo(2, 5, "Spouse Decision"),
    Phase.SPOUSE_ACTIVE: PhaseInfo(2, 5, "Spouse Information"),
    Phase.DEPENDENT_CHECKPOINT: PhaseInfo(3, 5, "Dependents Decision"),
    Phase.DEPENDENT_ACTIVE: PhaseInfo(3, 5, "Dependent Information"),
    Phase.REVIEW: PhaseInfo(4, 5, "Review & Submit"),
    Phase.SUBMITTED: PhaseInfo(5, 5, "Complete"),
}

_BUSINESS_INFO: Dict[Phase, PhaseInfo] = {
    Phase.IDLE: PhaseInfo(0, 2, "Getting Started"),
    Phase.CORPORATE_ACTIVE: PhaseInfo(1, 2, "Corporation Details"),
    Phase.TRUST_ACTIVE: PhaseInfo(1, 2, "Trust Details"),
    Phase.REVIEW: PhaseInfo(2, 2, "Review & Submit"),
    Phase.SUBMITTED: PhaseInfo(2, 2, "Complete"),
}


def phase_info(phase: Phase, kind: FilingKind = FilingKind.INDIVIDUAL) -> PhaseInfo:
    """Step number, step count and label for a phase."""
    if FilingKind(kind).is_business:
        return _BUSINESS_INFO.get(phase, PhaseInfo(0, 2, "Unknown"))
    return _INDIVIDUAL_INFO.get(phase, PhaseInfo(0, 5, "Unknown"))

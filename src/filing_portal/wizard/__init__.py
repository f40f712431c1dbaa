"""
Wizard state machine.

Phases and their legal moves, the commands a user can send, a pure reducer
deciding the next state, and the orchestrator that runs commands against
the backend.
"""

from .commands import NAVIGATION_COMMANDS, Command, CommandType
from .context import RecordSnapshot, WizardContext
from .orchestrator import WizardOrchestrator, submission_notice
from .phases import (
    VALID_TRANSITIONS,
    Phase,
    PhaseInfo,
    active_phase_for,
    can_transition,
    phase_info,
    role_allowed,
)
from .reducer import initial_state, pending_dependents, restore, settle, transition
from .save_buffer import AnswerSaveBuffer
from .state import Notice, NoticeKind, WizardState
from .view import WizardView, build_view

__all__ = [
    "NAVIGATION_COMMANDS",
    "Command",
    "CommandType",
    "RecordSnapshot",
    "WizardContext",
    "WizardOrchestrator",
    "submission_notice",
    "VALID_TRANSITIONS",
    "Phase",
    "PhaseInfo",
    "active_phase_for",
    "can_transition",
    "phase_info",
    "role_allowed",
    "initial_state",
    "pending_dependents",
    "restore",
    "settle",
    "transition",
    "AnswerSaveBuffer",
    "Notice",
    "NoticeKind",
    "WizardState",
    "WizardView",
    "build_view",
]

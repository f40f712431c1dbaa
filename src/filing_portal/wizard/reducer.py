"""
Wizard Reducer

``transition(state, command, context)`` is a pure function: it reads the
current state, the command and a context snapshot, and returns the next
state. Backend work (creating records, writing answers, submitting) happens
in the orchestrator before a command reaches the reducer; the reducer only
decides where the wizard goes.

Illegal commands raise TransitionError. Validation failures are not errors:
they come back as a state carrying field errors and a notice.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from filing_portal.domain.aggregates import RecordRole
from filing_portal.domain.exceptions import GateError, TransitionError
from filing_portal.domain.value_objects import RecordRef
from filing_portal.schema.models import Schema, Section
from filing_portal.validation.validator import (
    is_empty,
    summarize_missing,
    validate_all_sections_for_role,
    validate_section,
)
from filing_portal.validation.visibility import apply_answers, sections_for_role

from .commands import Command, CommandType
from .context import RecordSnapshot, WizardContext
from .phases import NEXT_AFTER_ROLE, Phase, active_phase_for, can_transition, role_allowed
from .state import Notice, NoticeKind, WizardState

logger = logging.getLogger(__name__)

NO_EARNING_DEPENDENTS = (
    "None of your dependants earn income, so no separate returns are needed. "
    "Continue to review your filing."
)
ALREADY_SUBMITTED = "This filing has already been submitted and can no longer be edited."


# =============================================================================
# HELPERS
# =============================================================================

def clamp_index(index: Optional[int], count: int) -> int:
    """Keep a section index inside ``[0, count - 1]`` (0 when there are no sections)."""
    if count <= 0:
        return 0
    return max(0, min(int(index or 0), count - 1))


def role_sections(context: WizardContext, record: RecordSnapshot) -> List[Section]:
    """Sections currently visible to a record."""
    return sections_for_role(context.schema, record.role.value, record.answers)


def reanchor_index(schema: Schema, index: int, before: List[Section], after: List[Section]) -> int:
    """
    Index of the current section after the visible list changed.

    The user stays on the same section when it is still shown. When it was
    hidden, the index lands on the section that now follows its place in
    schema order, or on the last section.
    """
    if not before or not after:
        return 0
    current = before[clamp_index(index, len(before))]
    for position, section in enumerate(after):
        if section.id == current.id:
            return position

    order = {section.id: position for position, section in enumerate(schema.sections)}
    anchor = order.get(current.id, 0)
    preceding = sum(1 for section in after if order.get(section.id, 0) < anchor)
    return clamp_index(preceding, len(after))


def gate_notice(error: GateError) -> Notice:
    details = error.to_dict()
    details.pop("message", None)
    return Notice(kind=NoticeKind.GATE, message=error.message, details=details)


def _reject(state: WizardState, command: Command, reason: str) -> TransitionError:
    return TransitionError(reason, current_phase=state.phase.value, command=command.type.value)


def _require_phase(state: WizardState, command: Command, *phases: Phase) -> None:
    if state.phase not in phases:
        raise _reject(
            state,
            command,
            f"{command.type.value} is not allowed in phase {state.phase.value}",
        )


def _require_active(
    state: WizardState,
    command: Command,
    context: WizardContext,
) -> Tuple[RecordSnapshot, List[Section]]:
    if not state.phase.is_active:
        raise _reject(state, command, f"{command.type.value} needs an active record, phase is {state.phase.value}")
    record = context.record(state.record_id)
    if record is None:
        raise _reject(state, command, f"Active record {state.record_id} no longer exists")
    return record, role_sections(context, record)


def _move(state: WizardState, phase: Phase, **changes) -> WizardState:
    """Change phase through the transition table."""
    if not can_transition(state.phase, phase):
        raise TransitionError(
            f"Cannot move from {state.phase.value} to {phase.value}",
            current_phase=state.phase.value,
        )
    changes.setdefault("errors", {})
    changes.setdefault("notice", None)
    return state.evolve(phase=phase, **changes)


def _enter(state: WizardState, record: RecordSnapshot, section_index: int = 0, **changes) -> WizardState:
    return _move(
        state,
        active_phase_for(record.role),
        active=RecordRef(role=record.role, record_id=record.id),
        section_index=section_index,
        **changes,
    )


def _dependents_done(state: WizardState, context: WizardContext) -> int:
    return sum(1 for d in context.dependents() if state.is_completed(d.id))


def pending_dependents(state: WizardState, context: WizardContext) -> List[RecordSnapshot]:
    """
    Dependents still to be walked through, in creation order.

    Locally created ids come first so a dependent created a moment ago is
    picked even before a refetch would list it; stored dependents follow.
    """
    ordered: List[RecordSnapshot] = []
    seen = set()
    for record_id in state.created_dependent_ids:
        record = context.record(record_id)
        if record is not None and record.id not in seen:
            ordered.append(record)
            seen.add(record.id)
    for record in context.dependents():
        if record.id not in seen:
            ordered.append(record)
            seen.add(record.id)
    return [r for r in ordered if not state.is_completed(r.id) and not r.complete]


# =============================================================================
# CHECKPOINTS
# =============================================================================

def settle(state: WizardState, context: WizardContext) -> WizardState:
    """
    Apply the automatic moves of checkpoint phases.

    - SPOUSE_CHECKPOINT moves on when marital status is answered and not
      eligible; an unanswered status waits for the user.
    - DEPENDENT_CHECKPOINT enters the next pending dependent, or goes to
      REVIEW when nobody is declared, nobody earns income, or every created
      dependent is done and every earner has a record. Otherwise it waits
      for ADD/SKIP_DEPENDENTS.
    """
    while True:
        if state.phase == Phase.SPOUSE_CHECKPOINT:
            status = context.marital_status()
            if is_empty(status) or str(status) in context.eligible_marital_statuses:
                return state
            logger.debug(f"Marital status {status} is not eligible, skipping spouse")
            state = _move(state, Phase.DEPENDENT_CHECKPOINT, active=None, section_index=0)
            continue

        if state.phase == Phase.DEPENDENT_CHECKPOINT:
            pending = pending_dependents(state, context)
            if pending:
                return _enter(state, pending[0], total_dependents=len(context.dependents()))

            if not context.declared_dependents():
                return _move(state, Phase.REVIEW, active=None, section_index=0)
            if context.dependents() and not context.earners_without_record():
                # every created dependent is done and every earner has a record
                return _move(state, Phase.REVIEW, active=None, section_index=0)
            if not context.income_earners():
                return _move(
                    state,
                    Phase.REVIEW,
                    active=None,
                    section_index=0,
                    notice=Notice(kind=NoticeKind.INFO, message=NO_EARNING_DEPENDENTS),
                )
            return state

        return state


# =============================================================================
# INITIALISATION AND RESTORE
# =============================================================================

def _root_state(context: WizardContext) -> WizardState:
    role = context.kind.root_role
    record = context.first_record(role)
    if record is None:
        raise TransitionError(f"Filing has no {role.value} record to start with", current_phase=Phase.IDLE.value)
    return WizardState(
        phase=active_phase_for(role),
        section_index=0,
        active=RecordRef(role=role, record_id=record.id),
        total_dependents=len(context.dependents()),
    )


def _fallback(context: WizardContext, reason: str) -> WizardState:
    logger.warning(f"Progress snapshot not usable ({reason}), starting at the first section")
    return _root_state(context)


def restore(progress, context: WizardContext) -> WizardState:
    """
    Rebuild a state from a stored snapshot.

    A snapshot that points at a missing record, an unknown phase or a phase
    the filing kind cannot have falls back to the root role's first section.
    """
    try:
        phase = Phase(progress.phase)
    except ValueError:
        return _fallback(context, f"unknown phase {progress.phase!r}")
    if phase in (Phase.IDLE, Phase.SUBMITTED):
        return _fallback(context, f"phase {phase.value} cannot be resumed")

    dependents = context.dependents()
    done_count = min(progress.dependent_index, len(dependents))
    base = WizardState(
        phase=phase,
        total_dependents=len(dependents),
        current_dependent_index=done_count,
        created_dependent_ids=tuple(d.id for d in dependents),
        completed_record_ids=tuple(d.id for d in dependents[:done_count]),
    )

    if phase.is_active:
        if not role_allowed(context.kind, phase.role):
            return _fallback(context, f"{phase.value} does not apply to {context.kind.value} filings")
        record = context.record(progress.record_id)
        if record is None or record.role != phase.role:
            return _fallback(context, f"record {progress.record_id} no longer exists")
        index = clamp_index(progress.section_index, len(role_sections(context, record)))
        return base.evolve(section_index=index, active=RecordRef(role=record.role, record_id=record.id))

    if phase.is_checkpoint:
        if context.kind.is_business:
            return _fallback(context, f"{phase.value} does not apply to {context.kind.value} filings")
        return settle(base, context)

    return base


def initial_state(context: WizardContext) -> WizardState:
    """
    First state of a session.

    Order of precedence: already submitted filings are read-only; a
    reopened (amended) filing restarts at the root role; otherwise a
    snapshot is resumed; otherwise the root role starts at section 0.
    """
    if not context.filing_status.is_resumable:
        return WizardState(
            phase=Phase.SUBMITTED,
            notice=Notice(kind=NoticeKind.INFO, message=ALREADY_SUBMITTED),
        )
    if context.is_reopened:
        logger.info("Filing was reopened for amendment, restarting at the first section")
        return _root_state(context)
    if context.progress is not None:
        return restore(context.progress, context)
    return _root_state(context)


# =============================================================================
# COMMAND HANDLERS
# =============================================================================

def _init(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    _require_phase(state, command, Phase.IDLE)
    return initial_state(context)


def _restore_progress(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    if state.phase == Phase.SUBMITTED:
        raise _reject(state, command, "A submitted filing cannot be resumed")
    if command.progress is None:
        raise _reject(state, command, "RESTORE_PROGRESS needs a progress snapshot")
    if not context.filing_status.is_resumable:
        return WizardState(phase=Phase.SUBMITTED, notice=Notice(kind=NoticeKind.INFO, message=ALREADY_SUBMITTED))
    return restore(command.progress, context)


def _answer(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    record, before = _require_active(state, command, context)
    role = record.role.value
    answers, _ = apply_answers(context.schema, role, record.answers, command.answers)
    index = reanchor_index(
        context.schema,
        state.section_index,
        before,
        sections_for_role(context.schema, role, answers),
    )

    errors = state.errors
    if errors:
        changed = set(command.answers)
        errors = {
            key: message for key, message in errors.items()
            if key not in changed and not any(key.startswith(f"{c}.") for c in changed)
        }
    if index == state.section_index and errors == state.errors:
        return state
    return state.evolve(section_index=index, errors=errors)


def _next_section(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    record, sections = _require_active(state, command, context)
    if not sections:
        return _complete_phase(state, command, context)

    index = clamp_index(state.section_index, len(sections))
    result = validate_section(sections[index], record.answers)
    if not result.valid:
        return state.evolve(section_index=index, errors=result.errors, notice=None)

    if index >= len(sections) - 1:
        return _complete_phase(state.evolve(section_index=index, errors={}), command, context)
    return state.evolve(section_index=index + 1, errors={}, notice=None)


def _prev_section(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    _, sections = _require_active(state, command, context)
    index = clamp_index(state.section_index, len(sections))
    return state.evolve(section_index=max(0, index - 1), errors={}, notice=None)


def _go_to_section(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    _, sections = _require_active(state, command, context)
    if command.section_index is None:
        raise _reject(state, command, "GO_TO_SECTION needs a section index")
    return state.evolve(section_index=clamp_index(command.section_index, len(sections)), errors={}, notice=None)


def _go_to_role(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    if command.role is None:
        raise _reject(state, command, "GO_TO_ROLE needs a role")
    role = RecordRole(command.role)
    if not role_allowed(context.kind, role):
        raise _reject(state, command, f"{context.kind.value} filings have no {role.value} role")

    if command.record_id is not None:
        record = context.record(command.record_id)
    else:
        record = context.first_record(role)
    if record is None or record.role != role:
        raise _reject(state, command, f"No {role.value} record to edit")

    index = clamp_index(command.section_index, len(role_sections(context, record)))
    return _enter(state, record, section_index=index)


def _complete_phase(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    record, _ = _require_active(state, command, context)
    result = validate_all_sections_for_role(context.schema, record.role.value, record.answers)
    if not result.valid:
        error = GateError(
            summarize_missing(result.missing_sections, result.total_missing_fields),
            missing_sections=[m.to_dict() for m in result.missing_sections],
            total_missing_fields=result.total_missing_fields,
            first_section_index=result.first_missing_index,
        )
        logger.info(f"{record.role.value} record {record.id} not complete: {error.message}")
        return state.evolve(
            section_index=result.first_missing_index,
            errors=result.errors,
            notice=gate_notice(error),
        )

    completed = state.completed_record_ids
    if record.id not in completed:
        completed = completed + (record.id,)
    moved = _move(
        state.evolve(completed_record_ids=completed),
        NEXT_AFTER_ROLE[record.role],
        active=None,
        section_index=0,
    )
    if record.role == RecordRole.DEPENDENT:
        moved = moved.evolve(current_dependent_index=_dependents_done(moved, context))
    return settle(moved, context)


def _add_spouse(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    _require_phase(state, command, Phase.SPOUSE_CHECKPOINT)
    record = context.record(command.record_id)
    if record is None or record.role != RecordRole.SPOUSE:
        raise _reject(state, command, "ADD_SPOUSE needs the spouse record")
    return _enter(state, record)


def _skip_spouse(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    _require_phase(state, command, Phase.SPOUSE_CHECKPOINT)
    return settle(_move(state, Phase.DEPENDENT_CHECKPOINT, active=None, section_index=0), context)


def _add_dependents(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    _require_phase(state, command, Phase.DEPENDENT_CHECKPOINT)
    created = list(state.created_dependent_ids)
    for record_id in command.record_ids:
        if record_id not in created:
            created.append(record_id)
    updated = state.evolve(
        created_dependent_ids=tuple(created),
        total_dependents=len(context.dependents()),
    )
    return settle(updated, context)


def _skip_dependents(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    _require_phase(state, command, Phase.DEPENDENT_CHECKPOINT)
    return _move(state, Phase.REVIEW, active=None, section_index=0)


def _save_and_exit(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    if not state.phase.is_active:
        raise _reject(state, command, f"Progress cannot be saved in phase {state.phase.value}")
    return state.with_notice(Notice(kind=NoticeKind.SAVED, message="Your progress has been saved."))


def _submit(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    _require_phase(state, command, Phase.REVIEW)
    return _move(state, Phase.SUBMITTED, active=None, section_index=0)


_HANDLERS: Dict[CommandType, Callable[[WizardState, Command, WizardContext], WizardState]] = {
    CommandType.INIT: _init,
    CommandType.RESTORE_PROGRESS: _restore_progress,
    CommandType.ANSWER: _answer,
    CommandType.NEXT_SECTION: _next_section,
    CommandType.PREV_SECTION: _prev_section,
    CommandType.GO_TO_SECTION: _go_to_section,
    CommandType.GO_TO_ROLE: _go_to_role,
    CommandType.COMPLETE_PHASE: _complete_phase,
    CommandType.ADD_SPOUSE: _add_spouse,
    CommandType.SKIP_SPOUSE: _skip_spouse,
    CommandType.ADD_DEPENDENTS: _add_dependents,
    CommandType.SKIP_DEPENDENTS: _skip_dependents,
    CommandType.SAVE_AND_EXIT: _save_and_exit,
    CommandType.SUBMIT: _submit,
}


def transition(state: WizardState, command: Command, context: WizardContext) -> WizardState:
    """
    Compute the next wizard state.

    Args:
        state: Current state
        command: Command to apply; backend-created record ids are already
            filled in by the caller
        context: Snapshot of the filing and its records

    Returns:
        The next state (possibly equal to ``state`` with errors attached)

    Raises:
        TransitionError: If the command is not allowed in the current phase
    """
    if state.is_terminal:
        raise _reject(state, command, "The filing has been submitted")
    handler = _HANDLERS.get(command.type)
    if handler is None:
        raise _reject(state, command, f"Unsupported command {command.type.value}")
    return handler(state, command, context)

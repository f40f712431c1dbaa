"""
Wizard Orchestrator

Runs wizard commands for one filing. For each command it does the backend
work the reducer cannot do (flushing answers, creating records, submitting),
then lets ``reducer.transition`` decide the next state.

Commands are processed one at a time: a second dispatch waits until the
first, including its backend round trips, has finished.

Usage:
    wizard = WizardOrchestrator(filing.id, backend)
    await wizard.dispatch(Command(CommandType.INIT))
    await wizard.dispatch(Command(CommandType.ANSWER, answers={...}))
    await wizard.dispatch(Command(CommandType.NEXT_SECTION))
    view = await wizard.view()
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from filing_portal.config.settings import PortalSettings, get_settings
from filing_portal.domain.aggregates import (
    BUSINESS_IDENTITY_KEYS,
    BusinessRecord,
    Filing,
    FilingStatus,
    PersonRecord,
    RecordRole,
)
from filing_portal.domain.exceptions import (
    ConflictError,
    FilingPortalError,
    GateError,
    RecordNotFoundError,
    TransitionError,
    TransportError,
)
from filing_portal.domain.repositories import IFilingBackend, IProgressStore
from filing_portal.logging_config import filing_id_var
from filing_portal.persistence.record_service import FilingRecordService
from filing_portal.pricing.calculator import PricingCalculator
from filing_portal.schema.registry import SchemaRegistry, get_schema_registry
from filing_portal.submission.protocol import SubmissionProtocol
from filing_portal.submission.reference import normalize_identity_key
from filing_portal.submission.results import (
    SubmissionFatal,
    SubmissionOk,
    SubmissionRejected,
    SubmissionResult,
)
from filing_portal.validation.visibility import apply_answers

from .commands import NAVIGATION_COMMANDS, Command, CommandType
from .context import WizardContext
from .phases import Phase
from .reducer import gate_notice, transition
from .save_buffer import AnswerSaveBuffer
from .state import Notice, NoticeKind, WizardState
from .view import WizardView, build_view

logger = logging.getLogger(__name__)

TRANSPORT_MESSAGE = "We could not save your changes. Please check your connection and try again."


class WizardOrchestrator:
    """
    Command dispatcher for one filing.

    Args:
        filing_id: Filing being edited
        backend: Storage backend
        registry: Schema lookup; the process wide registry by default
        progress_store: Where progress snapshots go; the backend when it
            implements IProgressStore
        record_service: Serialized child creation
        pricing: Pricing calculator
        protocol: Submission protocol
        save_buffer: Debounced answer writer
        settings: Application settings
    """

    def __init__(
        self,
        filing_id: UUID,
        backend: IFilingBackend,
        registry: Optional[SchemaRegistry] = None,
        progress_store: Optional[IProgressStore] = None,
        record_service: Optional[FilingRecordService] = None,
        pricing: Optional[PricingCalculator] = None,
        protocol: Optional[SubmissionProtocol] = None,
        save_buffer: Optional[AnswerSaveBuffer] = None,
        settings: Optional[PortalSettings] = None,
    ):
        settings = settings or get_settings()
        self.filing_id = filing_id
        self.backend = backend
        self.registry = registry or get_schema_registry()
        if progress_store is None and isinstance(backend, IProgressStore):
            progress_store = backend
        self.progress_store = progress_store
        self.records = record_service or FilingRecordService(backend)
        self.pricing = pricing or PricingCalculator(settings.pricing)
        self.protocol = protocol or SubmissionProtocol(
            backend,
            self.registry,
            self.pricing,
            reference_prefix=settings.wizard.reference_prefix,
        )
        self.answers = save_buffer or AnswerSaveBuffer(backend, settings.wizard.save_debounce_seconds)
        self.wizard_settings = settings.wizard

        self._state = WizardState()
        self._lock = asyncio.Lock()

        # refreshed by every _load_context()
        self._filing: Optional[Filing] = None
        self._persons: List[PersonRecord] = []
        self._business: Optional[BusinessRecord] = None

        self._handlers = {
            CommandType.INIT: self._init,
            CommandType.ANSWER: self._answer,
            CommandType.ADD_SPOUSE: self._add_spouse,
            CommandType.ADD_DEPENDENTS: self._add_dependents,
            CommandType.SUBMIT: self._submit,
            CommandType.SAVE_AND_EXIT: self._save_and_exit,
        }

    @property
    def state(self) -> WizardState:
        return self._state

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def dispatch(self, command: Union[Command, Dict[str, Any]]) -> WizardState:
        """
        Apply a command.

        Gate, conflict and transport failures come back as a notice on the
        returned state; on a transport failure the wizard does not move.

        Raises:
            TransitionError: If the command is not allowed right now
            RecordNotFoundError: If the filing does not exist
        """
        if isinstance(command, dict):
            command = Command.from_dict(command)

        async with self._lock:
            token = filing_id_var.set(str(self.filing_id))
            try:
                return await self._dispatch(command)
            finally:
                filing_id_var.reset(token)

    async def _dispatch(self, command: Command) -> WizardState:
        if self._state.phase == Phase.IDLE and command.type not in (CommandType.INIT, CommandType.RESTORE_PROGRESS):
            raise TransitionError(
                f"{command.type.value} before INIT",
                current_phase=Phase.IDLE.value,
                command=command.type.value,
            )

        previous = self._state
        try:
            if command.type in NAVIGATION_COMMANDS:
                await self.answers.flush()
            handler = self._handlers.get(command.type, self._apply)
            state = await handler(command)
        except TransportError as e:
            logger.warning(f"{command.type.value} failed in transport: {e.message}")
            self._state = previous.with_notice(Notice(
                kind=NoticeKind.TRANSPORT,
                message=TRANSPORT_MESSAGE,
                details={"operation": e.operation},
            ))
            return self._state

        self._state = state
        await self._after(previous, state, command)
        logger.debug(f"{command.type.value}: {previous.phase.value}[{previous.section_index}] -> {state.phase.value}[{state.section_index}]")
        return state

    async def _load_context(self) -> WizardContext:
        filing = await self.backend.get_filing(self.filing_id)
        if filing is None:
            raise RecordNotFoundError(f"Filing {self.filing_id} not found")
        schema = self.registry.get_schema(filing.tax_year, filing.kind)

        if filing.kind.is_business:
            self._persons = []
            self._business = await self.backend.get_business_record_for_filing(filing.id)
        else:
            self._persons = await self.backend.list_person_records(filing.id)
            self._business = None
        self._filing = filing

        return WizardContext.build(
            filing,
            schema,
            persons=self._persons,
            business=self._business,
            settings=self.wizard_settings,
            pending=self.answers.pending,
        )

    async def _apply(self, command: Command) -> WizardState:
        context = await self._load_context()
        return transition(self._state, command, context)

    # -------------------------------------------------------------------------
    # Commands with backend work
    # -------------------------------------------------------------------------

    async def _init(self, command: Command) -> WizardState:
        filing = await self.backend.get_filing(self.filing_id)
        if filing is None:
            raise RecordNotFoundError(f"Filing {self.filing_id} not found")

        if filing.status.is_resumable:
            if filing.kind.is_business:
                await self.records.ensure_business_record(filing)
            else:
                await self.records.add_person(filing.id, RecordRole.PRIMARY)

        context = await self._load_context()
        return transition(WizardState(), command, context)

    async def _answer(self, command: Command) -> WizardState:
        context = await self._load_context()
        # raises unless a record is active
        state = transition(self._state, command, context)

        record = context.record(self._state.record_id)
        after, cleared = apply_answers(context.schema, record.role.value, record.answers, command.answers)

        staged = dict(command.answers)
        for key in cleared:
            if key not in staged:
                staged[key] = None
        if len(staged) > len(command.answers):
            logger.debug(f"Clearing {len(staged) - len(command.answers)} hidden answer(s) on record {record.id}")

        self.answers.stage(record.id, staged)

        conflict = await self._check_identity_change(record.answers, after)
        if conflict is not None:
            details = conflict.to_dict()
            details.pop("message", None)
            state = state.with_notice(Notice(kind=NoticeKind.CONFLICT, message=conflict.message, details=details))
        return state

    async def _check_identity_change(self, before, after) -> Optional[ConflictError]:
        """
        Early duplicate warning for business filings.

        Runs when the business number or trust account number changes; the
        edit itself is never blocked. Submission runs the same check again.
        """
        if self._business is None or self._filing is None:
            return None
        key, _ = BUSINESS_IDENTITY_KEYS[self._filing.kind]
        new_key = normalize_identity_key(after.get(key))
        if not new_key or new_key == normalize_identity_key(before.get(key)):
            return None

        candidate = self._business.model_copy(update={"answers": dict(after)})
        try:
            conflict = await self.protocol.check_duplicate_identity(self._filing, candidate)
        except TransportError as e:
            logger.warning(f"Duplicate check skipped for filing {self.filing_id}: {e.message}")
            return None
        if conflict is not None:
            logger.info(f"Filing {self.filing_id} uses an identifying key that is already on file")
        return conflict

    async def _add_spouse(self, command: Command) -> WizardState:
        if self._state.phase != Phase.SPOUSE_CHECKPOINT:
            raise TransitionError(
                "A spouse can only be added at the spouse checkpoint",
                current_phase=self._state.phase.value,
                command=command.type.value,
            )
        spouse = await self.records.add_person(self.filing_id, RecordRole.SPOUSE)
        context = await self._load_context()
        return transition(self._state, replace(command, record_id=spouse.id), context)

    async def _add_dependents(self, command: Command) -> WizardState:
        if self._state.phase != Phase.DEPENDENT_CHECKPOINT:
            raise TransitionError(
                "Dependents can only be added at the dependents checkpoint",
                current_phase=self._state.phase.value,
                command=command.type.value,
            )
        context = await self._load_context()
        # one record per income earner; earners that already have one are skipped
        to_create = context.earners_without_record()
        if command.count is not None:
            to_create = to_create[:max(0, command.count)]

        created = await self.records.add_dependents(self.filing_id, to_create)
        logger.info(f"Created {len(created)} dependent record(s) for filing {self.filing_id}")

        context = await self._load_context()
        return transition(self._state, replace(command, record_ids=tuple(r.id for r in created)), context)

    async def _save_and_exit(self, command: Command) -> WizardState:
        context = await self._load_context()
        state = transition(self._state, command, context)
        await self._save_progress(state)
        return state

    async def _submit(self, command: Command) -> WizardState:
        if self._state.phase != Phase.REVIEW:
            raise TransitionError(
                "Submission is only possible from the review step",
                current_phase=self._state.phase.value,
                command=command.type.value,
            )
        result = await self.protocol.submit(self.filing_id)
        if not isinstance(result, SubmissionOk):
            return self._state.with_notice(submission_notice(result))

        context = await self._load_context()
        state = transition(self._state, command, context)
        return state.with_notice(submission_notice(result))

    # -------------------------------------------------------------------------
    # Side effects after a transition
    # -------------------------------------------------------------------------

    async def _after(self, previous: WizardState, state: WizardState, command: Command) -> None:
        moved = (
            state.phase != previous.phase
            or state.section_index != previous.section_index
            or state.record_id != previous.record_id
        )

        if (
            command.type == CommandType.NEXT_SECTION
            and moved
            and not state.errors
            and self._filing is not None
            and self._filing.status == FilingStatus.DRAFT
        ):
            await self._mark_in_progress()

        if moved and state.phase not in (Phase.IDLE, Phase.SUBMITTED):
            await self._save_progress(state)

    async def _mark_in_progress(self) -> None:
        filing = self._filing.model_copy(update={"status": FilingStatus.IN_PROGRESS})
        try:
            self._filing = await self.backend.save_filing(filing)
            logger.info(f"Filing {self.filing_id} is now IN_PROGRESS")
        except TransportError as e:
            logger.warning(f"Could not mark filing {self.filing_id} in progress: {e.message}")

    async def _save_progress(self, state: WizardState) -> None:
        """Best effort; failures are logged, never surfaced."""
        if self.progress_store is None:
            return
        try:
            await self.progress_store.save_progress(self.filing_id, state.to_progress())
        except FilingPortalError as e:
            logger.warning(f"Failed to save wizard progress for filing {self.filing_id}: {e.message}")

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    async def view(self) -> WizardView:
        """Current derived view."""
        async with self._lock:
            context = await self._load_context()
            return build_view(
                self._state,
                context,
                self._filing,
                self.pricing,
                self._persons,
                self._business,
            )

    async def close(self) -> None:
        """Write staged answers; call when the session ends."""
        async with self._lock:
            await self.answers.close()


def submission_notice(result: SubmissionResult) -> Notice:
    """Turn a submission result into a user facing notice."""
    if isinstance(result, SubmissionOk):
        reference = result.reference_number
        return Notice(
            kind=NoticeKind.INFO,
            message=f"Your filing has been submitted for review. Reference number: {reference}",
            details={"reference_number": reference},
        )
    if isinstance(result, SubmissionRejected):
        if isinstance(result.error, GateError):
            return gate_notice(result.error)
        details = result.error.to_dict()
        details.pop("message", None)
        return Notice(kind=NoticeKind.CONFLICT, message=result.error.message, details=details)
    if isinstance(result, SubmissionFatal):
        return Notice(kind=NoticeKind.FATAL, message=result.reason)
    return Notice(
        kind=NoticeKind.TRANSPORT,
        message=TRANSPORT_MESSAGE,
        details={"reason": result.reason, "operation": result.operation},
    )

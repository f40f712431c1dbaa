"""
Filing Wizard API Endpoints

Thin HTTP layer over the wizard orchestrator:
- POST /api/filings                      create a filing
- POST /api/filings/{id}/commands        dispatch a wizard command
- GET  /api/filings/{id}/view            derived view of the wizard
"""

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from filing_portal.domain.aggregates import Filing, FilingKind, RecordRole, WizardProgress
from filing_portal.domain.exceptions import FilingPortalError, RecordNotFoundError
from filing_portal.domain.repositories import IFilingBackend
from filing_portal.wizard.commands import Command, CommandType
from filing_portal.wizard.orchestrator import WizardOrchestrator
from filing_portal.wizard.phases import Phase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/filings", tags=["filings"])


class WizardSessions:
    """
    One orchestrator per filing, kept between requests so the wizard
    position survives.

    A session is only opened for a filing that exists. It is closed and
    dropped once its filing is submitted, and the least recently used
    session is closed when more than ``max_sessions`` are open.
    """

    def __init__(self, backend: IFilingBackend, max_sessions: int = 1000, **orchestrator_kwargs):
        self.backend = backend
        self.max_sessions = max_sessions
        self._orchestrator_kwargs = orchestrator_kwargs
        self._sessions: "OrderedDict[UUID, WizardOrchestrator]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, filing_id: UUID) -> bool:
        return filing_id in self._sessions

    async def open(self, filing_id: UUID) -> WizardOrchestrator:
        """
        Get the filing's session, starting one if needed.

        Raises:
            RecordNotFoundError: If the filing does not exist
        """
        wizard = self._sessions.get(filing_id)
        if wizard is not None:
            self._sessions.move_to_end(filing_id)
            return wizard

        if await self.backend.get_filing(filing_id) is None:
            raise RecordNotFoundError(f"Filing {filing_id} not found")
        if filing_id in self._sessions:
            # opened by a concurrent request meanwhile
            return self._sessions[filing_id]
        wizard = WizardOrchestrator(filing_id, self.backend, **self._orchestrator_kwargs)
        self._sessions[filing_id] = wizard

        while len(self._sessions) > self.max_sessions:
            idle_id, idle = self._sessions.popitem(last=False)
            logger.info(f"Closing idle wizard session for filing {idle_id}")
            await self._close(idle_id, idle)
        return wizard

    async def release_if_finished(self, filing_id: UUID) -> None:
        """Drop the session of a submitted filing."""
        wizard = self._sessions.get(filing_id)
        if wizard is not None and wizard.state.is_terminal:
            del self._sessions[filing_id]
            await self._close(filing_id, wizard)

    async def close_all(self) -> None:
        for filing_id, wizard in list(self._sessions.items()):
            await self._close(filing_id, wizard)
        self._sessions.clear()

    @staticmethod
    async def _close(filing_id: UUID, wizard: WizardOrchestrator) -> None:
        try:
            await wizard.close()
        except FilingPortalError as e:
            logger.error(f"Unsaved answers lost for filing {filing_id}: {e.message}")


def get_sessions(request: Request) -> WizardSessions:
    return request.app.state.wizard_sessions


def get_backend(request: Request) -> IFilingBackend:
    return request.app.state.backend


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class CreateFilingRequest(BaseModel):
    owner_id: str
    tax_year: Optional[int] = None
    kind: FilingKind = FilingKind.INDIVIDUAL
    jurisdiction: Optional[str] = None


class FilingResponse(BaseModel):
    id: str
    owner_id: str
    tax_year: Optional[int] = None
    kind: str
    status: str
    reference_number: Optional[str] = None
    total_price: Decimal
    paid_amount: Decimal

    @classmethod
    def from_filing(cls, filing: Filing) -> "FilingResponse":
        return cls(
            id=str(filing.id),
            owner_id=filing.owner_id,
            tax_year=filing.tax_year,
            kind=filing.kind.value,
            status=filing.status.value,
            reference_number=filing.reference_number,
            total_price=filing.total_price,
            paid_amount=filing.paid_amount,
        )


class CommandRequest(BaseModel):
    """A wizard command as sent by the client."""
    type: CommandType
    answers: Dict[str, Any] = Field(default_factory=dict)
    section_index: Optional[int] = None
    role: Optional[RecordRole] = None
    record_id: Optional[UUID] = None
    count: Optional[int] = Field(default=None, ge=0)
    progress: Optional[WizardProgress] = None

    def to_command(self) -> Command:
        return Command(
            type=self.type,
            answers=dict(self.answers),
            section_index=self.section_index,
            role=self.role,
            record_id=self.record_id,
            count=self.count,
            progress=self.progress,
        )


class CommandResponse(BaseModel):
    state: Dict[str, Any]
    view: Dict[str, Any]


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=FilingResponse, status_code=status.HTTP_201_CREATED)
async def create_filing(
    request: CreateFilingRequest,
    backend: IFilingBackend = Depends(get_backend),
):
    """Create an empty DRAFT filing."""
    filing = Filing(
        owner_id=request.owner_id,
        tax_year=request.tax_year,
        kind=request.kind,
        jurisdiction=request.jurisdiction,
    )
    saved = await backend.save_filing(filing)
    logger.info(f"Created {saved.kind.value} filing {saved.id} for {saved.owner_id}")
    return FilingResponse.from_filing(saved)


@router.get("/{filing_id}", response_model=FilingResponse)
async def get_filing(filing_id: UUID, backend: IFilingBackend = Depends(get_backend)):
    filing = await backend.get_filing(filing_id)
    if filing is None:
        raise RecordNotFoundError(f"Filing {filing_id} not found")
    return FilingResponse.from_filing(filing)


@router.post("/{filing_id}/commands", response_model=CommandResponse)
async def dispatch_command(
    filing_id: UUID,
    request: CommandRequest,
    sessions: WizardSessions = Depends(get_sessions),
):
    """
    Dispatch one wizard command.

    Validation, gate and duplicate failures are returned with status 200
    as errors and a notice on the state; illegal commands are 409 and
    backend outages 503.
    """
    wizard = await sessions.open(filing_id)
    state = await wizard.dispatch(request.to_command())
    view = await wizard.view()
    await sessions.release_if_finished(filing_id)
    return CommandResponse(state=state.to_dict(), view=view.model_dump(mode="json"))


@router.get("/{filing_id}/view")
async def get_view(filing_id: UUID, sessions: WizardSessions = Depends(get_sessions)):
    """Current wizard view; INIT is dispatched first when the session is new."""
    wizard = await sessions.open(filing_id)
    if wizard.state.phase == Phase.IDLE:
        await wizard.dispatch(Command(CommandType.INIT))
    view = await wizard.view()
    await sessions.release_if_finished(filing_id)
    return view.model_dump(mode="json")

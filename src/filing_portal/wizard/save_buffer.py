"""
Answer Save Buffer

Coalesces answer edits and writes them to the backend after a short quiet
period. ``flush()`` forces the write and must be awaited before the active
record changes and before submission.

Features:
- several stages of the same record become one write
- writes are serialized; a flush waits for an in-flight write, then writes
  whatever was staged since
- staged answers are never dropped: a failed write puts them back, under
  any newer edits
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from filing_portal.domain.exceptions import FilingPortalError
from filing_portal.domain.repositories import IFilingBackend

logger = logging.getLogger(__name__)


class AnswerSaveBuffer:
    """
    Debounced writer of answer maps.

    Usage:
        buffer = AnswerSaveBuffer(backend, debounce_seconds=1.0)
        buffer.stage(record_id, {"personalInfo.firstName": "Ada"})
        ...
        await buffer.flush()
    """

    def __init__(self, backend: IFilingBackend, debounce_seconds: float = 1.0):
        self.backend = backend
        self.debounce_seconds = debounce_seconds

        # record_id -> answers not yet handed to the backend
        self._staged: Dict[UUID, Dict[str, Any]] = {}
        # batch currently being written
        self._in_flight: Dict[UUID, Dict[str, Any]] = {}
        self._write_lock = asyncio.Lock()
        self._timer: Optional[asyncio.Task] = None

        # Stats
        self.total_writes = 0
        self.failed_writes = 0

    @property
    def has_pending(self) -> bool:
        return bool(self._staged or self._in_flight)

    def stage(self, record_id: UUID, answers: Dict[str, Any]) -> None:
        """
        Stage answers for a record and restart the debounce timer.

        A value of None removes the key when written.
        """
        merged = self._staged.setdefault(record_id, {})
        merged.update(answers)
        logger.debug(f"Staged {len(answers)} answer(s) for record {record_id}")
        self._schedule()

    def pending(self, record_id: UUID) -> Dict[str, Any]:
        """Answers of a record that the backend may not have yet."""
        result = dict(self._in_flight.get(record_id, {}))
        result.update(self._staged.get(record_id, {}))
        return result

    def _schedule(self) -> None:
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop: the next flush() writes it
            return
        self._timer = loop.create_task(self._debounced())

    def _cancel_timer(self) -> None:
        # only the waiting timer is cancelled, never a running write
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _debounced(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._timer = None
        try:
            await self._write_staged()
        except FilingPortalError as e:
            logger.warning(f"Background answer save failed, will retry on next flush: {e.message}")

    async def flush(self) -> int:
        """
        Write everything staged so far.

        Returns:
            Number of records written

        Raises:
            TransportError: If the backend failed; the answers stay staged
        """
        self._cancel_timer()
        return await self._write_staged()

    async def _write_staged(self) -> int:
        async with self._write_lock:
            if not self._staged:
                return 0
            batch, self._staged = self._staged, {}
            self._in_flight = batch
            written = []
            try:
                for record_id, answers in batch.items():
                    await self.backend.update_answers(record_id, answers)
                    written.append(record_id)
                    self.total_writes += 1
            except Exception:
                self.failed_writes += 1
                for record_id, answers in batch.items():
                    if record_id in written:
                        continue
                    restored = dict(answers)
                    restored.update(self._staged.get(record_id, {}))
                    self._staged[record_id] = restored
                raise
            finally:
                self._in_flight = {}

            logger.debug(f"Saved answers for {len(written)} record(s)")
            return len(written)

    async def close(self) -> None:
        """Write what is left and stop the timer."""
        await self.flush()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "pending_records": len(self._staged),
            "total_writes": self.total_writes,
            "failed_writes": self.failed_writes,
            "debounce_seconds": self.debounce_seconds,
        }

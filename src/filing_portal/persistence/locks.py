"""Per-filing mutual exclusion."""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Optional

logger = logging.getLogger(__name__)


class FilingLockRegistry:
    """
    One asyncio.Lock per filing.

    Waiters on an asyncio.Lock are woken in the order they called
    ``acquire``, so queued add requests are served in request order.
    Locks are held weakly: once no request holds or waits on a filing's
    lock it is dropped from the registry.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, filing_id: Hashable) -> bool:
        return filing_id in self._locks

    def lock_for(self, filing_id: Hashable) -> asyncio.Lock:
        lock = self._locks.get(filing_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[filing_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, filing_id: Hashable) -> AsyncIterator[None]:
        """Hold the filing's lock until the block (and its round trips) finish."""
        lock = self.lock_for(filing_id)
        if lock.locked():
            logger.debug(f"Waiting for lock on filing {filing_id}")
        async with lock:
            yield


_registry: Optional[FilingLockRegistry] = None


def get_lock_registry() -> FilingLockRegistry:
    """Get the process wide lock registry."""
    global _registry
    if _registry is None:
        _registry = FilingLockRegistry()
    return _registry

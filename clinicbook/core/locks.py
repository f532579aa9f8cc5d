import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

from clinicbook.core.errors import SlotConflictError

logger = logging.getLogger(__name__)


class DoctorLocks:
    """In-process serialization point per doctor.

    Writes to one doctor's timeline run one at a time; different doctors never
    wait on each other. Cross-process serialization comes from the row lock the
    scheduler takes on the doctor inside the same transaction.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, doctor_id: int) -> asyncio.Lock:
        lock = self._locks.get(doctor_id)
        if lock is None:
            lock = self._locks[doctor_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, doctor_id: int) -> AsyncIterator[None]:
        lock = self._lock_for(doctor_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for booking lock on doctor %s", doctor_id)
            raise SlotConflictError("Doctor's calendar is being updated, please retry")
        try:
            yield
        finally:
            lock.release()

    @asynccontextmanager
    async def hold_many(self, *doctor_ids: int) -> AsyncIterator[None]:
        """Hold several doctors at once, always acquired in ascending id order."""
        async with AsyncExitStack() as stack:
            for doctor_id in sorted(set(doctor_ids)):
                await stack.enter_async_context(self.hold(doctor_id))
            yield

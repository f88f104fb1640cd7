"""Process-wide serialization of budget-checked extraction calls.

Checking the budget and recording usage are separate database round trips.
Without serialization two requests could both pass the check before either
records its spend and together overshoot the cap. Every
check -> extract -> record sequence therefore runs inside ``ExtractionGate.run``.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExtractionGate:
    """FIFO critical section for extraction work.

    Owned by the service container, never a module global, so each test and
    each application instance gets its own. ``asyncio.Lock`` hands the lock to
    waiters in arrival order and releases it however the critical section
    exits (return, exception or cancellation), so one failing operation can
    never block those queued behind it.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._waiting = 0

    @property
    def waiting(self) -> int:
        """Number of operations queued behind the one currently running."""
        return self._waiting

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` once every previously queued operation has finished.

        Args:
            fn: Coroutine function holding the critical section

        Returns:
            Whatever ``fn`` returns; its exceptions propagate unchanged
        """
        self._waiting += 1
        try:
            await self._lock.acquire()
        finally:
            self._waiting -= 1

        try:
            return await fn()
        finally:
            self._lock.release()

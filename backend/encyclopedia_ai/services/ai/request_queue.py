"""
Process-wide FIFO gate for upstream language-model calls.

Every completion (blocking or streaming) goes through one RequestSerializer
so that, however many agent runs are active, at most one upstream call is in
flight and consecutive calls start at least ``gap_seconds`` apart. The
instance is created once by the application factory and injected into the
completion client; tests build their own.

Ordering: asyncio.Lock wakes waiters in FIFO order, which gives the global
total order on dispatches. A unit that is cancelled while queued leaves the
queue without running; a unit cancelled mid-flight still pushes back the
next start by the gap.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from encyclopedia_ai.core.logging import get_logger
from encyclopedia_ai.core.metrics import record_llm_queue_wait, set_llm_queue_depth

logger = get_logger(__name__)

T = TypeVar("T")


class RequestSerializer:
    def __init__(
        self,
        gap_seconds: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gap_seconds = gap_seconds
        self._clock = clock
        # Created on first submit so it binds to the serving event loop
        self._lock: Optional[asyncio.Lock] = None
        self._depth = 0
        self._next_start: Optional[float] = None

    @property
    def depth(self) -> int:
        """Units queued or in flight."""
        return self._depth

    async def submit(self, work: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``work`` once every earlier unit has finished and the gap elapsed.

        The caller receives the unit's own result or exception; failures do
        not stall the queue.
        """
        self._depth += 1
        position = self._depth
        set_llm_queue_depth(self._depth)
        enqueued_at = self._clock()
        if position > 1:
            logger.info("llm_queue_waiting", position=position)

        if self._lock is None:
            self._lock = asyncio.Lock()

        try:
            async with self._lock:
                if self._next_start is not None:
                    delay = self._next_start - self._clock()
                    if delay > 0:
                        await asyncio.sleep(delay)

                record_llm_queue_wait(self._clock() - enqueued_at)
                if position > 1:
                    logger.info("llm_queue_processing", was_position=position)

                try:
                    return await work()
                finally:
                    self._next_start = self._clock() + self.gap_seconds
        finally:
            self._depth = max(0, self._depth - 1)
            set_llm_queue_depth(self._depth)

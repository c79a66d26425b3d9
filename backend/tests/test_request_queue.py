"""
Tests for the RequestSerializer (FIFO gate for upstream calls).
"""
import asyncio
import time
from typing import List, Tuple

import pytest

from conftest import ScriptedCompletionClient, search_call
from encyclopedia_ai.services.ai.agent import AgentOrchestrator
from encyclopedia_ai.services.ai.request_queue import RequestSerializer
from encyclopedia_ai.services.ai.schema import AgentRequest
from encyclopedia_ai.services.ai.tools import ToolExecutor

GAP = 0.05
# Timer resolution slack
EPSILON = 0.005


def assert_serialized(intervals: List[Tuple[float, float]], gap: float) -> None:
    ordered = sorted(intervals)
    for (_, previous_end), (next_start, _) in zip(ordered, ordered[1:]):
        assert next_start >= previous_end, "upstream calls overlapped"
        assert next_start - previous_end >= gap - EPSILON, "gap not honored"


class SerializedClient(ScriptedCompletionClient):
    """Routes every call through a serializer and records when it ran."""

    def __init__(self, serializer: RequestSerializer, intervals: List[Tuple[float, float]], **kwargs):
        super().__init__(**kwargs)
        self.serializer = serializer
        self.intervals = intervals

    async def _timed(self, coro_factory):
        async def work():
            started = time.monotonic()
            try:
                return await coro_factory()
            finally:
                self.intervals.append((started, time.monotonic()))

        return await self.serializer.submit(work)

    async def complete(self, messages, max_tokens=900, temperature=0.6):
        parent = super().complete

        async def call():
            await asyncio.sleep(0.01)
            return await parent(messages, max_tokens, temperature)

        return await self._timed(call)

    async def stream(self, messages, on_token, max_tokens=1500, temperature=0.65):
        parent = super().stream

        async def call():
            await asyncio.sleep(0.01)
            return await parent(messages, on_token, max_tokens, temperature)

        return await self._timed(call)


@pytest.mark.asyncio
async def test_units_run_one_at_a_time_with_gap():
    serializer = RequestSerializer(gap_seconds=GAP)
    intervals: List[Tuple[float, float]] = []

    async def unit(i: int):
        started = time.monotonic()
        await asyncio.sleep(0.01)
        intervals.append((started, time.monotonic()))
        return i

    results = await asyncio.gather(*(serializer.submit(lambda i=i: unit(i)) for i in range(4)))

    assert results == [0, 1, 2, 3]
    assert len(intervals) == 4
    assert_serialized(intervals, GAP)
    assert serializer.depth == 0


@pytest.mark.asyncio
async def test_fifo_order():
    serializer = RequestSerializer(gap_seconds=0)
    order: List[int] = []

    async def unit(i: int):
        order.append(i)

    await asyncio.gather(*(serializer.submit(lambda i=i: unit(i)) for i in range(5)))
    assert order == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_failure_reaches_caller_and_does_not_stall_queue():
    serializer = RequestSerializer(gap_seconds=0)

    async def failing():
        raise RuntimeError("upstream down")

    async def ok():
        return "ok"

    first = asyncio.ensure_future(serializer.submit(failing))
    second = asyncio.ensure_future(serializer.submit(ok))

    with pytest.raises(RuntimeError):
        await first
    assert await second == "ok"


@pytest.mark.asyncio
async def test_gap_applies_after_failure():
    serializer = RequestSerializer(gap_seconds=GAP)

    async def failing():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await serializer.submit(failing)
    failed_at = time.monotonic()

    started: List[float] = []

    async def ok():
        started.append(time.monotonic())

    await serializer.submit(ok)
    assert started[0] - failed_at >= GAP - EPSILON


@pytest.mark.asyncio
async def test_depth_counts_queued_and_in_flight():
    serializer = RequestSerializer(gap_seconds=0)
    release = asyncio.Event()

    async def blocked():
        await release.wait()

    tasks = [asyncio.ensure_future(serializer.submit(blocked)) for _ in range(3)]
    await asyncio.sleep(0.01)
    assert serializer.depth == 3

    release.set()
    await asyncio.gather(*tasks)
    assert serializer.depth == 0


@pytest.mark.asyncio
async def test_cancelled_unit_leaves_queue_without_running():
    serializer = RequestSerializer(gap_seconds=0)
    release = asyncio.Event()
    ran: List[str] = []

    async def blocker():
        await release.wait()
        ran.append("blocker")

    async def queued():
        ran.append("queued")

    first = asyncio.ensure_future(serializer.submit(blocker))
    second = asyncio.ensure_future(serializer.submit(queued))
    await asyncio.sleep(0.01)

    second.cancel()
    release.set()
    await first
    with pytest.raises(asyncio.CancelledError):
        await second

    assert ran == ["blocker"]
    assert serializer.depth == 0


@pytest.mark.asyncio
async def test_concurrent_runs_never_overlap_upstream(article_store):
    """Two agent runs share one serializer: their calls are spaced by the gap."""
    serializer = RequestSerializer(gap_seconds=GAP)
    intervals: List[Tuple[float, float]] = []

    def orchestrator(replies):
        client = SerializedClient(serializer, intervals, replies=replies)
        return AgentOrchestrator(client, ToolExecutor(article_store), replay_delay_seconds=0)

    events_a: List = []
    events_b: List = []
    await asyncio.gather(
        orchestrator([search_call("mitosis"), "done"]).run_stream(AgentRequest(user_message="a"), events_a.append),
        orchestrator(["direct answer"]).run_stream(AgentRequest(user_message="b"), events_b.append),
    )

    # run a: 2 discovery turns + 1 stream; run b: 1 discovery turn + 1 stream
    assert len(intervals) == 5
    assert_serialized(intervals, GAP)
    assert events_a[-1].type == "done"
    assert events_b[-1].type == "done"


def test_serializer_built_outside_event_loop_serves_contended_calls():
    # Mirrors module-level app construction: no loop is running yet
    serializer = RequestSerializer(gap_seconds=0)
    order: List[int] = []

    async def unit(n: int) -> int:
        order.append(n)
        await asyncio.sleep(0.01)
        return n

    async def contend():
        return await asyncio.gather(*(serializer.submit(lambda n=n: unit(n)) for n in range(3)))

    assert asyncio.run(contend()) == [0, 1, 2]
    assert order == [0, 1, 2]
    assert serializer.depth == 0

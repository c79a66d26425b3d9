"""
Agent loop: tool discovery, tool execution and answer streaming.

Each run is a small state machine:

    DISCOVERING -> EXECUTING_TOOL | SKIPPED -> DISCOVERING ...
                -> MAX_ITER_FALLBACK -> STREAMING -> DONE
    (missing credentials) -> FAILED

Discovery turns are blocking completions that either answer or request
exactly one tool through a ``<tool_call>`` directive. Tool calls are
consumed before the answer stream starts, so directive markup never
reaches the reader. The final answer is streamed token by token.

Responsibilities:
- Own the run's messages, dedup sets and article links (never shared)
- Translate every failure into events; nothing escapes to the caller
- Emit ``done`` exactly once, as the last event of every run

NON-responsibilities:
- Does NOT serialize upstream calls (the completion client does)
- Does NOT know how tools read the store (the executor does)
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from encyclopedia_ai.core.config import Settings
from encyclopedia_ai.core.logging import bind_run_context, clear_run_context, generate_id, get_logger
from encyclopedia_ai.core.metrics import record_agent_run, record_tool_call
from encyclopedia_ai.services.ai.conversation import build_messages
from encyclopedia_ai.services.ai.dedup import DedupTracker, normalize_slug
from encyclopedia_ai.services.ai.directive import (
    MalformedDirective,
    NoDirective,
    format_directive,
    parse_tool_directive,
)
from encyclopedia_ai.services.ai.emitter import AnswerEmitter
from encyclopedia_ai.services.ai.errors import CompletionError, LLMConfigurationError
from encyclopedia_ai.services.ai.prompts import (
    ANSWER_NUDGE,
    DISCOVERY_ERROR_MESSAGE,
    MAX_ITERATIONS_NUDGE,
    NO_ANSWER,
    already_read_message,
    already_searched_message,
    build_tool_result_message,
    skip_event_message,
)
from encyclopedia_ai.services.ai.schema import (
    AgentEvent,
    AgentRequest,
    AgentRunResult,
    AnswerEvent,
    ArticleLink,
    DoneEvent,
    ErrorEvent,
    EventSink,
    Message,
    ToolCall,
    ToolDoneEvent,
    ToolErrorEvent,
    ToolResult,
    ToolSkipEvent,
    ToolStartEvent,
    is_error_result,
)
from encyclopedia_ai.services.ai.tools import (
    ToolName,
    progress_message,
    summarize_result,
    tool_label,
)

logger = get_logger(__name__)

NOT_CONFIGURED_MESSAGE = "The AI assistant is not configured."
UNEXPECTED_ERROR_MESSAGE = "Unexpected error while generating the answer."


class RunState(str, Enum):
    DISCOVERING = "discovering"
    EXECUTING_TOOL = "executing_tool"
    SKIPPED = "skipped"
    STREAMING = "streaming"
    MAX_ITER_FALLBACK = "max_iter_fallback"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = {RunState.DONE, RunState.FAILED}


@dataclass
class AgentRun:
    """Mutable state of one run; owned by a single task."""

    run_id: str
    messages: List[Message]
    emit: EventSink
    dedup: DedupTracker = field(default_factory=DedupTracker)
    article_links: List[ArticleLink] = field(default_factory=list)
    iteration: int = 0
    last_response: str = ""
    pending_call: Optional[ToolCall] = None
    replay_text: Optional[str] = None


def _metric_tool_name(name: str) -> str:
    return name if name in {t.value for t in ToolName} else "unknown"


class AgentOrchestrator:
    """
    Drives agent runs against a completion client and a tool executor.

    One instance is shared by every request; all per-run state lives in
    AgentRun, so concurrent runs never see each other's messages.
    """

    def __init__(
        self,
        completion_client,
        tool_executor,
        max_iterations: int = 4,
        discovery_max_tokens: int = 900,
        discovery_temperature: float = 0.6,
        answer_max_tokens: int = 1500,
        answer_temperature: float = 0.65,
        replay_delay_seconds: float = 0.006,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.completion_client = completion_client
        self.tool_executor = tool_executor
        self.max_iterations = max_iterations
        self.discovery_max_tokens = discovery_max_tokens
        self.discovery_temperature = discovery_temperature
        self.answer_max_tokens = answer_max_tokens
        self.answer_temperature = answer_temperature
        self.replay_delay_seconds = replay_delay_seconds

        self._handlers: Dict[RunState, Callable[[AgentRun], Awaitable[RunState]]] = {
            RunState.DISCOVERING: self._discover,
            RunState.EXECUTING_TOOL: self._execute_tool,
            RunState.SKIPPED: self._skip_tool,
            RunState.MAX_ITER_FALLBACK: self._max_iterations_fallback,
            RunState.STREAMING: self._stream_answer,
        }

    @classmethod
    def from_settings(cls, settings: Settings, completion_client, tool_executor) -> "AgentOrchestrator":
        return cls(
            completion_client=completion_client,
            tool_executor=tool_executor,
            max_iterations=settings.max_iterations,
            discovery_max_tokens=settings.discovery_max_tokens,
            discovery_temperature=settings.discovery_temperature,
            answer_max_tokens=settings.answer_max_tokens,
            answer_temperature=settings.answer_temperature,
            replay_delay_seconds=settings.replay_delay_seconds,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_stream(self, request: AgentRequest, emit: EventSink) -> RunState:
        """
        Run the agent for one user message, reporting progress through ``emit``.

        The sink receives tool events, answer chunks, at most one ``answer``
        and finally one ``done``. Returns the terminal state.
        """
        run = AgentRun(
            run_id=generate_id(),
            messages=build_messages(
                request.user_message,
                request.history,
                request.article_context,
                request.article_title,
            ),
            emit=emit,
        )
        bind_run_context(run.run_id)
        logger.info(
            "agent_run_started",
            messages=len(run.messages),
            has_article_context=bool(request.article_context),
            max_iterations=self.max_iterations,
        )

        state = RunState.DISCOVERING
        outcome = "error"
        try:
            if not self.completion_client.is_configured:
                logger.error("agent_not_configured")
                emit(ErrorEvent(message=NOT_CONFIGURED_MESSAGE))
                state = RunState.FAILED

            while state not in TERMINAL_STATES:
                logger.debug("agent_state", state=state.value)
                state = await self._handlers[state](run)

            outcome = "answered" if state == RunState.DONE else "failed"
            return state
        except Exception as exc:
            logger.error(
                "agent_run_failed",
                state=state.value,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            emit(ErrorEvent(message=UNEXPECTED_ERROR_MESSAGE))
            return RunState.FAILED
        except BaseException:
            outcome = "cancelled"
            logger.info("agent_run_cancelled", state=state.value)
            raise
        finally:
            emit(DoneEvent())
            record_agent_run(outcome, iterations=run.iteration)
            logger.info(
                "agent_run_finished",
                outcome=outcome,
                iterations=run.iteration,
                article_links=len(run.article_links),
            )
            clear_run_context()

    async def run(self, request: AgentRequest) -> AgentRunResult:
        """Run to completion and collect the answer instead of streaming it."""
        events: List[AgentEvent] = []
        await self.run_stream(request, events.append)

        answer = next((e for e in events if isinstance(e, AnswerEvent)), None)
        return AgentRunResult(
            answer=answer.content if answer and answer.content else NO_ANSWER,
            article_links=answer.article_links if answer else [],
            tools_used=[e.tool for e in events if isinstance(e, ToolDoneEvent)],
        )

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _discover(self, run: AgentRun) -> RunState:
        run.iteration += 1
        structlog.contextvars.bind_contextvars(iteration=run.iteration)
        logger.info("agent_discovery_turn", max_iterations=self.max_iterations)

        try:
            response = await self.completion_client.complete(
                run.messages,
                max_tokens=self.discovery_max_tokens,
                temperature=self.discovery_temperature,
            )
        except LLMConfigurationError as exc:
            logger.error("agent_not_configured", error=str(exc))
            run.emit(ErrorEvent(message=NOT_CONFIGURED_MESSAGE))
            return RunState.FAILED
        except CompletionError as exc:
            logger.error(
                "agent_discovery_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                status_code=exc.status_code,
            )
            run.emit(ErrorEvent(message=DISCOVERY_ERROR_MESSAGE))
            return RunState.STREAMING

        outcome = parse_tool_directive(response)

        if isinstance(outcome, NoDirective):
            logger.info("agent_no_tool_call")
            if outcome.text:
                run.messages.append({"role": "assistant", "content": outcome.text})
            run.messages.append({"role": "user", "content": ANSWER_NUDGE})
            return RunState.STREAMING

        if isinstance(outcome, MalformedDirective):
            logger.warning(
                "agent_directive_malformed",
                raw=outcome.raw[:500],
                error=outcome.error,
                has_text=bool(outcome.remainder),
            )
            # Replay the text already in hand instead of asking again
            if outcome.remainder:
                run.replay_text = outcome.remainder
            return RunState.STREAMING

        run.last_response = response
        run.pending_call = outcome.call
        return RunState.EXECUTING_TOOL

    async def _execute_tool(self, run: AgentRun) -> RunState:
        call = run.pending_call
        key = DedupTracker.identity_for(call)
        if key is not None:
            if run.dedup.is_resolved(key):
                return RunState.SKIPPED
            run.dedup.mark(key)

        result = await self._invoke(run, call)
        run.messages.append({"role": "assistant", "content": run.last_response})
        run.messages.append({"role": "user", "content": build_tool_result_message(call.tool, result)})

        if call.tool == ToolName.SEARCH_ARTICLES and not is_error_result(result):
            articles = result.get("articles") or []
            if articles and isinstance(articles[0], dict):
                await self._auto_follow(run, articles[0])

        return self._after_tool(run)

    async def _skip_tool(self, run: AgentRun) -> RunState:
        call = run.pending_call
        if call.tool == ToolName.GET_ARTICLE_CONTENT:
            identity = normalize_slug(call.params.get("slug"))
            follow_up = already_read_message(identity)
        else:
            identity = str(call.params.get("query") or "").strip()
            follow_up = already_searched_message(identity)

        logger.info("agent_tool_skipped", tool=call.tool, identity=identity)
        record_tool_call(_metric_tool_name(call.tool), "skip")
        run.emit(ToolSkipEvent(tool=call.tool, message=skip_event_message(call.tool, identity)))

        run.messages.append({"role": "assistant", "content": run.last_response})
        run.messages.append({"role": "user", "content": follow_up})
        return self._after_tool(run)

    async def _max_iterations_fallback(self, run: AgentRun) -> RunState:
        logger.info("agent_max_iterations_reached", max_iterations=self.max_iterations)
        run.messages.append({"role": "user", "content": MAX_ITERATIONS_NUDGE})
        return RunState.STREAMING

    async def _stream_answer(self, run: AgentRun) -> RunState:
        emitter = AnswerEmitter(
            self.completion_client,
            run.emit,
            max_tokens=self.answer_max_tokens,
            temperature=self.answer_temperature,
            replay_delay_seconds=self.replay_delay_seconds,
        )
        if run.replay_text is not None:
            await emitter.replay(run.replay_text, run.article_links)
        else:
            await emitter.stream_live(run.messages, run.article_links)
        return RunState.DONE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _after_tool(self, run: AgentRun) -> RunState:
        if run.iteration < self.max_iterations:
            return RunState.DISCOVERING
        return RunState.MAX_ITER_FALLBACK

    async def _auto_follow(self, run: AgentRun, top_hit: Dict[str, Any]) -> None:
        """
        Read the top search hit without waiting for the model to ask.

        The slug counts as read even if the read fails; the failure goes
        back to the model as an ``{error}`` result and is not retried.
        """
        slug = normalize_slug(top_hit.get("slug"))
        if not slug or run.dedup.is_read(slug):
            return
        run.dedup.mark_read(slug)
        logger.info("agent_auto_follow", slug=slug)

        follow = ToolCall(tool=ToolName.GET_ARTICLE_CONTENT.value, params={"slug": slug})
        result = await self._invoke(run, follow)
        run.messages.append({"role": "assistant", "content": format_directive(follow)})
        run.messages.append({"role": "user", "content": build_tool_result_message(follow.tool, result)})

    async def _invoke(self, run: AgentRun, call: ToolCall) -> ToolResult:
        """Execute one tool call and report it; faults become ``{error}`` results."""
        name = call.tool
        label = tool_label(name)
        run.emit(ToolStartEvent(tool=name, label=label, message=progress_message(name, call.params)))
        logger.info("agent_tool_started", tool=name, params=call.params)

        try:
            result = await self.tool_executor.execute(name, call.params)
        except Exception as exc:
            logger.error(
                "agent_tool_failed",
                tool=name,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            result = {"error": str(exc) or type(exc).__name__}

        if is_error_result(result):
            logger.warning("agent_tool_error_result", tool=name, error=result["error"])
            record_tool_call(_metric_tool_name(name), "error")
            run.emit(ToolErrorEvent(tool=name, message=str(result["error"])))
            return result

        summary = summarize_result(name, result)
        logger.info("agent_tool_done", tool=name, summary=summary)
        record_tool_call(_metric_tool_name(name), "done")
        run.emit(ToolDoneEvent(tool=name, label=label, result_summary=summary))

        if name == ToolName.GET_ARTICLE_CONTENT and result.get("slug") and result.get("title"):
            run.article_links.append(ArticleLink(slug=result["slug"], title=result["title"]))
        return result

"""
Assistant endpoints (mounted at /ai).

POST /ai/chat/stream   SSE stream of agent events, ending with ``done``
POST /ai/chat          same run, answer returned in one JSON document
POST /ai/simple        single direct completion, no tools
GET  /ai/health        configuration, queue and circuit status
"""
import asyncio
import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from encyclopedia_ai.core.config import Settings
from encyclopedia_ai.core.logging import get_logger
from encyclopedia_ai.services.ai.agent import AgentOrchestrator
from encyclopedia_ai.services.ai.errors import CompletionError, LLMConfigurationError
from encyclopedia_ai.services.ai.llm_client import CompletionClient
from encyclopedia_ai.services.ai.request_queue import RequestSerializer
from encyclopedia_ai.services.ai.schema import AgentEvent, AgentRequest, DoneEvent, Message

logger = get_logger(__name__)

router = APIRouter()

SIMPLE_TEXT_CHARS = 2000
SIMPLE_DEFAULT_MAX_TOKENS = 600
SIMPLE_MAX_TOKENS_CAP = 2000

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ChatRequest(BaseModel):
    """Chat body. Fields stay loosely typed and are coerced, never rejected."""

    model_config = ConfigDict(populate_by_name=True)

    message: Any = None
    history: Any = None
    article_context: Any = Field(None, alias="articleContext")
    article_title: Any = Field(None, alias="articleTitle")

    def to_agent_request(self) -> AgentRequest:
        if not isinstance(self.message, str) or not self.message.strip():
            raise HTTPException(status_code=400, detail="A message is required")
        return AgentRequest(
            user_message=self.message.strip(),
            history=self.history if isinstance(self.history, list) else [],
            article_context=self.article_context if isinstance(self.article_context, str) else None,
            article_title=self.article_title if isinstance(self.article_title, str) else None,
        )


class SimpleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: Any = None
    context: Any = None
    max_tokens: Any = Field(None, alias="maxTokens")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> AgentOrchestrator:
    return request.app.state.orchestrator


def get_completion_client(request: Request) -> CompletionClient:
    return request.app.state.completion_client


def get_serializer(request: Request) -> RequestSerializer:
    return request.app.state.serializer


def sse_format(event: AgentEvent) -> str:
    return f"data: {json.dumps(event.to_payload(), ensure_ascii=False)}\n\n"


def clamp_simple_max_tokens(value: Any) -> int:
    try:
        tokens = int(value)
    except (TypeError, ValueError):
        return SIMPLE_DEFAULT_MAX_TOKENS
    if tokens <= 0:
        return SIMPLE_DEFAULT_MAX_TOKENS
    return min(tokens, SIMPLE_MAX_TOKENS_CAP)


@router.post("/chat/stream")
async def chat_stream(
    body: ChatRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
):
    """
    Stream one agent run as Server-Sent Events.

    Each event is a ``data: <json>`` frame. The run executes in its own
    task; if the client goes away the task is cancelled, which also
    withdraws its pending upstream call from the queue.
    """
    agent_request = body.to_agent_request()

    async def event_generator():
        queue: "asyncio.Queue[AgentEvent]" = asyncio.Queue()
        task = asyncio.create_task(orchestrator.run_stream(agent_request, queue.put_nowait))
        try:
            while True:
                event = await queue.get()
                yield sse_format(event)
                if isinstance(event, DoneEvent):
                    break
            await task
        finally:
            if not task.done():
                logger.info("chat_stream_client_disconnected")
                task.cancel()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/chat")
async def chat(
    body: ChatRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Non-streaming run: the whole answer, its citations and the tools used."""
    result = await orchestrator.run(body.to_agent_request())
    return {
        "answer": result.answer,
        "articleLinks": [link.model_dump() for link in result.article_links],
        "toolsUsed": result.tools_used,
    }


@router.post("/simple")
async def simple_completion(
    body: SimpleRequest,
    client: CompletionClient = Depends(get_completion_client),
) -> Dict[str, str]:
    """Direct model call without the agent loop, for quick completions."""
    if not body.prompt:
        raise HTTPException(status_code=400, detail="A prompt is required")

    messages: List[Message] = []
    if body.context:
        messages.append({"role": "system", "content": str(body.context)[:SIMPLE_TEXT_CHARS]})
    messages.append({"role": "user", "content": str(body.prompt)[:SIMPLE_TEXT_CHARS]})

    try:
        answer = await client.complete(messages, max_tokens=clamp_simple_max_tokens(body.max_tokens))
    except LLMConfigurationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except CompletionError as exc:
        logger.error("simple_completion_failed", error=str(exc), status_code=exc.status_code)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"answer": answer}


@router.get("/health")
async def ai_health(
    settings: Settings = Depends(get_settings),
    client: CompletionClient = Depends(get_completion_client),
    serializer: RequestSerializer = Depends(get_serializer),
) -> Dict[str, Optional[Any]]:
    return {
        "configured": client.is_configured,
        "model": settings.model,
        "status": "ok",
        "queue_depth": serializer.depth,
        "circuit": client.circuit_breaker.state.value,
    }

"""
Pydantic models shared by the agent core.

Events mirror the wire contract consumed by the SSE endpoint: one JSON
object per event with a ``type`` discriminator. Field aliases keep the
camelCase names the frontend expects (``resultSummary``, ``articleLinks``).
"""
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# {"role": "system" | "user" | "assistant", "content": str}
Message = Dict[str, str]

ToolResult = Dict[str, Any]


def is_error_result(result: Any) -> bool:
    return isinstance(result, dict) and "error" in result


class ToolCall(BaseModel):
    """A tool invocation requested by the model (or synthesized by auto-follow)."""

    tool: str
    params: Dict[str, Any] = Field(default_factory=dict)


class ArticleLink(BaseModel):
    """Citation for an article actually read during a run."""

    slug: str
    title: str


class AgentRequest(BaseModel):
    """Input of one run. History is kept loosely typed and filtered downstream."""

    user_message: str
    history: List[Any] = Field(default_factory=list)
    article_context: Optional[str] = None
    article_title: Optional[str] = None


class AgentRunResult(BaseModel):
    """Outcome of a non-streaming run."""

    answer: str
    article_links: List[ArticleLink] = Field(default_factory=list)
    tools_used: List[str] = Field(default_factory=list)


# ============================================================================
# EVENTS
# ============================================================================


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ToolStartEvent(_Event):
    type: Literal["tool_start"] = "tool_start"
    tool: str
    label: str
    message: str


class ToolDoneEvent(_Event):
    type: Literal["tool_done"] = "tool_done"
    tool: str
    label: str
    result_summary: str = Field(..., alias="resultSummary")


class ToolSkipEvent(_Event):
    type: Literal["tool_skip"] = "tool_skip"
    tool: str
    message: str


class ToolErrorEvent(_Event):
    type: Literal["tool_error"] = "tool_error"
    tool: str
    message: str


class ChunkEvent(_Event):
    type: Literal["chunk"] = "chunk"
    content: str


class AnswerEvent(_Event):
    type: Literal["answer"] = "answer"
    content: str
    article_links: List[ArticleLink] = Field(default_factory=list, alias="articleLinks")


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    message: str


class DoneEvent(_Event):
    type: Literal["done"] = "done"


AgentEvent = Union[
    ToolStartEvent,
    ToolDoneEvent,
    ToolSkipEvent,
    ToolErrorEvent,
    ChunkEvent,
    AnswerEvent,
    ErrorEvent,
    DoneEvent,
]

# Owned by the transport layer; must not block.
EventSink = Callable[[AgentEvent], None]

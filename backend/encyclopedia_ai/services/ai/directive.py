"""
Tool-call directive parsing.

The model requests a tool by embedding one block in its reply:

    <tool_call>
    {"tool": "search_articles", "params": {"query": "mitosis"}}
    </tool_call>

Only the first block is honored. Parsing never raises: the outcome is one
of NoDirective, MalformedDirective or ToolDirective.
"""
import json
import re
from dataclasses import dataclass
from typing import Union

from encyclopedia_ai.services.ai.schema import ToolCall

DIRECTIVE_PATTERN = re.compile(r"<tool_call>\s*([\s\S]*?)\s*</tool_call>")
_STRIP_PATTERN = re.compile(r"<tool_call>[\s\S]*?</tool_call>")


@dataclass(frozen=True)
class NoDirective:
    text: str


@dataclass(frozen=True)
class MalformedDirective:
    raw: str
    remainder: str
    error: str


@dataclass(frozen=True)
class ToolDirective:
    call: ToolCall


DirectiveOutcome = Union[NoDirective, MalformedDirective, ToolDirective]


def strip_directives(text: str) -> str:
    """Remove every directive block and surrounding whitespace."""
    return _STRIP_PATTERN.sub("", text or "").strip()


def parse_tool_directive(text: str) -> DirectiveOutcome:
    text = text or ""
    match = DIRECTIVE_PATTERN.search(text)
    if not match:
        return NoDirective(text=strip_directives(text))

    raw = match.group(1)
    remainder = strip_directives(text)
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        return MalformedDirective(raw=raw, remainder=remainder, error=str(exc))

    if not isinstance(payload, dict) or not isinstance(payload.get("tool"), str):
        return MalformedDirective(raw=raw, remainder=remainder, error="directive is not a {tool, params} object")

    params = payload.get("params")
    return ToolDirective(call=ToolCall(tool=payload["tool"], params=params if isinstance(params, dict) else {}))


def format_directive(call: ToolCall) -> str:
    """Render a call the way the model would emit it."""
    body = json.dumps({"tool": call.tool, "params": call.params}, ensure_ascii=False)
    return f"<tool_call>\n{body}\n</tool_call>"

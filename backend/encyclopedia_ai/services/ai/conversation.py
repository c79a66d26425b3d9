"""
Initial message assembly for one agent run.

Pure transformation: every input is coerced defensively, so building the
conversation never fails.
"""
from typing import Any, List, Optional

from encyclopedia_ai.services.ai.prompts import SYSTEM_PROMPT, build_article_context_block
from encyclopedia_ai.services.ai.schema import Message

MAX_HISTORY_TURNS = 10
HISTORY_CONTENT_CHARS = 1200
USER_MESSAGE_CHARS = 2000


def sanitize_history(history: Any) -> List[Message]:
    """Keep the last well-formed turns; anything not from the assistant becomes ``user``."""
    if not isinstance(history, list):
        return []
    turns = [
        m
        for m in history
        if isinstance(m, dict)
        and isinstance(m.get("role"), str)
        and isinstance(m.get("content"), str)
    ]
    return [
        {
            "role": "assistant" if m["role"] == "assistant" else "user",
            "content": m["content"][:HISTORY_CONTENT_CHARS],
        }
        for m in turns[-MAX_HISTORY_TURNS:]
    ]


def build_messages(
    user_message: Any,
    history: Any = None,
    article_context: Optional[str] = None,
    article_title: Optional[str] = None,
    system_prompt: str = SYSTEM_PROMPT,
) -> List[Message]:
    messages: List[Message] = [{"role": "system", "content": system_prompt}]

    if article_context:
        messages.append({
            "role": "system",
            "content": build_article_context_block(article_title, article_context),
        })

    messages.extend(sanitize_history(history))
    messages.append({"role": "user", "content": str(user_message)[:USER_MESSAGE_CHARS]})
    return messages

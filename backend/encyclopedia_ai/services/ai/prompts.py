"""
Prompt templates for the encyclopedia assistant.

All model-facing text lives here: the system prompt (persona, directive
format, tool catalog, answering rules), the "current article" block, the
tool-result envelope and the synthetic nudges the orchestrator appends.
"""
import json
import re
from typing import Any, Optional, Tuple

from encyclopedia_ai.services.ai.schema import ToolResult
from encyclopedia_ai.services.ai.tools import ToolName, render_tool_schema

ARTICLE_CONTEXT_CHARS = 2800
DEFAULT_ARTICLE_TITLE = "Current article"

SYSTEM_PROMPT = f"""You are the **Encyclopedia Assistant**, the virtual guide of the University Encyclopedia.
You are knowledgeable, professional and warm. Your mission: help students understand topics with high-quality academic content.

## TOOLS
To use a tool, reply ONLY with this format (nothing before or after):
<tool_call>
{{"tool": "name", "params": {{"key": "value"}}}}
</tool_call>

{render_tool_schema()}

## FLOW
1. If the question needs encyclopedia information, use search_articles
2. If there are relevant results, use get_article_content on the best one before answering
3. Synthesize and answer, citing the source when you use the encyclopedia
4. If the encyclopedia has nothing, answer from general knowledge and say so

## RULES
- Answers of at most ~350 words (concise, academic, useful)
- Cite the source article: "According to the encyclopedia article *Title*..."
- If you already have the article the user is reading, use it first
- Do not invent academic facts; if you do not know, say so honestly
- Use basic markdown: **bold**, *italic*, lists with -"""

ANSWER_NUDGE = "Now answer the user in a clear, friendly and academic way."
MAX_ITERATIONS_NUDGE = "Answer now with what you have, clearly and concisely."
DISCOVERY_ERROR_MESSAGE = "Error querying the AI model."
FALLBACK_ANSWER = "Sorry, something went wrong while generating the answer. Please try again."
NO_ANSWER = "Could not generate an answer."

_TOOL_RESULT_PATTERN = re.compile(
    r'<tool_result tool="([^"]*)">\s*([\s\S]*?)\s*</tool_result>'
)


def build_article_context_block(title: Optional[str], content: Any) -> str:
    """System block for the article the user is currently reading."""
    return (
        "## ARTICLE IN CONTEXT (the user is reading it)\n"
        f"**Title:** {title or DEFAULT_ARTICLE_TITLE}\n\n"
        f"{str(content)[:ARTICLE_CONTEXT_CHARS]}\n"
        "---\n"
        "Use this article as the primary source for your answer."
    )


def build_tool_result_message(tool: str, result: ToolResult) -> str:
    """
    User turn carrying a tool result back to the model.

    The payload is the full JSON of the result; after a search a hint
    names the next step so the model reads the top hit (or admits the
    encyclopedia has nothing).
    """
    extra = ""
    if tool == ToolName.SEARCH_ARTICLES:
        articles = result.get("articles") if isinstance(result, dict) else None
        if articles:
            top = articles[0] if isinstance(articles[0], dict) else {}
            slug = f' (slug: "{top["slug"]}")' if top.get("slug") else ""
            extra = f"\n\nNext step: call get_article_content on the best result{slug} before answering."
        else:
            extra = (
                "\n\nNo results: answer from general knowledge and say the "
                "encyclopedia has no information on it."
            )

    payload = json.dumps(result, indent=2, ensure_ascii=False, default=str)
    return (
        f'<tool_result tool="{tool}">\n{payload}\n</tool_result>\n\n'
        f"With this information, answer the user in an academic and concise way.{extra}"
    )


def extract_tool_result(message: str) -> Optional[Tuple[str, Any]]:
    """Recover ``(tool, payload)`` from a tool-result turn, or None."""
    match = _TOOL_RESULT_PATTERN.search(message or "")
    if not match:
        return None
    try:
        return match.group(1), json.loads(match.group(2))
    except ValueError:
        return None


def already_read_message(slug: str) -> str:
    return f'"{slug}" was already read. Use that information to answer.'


def already_searched_message(query: str) -> str:
    return f'The search "{query}" was already done. Use those results.'


def skip_event_message(tool: str, identity: str) -> str:
    """Reader-facing text for a tool_skip event."""
    if tool == ToolName.GET_ARTICLE_CONTENT:
        return f'Already read "{identity}", reusing previous information'
    return f'Already searched "{identity}", reusing previous results'

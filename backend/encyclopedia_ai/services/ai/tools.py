"""
Tool catalog and executor.

The catalog is a closed set (ToolName) of read-only tools over the article
store. Definitions are rendered into the system prompt so the model knows
the directive format and parameters; labels and progress messages feed the
reader-facing progress events.

The executor is a stateless dispatcher: business failures (missing
parameter, unknown article, unknown tool) come back as ``{"error": ...}``
values; only unexpected faults (database down, driver errors) raise.
Deduplication is not its concern.
"""
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, Field

from encyclopedia_ai.core.logging import get_logger
from encyclopedia_ai.services.ai.content_store import ArticleStore
from encyclopedia_ai.services.ai.schema import ToolResult

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 5
MAX_PAGE_SIZE = 8
MAX_CATEGORY_CHARS = 60
MAX_SLUG_CHARS = 120
ARTICLE_CONTENT_LIMIT = 3500
TRUNCATION_MARKER = "\n\n[…content truncated]"


class ToolName(str, Enum):
    SEARCH_ARTICLES = "search_articles"
    GET_ARTICLE_CONTENT = "get_article_content"
    GET_CATEGORIES = "get_categories"
    GET_RECENT_ARTICLES = "get_recent_articles"


class ToolParameter(BaseModel):
    type: str
    required: bool = False
    description: str


class ToolDefinition(BaseModel):
    name: ToolName
    label: str
    description: str
    parameters: Dict[str, ToolParameter] = Field(default_factory=dict)


TOOL_DEFINITIONS: Tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name=ToolName.SEARCH_ARTICLES,
        label="Searching articles",
        description="Search encyclopedia articles by keywords. Returns titles, slugs and summaries.",
        parameters={
            "query": ToolParameter(type="string", required=True, description="Search terms"),
            "category": ToolParameter(type="string", description="Restrict to one category (optional)"),
            "limit": ToolParameter(type="number", description="Max results 1-8, default 5"),
        },
    ),
    ToolDefinition(
        name=ToolName.GET_ARTICLE_CONTENT,
        label="Reading article",
        description="Read the full content of an article by its slug. Use after search_articles.",
        parameters={
            "slug": ToolParameter(type="string", required=True, description="Slug of the article to read"),
        },
    ),
    ToolDefinition(
        name=ToolName.GET_CATEGORIES,
        label="Listing categories",
        description="List every encyclopedia category with its article count.",
    ),
    ToolDefinition(
        name=ToolName.GET_RECENT_ARTICLES,
        label="Fetching recent articles",
        description="Return recent or popular encyclopedia articles.",
        parameters={
            "sort": ToolParameter(type="string", description='"recent" or "popular"'),
            "limit": ToolParameter(type="number", description="Max results 1-8, default 5"),
        },
    ),
)

TOOLS_BY_NAME: Dict[str, ToolDefinition] = {t.name.value: t for t in TOOL_DEFINITIONS}


def tool_label(name: str) -> str:
    definition = TOOLS_BY_NAME.get(name)
    return definition.label if definition else name


def render_tool_schema(definitions: Tuple[ToolDefinition, ...] = TOOL_DEFINITIONS) -> str:
    """Markdown description of the tools, embedded in the system prompt."""
    blocks = []
    for tool in definitions:
        lines = [f"### {tool.name.value}", tool.description]
        if tool.parameters:
            lines.append("Parameters:")
            for key, param in tool.parameters.items():
                required = ", required" if param.required else ""
                lines.append(f"  - {key} ({param.type}{required}): {param.description}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def progress_message(name: str, params: Dict[str, Any]) -> str:
    """Reader-facing text for a tool_start event."""
    if name == ToolName.SEARCH_ARTICLES:
        return f'Searching articles about "{params.get("query") or ""}"…'
    if name == ToolName.GET_ARTICLE_CONTENT:
        return f'Reading article "{params.get("slug") or ""}"…'
    if name == ToolName.GET_CATEGORIES:
        return "Checking available categories…"
    if name == ToolName.GET_RECENT_ARTICLES:
        kind = "popular" if params.get("sort") == "popular" else "recent"
        return f"Fetching {kind} articles…"
    return f"Running {name}…"


def summarize_result(name: str, result: ToolResult) -> str:
    """Short human summary for a tool_done event (successful results only)."""
    if name == ToolName.SEARCH_ARTICLES:
        count = result.get("count", len(result.get("articles") or []))
        return f"{count} article(s) found"
    if name == ToolName.GET_ARTICLE_CONTENT:
        return f'"{result["title"]}"' if result.get("title") else "Content retrieved"
    if name == ToolName.GET_CATEGORIES:
        return f"{len(result.get('categories') or [])} categories"
    if name == ToolName.GET_RECENT_ARTICLES:
        return f"{len(result.get('articles') or [])} article(s)"
    return "Completed"


def clamp_page_size(value: Any) -> int:
    try:
        size = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PAGE_SIZE
    if size == 0:
        return DEFAULT_PAGE_SIZE
    return max(1, min(MAX_PAGE_SIZE, size))


class ToolExecutor:
    """Dispatches ``(name, params)`` to the matching tool implementation."""

    def __init__(self, store: ArticleStore):
        self.store = store
        self._handlers: Dict[ToolName, Callable[[Dict[str, Any]], Awaitable[ToolResult]]] = {
            ToolName.SEARCH_ARTICLES: self._search_articles,
            ToolName.GET_ARTICLE_CONTENT: self._get_article_content,
            ToolName.GET_CATEGORIES: self._get_categories,
            ToolName.GET_RECENT_ARTICLES: self._get_recent_articles,
        }
        missing = set(ToolName) - set(self._handlers)
        if missing:
            raise RuntimeError(f"tools without a handler: {sorted(m.value for m in missing)}")

    async def execute(self, name: str, params: Optional[Dict[str, Any]] = None) -> ToolResult:
        try:
            tool = ToolName(name)
        except ValueError:
            logger.warning("tool_unknown", tool=name)
            return {"error": f"Unknown tool: {name}"}
        if not isinstance(params, dict):
            params = {}
        return await self._handlers[tool](params)

    async def _search_articles(self, params: Dict[str, Any]) -> ToolResult:
        query = params.get("query")
        if not query:
            return {"error": "query is required"}
        category = params.get("category")
        category = str(category)[:MAX_CATEGORY_CHARS] if category else None

        articles = await self.store.search(str(query), category, clamp_page_size(params.get("limit")))
        return {"count": len(articles), "articles": articles}

    async def _get_article_content(self, params: Dict[str, Any]) -> ToolResult:
        slug = params.get("slug")
        if not slug:
            return {"error": "slug is required"}

        article = await self.store.get_article(str(slug)[:MAX_SLUG_CHARS])
        if not article:
            return {"error": "Article not found"}

        content = await self.store.read_content(article["slug"])
        if content is None:
            content = article.get("summary") or ""
        elif len(content) > ARTICLE_CONTENT_LIMIT:
            content = content[:ARTICLE_CONTENT_LIMIT] + TRUNCATION_MARKER

        return {
            "slug": article["slug"],
            "title": article.get("title"),
            "category": article.get("category"),
            "author": article.get("author"),
            "summary": article.get("summary"),
            "tags": article.get("tags"),
            "content": content,
        }

    async def _get_categories(self, params: Dict[str, Any]) -> ToolResult:
        return {"categories": await self.store.list_categories()}

    async def _get_recent_articles(self, params: Dict[str, Any]) -> ToolResult:
        sort = "popular" if params.get("sort") == "popular" else "recent"
        articles = await self.store.list_articles(sort, clamp_page_size(params.get("limit")))
        return {"articles": articles}

"""
Shared in-memory stubs for the agent core tests.

Nothing here performs real HTTP calls or touches a database.
"""
import copy
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from encyclopedia_ai.core.circuit_breaker import CircuitBreaker
from encyclopedia_ai.services.ai.errors import CompletionError


class ScriptedCompletionClient:
    """
    Completion client stub.

    ``replies`` feeds discovery turns in order (a str is returned, an
    exception instance is raised). ``stream_tokens`` are delivered to the
    streaming callback, then ``stream_error`` is raised if set.
    """

    def __init__(
        self,
        replies: Sequence[Union[str, Exception]] = (),
        stream_tokens: Sequence[str] = ("Mitosis ", "is cell ", "division."),
        stream_error: Optional[Exception] = None,
        configured: bool = True,
    ):
        self.replies = list(replies)
        self.stream_tokens = list(stream_tokens)
        self.stream_error = stream_error
        self.is_configured = configured
        self.model = "test-model"
        self.circuit_breaker = CircuitBreaker(name="test_llm")
        self.complete_calls: List[List[Dict[str, str]]] = []
        self.stream_calls: List[List[Dict[str, str]]] = []

    async def complete(self, messages, max_tokens: int = 900, temperature: float = 0.6) -> str:
        self.complete_calls.append(copy.deepcopy(messages))
        if not self.replies:
            return "I can answer directly."
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(self, messages, on_token, max_tokens: int = 1500, temperature: float = 0.65) -> str:
        self.stream_calls.append(copy.deepcopy(messages))
        for token in self.stream_tokens:
            on_token(token)
        if self.stream_error is not None:
            raise self.stream_error
        return "".join(self.stream_tokens)


class InMemoryArticleStore:
    """ArticleStore over plain dicts; records every call."""

    def __init__(self, articles: Optional[List[Dict[str, Any]]] = None, contents: Optional[Dict[str, str]] = None):
        self.articles = {a["slug"]: a for a in (articles or [])}
        self.contents = dict(contents or {})
        self.calls: List[tuple] = []

    async def search(self, query: str, category: Optional[str], limit: int) -> List[Dict[str, Any]]:
        self.calls.append(("search", query, category, limit))
        words = [w for w in query.lower().split() if w]
        hits = []
        for article in self.articles.values():
            haystack = f"{article.get('title', '')} {article.get('summary', '')}".lower()
            if category and article.get("category") != category:
                continue
            if all(w in haystack for w in words):
                hits.append({k: article.get(k) for k in ("slug", "title", "summary", "category")})
        return hits[:limit]

    async def get_article(self, slug: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("get_article", slug))
        return self.articles.get(slug)

    async def read_content(self, slug: str) -> Optional[str]:
        self.calls.append(("read_content", slug))
        return self.contents.get(slug)

    async def list_categories(self) -> List[Dict[str, Any]]:
        self.calls.append(("list_categories",))
        counts: Dict[str, int] = {}
        for article in self.articles.values():
            counts[article["category"]] = counts.get(article["category"], 0) + 1
        return [{"name": name, "count": count} for name, count in counts.items()]

    async def list_articles(self, sort: str, limit: int) -> List[Dict[str, Any]]:
        self.calls.append(("list_articles", sort, limit))
        key = "views" if sort == "popular" else "created_at"
        ordered = sorted(self.articles.values(), key=lambda a: a.get(key) or 0, reverse=True)
        return ordered[:limit]


MITOSIS = {
    "slug": "mitosis",
    "title": "Mitosis",
    "summary": "How a eukaryotic cell divides its nucleus.",
    "category": "Biology",
    "author": "ana",
    "tags": ["cell", "biology"],
    "views": 120,
    "created_at": 2,
}

MEIOSIS = {
    "slug": "meiosis",
    "title": "Meiosis",
    "summary": "Reductional cell division producing gametes.",
    "category": "Biology",
    "author": "ana",
    "tags": ["cell"],
    "views": 80,
    "created_at": 3,
}

ROMAN_LAW = {
    "slug": "roman-law",
    "title": "Roman Law",
    "summary": "The legal system of ancient Rome.",
    "category": "History",
    "author": "luis",
    "tags": [],
    "views": 40,
    "created_at": 1,
}


def read_call(slug: str) -> str:
    return f'<tool_call>\n{{"tool": "get_article_content", "params": {{"slug": "{slug}"}}}}\n</tool_call>'


def search_call(query: str) -> str:
    return f'<tool_call>{{"tool": "search_articles", "params": {{"query": "{query}"}}}}</tool_call>'


@pytest.fixture
def article_store() -> InMemoryArticleStore:
    return InMemoryArticleStore(
        articles=[MITOSIS, MEIOSIS, ROMAN_LAW],
        contents={"mitosis": "# Mitosis\n\nProphase, metaphase, anaphase, telophase."},
    )


@pytest.fixture
def network_error() -> CompletionError:
    return CompletionError("network error: connection refused")

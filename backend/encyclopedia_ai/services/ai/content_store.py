"""
Read-only access to the encyclopedia's published articles.

Metadata lives in Postgres (approved articles joined with their authors);
article bodies are markdown files under
``<storage>/articles/<slug>/content.md``. Tools depend on the ArticleStore
protocol only, so tests substitute an in-memory store.
"""
import asyncio
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

import asyncpg

from encyclopedia_ai.core.database_pool import get_pool
from encyclopedia_ai.core.logging import get_logger
from encyclopedia_ai.services.ai.errors import ContentStoreUnavailableError

logger = get_logger(__name__)

MAX_QUERY_CHARS = 200
MIN_WORD_CHARS = 2


class ArticleStore(Protocol):
    async def search(self, query: str, category: Optional[str], limit: int) -> List[Dict[str, Any]]:
        ...

    async def get_article(self, slug: str) -> Optional[Dict[str, Any]]:
        ...

    async def read_content(self, slug: str) -> Optional[str]:
        ...

    async def list_categories(self) -> List[Dict[str, Any]]:
        ...

    async def list_articles(self, sort: str, limit: int) -> List[Dict[str, Any]]:
        ...


def build_prefix_tsquery(raw: Any) -> str:
    """
    Turn free text into a safe prefix-matching Postgres tsquery.

    Punctuation and tsquery operators are stripped, words shorter than two
    characters dropped, and each remaining word becomes a prefix term:
    "Cell  division!" -> "cell:* & division:*". Returns "" when nothing
    usable is left.
    """
    if not raw or not isinstance(raw, str):
        return ""
    text = raw.strip()[:MAX_QUERY_CHARS].lower()
    text = re.sub(r"[^\w\s]", " ", text)
    words = [w for w in text.split() if len(w) >= MIN_WORD_CHARS]
    return " & ".join(f"{w}:*" for w in words)


def _jsonable(row: asyncpg.Record) -> Dict[str, Any]:
    item = dict(row)
    for key, value in item.items():
        if isinstance(value, (datetime, date)):
            item[key] = value.isoformat()
    return item


class PostgresArticleStore:
    """ArticleStore over the shared asyncpg pool and the markdown storage tree."""

    def __init__(
        self,
        storage_path: str,
        pool_getter: Callable[[], Optional[asyncpg.Pool]] = get_pool,
    ):
        self.storage_path = Path(storage_path)
        self._pool_getter = pool_getter

    def _pool(self) -> asyncpg.Pool:
        pool = self._pool_getter()
        if pool is None:
            raise ContentStoreUnavailableError("article database is not connected")
        return pool

    async def search(self, query: str, category: Optional[str], limit: int) -> List[Dict[str, Any]]:
        tsquery = build_prefix_tsquery(query)
        rows = await self._pool().fetch(
            """
            SELECT a.slug, a.title, a.summary, a.category, a.tags, a.views,
                   u.username AS author
            FROM articles a
            JOIN users u ON a.author_id = u.id
            WHERE a.status = 'APPROVED'
              AND ($1 = '' OR to_tsvector('simple', a.title || ' ' || coalesce(a.summary, ''))
                              @@ to_tsquery('simple', $1))
              AND ($2::text IS NULL OR a.category = $2)
            ORDER BY a.views DESC
            LIMIT $3
            """,
            tsquery,
            category,
            limit,
        )
        logger.debug("content_store_search", tsquery=tsquery, category=category, rows=len(rows))
        return [_jsonable(r) for r in rows]

    async def get_article(self, slug: str) -> Optional[Dict[str, Any]]:
        row = await self._pool().fetchrow(
            """
            SELECT a.slug, a.title, a.summary, a.category, a.tags, a.views,
                   u.username AS author, a.updated_at
            FROM articles a
            JOIN users u ON a.author_id = u.id
            WHERE a.slug = $1 AND a.status = 'APPROVED'
            LIMIT 1
            """,
            slug,
        )
        return _jsonable(row) if row else None

    async def read_content(self, slug: str) -> Optional[str]:
        """Markdown body of an article, or None if it has no stored body."""
        if not slug or "/" in slug or "\\" in slug or slug.startswith("."):
            return None
        path = self.storage_path / "articles" / slug / "content.md"
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError:
            return None

    async def list_categories(self) -> List[Dict[str, Any]]:
        rows = await self._pool().fetch(
            """
            SELECT category AS name, COUNT(*) AS count
            FROM articles
            WHERE status = 'APPROVED'
            GROUP BY category
            ORDER BY count DESC
            """
        )
        return [_jsonable(r) for r in rows]

    async def list_articles(self, sort: str, limit: int) -> List[Dict[str, Any]]:
        # Only two fixed orderings; never interpolate caller input
        order_by = "a.views DESC" if sort == "popular" else "a.created_at DESC"
        rows = await self._pool().fetch(
            f"""
            SELECT a.slug, a.title, a.summary, a.category, a.views,
                   u.username AS author
            FROM articles a
            JOIN users u ON a.author_id = u.id
            WHERE a.status = 'APPROVED'
            ORDER BY {order_by}
            LIMIT $1
            """,
            limit,
        )
        return [_jsonable(r) for r in rows]

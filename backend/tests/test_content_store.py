"""
Tests for the Postgres-backed article store (no database needed).
"""
import datetime

import pytest

from encyclopedia_ai.services.ai.content_store import PostgresArticleStore, build_prefix_tsquery
from encyclopedia_ai.services.ai.errors import ContentStoreUnavailableError


class RecordingPool:
    """Stands in for an asyncpg pool; rows are plain dicts."""

    def __init__(self, rows=None):
        self.rows = rows or []
        self.queries = []

    async def fetch(self, query, *args):
        self.queries.append((query, args))
        return self.rows

    async def fetchrow(self, query, *args):
        self.queries.append((query, args))
        return self.rows[0] if self.rows else None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Cell  division!", "cell:* & division:*"),
        ("a b of", "of:*"),
        ("mitosis & (meiosis | !x)", "mitosis:* & meiosis:*"),
        ("", ""),
        (None, ""),
        (42, ""),
        ("!!!", ""),
    ],
)
def test_build_prefix_tsquery(raw, expected):
    assert build_prefix_tsquery(raw) == expected


def test_build_prefix_tsquery_caps_input():
    query = build_prefix_tsquery("ab " * 200)
    assert query.count("ab:*") == 67


@pytest.mark.asyncio
async def test_unconnected_store_raises(tmp_path):
    store = PostgresArticleStore(str(tmp_path), pool_getter=lambda: None)
    with pytest.raises(ContentStoreUnavailableError):
        await store.search("mitosis", None, 5)


@pytest.mark.asyncio
async def test_search_passes_sanitized_parameters(tmp_path):
    pool = RecordingPool(rows=[{"slug": "mitosis", "title": "Mitosis", "updated_at": datetime.datetime(2024, 5, 1)}])
    store = PostgresArticleStore(str(tmp_path), pool_getter=lambda: pool)

    rows = await store.search("Mitosis?", "Biology", 3)

    query, args = pool.queries[0]
    assert args == ("mitosis:*", "Biology", 3)
    assert "a.status = 'APPROVED'" in query
    assert rows[0]["updated_at"] == "2024-05-01T00:00:00"


@pytest.mark.asyncio
async def test_list_articles_uses_fixed_ordering(tmp_path):
    pool = RecordingPool()
    store = PostgresArticleStore(str(tmp_path), pool_getter=lambda: pool)

    await store.list_articles("popular", 4)
    await store.list_articles("views; DROP TABLE articles", 4)

    assert "ORDER BY a.views DESC" in pool.queries[0][0]
    assert "ORDER BY a.created_at DESC" in pool.queries[1][0]
    assert "DROP" not in pool.queries[1][0]


@pytest.mark.asyncio
async def test_get_article_missing_returns_none(tmp_path):
    store = PostgresArticleStore(str(tmp_path), pool_getter=lambda: RecordingPool())
    assert await store.get_article("nope") is None


@pytest.mark.asyncio
async def test_read_content_from_storage(tmp_path):
    article_dir = tmp_path / "articles" / "mitosis"
    article_dir.mkdir(parents=True)
    (article_dir / "content.md").write_text("# Mitosis\n\nCell división.", encoding="utf-8")
    store = PostgresArticleStore(str(tmp_path), pool_getter=lambda: None)

    assert await store.read_content("mitosis") == "# Mitosis\n\nCell división."
    assert await store.read_content("meiosis") is None


@pytest.mark.asyncio
async def test_read_content_rejects_path_traversal(tmp_path):
    secret = tmp_path / "secret"
    secret.mkdir()
    (secret / "content.md").write_text("private", encoding="utf-8")
    store = PostgresArticleStore(str(tmp_path / "storage"), pool_getter=lambda: None)

    assert await store.read_content("../../secret") is None
    assert await store.read_content("..") is None
    assert await store.read_content("") is None

"""
Per-run deduplication of identity-scoped tool calls.

Reads are keyed by trimmed slug, searches by trimmed lowercased query.
A tracker lives for exactly one run and is never shared.
"""
from typing import Any, Optional, Set, Tuple

from encyclopedia_ai.services.ai.schema import ToolCall
from encyclopedia_ai.services.ai.tools import ToolName


def normalize_slug(value: Any) -> str:
    return str(value or "").strip()


def normalize_query(value: Any) -> str:
    return str(value or "").strip().lower()


class DedupTracker:
    def __init__(self) -> None:
        self._read_slugs: Set[str] = set()
        self._search_queries: Set[str] = set()

    @staticmethod
    def identity_for(call: ToolCall) -> Optional[Tuple[ToolName, str]]:
        """
        Dedup key of a call, or None when it is not identity-scoped.

        Calls with a blank slug or query get no key and reach the executor,
        which reports the missing parameter.
        """
        if call.tool == ToolName.GET_ARTICLE_CONTENT:
            tool, identity = ToolName.GET_ARTICLE_CONTENT, normalize_slug(call.params.get("slug"))
        elif call.tool == ToolName.SEARCH_ARTICLES:
            tool, identity = ToolName.SEARCH_ARTICLES, normalize_query(call.params.get("query"))
        else:
            return None
        return (tool, identity) if identity else None

    def _bucket(self, tool: ToolName) -> Set[str]:
        return self._read_slugs if tool == ToolName.GET_ARTICLE_CONTENT else self._search_queries

    def is_resolved(self, key: Tuple[ToolName, str]) -> bool:
        tool, identity = key
        return identity in self._bucket(tool)

    def mark(self, key: Tuple[ToolName, str]) -> None:
        tool, identity = key
        self._bucket(tool).add(identity)

    def is_read(self, slug: Any) -> bool:
        return normalize_slug(slug) in self._read_slugs

    def mark_read(self, slug: Any) -> None:
        self._read_slugs.add(normalize_slug(slug))

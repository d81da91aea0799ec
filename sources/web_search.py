"""Keyword search through the LLM provider's hosted web-search tool."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional

from core import ActiveSourceConfig, CandidateItem, SNIPPET_MAX_CHARS, SearchQuery, SourceType
from llm import BaseLLM, UsageTracker

from .base import SourceAdapter


logger = logging.getLogger(__name__)

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

SEARCH_PROMPT = """Search the web for the latest news and developments about: "{query}"

Find the most recent and relevant articles, blog posts, or reports from the past 24 hours. For each result, extract:
- The article title
- The URL
- A 2-3 sentence summary of the key points

Return your findings as a JSON array with this structure:
[{{"title": "...", "url": "...", "summary": "..."}}]

Return ONLY the JSON array, no other text. If you find fewer than {max_results} relevant results, that's fine. Focus on quality and recency."""


def parse_search_results(text: str) -> List[dict]:
    """Extract the first JSON array of result objects; anything unparseable yields ``[]``."""
    match = _JSON_ARRAY_RE.search(text or "")
    if not match:
        return []
    try:
        payload: Any = json.loads(match.group(0))
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, list):
        return []
    return [row for row in payload if isinstance(row, dict)]


class WebSearchAdapter(SourceAdapter):
    """Runs each active query in turn; the provider rate-limits search calls."""

    name = "web_search"
    source_type = SourceType.WEB_SEARCH
    rate_limited = True

    def __init__(self, llm: BaseLLM, max_results_per_query: int = 5, **kwargs):
        super().__init__(**kwargs)
        self.llm = llm
        self.max_results_per_query = max_results_per_query

    async def fetch(
        self,
        config: ActiveSourceConfig,
        *,
        usage: Optional[UsageTracker] = None,
    ) -> List[CandidateItem]:
        queries = [q for q in config.queries if q.active]
        if not queries:
            logger.info("web_search_skip reason=no_active_queries")
            return []

        items: List[CandidateItem] = []
        for query in queries:
            try:
                items.extend(await self._search(query, usage))
            except Exception as exc:
                logger.error("web_search_failed query=%r error=%s", query.query, exc)
        logger.info("web_search_complete queries=%d items=%d", len(queries), len(items))
        return items

    async def _search(self, query: SearchQuery, usage: Optional[UsageTracker]) -> List[CandidateItem]:
        response = await self.llm.aweb_search(
            SEARCH_PROMPT.format(query=query.query, max_results=self.max_results_per_query),
            max_tokens=4096,
        )
        if usage is not None:
            usage.record("web_search", response.usage)

        rows = parse_search_results(response.text)
        if not rows:
            logger.warning("web_search_unparseable query=%r", query.query)
            return []

        items = []
        for row in rows[: self.max_results_per_query]:
            summary = str(row.get("summary") or "")
            items.append(
                CandidateItem(
                    source_type=SourceType.WEB_SEARCH,
                    title=row.get("title") or "Untitled",
                    url=row.get("url"),
                    content=summary,
                    content_snippet=summary[:SNIPPET_MAX_CHARS],
                    metadata={
                        "query_id": query.id,
                        "query_text": query.query,
                        "category": query.category,
                    },
                )
            )
        return items

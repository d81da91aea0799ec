"""Listing-page scraper driven by per-source CSS selectors."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from core import ActiveSourceConfig, CandidateItem, SNIPPET_MAX_CHARS, Source, SourceType
from llm import UsageTracker

from .base import SourceAdapter, gather_isolated, parse_datetime, safe_truncate


logger = logging.getLogger(__name__)

MIN_ARTICLE_CHARS = 100

DEFAULT_SELECTORS: Dict[str, Any] = {
    "articleSelector": "a",
    "titleSelector": "h1",
    "contentSelector": "article, .post-content, .blog-content, .entry-content, main",
    "dateSelector": "time, .date, .published",
    "maxArticles": 5,
}


def extract_article_links(html: str, *, base_url: str, selector: str, limit: int) -> List[str]:
    """Resolve, de-duplicate and cap the article links found on a listing page."""
    soup = BeautifulSoup(html, "lxml")
    seen = set()
    urls: List[str] = []
    for node in soup.select(selector):
        if len(urls) >= limit:
            break
        href = str(node.get("href") or "").strip()
        if not href or href.startswith("#") or href.lower().startswith("javascript:"):
            continue
        full_url = urljoin(base_url, href)
        if full_url in seen:
            continue
        seen.add(full_url)
        urls.append(full_url)
    return urls


def extract_article(
    html: str,
    *,
    url: str,
    source: Source,
    title_selector: str,
    content_selector: str,
    date_selector: Optional[str] = None,
) -> Optional[CandidateItem]:
    """Build a candidate from an article page, or ``None`` when the body is missing or too short."""
    soup = BeautifulSoup(html, "lxml")

    title_node = soup.select_one(title_selector)
    title = title_node.get_text(" ", strip=True) if title_node else ""
    content_node = soup.select_one(content_selector)
    content = content_node.get_text(" ", strip=True) if content_node else ""

    if len(content) < MIN_ARTICLE_CHARS:
        logger.debug("scrape_skip_short url=%s chars=%d", url, len(content))
        return None

    published = None
    if date_selector:
        date_node = soup.select_one(date_selector)
        if date_node is not None:
            published = parse_datetime(date_node.get("datetime") or date_node.get_text(strip=True))

    return CandidateItem(
        source_id=source.id,
        source_type=SourceType.SCRAPE,
        title=title or "Untitled",
        url=url,
        content=safe_truncate(content),
        content_snippet=content[:SNIPPET_MAX_CHARS],
        published_at=published,
        metadata={"source_name": source.name, "content_length": len(content)},
    )


class ScrapeAdapter(SourceAdapter):
    """Scrapes each active ``scrape`` source; article pages are fetched one by one."""

    name = "scrape"
    source_type = SourceType.SCRAPE
    rate_limited = False

    async def fetch(
        self,
        config: ActiveSourceConfig,
        *,
        usage: Optional[UsageTracker] = None,
    ) -> List[CandidateItem]:
        sources = config.sources_of(SourceType.SCRAPE)
        if not sources:
            logger.info("scrape_skip reason=no_active_sources")
            return []

        items = await gather_isolated(self.name, sources, self._scrape_listing, describe=lambda s: s.name)
        logger.info("scrape_complete sources=%d items=%d", len(sources), len(items))
        return items

    async def _scrape_listing(self, source: Source) -> List[CandidateItem]:
        selectors = dict(DEFAULT_SELECTORS)
        selectors.update({k: v for k, v in (source.config or {}).items() if v not in (None, "")})
        list_url = selectors.get("listUrl") or source.url

        listing = await self._get_text(list_url)
        article_urls = extract_article_links(
            listing,
            base_url=list_url,
            selector=selectors["articleSelector"],
            limit=int(selectors["maxArticles"]),
        )
        if not article_urls:
            logger.warning("scrape_no_links source=%s", source.name)
            return []

        items: List[CandidateItem] = []
        for article_url in article_urls:
            try:
                html = await self._get_text(article_url)
            except Exception as exc:
                logger.warning("scrape_article_failed url=%s error=%s", article_url, exc)
                continue
            item = extract_article(
                html,
                url=article_url,
                source=source,
                title_selector=selectors["titleSelector"],
                content_selector=selectors["contentSelector"],
                date_selector=selectors.get("dateSelector"),
            )
            if item is not None:
                items.append(item)
        logger.debug("scrape_source_done source=%s items=%d", source.name, len(items))
        return items

"""RSS 2.0 / Atom feed adapter."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from core import ActiveSourceConfig, CandidateItem, SNIPPET_MAX_CHARS, Source, SourceType
from llm import UsageTracker

from .base import SourceAdapter, gather_isolated, parse_datetime, safe_truncate, strip_html


logger = logging.getLogger(__name__)

ATOM_NS = "{http://www.w3.org/2005/Atom}"
CONTENT_ENCODED = "{http://purl.org/rss/1.0/modules/content/}encoded"
DC_CREATOR = "{http://purl.org/dc/elements/1.1/}creator"


def _text(node: ET.Element, tag: str) -> str:
    child = node.find(tag)
    return str((child.text if child is not None else "") or "").strip()


def _atom_link(entry: ET.Element) -> str:
    fallback = ""
    for link in entry.findall(f"{ATOM_NS}link"):
        href = str(link.get("href") or "").strip()
        if not href:
            continue
        if link.get("rel") in (None, "alternate"):
            return href
        fallback = fallback or href
    return fallback


def parse_feed(xml_text: str, *, source: Source, cutoff: Optional[datetime] = None) -> List[CandidateItem]:
    """Parse feed XML into candidates, dropping dated entries older than ``cutoff``."""
    root = ET.fromstring(xml_text)
    items: List[CandidateItem] = []

    if root.tag == f"{ATOM_NS}feed":
        feed_title = _text(root, f"{ATOM_NS}title")
        entries = root.findall(f"{ATOM_NS}entry")
    else:
        feed_title = _text(root, "channel/title")
        entries = root.findall(".//item")

    for entry in entries:
        is_atom = entry.tag == f"{ATOM_NS}entry"
        if is_atom:
            title = _text(entry, f"{ATOM_NS}title")
            link = _atom_link(entry)
            body = _text(entry, f"{ATOM_NS}content") or _text(entry, f"{ATOM_NS}summary")
            published = parse_datetime(_text(entry, f"{ATOM_NS}published") or _text(entry, f"{ATOM_NS}updated"))
            author = _text(entry, f"{ATOM_NS}author/{ATOM_NS}name")
            categories = [c.get("term", "") for c in entry.findall(f"{ATOM_NS}category") if c.get("term")]
        else:
            title = _text(entry, "title")
            link = _text(entry, "link")
            body = _text(entry, CONTENT_ENCODED) or _text(entry, "description")
            published = parse_datetime(_text(entry, "pubDate"))
            author = _text(entry, DC_CREATOR) or _text(entry, "author")
            categories = [str(c.text or "").strip() for c in entry.findall("category") if c.text]

        # undated entries are kept
        if cutoff is not None and published is not None and published < cutoff:
            continue

        text = strip_html(body)
        items.append(
            CandidateItem(
                source_id=source.id,
                source_type=SourceType.FEED,
                title=title or "Untitled",
                url=link,
                content=safe_truncate(text),
                content_snippet=text[:SNIPPET_MAX_CHARS],
                published_at=published,
                metadata={
                    "feed_title": feed_title,
                    "author": author or None,
                    "categories": categories,
                },
            )
        )
    return items


class FeedAdapter(SourceAdapter):
    """Fetches every active feed source concurrently."""

    name = "feed"
    source_type = SourceType.FEED
    rate_limited = False

    def __init__(self, hours_back: int = 24, **kwargs):
        super().__init__(**kwargs)
        self.hours_back = hours_back

    async def fetch(
        self,
        config: ActiveSourceConfig,
        *,
        usage: Optional[UsageTracker] = None,
    ) -> List[CandidateItem]:
        sources = config.sources_of(SourceType.FEED)
        if not sources:
            logger.info("feed_skip reason=no_active_sources")
            return []

        cutoff = datetime.now(timezone.utc) - timedelta(hours=self.hours_back)

        async def _one(source: Source) -> List[CandidateItem]:
            xml_text = await self._get_text(source.url)
            items = parse_feed(xml_text, source=source, cutoff=cutoff)
            logger.debug("feed_fetched source=%s items=%d", source.name, len(items))
            return items

        items = await gather_isolated(self.name, sources, _one, describe=lambda s: s.name)
        logger.info("feed_complete feeds=%d items=%d", len(sources), len(items))
        return items

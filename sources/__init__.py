"""Source adapters: each fetches and normalizes one kind of source."""

from .base import SourceAdapter, gather_isolated, parse_datetime, safe_truncate, strip_html
from .rss import FeedAdapter, parse_feed
from .scraper import ScrapeAdapter, extract_article, extract_article_links
from .transcripts import TranscriptAdapter, extract_channel_id, parse_caption_xml, uploads_playlist_id
from .web_search import WebSearchAdapter, parse_search_results

__all__ = [
    "SourceAdapter",
    "gather_isolated",
    "parse_datetime",
    "safe_truncate",
    "strip_html",
    "FeedAdapter",
    "parse_feed",
    "ScrapeAdapter",
    "extract_article",
    "extract_article_links",
    "TranscriptAdapter",
    "extract_channel_id",
    "parse_caption_xml",
    "uploads_playlist_id",
    "WebSearchAdapter",
    "parse_search_results",
]

"""Transcript sources: YouTube channels and podcast transcript pages."""

from __future__ import annotations

import html as html_lib
import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from bs4 import BeautifulSoup

from core import ActiveSourceConfig, CandidateItem, SNIPPET_MAX_CHARS, Source, SourceType
from llm import UsageTracker

from .base import SourceAdapter, gather_isolated, parse_datetime, safe_truncate
from .scraper import MIN_ARTICLE_CHARS, extract_article_links


logger = logging.getLogger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"

_CHANNEL_URL_RE = re.compile(r"youtube\.com/channel/(UC[\w-]+)")
_CAPTION_TRACKS_RE = re.compile(r'"captionTracks":\s*(\[.*?\])')
_CAPTION_TEXT_RE = re.compile(r"<text[^>]*>([\s\S]*?)</text>")


def extract_channel_id(url: str) -> Optional[str]:
    match = _CHANNEL_URL_RE.search(url or "")
    return match.group(1) if match else None


def uploads_playlist_id(channel_id: str) -> str:
    """A channel's uploads playlist shares its id with a ``UU`` prefix."""
    return "UU" + channel_id[2:] if channel_id.startswith("UC") else channel_id


def parse_caption_xml(xml_text: str) -> str:
    parts = []
    for raw in _CAPTION_TEXT_RE.findall(xml_text or ""):
        text = html_lib.unescape(raw).replace("\n", " ").strip()
        if text:
            parts.append(text)
    return " ".join(parts)


def pick_caption_track(tracks: List[dict]) -> Optional[dict]:
    """Prefer exact English, then any English variant, then the first track."""
    if not tracks:
        return None
    for track in tracks:
        if track.get("languageCode") == "en":
            return track
    for track in tracks:
        if str(track.get("languageCode") or "").startswith("en"):
            return track
    return tracks[0]


def _is_youtube(source: Source) -> bool:
    config = source.config or {}
    return bool(config.get("channelId")) or "youtube.com" in (source.url or "")


class TranscriptAdapter(SourceAdapter):
    """
    Collects spoken-word content.

    YouTube sources (``config.channelId`` or a ``/channel/UC...`` URL) list
    recent uploads through the Data API and pull timed-text captions; they are
    skipped when no API key is configured. Other transcript sources are
    podcast pages scraped with ``episodeSelector``/``transcriptSelector``.
    """

    name = "transcript"
    source_type = SourceType.TRANSCRIPT
    rate_limited = False

    def __init__(
        self,
        youtube_api_key: Optional[str] = None,
        hours_back: int = 48,
        max_videos_per_channel: int = 3,
        max_episodes_per_source: int = 3,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.youtube_api_key = youtube_api_key
        self.hours_back = hours_back
        self.max_videos_per_channel = max_videos_per_channel
        self.max_episodes_per_source = max_episodes_per_source

    async def fetch(
        self,
        config: ActiveSourceConfig,
        *,
        usage: Optional[UsageTracker] = None,
    ) -> List[CandidateItem]:
        sources = config.sources_of(SourceType.TRANSCRIPT)
        if not sources:
            logger.info("transcript_skip reason=no_active_sources")
            return []

        channels = [s for s in sources if _is_youtube(s)]
        podcasts = [s for s in sources if not _is_youtube(s)]
        if channels and not self.youtube_api_key:
            logger.warning("transcript_youtube_skip reason=no_api_key channels=%d", len(channels))
            channels = []

        items = await gather_isolated(self.name, channels, self._fetch_channel, describe=lambda s: s.name)
        items.extend(await gather_isolated(self.name, podcasts, self._fetch_podcast, describe=lambda s: s.name))
        logger.info("transcript_complete sources=%d items=%d", len(sources), len(items))
        return items

    async def _fetch_channel(self, source: Source) -> List[CandidateItem]:
        config = source.config or {}
        channel_id = config.get("channelId") or extract_channel_id(source.url)
        if not channel_id:
            logger.warning("transcript_no_channel_id source=%s", source.name)
            return []

        published_after = datetime.now(timezone.utc) - timedelta(hours=self.hours_back)
        payload = await self._get_json(
            f"{YOUTUBE_API_BASE}/search",
            params={
                "key": self.youtube_api_key,
                "channelId": channel_id,
                "part": "snippet",
                "order": "date",
                "maxResults": str(config.get("maxVideos") or self.max_videos_per_channel),
                "publishedAfter": published_after.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "type": "video",
            },
        )

        items: List[CandidateItem] = []
        for video in payload.get("items") or []:
            video_id = (video.get("id") or {}).get("videoId")
            if not video_id:
                continue
            snippet = video.get("snippet") or {}
            transcript = await self._fetch_captions(video_id)
            text = transcript or snippet.get("description") or ""
            items.append(
                CandidateItem(
                    source_id=source.id,
                    source_type=SourceType.TRANSCRIPT,
                    title=snippet.get("title") or "Untitled Video",
                    url=f"https://www.youtube.com/watch?v={video_id}",
                    content=safe_truncate(text),
                    content_snippet=text[:SNIPPET_MAX_CHARS],
                    published_at=parse_datetime(snippet.get("publishedAt")),
                    metadata={
                        "video_id": video_id,
                        "channel_id": channel_id,
                        "uploads_playlist_id": config.get("playlistId") or uploads_playlist_id(channel_id),
                        "channel_title": snippet.get("channelTitle"),
                        "has_transcript": bool(transcript),
                    },
                )
            )
        return items

    async def _fetch_captions(self, video_id: str) -> Optional[str]:
        """Caption text for a video, or ``None`` when no track is reachable."""
        try:
            page = await self._get_text(
                f"https://www.youtube.com/watch?v={video_id}",
                headers={"Accept-Language": "en-US,en;q=0.9"},
            )
            match = _CAPTION_TRACKS_RE.search(page)
            if not match:
                return None
            track = pick_caption_track(json.loads(match.group(1)))
            if not track or not track.get("baseUrl"):
                return None
            caption_xml = await self._get_text(track["baseUrl"])
        except Exception as exc:
            logger.debug("transcript_captions_failed video_id=%s error=%s", video_id, exc)
            return None
        return parse_caption_xml(caption_xml) or None

    async def _fetch_podcast(self, source: Source) -> List[CandidateItem]:
        config = source.config or {}
        list_url = config.get("transcriptListUrl") or source.url
        listing = await self._get_text(list_url)
        episode_urls = extract_article_links(
            listing,
            base_url=list_url,
            selector=config.get("episodeSelector") or "a",
            limit=int(config.get("maxEpisodes") or self.max_episodes_per_source),
        )
        if not episode_urls:
            logger.warning("transcript_no_episode_links source=%s", source.name)
            return []

        items: List[CandidateItem] = []
        for url in episode_urls:
            try:
                html = await self._get_text(url)
            except Exception as exc:
                logger.warning("transcript_episode_failed url=%s error=%s", url, exc)
                continue
            soup = BeautifulSoup(html, "lxml")
            title_node = soup.select_one(config.get("titleSelector") or "h1")
            body_node = soup.select_one(config.get("transcriptSelector") or ".transcript, .post-content, article")
            transcript = body_node.get_text(" ", strip=True) if body_node else ""
            if len(transcript) < MIN_ARTICLE_CHARS:
                logger.debug("transcript_skip_short url=%s", url)
                continue
            items.append(
                CandidateItem(
                    source_id=source.id,
                    source_type=SourceType.TRANSCRIPT,
                    title=(title_node.get_text(" ", strip=True) if title_node else "") or "Untitled Episode",
                    url=url,
                    content=safe_truncate(transcript),
                    content_snippet=transcript[:SNIPPET_MAX_CHARS],
                    metadata={"podcast_name": source.name, "content_length": len(transcript)},
                )
            )
        return items

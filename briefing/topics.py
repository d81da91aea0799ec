"""Digest of recently published episodes, used to down-rank repeat stories."""

from __future__ import annotations

import logging
from typing import Sequence

from core import Episode
from storage import BriefingStore

from .prompts import RECENT_TOPICS_HEADER, RECENT_TOPICS_INSTRUCTION


logger = logging.getLogger(__name__)


def episode_topic_line(episode: Episode) -> str:
    titles = "; ".join(section.title for section in episode.sections if section.title)
    return f"- {episode.date}: {titles or episode.summary or 'No topics recorded'}"


def render_recent_topics(episodes: Sequence[Episode]) -> str:
    """Prompt block listing covered topics; empty when there is no history."""
    if not episodes:
        return ""
    lines = "\n".join(episode_topic_line(episode) for episode in episodes)
    header = RECENT_TOPICS_HEADER.format(count=len(episodes))
    return f"\n\n{header}\n\n{lines}\n\n{RECENT_TOPICS_INSTRUCTION}"


class RecentTopicsBuilder:
    """Builds the covered-topics block; any failure yields an empty block."""

    def __init__(self, store: BriefingStore, episode_count: int = 5):
        self.store = store
        self.episode_count = episode_count

    async def build(self) -> str:
        try:
            episodes = await self.store.recent_published_episodes(self.episode_count)
        except Exception as exc:
            logger.warning("recent_topics_unavailable error=%s", exc)
            return ""
        if episodes:
            logger.info("recent_topics_loaded episodes=%d", len(episodes))
        return render_recent_topics(episodes)

"""Relational store contract for sources, queries, raw items and episodes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from core import (
    ActiveSourceConfig,
    CandidateItem,
    ChatMessage,
    ChatSession,
    Episode,
    EpisodeStatus,
    RawItem,
    SearchQuery,
    Source,
    SourceType,
    can_transition,
)
from utils.exceptions import InvalidTransition, StorageError


EPISODE_UPDATABLE_FIELDS = frozenset(
    {
        "script",
        "clean_script",
        "summary",
        "sections",
        "source_item_ids",
        "audio_url",
        "audio_duration_seconds",
        "status",
        "metadata",
    }
)

PUBLISHED_STATUSES = (EpisodeStatus.GENERATED, EpisodeStatus.DELIVERED)


def apply_episode_update(episode: Episode, fields: Dict[str, Any]) -> Episode:
    """Return ``episode`` with ``fields`` applied; status may only move forward."""
    unknown = set(fields) - EPISODE_UPDATABLE_FIELDS
    if unknown:
        raise StorageError("Unknown episode fields", {"fields": sorted(unknown)})

    if "status" in fields:
        target = EpisodeStatus(fields["status"])
        if not can_transition(episode.status, target):
            raise InvalidTransition(
                f"Episode {episode.id} cannot move from {episode.status.value} to {target.value}",
                current=episode.status.value,
                target=target.value,
            )
        fields = {**fields, "status": target}

    payload = episode.model_dump()
    payload.update(fields)
    return Episode.model_validate(payload)


def candidate_fields(candidate: CandidateItem) -> Dict[str, Any]:
    """Only the pre-persistence fields of ``candidate`` (drops ids/scores of richer items)."""
    data = candidate.model_dump()
    return {key: data[key] for key in CandidateItem.model_fields}


def _status_values(statuses: Optional[Iterable[EpisodeStatus]]) -> Optional[List[EpisodeStatus]]:
    if statuses is None:
        return None
    return [EpisodeStatus(s) for s in statuses]


class BriefingStore(ABC):
    """
    Async persistence boundary for the pipeline.

    Implementations hand out copies; mutating a returned model never
    changes stored state.
    """

    # Sources / queries

    @abstractmethod
    async def list_sources(self, *, active_only: bool = True, source_type: Optional[SourceType] = None) -> List[Source]:
        ...

    @abstractmethod
    async def upsert_source(self, source: Source) -> Source:
        """Insert, or replace the source with the same id (or url)."""

    @abstractmethod
    async def list_queries(self, *, active_only: bool = True) -> List[SearchQuery]:
        ...

    @abstractmethod
    async def add_query(self, query: SearchQuery) -> SearchQuery:
        ...

    @abstractmethod
    async def deactivate_query(self, query_id: str) -> bool:
        ...

    async def active_config(self) -> ActiveSourceConfig:
        return ActiveSourceConfig(
            sources=await self.list_sources(active_only=True),
            queries=await self.list_queries(active_only=True),
        )

    # Raw items

    @abstractmethod
    async def insert_raw_items(self, candidates: Sequence[CandidateItem]) -> List[RawItem]:
        """Bulk insert; output order matches input order."""

    @abstractmethod
    async def recent_item_keys(self, since: datetime) -> List[Tuple[Optional[str], str]]:
        """``(url, normalized title)`` of raw items fetched at or after ``since``."""

    @abstractmethod
    async def update_raw_item(
        self,
        item_id: str,
        *,
        episode_id: Optional[str] = None,
        relevance_score: Optional[float] = None,
    ) -> bool:
        ...

    @abstractmethod
    async def get_raw_items(self, ids: Sequence[str]) -> List[RawItem]:
        """Items for ``ids`` in the requested order; unknown ids are skipped."""

    @abstractmethod
    async def count_raw_items(
        self,
        *,
        episode_id: Optional[str] = None,
        source_type: Optional[SourceType] = None,
        since: Optional[datetime] = None,
    ) -> int:
        ...

    # Episodes

    @abstractmethod
    async def create_episode(self, episode: Episode) -> Episode:
        ...

    @abstractmethod
    async def update_episode(self, episode_id: str, **fields: Any) -> Episode:
        """Apply ``fields``; raises ``InvalidTransition`` on a backwards status move."""

    @abstractmethod
    async def get_episode(self, episode_id: str) -> Optional[Episode]:
        ...

    @abstractmethod
    async def list_episodes(
        self,
        *,
        offset: int = 0,
        limit: int = 20,
        statuses: Optional[Iterable[EpisodeStatus]] = None,
    ) -> List[Episode]:
        """Newest first."""

    @abstractmethod
    async def count_episodes(self, *, statuses: Optional[Iterable[EpisodeStatus]] = None) -> int:
        ...

    async def latest_episode(self, *, statuses: Optional[Iterable[EpisodeStatus]] = None) -> Optional[Episode]:
        episodes = await self.list_episodes(offset=0, limit=1, statuses=statuses)
        return episodes[0] if episodes else None

    @abstractmethod
    async def recent_published_episodes(self, limit: int = 5) -> List[Episode]:
        """Generated/delivered episodes, newest date first."""

    async def close(self) -> None:
        return None

    # Chat

    @abstractmethod
    async def create_chat_session(self) -> ChatSession:
        ...

    @abstractmethod
    async def get_chat_session(self, session_id: str) -> Optional[ChatSession]:
        ...

    @abstractmethod
    async def add_chat_message(self, message: ChatMessage) -> ChatMessage:
        """Append a turn and touch the session; raises ``ChatSessionNotFound`` for an unknown session."""

    @abstractmethod
    async def list_chat_messages(self, session_id: str, *, limit: Optional[int] = None) -> List[ChatMessage]:
        """Oldest first; ``limit`` keeps only the latest turns."""

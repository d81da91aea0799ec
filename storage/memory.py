"""In-memory briefing store for tests, dry runs and single-process use."""

from __future__ import annotations

from datetime import datetime, timezone
from itertools import count
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from core import CandidateItem, ChatMessage, ChatSession, Episode, EpisodeStatus, RawItem, SearchQuery, Source, SourceType
from utils.exceptions import ChatSessionNotFound, StorageError

from .base import PUBLISHED_STATUSES, BriefingStore, _status_values, apply_episode_update, candidate_fields


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class InMemoryBriefingStore(BriefingStore):
    """Thread-safe store backed by dicts."""

    def __init__(self) -> None:
        self._sources: Dict[str, Source] = {}
        self._queries: Dict[str, SearchQuery] = {}
        self._raw_items: Dict[str, RawItem] = {}
        self._episodes: Dict[str, Episode] = {}
        self._episode_seq: Dict[str, int] = {}
        self._chat_sessions: Dict[str, ChatSession] = {}
        self._chat_messages: Dict[str, List[ChatMessage]] = {}
        self._seq = count()
        self._lock = Lock()

    async def list_sources(self, *, active_only: bool = True, source_type: Optional[SourceType] = None) -> List[Source]:
        with self._lock:
            rows = [
                s.model_copy(deep=True)
                for s in self._sources.values()
                if (not active_only or s.active) and (source_type is None or s.type == source_type)
            ]
        return rows

    async def upsert_source(self, source: Source) -> Source:
        with self._lock:
            source_id = source.id
            if source_id is None:
                source_id = next((sid for sid, s in self._sources.items() if s.url == source.url), None) or _new_id()
            stored = source.model_copy(update={"id": source_id}, deep=True)
            self._sources[source_id] = stored
            return stored.model_copy(deep=True)

    async def list_queries(self, *, active_only: bool = True) -> List[SearchQuery]:
        with self._lock:
            return [q.model_copy(deep=True) for q in self._queries.values() if not active_only or q.active]

    async def add_query(self, query: SearchQuery) -> SearchQuery:
        with self._lock:
            stored = query.model_copy(update={"id": query.id or _new_id()}, deep=True)
            self._queries[stored.id] = stored
            return stored.model_copy(deep=True)

    async def deactivate_query(self, query_id: str) -> bool:
        with self._lock:
            query = self._queries.get(query_id)
            if query is None:
                return False
            self._queries[query_id] = query.model_copy(update={"active": False})
            return True

    async def insert_raw_items(self, candidates: Sequence[CandidateItem]) -> List[RawItem]:
        now = _utcnow()
        with self._lock:
            inserted = []
            for candidate in candidates:
                item = RawItem(**candidate_fields(candidate), id=_new_id(), fetched_at=now)
                self._raw_items[item.id] = item
                inserted.append(item.model_copy(deep=True))
            return inserted

    async def recent_item_keys(self, since: datetime) -> List[Tuple[Optional[str], str]]:
        with self._lock:
            return [
                (item.url, item.normalized_title())
                for item in self._raw_items.values()
                if item.fetched_at >= since
            ]

    async def update_raw_item(
        self,
        item_id: str,
        *,
        episode_id: Optional[str] = None,
        relevance_score: Optional[float] = None,
    ) -> bool:
        with self._lock:
            item = self._raw_items.get(item_id)
            if item is None:
                return False
            updates: Dict[str, Any] = {}
            if episode_id is not None:
                updates["episode_id"] = episode_id
            if relevance_score is not None:
                updates["relevance_score"] = float(relevance_score)
            self._raw_items[item_id] = item.model_copy(update=updates)
            return True

    async def get_raw_items(self, ids: Sequence[str]) -> List[RawItem]:
        with self._lock:
            return [self._raw_items[i].model_copy(deep=True) for i in ids if i in self._raw_items]

    async def count_raw_items(
        self,
        *,
        episode_id: Optional[str] = None,
        source_type: Optional[SourceType] = None,
        since: Optional[datetime] = None,
    ) -> int:
        with self._lock:
            return sum(
                1
                for item in self._raw_items.values()
                if (episode_id is None or item.episode_id == episode_id)
                and (source_type is None or item.source_type == source_type)
                and (since is None or item.fetched_at >= since)
            )

    async def create_episode(self, episode: Episode) -> Episode:
        with self._lock:
            episode_id = episode.id or _new_id()
            if episode_id in self._episodes:
                raise StorageError("Episode already exists", {"episode_id": episode_id})
            stored = episode.model_copy(update={"id": episode_id}, deep=True)
            self._episodes[episode_id] = stored
            self._episode_seq[episode_id] = next(self._seq)
            return stored.model_copy(deep=True)

    async def update_episode(self, episode_id: str, **fields: Any) -> Episode:
        with self._lock:
            current = self._episodes.get(episode_id)
            if current is None:
                raise StorageError("Episode not found", {"episode_id": episode_id})
            updated = apply_episode_update(current, fields)
            self._episodes[episode_id] = updated
            return updated.model_copy(deep=True)

    async def get_episode(self, episode_id: str) -> Optional[Episode]:
        with self._lock:
            episode = self._episodes.get(episode_id)
            return episode.model_copy(deep=True) if episode else None

    def _filtered(self, statuses: Optional[Iterable[EpisodeStatus]]) -> List[Episode]:
        wanted = _status_values(statuses)
        rows = [e for e in self._episodes.values() if wanted is None or e.status in wanted]
        rows.sort(key=lambda e: (e.created_at, self._episode_seq[e.id]), reverse=True)
        return rows

    async def list_episodes(
        self,
        *,
        offset: int = 0,
        limit: int = 20,
        statuses: Optional[Iterable[EpisodeStatus]] = None,
    ) -> List[Episode]:
        with self._lock:
            rows = self._filtered(statuses)[max(0, offset): max(0, offset) + max(0, limit)]
            return [e.model_copy(deep=True) for e in rows]

    async def count_episodes(self, *, statuses: Optional[Iterable[EpisodeStatus]] = None) -> int:
        with self._lock:
            return len(self._filtered(statuses))

    async def recent_published_episodes(self, limit: int = 5) -> List[Episode]:
        with self._lock:
            rows = self._filtered(PUBLISHED_STATUSES)
            rows.sort(key=lambda e: e.date, reverse=True)
            return [e.model_copy(deep=True) for e in rows[: max(0, limit)]]

    async def create_chat_session(self) -> ChatSession:
        with self._lock:
            session = ChatSession(id=_new_id())
            self._chat_sessions[session.id] = session
            self._chat_messages[session.id] = []
            return session.model_copy()

    async def get_chat_session(self, session_id: str) -> Optional[ChatSession]:
        with self._lock:
            session = self._chat_sessions.get(session_id)
            return session.model_copy() if session else None

    async def add_chat_message(self, message: ChatMessage) -> ChatMessage:
        with self._lock:
            session = self._chat_sessions.get(message.session_id)
            if session is None:
                raise ChatSessionNotFound(message.session_id)
            stored = message.model_copy(update={"id": message.id or _new_id()})
            self._chat_messages[session.id].append(stored)
            self._chat_sessions[session.id] = session.model_copy(update={"updated_at": _utcnow()})
            return stored.model_copy()

    async def list_chat_messages(self, session_id: str, *, limit: Optional[int] = None) -> List[ChatMessage]:
        with self._lock:
            rows = self._chat_messages.get(session_id, [])
            if limit is not None:
                rows = rows[-limit:] if limit > 0 else []
            return [m.model_copy() for m in rows]

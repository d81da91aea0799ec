"""
SQLAlchemy-backed briefing store.

Works against any SQLAlchemy URL; SQLite (file or ``sqlite://`` memory) is
the default deployment. Sessions are synchronous and run off the event loop
with ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Sequence, Tuple, TypeVar
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    func,
    make_url,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from core import (
    CandidateItem,
    ChatMessage,
    ChatRole,
    ChatSession,
    Episode,
    EpisodeStatus,
    RawItem,
    SearchQuery,
    Section,
    Source,
    SourceType,
)
from utils.exceptions import ChatSessionNotFound, InvalidTransition, StorageError

from .base import PUBLISHED_STATUSES, BriefingStore, _status_values, apply_episode_update, candidate_fields


logger = logging.getLogger(__name__)

Base = declarative_base()

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC for storage; SQLite keeps no offset."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class SourceRow(Base):
    __tablename__ = "briefing_sources"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False, unique=True)
    type = Column(String, nullable=False, index=True)
    category = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    config = Column(JSON, nullable=False, default=dict)


class SearchQueryRow(Base):
    __tablename__ = "briefing_search_queries"

    id = Column(String, primary_key=True)
    query = Column(Text, nullable=False)
    category = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    added_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False)


class RawItemRow(Base):
    __tablename__ = "briefing_raw_items"

    id = Column(String, primary_key=True)
    source_id = Column(String, nullable=True)
    source_type = Column(String, nullable=False)
    title = Column(Text, nullable=False)
    url = Column(Text, nullable=True, index=True)
    content = Column(Text, nullable=False, default="")
    content_snippet = Column(Text, nullable=False, default="")
    published_at = Column(DateTime, nullable=True)
    fetched_at = Column(DateTime, nullable=False, index=True)
    relevance_score = Column(Float, nullable=True)
    episode_id = Column(String, nullable=True, index=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
    embedded = Column(Boolean, nullable=False, default=False)


class EpisodeRow(Base):
    __tablename__ = "briefing_episodes"

    id = Column(String, primary_key=True)
    date = Column(String, nullable=False, index=True)
    script = Column(Text, nullable=False, default="")
    clean_script = Column(Text, nullable=False, default="")
    summary = Column(Text, nullable=False, default="")
    sections = Column(JSON, nullable=False, default=list)
    source_item_ids = Column(JSON, nullable=False, default=list)
    audio_url = Column(Text, nullable=True)
    audio_duration_seconds = Column(Integer, nullable=True)
    status = Column(String, nullable=False, index=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, index=True)


class ChatSessionRow(Base):
    __tablename__ = "briefing_chat_sessions"

    id = Column(String, primary_key=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class ChatMessageRow(Base):
    __tablename__ = "briefing_chat_messages"
    __table_args__ = (Index("ix_briefing_chat_messages_session_position", "session_id", "position"),)

    id = Column(String, primary_key=True)
    session_id = Column(String, ForeignKey("briefing_chat_sessions.id", ondelete="CASCADE"), nullable=False)
    # turn order within the session; timestamps can tie
    position = Column(Integer, nullable=False)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False)


def _source_model(row: SourceRow) -> Source:
    return Source(
        id=row.id,
        name=row.name,
        url=row.url,
        type=SourceType(row.type),
        category=row.category,
        active=bool(row.active),
        config=dict(row.config or {}),
    )


def _query_model(row: SearchQueryRow) -> SearchQuery:
    return SearchQuery(
        id=row.id,
        query=row.query,
        category=row.category,
        active=bool(row.active),
        added_by=row.added_by,
        created_at=_from_db(row.created_at),
    )


def _raw_item_model(row: RawItemRow) -> RawItem:
    return RawItem(
        id=row.id,
        source_id=row.source_id,
        source_type=SourceType(row.source_type),
        title=row.title,
        url=row.url,
        content=row.content or "",
        content_snippet=row.content_snippet or "",
        published_at=_from_db(row.published_at),
        fetched_at=_from_db(row.fetched_at),
        relevance_score=row.relevance_score,
        episode_id=row.episode_id,
        metadata=dict(row.meta or {}),
        embedded=bool(row.embedded),
    )


def _episode_model(row: EpisodeRow) -> Episode:
    return Episode(
        id=row.id,
        date=row.date,
        script=row.script or "",
        clean_script=row.clean_script or "",
        summary=row.summary or "",
        sections=[Section.model_validate(s) for s in (row.sections or [])],
        source_item_ids=list(row.source_item_ids or []),
        audio_url=row.audio_url,
        audio_duration_seconds=row.audio_duration_seconds,
        status=EpisodeStatus(row.status),
        metadata=dict(row.meta or {}),
        created_at=_from_db(row.created_at),
    )


def _chat_session_model(row: ChatSessionRow) -> ChatSession:
    return ChatSession(id=row.id, created_at=_from_db(row.created_at), updated_at=_from_db(row.updated_at))


def _chat_message_model(row: ChatMessageRow) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        session_id=row.session_id,
        role=ChatRole(row.role),
        content=row.content,
        created_at=_from_db(row.created_at),
    )


def _write_episode(row: EpisodeRow, episode: Episode) -> None:
    row.date = episode.date
    row.script = episode.script
    row.clean_script = episode.clean_script
    row.summary = episode.summary
    row.sections = [s.model_dump(mode="json") for s in episode.sections]
    row.source_item_ids = list(episode.source_item_ids)
    row.audio_url = episode.audio_url
    row.audio_duration_seconds = episode.audio_duration_seconds
    row.status = episode.status.value
    row.meta = episode.model_dump(mode="json")["metadata"]


class SqlBriefingStore(BriefingStore):
    """Briefing store over a SQLAlchemy engine."""

    def __init__(self, database_url: str = "sqlite://", *, create_tables: bool = True, echo: bool = False):
        self.database_url = database_url
        engine_kwargs: Dict[str, Any] = {"echo": echo}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            db_path = make_url(database_url).database
            if not db_path or db_path == ":memory:":
                engine_kwargs["poolclass"] = StaticPool
            else:
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        # SQLite allows a single writer; serialize all work through one lock
        self._lock = Lock()
        if create_tables:
            Base.metadata.create_all(bind=self.engine)
        logger.info("sql_store_ready url=%s", self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("sql_store_error error=%s", exc)
            raise StorageError(f"Database error: {exc}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def _run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        def _locked() -> T:
            with self._lock:
                return fn(*args, **kwargs)

        return await asyncio.to_thread(_locked)

    # Sources / queries

    def _list_sources(self, active_only: bool, source_type: Optional[SourceType]) -> List[Source]:
        with self._session() as session:
            stmt = select(SourceRow).order_by(SourceRow.name)
            if active_only:
                stmt = stmt.where(SourceRow.active.is_(True))
            if source_type is not None:
                stmt = stmt.where(SourceRow.type == SourceType(source_type).value)
            return [_source_model(row) for row in session.scalars(stmt)]

    async def list_sources(self, *, active_only: bool = True, source_type: Optional[SourceType] = None) -> List[Source]:
        return await self._run(self._list_sources, active_only, source_type)

    def _upsert_source(self, source: Source) -> Source:
        with self._session() as session:
            row = session.get(SourceRow, source.id) if source.id else None
            if row is None:
                row = session.scalars(select(SourceRow).where(SourceRow.url == source.url)).first()
            if row is None:
                row = SourceRow(id=source.id or uuid4().hex)
                session.add(row)
            row.name = source.name
            row.url = source.url
            row.type = source.type.value
            row.category = source.category
            row.active = source.active
            row.config = dict(source.config or {})
            session.flush()
            return _source_model(row)

    async def upsert_source(self, source: Source) -> Source:
        return await self._run(self._upsert_source, source)

    def _list_queries(self, active_only: bool) -> List[SearchQuery]:
        with self._session() as session:
            stmt = select(SearchQueryRow).order_by(SearchQueryRow.created_at)
            if active_only:
                stmt = stmt.where(SearchQueryRow.active.is_(True))
            return [_query_model(row) for row in session.scalars(stmt)]

    async def list_queries(self, *, active_only: bool = True) -> List[SearchQuery]:
        return await self._run(self._list_queries, active_only)

    def _add_query(self, query: SearchQuery) -> SearchQuery:
        with self._session() as session:
            row = SearchQueryRow(
                id=query.id or uuid4().hex,
                query=query.query,
                category=query.category,
                active=query.active,
                added_by=query.added_by,
                created_at=_to_utc(query.created_at),
            )
            session.add(row)
            session.flush()
            return _query_model(row)

    async def add_query(self, query: SearchQuery) -> SearchQuery:
        return await self._run(self._add_query, query)

    def _deactivate_query(self, query_id: str) -> bool:
        with self._session() as session:
            row = session.get(SearchQueryRow, query_id)
            if row is None:
                return False
            row.active = False
            return True

    async def deactivate_query(self, query_id: str) -> bool:
        return await self._run(self._deactivate_query, query_id)

    # Raw items

    def _insert_raw_items(self, candidates: Sequence[CandidateItem]) -> List[RawItem]:
        now = _utcnow()
        with self._session() as session:
            rows = []
            for candidate in candidates:
                data = candidate_fields(candidate)
                row = RawItemRow(
                    id=uuid4().hex,
                    source_id=data["source_id"],
                    source_type=SourceType(data["source_type"]).value,
                    title=data["title"],
                    url=data["url"],
                    content=data["content"],
                    content_snippet=data["content_snippet"],
                    published_at=_to_utc(data["published_at"]),
                    fetched_at=_to_utc(now),
                    meta=candidate.model_dump(mode="json")["metadata"],
                    embedded=False,
                )
                rows.append(row)
            session.add_all(rows)
            session.flush()
            return [_raw_item_model(row) for row in rows]

    async def insert_raw_items(self, candidates: Sequence[CandidateItem]) -> List[RawItem]:
        if not candidates:
            return []
        return await self._run(self._insert_raw_items, list(candidates))

    def _recent_item_keys(self, since: datetime) -> List[Tuple[Optional[str], str]]:
        with self._session() as session:
            stmt = select(RawItemRow.url, RawItemRow.title).where(RawItemRow.fetched_at >= _to_utc(since))
            return [(url, str(title or "").strip().lower()) for url, title in session.execute(stmt)]

    async def recent_item_keys(self, since: datetime) -> List[Tuple[Optional[str], str]]:
        return await self._run(self._recent_item_keys, since)

    def _update_raw_item(self, item_id: str, episode_id: Optional[str], relevance_score: Optional[float]) -> bool:
        with self._session() as session:
            row = session.get(RawItemRow, item_id)
            if row is None:
                return False
            if episode_id is not None:
                row.episode_id = episode_id
            if relevance_score is not None:
                row.relevance_score = float(relevance_score)
            return True

    async def update_raw_item(
        self,
        item_id: str,
        *,
        episode_id: Optional[str] = None,
        relevance_score: Optional[float] = None,
    ) -> bool:
        return await self._run(self._update_raw_item, item_id, episode_id, relevance_score)

    def _get_raw_items(self, ids: Sequence[str]) -> List[RawItem]:
        with self._session() as session:
            rows = {row.id: row for row in session.scalars(select(RawItemRow).where(RawItemRow.id.in_(list(ids))))}
            return [_raw_item_model(rows[i]) for i in ids if i in rows]

    async def get_raw_items(self, ids: Sequence[str]) -> List[RawItem]:
        if not ids:
            return []
        return await self._run(self._get_raw_items, list(ids))

    def _count_raw_items(
        self,
        episode_id: Optional[str],
        source_type: Optional[SourceType],
        since: Optional[datetime],
    ) -> int:
        with self._session() as session:
            stmt = select(func.count()).select_from(RawItemRow)
            if episode_id is not None:
                stmt = stmt.where(RawItemRow.episode_id == episode_id)
            if source_type is not None:
                stmt = stmt.where(RawItemRow.source_type == SourceType(source_type).value)
            if since is not None:
                stmt = stmt.where(RawItemRow.fetched_at >= _to_utc(since))
            return int(session.scalar(stmt) or 0)

    async def count_raw_items(
        self,
        *,
        episode_id: Optional[str] = None,
        source_type: Optional[SourceType] = None,
        since: Optional[datetime] = None,
    ) -> int:
        return await self._run(self._count_raw_items, episode_id, source_type, since)

    # Episodes

    def _create_episode(self, episode: Episode) -> Episode:
        with self._session() as session:
            episode_id = episode.id or uuid4().hex
            if session.get(EpisodeRow, episode_id) is not None:
                raise StorageError("Episode already exists", {"episode_id": episode_id})
            row = EpisodeRow(id=episode_id, created_at=_to_utc(episode.created_at))
            _write_episode(row, episode)
            session.add(row)
            session.flush()
            return _episode_model(row)

    async def create_episode(self, episode: Episode) -> Episode:
        return await self._run(self._create_episode, episode)

    def _update_episode(self, episode_id: str, fields: Dict[str, Any]) -> Episode:
        with self._session() as session:
            row = session.get(EpisodeRow, episode_id)
            if row is None:
                raise StorageError("Episode not found", {"episode_id": episode_id})
            updated = apply_episode_update(_episode_model(row), fields)
            _write_episode(row, updated)
            session.flush()
            return _episode_model(row)

    async def update_episode(self, episode_id: str, **fields: Any) -> Episode:
        try:
            return await self._run(self._update_episode, episode_id, fields)
        except InvalidTransition:
            logger.warning("episode_transition_rejected episode_id=%s fields=%s", episode_id, sorted(fields))
            raise

    def _get_episode(self, episode_id: str) -> Optional[Episode]:
        with self._session() as session:
            row = session.get(EpisodeRow, episode_id)
            return _episode_model(row) if row else None

    async def get_episode(self, episode_id: str) -> Optional[Episode]:
        return await self._run(self._get_episode, episode_id)

    @staticmethod
    def _status_filter(stmt, statuses: Optional[Iterable[EpisodeStatus]]):
        wanted = _status_values(statuses)
        if wanted is not None:
            stmt = stmt.where(EpisodeRow.status.in_([s.value for s in wanted]))
        return stmt

    def _list_episodes(self, offset: int, limit: int, statuses: Optional[Iterable[EpisodeStatus]]) -> List[Episode]:
        with self._session() as session:
            stmt = self._status_filter(select(EpisodeRow), statuses)
            stmt = stmt.order_by(EpisodeRow.created_at.desc()).offset(max(0, offset)).limit(max(0, limit))
            return [_episode_model(row) for row in session.scalars(stmt)]

    async def list_episodes(
        self,
        *,
        offset: int = 0,
        limit: int = 20,
        statuses: Optional[Iterable[EpisodeStatus]] = None,
    ) -> List[Episode]:
        return await self._run(self._list_episodes, offset, limit, statuses)

    def _count_episodes(self, statuses: Optional[Iterable[EpisodeStatus]]) -> int:
        with self._session() as session:
            stmt = self._status_filter(select(func.count()).select_from(EpisodeRow), statuses)
            return int(session.scalar(stmt) or 0)

    async def count_episodes(self, *, statuses: Optional[Iterable[EpisodeStatus]] = None) -> int:
        return await self._run(self._count_episodes, statuses)

    def _recent_published(self, limit: int) -> List[Episode]:
        with self._session() as session:
            stmt = self._status_filter(select(EpisodeRow), PUBLISHED_STATUSES)
            stmt = stmt.order_by(EpisodeRow.date.desc(), EpisodeRow.created_at.desc()).limit(max(0, limit))
            return [_episode_model(row) for row in session.scalars(stmt)]

    async def recent_published_episodes(self, limit: int = 5) -> List[Episode]:
        return await self._run(self._recent_published, limit)

    # Chat

    def _create_chat_session(self) -> ChatSession:
        now = _to_utc(_utcnow())
        with self._session() as session:
            row = ChatSessionRow(id=uuid4().hex, created_at=now, updated_at=now)
            session.add(row)
            session.flush()
            return _chat_session_model(row)

    async def create_chat_session(self) -> ChatSession:
        return await self._run(self._create_chat_session)

    def _get_chat_session(self, session_id: str) -> Optional[ChatSession]:
        with self._session() as session:
            row = session.get(ChatSessionRow, session_id)
            return _chat_session_model(row) if row else None

    async def get_chat_session(self, session_id: str) -> Optional[ChatSession]:
        return await self._run(self._get_chat_session, session_id)

    def _add_chat_message(self, message: ChatMessage) -> ChatMessage:
        with self._session() as session:
            parent = session.get(ChatSessionRow, message.session_id)
            if parent is None:
                raise ChatSessionNotFound(message.session_id)
            position = session.scalar(
                select(func.count()).select_from(ChatMessageRow).where(ChatMessageRow.session_id == parent.id)
            )
            row = ChatMessageRow(
                id=message.id or uuid4().hex,
                session_id=parent.id,
                position=int(position or 0),
                role=message.role.value,
                content=message.content,
                created_at=_to_utc(message.created_at),
            )
            session.add(row)
            parent.updated_at = _to_utc(_utcnow())
            session.flush()
            return _chat_message_model(row)

    async def add_chat_message(self, message: ChatMessage) -> ChatMessage:
        return await self._run(self._add_chat_message, message)

    def _list_chat_messages(self, session_id: str, limit: Optional[int]) -> List[ChatMessage]:
        with self._session() as session:
            stmt = select(ChatMessageRow).where(ChatMessageRow.session_id == session_id)
            if limit is None:
                rows = list(session.scalars(stmt.order_by(ChatMessageRow.position)))
            else:
                stmt = stmt.order_by(ChatMessageRow.position.desc()).limit(max(0, limit))
                rows = list(reversed(list(session.scalars(stmt))))
            return [_chat_message_model(row) for row in rows]

    async def list_chat_messages(self, session_id: str, *, limit: Optional[int] = None) -> List[ChatMessage]:
        return await self._run(self._list_chat_messages, session_id, limit)

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)

"""Canonical data contracts for the briefing pipeline."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


SNIPPET_MAX_CHARS = 500

_SECTION_LABEL_RE = re.compile(r"^(opener|closer|deeper_thread|story_[1-9][0-9]*)$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceType(str, Enum):
    """Kind of adapter that produced an item."""

    FEED = "feed"
    WEB_SEARCH = "web-search"
    TRANSCRIPT = "transcript"
    SCRAPE = "scrape"


class EpisodeStatus(str, Enum):
    """Episode lifecycle; declaration order is the forward order."""

    PENDING = "pending"
    COLLECTING = "collecting"
    SCORING = "scoring"
    WRITING = "writing"
    GENERATING = "generating"
    RENDERING = "rendering"
    PUBLISHING = "publishing"
    GENERATED = "generated"
    DELIVERED = "delivered"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self in (EpisodeStatus.GENERATED, EpisodeStatus.DELIVERED, EpisodeStatus.FAILED)

    @property
    def is_published(self) -> bool:
        return self in (EpisodeStatus.GENERATED, EpisodeStatus.DELIVERED)


_STATUS_ORDER = list(EpisodeStatus)


def can_transition(current: EpisodeStatus, target: EpisodeStatus) -> bool:
    """Forward-only moves, ``failed`` from any non-terminal state, ``generated -> delivered``."""
    current = EpisodeStatus(current)
    target = EpisodeStatus(target)
    if current == target:
        return True
    if current == EpisodeStatus.GENERATED:
        return target == EpisodeStatus.DELIVERED
    if current.is_terminal:
        return False
    if target == EpisodeStatus.FAILED:
        return True
    return target.rank > current.rank


class StepState(str, Enum):
    """State carried by a progress event."""

    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunState(str, Enum):
    """State of a dispatched pipeline run."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_finished(self) -> bool:
        return self in (RunState.COMPLETED, RunState.SKIPPED, RunState.FAILED)


class StatusTimestamps(BaseModel):
    """Lifecycle timestamps for a run."""

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CandidateItem(BaseModel):
    """Collected content before persistence."""

    source_id: Optional[str] = None
    source_type: SourceType
    title: str
    url: Optional[str] = None
    content: str = ""
    content_snippet: str = ""
    published_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("title", mode="before")
    @classmethod
    def _clean_title(cls, value: Any) -> str:
        return " ".join(str(value or "").split())

    @field_validator("url", mode="before")
    @classmethod
    def _optional_url(cls, value: Any) -> Optional[str]:
        text = str(value or "").strip()
        return text or None

    @field_validator("content_snippet", mode="before")
    @classmethod
    def _bounded_snippet(cls, value: Any) -> str:
        return str(value or "")[:SNIPPET_MAX_CHARS]

    def normalized_title(self) -> str:
        return self.title.strip().lower()


class RawItem(CandidateItem):
    """Persisted candidate with a durable identifier."""

    id: str
    fetched_at: datetime = Field(default_factory=_utcnow)
    relevance_score: Optional[float] = None
    episode_id: Optional[str] = None
    embedded: bool = False


class ScoredItem(RawItem):
    """Raw item with the score assigned for one run."""

    relevance_score: float = 0.0
    score_reason: str = ""


class Section(BaseModel):
    """Labeled script segment with timing and citation metadata."""

    label: str
    title: Optional[str] = None
    word_index: int = 0
    estimated_timestamp_seconds: int = 0
    source_ids: List[str] = Field(default_factory=list)

    @field_validator("label")
    @classmethod
    def _known_label(cls, value: str) -> str:
        if not _SECTION_LABEL_RE.match(value or ""):
            raise ValueError(f"unknown section label: {value!r}")
        return value


class Episode(BaseModel):
    """Durable output of one pipeline run."""

    id: Optional[str] = None
    date: str
    script: str = ""
    clean_script: str = ""
    summary: str = ""
    sections: List[Section] = Field(default_factory=list)
    source_item_ids: List[str] = Field(default_factory=list)
    audio_url: Optional[str] = None
    audio_duration_seconds: Optional[int] = None
    status: EpisodeStatus = EpisodeStatus.PENDING
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def word_count(self) -> int:
        return len(self.clean_script.split())


class Source(BaseModel):
    """Configured content source."""

    id: Optional[str] = None
    name: str
    url: str
    type: SourceType
    category: Optional[str] = None
    active: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)


class SearchQuery(BaseModel):
    """Keyword query run by the web-search adapter."""

    id: Optional[str] = None
    query: str
    category: Optional[str] = None
    active: bool = True
    added_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("query", mode="before")
    @classmethod
    def _non_empty_query(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("query is required")
        return text


class ActiveSourceConfig(BaseModel):
    """Everything the adapters need for one collection pass."""

    sources: List[Source] = Field(default_factory=list)
    queries: List[SearchQuery] = Field(default_factory=list)

    def sources_of(self, source_type: SourceType) -> List[Source]:
        return [source for source in self.sources if source.type == source_type and source.active]


class ScriptResult(BaseModel):
    """Artifacts derived from one generated script."""

    script: str
    clean_script: str
    sections: List[Section] = Field(default_factory=list)
    source_item_ids: List[str] = Field(default_factory=list)
    summary: str = ""
    usage: Dict[str, int] = Field(default_factory=dict)


class AudioResult(BaseModel):
    """Location and size of rendered audio."""

    audio_url: str
    audio_duration_seconds: int
    audio_size_bytes: int
    content_type: str = "audio/mpeg"


class ProgressEvent(BaseModel):
    """One step notification emitted while a pipeline runs."""

    step: int
    total_steps: int
    state: StepState
    message: str
    detail: Dict[str, Any] = Field(default_factory=dict)
    ts: datetime = Field(default_factory=_utcnow)


class RunRecord(BaseModel):
    """Observable state of one dispatched run."""

    run_id: str
    state: RunState = RunState.QUEUED
    trigger: str = "manual"
    provider: Optional[str] = None
    idempotency_key: Optional[str] = None
    episode_id: Optional[str] = None
    error: Optional[str] = None
    events: List[ProgressEvent] = Field(default_factory=list)
    timestamps: StatusTimestamps = Field(default_factory=StatusTimestamps)


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatSession(BaseModel):
    """Conversation about past episodes."""

    id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ChatMessage(BaseModel):
    """One turn of a chat session."""

    id: Optional[str] = None
    session_id: str
    role: ChatRole
    content: str
    created_at: datetime = Field(default_factory=_utcnow)

"""Core contracts and shared types for the briefing pipeline."""

from .contracts import (
    SNIPPET_MAX_CHARS,
    ActiveSourceConfig,
    AudioResult,
    CandidateItem,
    ChatMessage,
    ChatRole,
    ChatSession,
    Episode,
    EpisodeStatus,
    ProgressEvent,
    RawItem,
    RunRecord,
    RunState,
    ScoredItem,
    ScriptResult,
    SearchQuery,
    Section,
    Source,
    SourceType,
    StatusTimestamps,
    StepState,
    can_transition,
)

__all__ = [
    "SNIPPET_MAX_CHARS",
    "ActiveSourceConfig",
    "AudioResult",
    "CandidateItem",
    "ChatMessage",
    "ChatRole",
    "ChatSession",
    "Episode",
    "EpisodeStatus",
    "ProgressEvent",
    "RawItem",
    "RunRecord",
    "RunState",
    "ScoredItem",
    "ScriptResult",
    "SearchQuery",
    "Section",
    "Source",
    "SourceType",
    "StatusTimestamps",
    "StepState",
    "can_transition",
]

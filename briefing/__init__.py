"""
Briefing Module
Collection, scoring, script writing, publishing, episode chat and the run orchestrator.
"""
from .chat import EpisodeChat, render_episode_context
from .collector import AdapterReport, CollectionResult, Collector, dedup_recent
from .factory import build_adapters, build_chat, build_pipeline
from .notification import (
    SKIP_ALL_DUPLICATES,
    SKIP_LOW_SCORES,
    SKIP_NO_ITEMS,
    BaseNotifier,
    RecordingNotifier,
    SlackNotifier,
    failed_message,
    ready_message,
    skipped_message,
)
from .pipeline import TOTAL_STEPS, BriefingPipeline, StatusSink
from .publisher import EpisodePublisher, audio_path
from .scorer import (
    PLACEHOLDER_SCORE,
    RelevanceScorer,
    ScoringResult,
    attach_scores,
    parse_scores,
    select_items,
)
from .script_writer import ScriptWriter, extract_source_ids, parse_sections, section_title, strip_citations
from .timing import count_words, seconds_for_words
from .topics import RecentTopicsBuilder, render_recent_topics

__all__ = [
    # Collection
    "AdapterReport",
    "CollectionResult",
    "Collector",
    "dedup_recent",
    # Scoring
    "PLACEHOLDER_SCORE",
    "RecentTopicsBuilder",
    "RelevanceScorer",
    "ScoringResult",
    "attach_scores",
    "parse_scores",
    "render_recent_topics",
    "select_items",
    # Script
    "ScriptWriter",
    "extract_source_ids",
    "parse_sections",
    "section_title",
    "strip_citations",
    "count_words",
    "seconds_for_words",
    # Publish / notify
    "EpisodePublisher",
    "audio_path",
    "BaseNotifier",
    "RecordingNotifier",
    "SlackNotifier",
    "SKIP_ALL_DUPLICATES",
    "SKIP_LOW_SCORES",
    "SKIP_NO_ITEMS",
    "failed_message",
    "ready_message",
    "skipped_message",
    # Chat
    "EpisodeChat",
    "render_episode_context",
    # Orchestration
    "TOTAL_STEPS",
    "BriefingPipeline",
    "StatusSink",
    "build_adapters",
    "build_chat",
    "build_pipeline",
]

"""Wire a ``BriefingPipeline`` (and the episode chat) from settings; any collaborator can be injected."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from llm import BaseLLM, get_llm, normalize_provider, provider_label, scoring_model_for
from render import AudioSynthesizer, VoiceConfig, get_synthesizer
from sources import FeedAdapter, ScrapeAdapter, SourceAdapter, TranscriptAdapter, WebSearchAdapter
from storage import BlobStore, BriefingStore, get_blob_store, get_store
from utils.exceptions import ConfigurationError

from .chat import EpisodeChat
from .collector import Collector
from .notification import BaseNotifier, SlackNotifier
from .pipeline import BriefingPipeline
from .publisher import EpisodePublisher
from .scorer import RelevanceScorer
from .script_writer import ScriptWriter
from .topics import RecentTopicsBuilder


logger = logging.getLogger(__name__)

ADAPTER_NAMES = ("feed", "scrape", "transcript", "web_search")


def build_adapters(pipeline_settings, llm: BaseLLM) -> List[SourceAdapter]:
    """Adapters named in settings; sequential ones are flagged rate-limited and run last."""
    builders = {
        "feed": lambda: FeedAdapter(hours_back=pipeline_settings.feed_hours_back),
        "scrape": lambda: ScrapeAdapter(),
        "transcript": lambda: TranscriptAdapter(
            youtube_api_key=pipeline_settings.youtube_api_key,
            hours_back=pipeline_settings.transcript_hours_back,
        ),
        "web_search": lambda: WebSearchAdapter(llm, max_results_per_query=pipeline_settings.max_results_per_query),
    }
    adapters: List[SourceAdapter] = []
    seen = set()
    plan = [(name, False) for name in pipeline_settings.parallel_adapters]
    plan += [(name, True) for name in pipeline_settings.sequential_adapters]
    for name, sequential in plan:
        key = name.strip().lower().replace("-", "_")
        if key in seen:
            continue
        if key not in builders:
            raise ConfigurationError(f"Unknown source adapter: {name}", {"supported": list(ADAPTER_NAMES)})
        adapter = builders[key]()
        adapter.rate_limited = sequential
        adapters.append(adapter)
        seen.add(key)
    return adapters


def build_pipeline(
    settings=None,
    *,
    provider: Optional[str] = None,
    store: Optional[BriefingStore] = None,
    blob_store: Optional[BlobStore] = None,
    llm: Optional[BaseLLM] = None,
    synthesizer: Optional[AudioSynthesizer] = None,
    notifier: Optional[BaseNotifier] = None,
    adapters: Optional[Sequence[SourceAdapter]] = None,
) -> BriefingPipeline:
    """
    Build a pipeline for one provider.

    Args:
        settings: aggregate ``Settings``; loaded from the environment when omitted
        provider: text-generation provider for this run (settings default when unset)
        store, blob_store, llm, synthesizer, notifier, adapters: injected collaborators

    Returns:
        BriefingPipeline whose ``aclose`` releases the clients it created
    """
    if settings is None:
        from config import get_settings
        settings = get_settings()

    pipeline_settings = settings.pipeline
    provider = normalize_provider(provider or settings.llm.provider)
    owned: List[object] = []

    if llm is None:
        llm = get_llm(provider, settings=settings.llm)
        owned.append(llm)
    if store is None:
        store = get_store(settings.storage)
        owned.append(store)
    if blob_store is None:
        blob_store = get_blob_store(settings.storage)
    if synthesizer is None:
        synthesizer = get_synthesizer(settings.tts)
        owned.append(synthesizer)
    if notifier is None:
        notifier = SlackNotifier(settings.notifier.webhook_url, timeout=settings.notifier.timeout)
    if adapters is None:
        adapters = build_adapters(pipeline_settings, llm)

    configured_scoring = settings.llm.scoring_model_name if provider == normalize_provider(settings.llm.provider) else None
    topics = RecentTopicsBuilder(store, pipeline_settings.recent_episode_count)
    scorer = RelevanceScorer(
        llm,
        topics=topics,
        model=scoring_model_for(provider, configured_scoring),
        min_score=pipeline_settings.min_score,
        min_items=pipeline_settings.min_items,
        max_items=pipeline_settings.max_items,
        focus=pipeline_settings.focus,
    )
    writer = ScriptWriter(
        llm,
        focus=pipeline_settings.focus,
        min_script_chars=pipeline_settings.min_script_chars,
        words_per_minute=pipeline_settings.words_per_minute,
    )
    voice = VoiceConfig(
        voice_id=settings.tts.voice_id,
        model_id=settings.tts.model_id,
        output_format=settings.tts.output_format,
        stability=settings.tts.stability,
        similarity_boost=settings.tts.similarity_boost,
    )
    publisher = EpisodePublisher(
        synthesizer,
        blob_store,
        voice=voice,
        min_script_chars=pipeline_settings.min_audio_script_chars,
        words_per_minute=pipeline_settings.words_per_minute,
    )
    collector = Collector(
        adapters,
        store,
        window_days=pipeline_settings.dedup_window_days,
        adapter_timeout_sec=pipeline_settings.adapter_timeout_sec,
    )
    logger.info(
        "pipeline_built provider=%s model=%s adapters=%s tts=%s",
        provider,
        llm.model,
        ",".join(adapter.name for adapter in adapters),
        synthesizer.provider,
    )
    return BriefingPipeline(
        store=store,
        collector=collector,
        scorer=scorer,
        writer=writer,
        publisher=publisher,
        notifier=notifier,
        provider=provider,
        provider_label=provider_label(provider),
        timezone=pipeline_settings.timezone,
        resources=owned,
    )


def build_chat(
    settings=None,
    *,
    store: BriefingStore,
    provider: Optional[str] = None,
    llm: Optional[BaseLLM] = None,
) -> EpisodeChat:
    """Episode chat over ``store``; the LLM defaults to the configured (or requested) provider."""
    if settings is None:
        from config import get_settings
        settings = get_settings()
    if llm is None:
        llm = get_llm(normalize_provider(provider or settings.llm.provider), settings=settings.llm)
    return EpisodeChat(
        store,
        llm,
        focus=settings.pipeline.focus,
        episode_limit=settings.pipeline.chat_episode_limit,
    )

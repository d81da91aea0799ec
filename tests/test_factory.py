from __future__ import annotations

import pytest

from briefing import RecordingNotifier, build_adapters, build_chat, build_pipeline
from config import LLMSettings, PipelineSettings, Settings, StorageSettings, TTSSettings
from llm import OpenAILLM
from render import LocalWaveSynthesizer
from sources import FeedAdapter, WebSearchAdapter
from storage import InMemoryBriefingStore
from utils.exceptions import ConfigurationError

from fakes import ScriptedLLM


def _settings(**pipeline) -> Settings:
    return Settings(
        llm=LLMSettings(provider="anthropic", scoring_model_name="claude-cheap", anthropic_api_key="a", openai_api_key="o"),
        pipeline=PipelineSettings(**pipeline),
        tts=TTSSettings(provider="local"),
        storage=StorageSettings(backend="memory"),
    )


def test_build_adapters_orders_sequential_last() -> None:
    settings = PipelineSettings(parallel_adapters=["feed", "Feed"], sequential_adapters=["web-search"])

    adapters = build_adapters(settings, ScriptedLLM())

    assert [type(a) for a in adapters] == [FeedAdapter, WebSearchAdapter]
    assert [a.rate_limited for a in adapters] == [False, True]


def test_build_adapters_rejects_unknown_name() -> None:
    with pytest.raises(ConfigurationError):
        build_adapters(PipelineSettings(parallel_adapters=["newsletter"], sequential_adapters=[]), ScriptedLLM())


@pytest.mark.asyncio
async def test_build_pipeline_wires_injected_parts() -> None:
    store = InMemoryBriefingStore()
    llm = ScriptedLLM()

    pipeline = build_pipeline(
        _settings(min_items=3, max_items=5),
        provider="claude",
        store=store,
        llm=llm,
        notifier=RecordingNotifier(),
    )

    assert pipeline.provider == "anthropic"
    assert pipeline.provider_label == "Claude"
    assert pipeline.store is store
    assert pipeline.scorer.llm is llm
    assert pipeline.scorer.model == "claude-cheap"
    assert (pipeline.scorer.min_items, pipeline.scorer.max_items) == (3, 5)
    assert [a.name for a in pipeline.collector.adapters][-1] == "web_search"
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_build_pipeline_for_other_provider_uses_its_defaults() -> None:
    pipeline = build_pipeline(_settings(), provider="gpt", notifier=RecordingNotifier())

    assert isinstance(pipeline.scorer.llm, OpenAILLM)
    assert pipeline.scorer.model == "gpt-4.1-mini"
    assert isinstance(pipeline.publisher.synthesizer, LocalWaveSynthesizer)
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_build_chat_uses_requested_provider_and_focus() -> None:
    store = InMemoryBriefingStore()

    chat = build_chat(_settings(focus="retail media", chat_episode_limit=3), store=store, provider="openai")

    assert isinstance(chat.llm, OpenAILLM)
    assert chat.store is store
    assert (chat.focus, chat.episode_limit) == ("retail media", 3)
    await chat.aclose()

    with pytest.raises(ConfigurationError):
        build_chat(_settings(), store=store, provider="gemini")

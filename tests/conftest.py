from __future__ import annotations

from typing import Optional, Sequence

import pytest

from briefing import (
    BriefingPipeline,
    Collector,
    EpisodePublisher,
    RecentTopicsBuilder,
    RecordingNotifier,
    RelevanceScorer,
    ScriptWriter,
)
from llm import BaseLLM
from render import AudioSynthesizer
from sources import SourceAdapter
from storage import InMemoryBriefingStore, LocalBlobStore

from fakes import FakeSynthesizer


@pytest.fixture
def store() -> InMemoryBriefingStore:
    return InMemoryBriefingStore()


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(str(tmp_path / "audio"), "http://audio.test/files")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_pipeline(store, blob_store, notifier):
    """Wires a pipeline around the shared store, blob store and recording notifier."""

    def _make(
        *,
        adapters: Sequence[SourceAdapter],
        llm: BaseLLM,
        synthesizer: Optional[AudioSynthesizer] = None,
        min_items: int = 8,
        max_items: int = 12,
    ) -> BriefingPipeline:
        return BriefingPipeline(
            store=store,
            collector=Collector(adapters, store, window_days=7, adapter_timeout_sec=5),
            scorer=RelevanceScorer(
                llm,
                topics=RecentTopicsBuilder(store, 5),
                model="fake-scoring",
                min_items=min_items,
                max_items=max_items,
            ),
            writer=ScriptWriter(llm),
            publisher=EpisodePublisher(synthesizer or FakeSynthesizer(), blob_store),
            notifier=notifier,
            provider="anthropic",
            provider_label="Claude",
            timezone="Europe/London",
        )

    return _make

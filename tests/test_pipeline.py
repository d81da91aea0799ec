from __future__ import annotations

import asyncio
from typing import List

import pytest

from briefing import TOTAL_STEPS
from core import EpisodeStatus, ProgressEvent, StepState
from utils.exceptions import AudioGenerationError, ScriptGenerationError

from fakes import FakeSynthesizer, GatedSynthesizer, ScriptedLLM, StaticAdapter, make_candidates, score_reply, script_reply


def _llm(scores=None) -> ScriptedLLM:
    return ScriptedLLM([score_reply(scores or {}), script_reply, "Agents reshape checkout and ad buying."])


@pytest.mark.asyncio
async def test_no_items_skips_with_one_notification(make_pipeline, store, notifier) -> None:
    llm = ScriptedLLM()
    adapters = [StaticAdapter("feed"), StaticAdapter("scrape", error=RuntimeError("down"))]
    events: List[ProgressEvent] = []

    episode = await make_pipeline(adapters=adapters, llm=llm).run(on_status=events.append, date="2026-03-02")

    assert episode is None
    assert await store.count_episodes() == 0
    assert notifier.texts == ["⚠️ Briefing pipeline for 2026-03-02: No items collected. Skipping."]
    assert events[-1].state == StepState.SKIPPED
    assert events[-1].detail == {"reason": "no_items"}
    assert [(e.step, e.state) for e in events][:2] == [(1, StepState.RUNNING), (1, StepState.COMPLETED)]
    assert llm.calls == []


@pytest.mark.asyncio
async def test_all_duplicates_skip(make_pipeline, store, notifier) -> None:
    await store.insert_raw_items(make_candidates(3))
    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(3))], llm=ScriptedLLM())
    events: List[ProgressEvent] = []

    assert await pipeline.run(on_status=events.append, date="2026-03-02") is None
    assert notifier.texts == ["⚠️ Briefing pipeline for 2026-03-02: All items duplicated recent content. Skipping."]
    assert await store.count_raw_items() == 3
    assert [(e.step, e.state) for e in events] == [
        (1, StepState.RUNNING),
        (1, StepState.COMPLETED),
        (2, StepState.SKIPPED),
    ]
    assert events[1].detail["fetched"] == 3


@pytest.mark.asyncio
async def test_low_scores_skip_when_selection_empty(make_pipeline, store, notifier) -> None:
    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(3))], llm=ScriptedLLM([score_reply({})]), min_items=0)
    pipeline.scorer.min_score = 11.0

    assert await pipeline.run(date="2026-03-02") is None
    assert notifier.texts == ["⚠️ Briefing pipeline for 2026-03-02: All items scored too low. Skipping."]
    assert await store.count_episodes() == 0


@pytest.mark.asyncio
async def test_successful_run_publishes_episode(make_pipeline, store, notifier) -> None:
    events: List[ProgressEvent] = []
    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(10))], llm=_llm())

    episode = await pipeline.run(on_status=events.append, date="2026-03-02")

    assert episode is not None
    assert episode.status == EpisodeStatus.GENERATED
    assert episode.audio_url == f"http://audio.test/files/episodes/2026-03-02-{episode.id}.mp3"
    assert episode.audio_duration_seconds > 0
    assert episode.summary == "Agents reshape checkout and ad buying."
    assert "[source:" not in episode.clean_script
    assert len(episode.source_item_ids) == 2
    assert episode.metadata["provider"] == "anthropic"
    assert episode.metadata["scoring_fallback"] is False
    assert set(episode.metadata["usage"]["by_stage"]) == {"scoring", "script", "summary"}

    stored = await store.get_episode(episode.id)
    assert stored.status == EpisodeStatus.GENERATED

    linked = await store.count_raw_items(episode_id=episode.id)
    assert linked == 10
    raw = await store.get_raw_items(episode.source_item_ids)
    assert all(item.relevance_score == 7.0 for item in raw)

    assert len(notifier.sent) == 1
    ready = notifier.sent[0]
    assert ready.text == "🎙️ Morning briefing for 2026-03-02 is ready!"
    assert "10 sources · Claude" in ready.blocks[1]["elements"][0]["text"]

    assert events[-1].state == StepState.COMPLETED
    assert events[-1].step == TOTAL_STEPS
    steps = [event.step for event in events]
    assert steps == sorted(steps)
    assert all(event.total_steps == TOTAL_STEPS for event in events)


@pytest.mark.asyncio
async def test_scoring_fallback_still_publishes(make_pipeline, notifier) -> None:
    llm = ScriptedLLM(["no json here", script_reply, "Summary."])
    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(15))], llm=llm, max_items=12)

    episode = await pipeline.run(date="2026-03-02")

    assert episode.status == EpisodeStatus.GENERATED
    assert episode.metadata["scoring_fallback"] is True
    assert "12 sources" in notifier.sent[0].blocks[1]["elements"][0]["text"]


@pytest.mark.asyncio
async def test_audio_failure_marks_episode_failed(make_pipeline, store, notifier) -> None:
    events: List[ProgressEvent] = []
    synthesizer = FakeSynthesizer(error=AudioGenerationError("ElevenLabs returned 500"))
    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(10))], llm=_llm(), synthesizer=synthesizer)

    with pytest.raises(AudioGenerationError):
        await pipeline.run(on_status=events.append, date="2026-03-02")

    episodes = await store.list_episodes()
    assert len(episodes) == 1
    failed = episodes[0]
    assert failed.status == EpisodeStatus.FAILED
    assert failed.audio_url is None
    assert "ElevenLabs returned 500" in failed.metadata["error"]
    assert failed.metadata["provider"] == "anthropic"
    assert "usage" in failed.metadata

    assert notifier.texts == ["❌ Briefing pipeline failed for 2026-03-02: ElevenLabs returned 500"]
    assert events[-1].state == StepState.FAILED
    assert events[-1].step == 7
    assert await store.count_raw_items(episode_id=failed.id) == 0


@pytest.mark.asyncio
async def test_cancelled_run_marks_episode_failed(make_pipeline, store, notifier) -> None:
    events: List[ProgressEvent] = []
    synthesizer = GatedSynthesizer()
    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(10))], llm=_llm(), synthesizer=synthesizer)

    task = asyncio.create_task(pipeline.run(on_status=events.append, date="2026-03-02"))
    await asyncio.wait_for(synthesizer.started.wait(), timeout=5)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    episodes = await store.list_episodes()
    assert [e.status for e in episodes] == [EpisodeStatus.FAILED]
    assert episodes[0].metadata["error"] == "cancelled"
    assert notifier.texts == ["❌ Briefing pipeline failed for 2026-03-02: cancelled"]
    assert (events[-1].step, events[-1].state) == (7, StepState.FAILED)


@pytest.mark.asyncio
async def test_script_failure_before_episode_creates_nothing(make_pipeline, store, notifier) -> None:
    llm = ScriptedLLM([score_reply({}), "Too short."])
    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(10))], llm=llm)

    with pytest.raises(ScriptGenerationError):
        await pipeline.run(date="2026-03-02")

    assert await store.count_episodes() == 0
    assert len(notifier.texts) == 1
    assert notifier.texts[0].startswith("❌ Briefing pipeline failed for 2026-03-02: Script generation returned insufficient content")


@pytest.mark.asyncio
async def test_backfill_failure_does_not_fail_run(make_pipeline, store, notifier, monkeypatch) -> None:
    original = store.update_raw_item
    calls = {"n": 0}

    async def _flaky(item_id, **kwargs):
        calls["n"] += 1
        if calls["n"] % 2 == 0:
            raise RuntimeError("row locked")
        return await original(item_id, **kwargs)

    monkeypatch.setattr(store, "update_raw_item", _flaky)
    events: List[ProgressEvent] = []
    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(10))], llm=_llm())

    episode = await pipeline.run(on_status=events.append, date="2026-03-02")

    assert episode.status == EpisodeStatus.GENERATED
    assert await store.count_raw_items(episode_id=episode.id) == 5
    backfill_done = [e for e in events if e.step == 9 and e.state == StepState.COMPLETED]
    assert backfill_done[0].detail == {"failures": 5}
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_status_sink_errors_are_ignored(make_pipeline) -> None:
    def _broken_sink(event: ProgressEvent) -> None:
        raise ValueError("sink exploded")

    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(10))], llm=_llm())

    episode = await pipeline.run(on_status=_broken_sink, date="2026-03-02")

    assert episode.status == EpisodeStatus.GENERATED


@pytest.mark.asyncio
async def test_async_status_sink_is_awaited(make_pipeline) -> None:
    seen: List[int] = []

    async def _sink(event: ProgressEvent) -> None:
        seen.append(event.step)

    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(10))], llm=_llm())
    await pipeline.run(on_status=_sink, date="2026-03-02")

    assert seen[0] == 1
    assert seen[-1] == TOTAL_STEPS


@pytest.mark.asyncio
async def test_notifier_failure_is_swallowed(make_pipeline, notifier, monkeypatch) -> None:
    async def _down(text, blocks=None):
        raise ConnectionError("slack unreachable")

    monkeypatch.setattr(notifier, "notify", _down)
    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(10))], llm=_llm())

    episode = await pipeline.run(date="2026-03-02")

    assert episode.status == EpisodeStatus.GENERATED


@pytest.mark.asyncio
async def test_second_run_sees_first_run_as_recent(make_pipeline, store) -> None:
    pipeline = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(10))], llm=_llm())
    first = await pipeline.run(date="2026-03-02")

    llm = _llm()
    repeat = make_pipeline(adapters=[StaticAdapter("feed", make_candidates(10) + make_candidates(2, "Fresh"))], llm=llm, min_items=1)
    second = await repeat.run(date="2026-03-03")

    assert second is not None
    scoring_prompt = llm.calls[0]["prompt"]
    assert "Recently Covered Topics" in scoring_prompt
    assert "2026-03-02" in scoring_prompt
    assert await store.count_raw_items() == 12
    assert first.id != second.id

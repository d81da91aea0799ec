from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from core import EpisodeStatus, RunState, StepState
from orchestrator import RunService
from utils.exceptions import AudioGenerationError, ConfigurationError

from fakes import FakeSynthesizer, GatedSynthesizer, ScriptedLLM, StaticAdapter, make_candidates, score_reply, script_reply


def _factory(make_pipeline, *, items: int = 10, synthesizer=None, seen: Optional[List[Optional[str]]] = None):
    def _build(provider: Optional[str]):
        if seen is not None:
            seen.append(provider)
        llm = ScriptedLLM([score_reply({}), script_reply, "Summary."])
        return make_pipeline(adapters=[StaticAdapter("feed", make_candidates(items))], llm=llm, synthesizer=synthesizer)

    return _build


async def _collect(service: RunService, run_id: str):
    return [event async for event in service.subscribe(run_id)]


@pytest.mark.asyncio
async def test_start_run_returns_before_pipeline_finishes(make_pipeline) -> None:
    seen: List[Optional[str]] = []
    service = RunService(_factory(make_pipeline, seen=seen))

    run_id = service.start_run("claude")

    record = service.get_run(run_id)
    assert record is not None
    assert record.state == RunState.QUEUED
    assert record.provider == "anthropic"

    finished = await service.wait(run_id, timeout=5)
    assert finished.state == RunState.COMPLETED
    assert finished.episode_id
    assert finished.timestamps.completed_at is not None
    assert seen == ["anthropic"]


@pytest.mark.asyncio
async def test_unknown_provider_rejected(make_pipeline) -> None:
    service = RunService(_factory(make_pipeline))

    with pytest.raises(ConfigurationError):
        service.start_run("gemini")
    assert service.store.list_runs() == []


@pytest.mark.asyncio
async def test_subscribe_replays_events_after_completion(make_pipeline) -> None:
    service = RunService(_factory(make_pipeline))
    run_id = service.start_run()
    await service.wait(run_id, timeout=5)

    events = [event async for event in service.subscribe(run_id)]

    assert events == service.get_run(run_id).events
    assert events[0].step == 1
    assert events[-1].state == StepState.COMPLETED


@pytest.mark.asyncio
async def test_live_subscriber_sees_every_event(make_pipeline) -> None:
    service = RunService(_factory(make_pipeline))
    run_id = service.start_run()

    live = await asyncio.wait_for(_collect(service, run_id), timeout=5)

    assert len(live) == len(service.get_run(run_id).events)
    assert [e.step for e in live] == sorted(e.step for e in live)


@pytest.mark.asyncio
async def test_abandoned_subscriber_does_not_cancel_run(make_pipeline) -> None:
    synthesizer = GatedSynthesizer()
    service = RunService(_factory(make_pipeline, synthesizer=synthesizer))
    run_id = service.start_run()

    stream = service.subscribe(run_id)
    first = await stream.__anext__()
    await stream.aclose()

    await asyncio.wait_for(synthesizer.started.wait(), timeout=5)
    synthesizer.release.set()
    record = await service.wait(run_id, timeout=5)

    assert first.step == 1
    assert record.state == RunState.COMPLETED
    assert record.episode_id


@pytest.mark.asyncio
async def test_cancelled_run_is_recorded_as_failed(make_pipeline, store) -> None:
    synthesizer = GatedSynthesizer()
    service = RunService(_factory(make_pipeline, synthesizer=synthesizer))
    run_id = service.start_run()
    await asyncio.wait_for(synthesizer.started.wait(), timeout=5)

    service._tasks[run_id].cancel()
    events = await asyncio.wait_for(_collect(service, run_id), timeout=5)

    record = service.get_run(run_id)
    assert record.state == RunState.FAILED
    assert record.error == "cancelled"
    assert events[-1].state == StepState.FAILED
    assert [e.status for e in await store.list_episodes()] == [EpisodeStatus.FAILED]


@pytest.mark.asyncio
async def test_failed_run_records_error(make_pipeline, notifier) -> None:
    synthesizer = FakeSynthesizer(error=AudioGenerationError("quota exceeded"))
    service = RunService(_factory(make_pipeline, synthesizer=synthesizer))

    run_id = service.start_run()
    record = await service.wait(run_id, timeout=5)

    assert record.state == RunState.FAILED
    assert record.error == "quota exceeded"
    assert record.episode_id
    assert notifier.texts[-1].startswith("❌")


@pytest.mark.asyncio
async def test_skipped_run_has_no_episode(make_pipeline) -> None:
    service = RunService(_factory(make_pipeline, items=0))

    record = await service.wait(service.start_run(), timeout=5)

    assert record.state == RunState.SKIPPED
    assert record.episode_id is None


@pytest.mark.asyncio
async def test_manual_runs_are_not_deduplicated(make_pipeline) -> None:
    service = RunService(_factory(make_pipeline))

    first = service.start_run()
    second = service.start_run()
    await service.shutdown(timeout=5)

    assert first != second
    assert len(service.store.list_runs()) == 2


def test_scheduled_key_respects_local_time() -> None:
    service = RunService(lambda provider: None, schedule_hour=6, schedule_minute=0, schedule_timezone="Europe/London")

    # 05:30 UTC in summer is 06:30 in London
    assert service.scheduled_key(datetime(2026, 7, 1, 5, 30, tzinfo=timezone.utc)) == "daily:2026-07-01"
    assert service.scheduled_key(datetime(2026, 1, 15, 5, 30, tzinfo=timezone.utc)) is None
    assert service.scheduled_key(datetime(2026, 1, 15, 23, 59, tzinfo=timezone.utc)) == "daily:2026-01-15"


@pytest.mark.asyncio
async def test_scheduled_run_starts_once_per_local_day(make_pipeline) -> None:
    service = RunService(_factory(make_pipeline), schedule_hour=6, schedule_timezone="UTC")

    early = service.trigger_due_daily_run(datetime(2026, 3, 2, 5, 59, tzinfo=timezone.utc))
    first = service.trigger_due_daily_run(datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc))
    again = service.trigger_due_daily_run(datetime(2026, 3, 2, 18, 0, tzinfo=timezone.utc))
    next_day = service.trigger_due_daily_run(datetime(2026, 3, 3, 6, 5, tzinfo=timezone.utc))
    await service.shutdown(timeout=5)

    assert early is None
    assert first == again
    assert next_day != first
    record = service.get_run(first)
    assert record.trigger == "schedule"
    assert record.idempotency_key == "daily:2026-03-02"

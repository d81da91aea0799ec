"""Run dispatch for manual and scheduled briefing runs."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import AsyncIterator, Callable, Dict, Optional, Set
from zoneinfo import ZoneInfo

from briefing import BriefingPipeline
from core import ProgressEvent, RunRecord, RunState
from llm import normalize_provider

from .store import InMemoryRunStore


logger = logging.getLogger(__name__)

PipelineFactory = Callable[[Optional[str]], BriefingPipeline]


class RunService:
    """
    Dispatches pipeline runs as background tasks.

    ``start_run`` returns as soon as the task is spawned. Observers attach to
    a run with ``subscribe``; they replay earlier events, then follow live
    ones, and walking away never cancels the run. Manual runs are not
    deduplicated; the schedule starts at most one run per local day.
    """

    def __init__(
        self,
        pipeline_factory: PipelineFactory,
        *,
        store: Optional[InMemoryRunStore] = None,
        schedule_hour: int = 6,
        schedule_minute: int = 0,
        schedule_timezone: str = "Europe/London",
    ) -> None:
        self._pipeline_factory = pipeline_factory
        self._store = store or InMemoryRunStore()
        self.schedule_hour = max(0, min(23, int(schedule_hour)))
        self.schedule_minute = max(0, min(59, int(schedule_minute)))
        self.schedule_timezone = schedule_timezone
        self._tasks: Dict[str, asyncio.Task] = {}
        self._conditions: Dict[str, asyncio.Condition] = {}
        self._background: Set[asyncio.Task] = set()

    @property
    def store(self) -> InMemoryRunStore:
        return self._store

    def _condition(self, run_id: str) -> asyncio.Condition:
        condition = self._conditions.get(run_id)
        if condition is None:
            condition = asyncio.Condition()
            self._conditions[run_id] = condition
        return condition

    async def _signal(self, run_id: str) -> None:
        condition = self._condition(run_id)
        async with condition:
            condition.notify_all()

    def start_run(
        self,
        provider: Optional[str] = None,
        *,
        trigger: str = "manual",
        idempotency_key: Optional[str] = None,
    ) -> str:
        """
        Queue a run and spawn its task; must be called from a running event loop.

        Raises:
            ConfigurationError: unknown provider
        """
        provider = normalize_provider(provider) if provider else None
        run_id, created = self._store.create_or_get(
            trigger=trigger,
            provider=provider,
            idempotency_key=idempotency_key,
        )
        if not created:
            logger.info("run_exists run_id=%s idempotency_key=%s", run_id, idempotency_key)
            return run_id

        self._condition(run_id)
        task = asyncio.get_running_loop().create_task(self._execute(run_id, provider), name=f"briefing-{run_id}")
        self._tasks[run_id] = task
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        logger.info("run_queued run_id=%s trigger=%s provider=%s", run_id, trigger, provider or "default")
        return run_id

    async def _execute(self, run_id: str, provider: Optional[str]) -> None:
        self._store.update_running(run_id)
        await self._signal(run_id)

        async def on_status(event: ProgressEvent) -> None:
            self._store.append_event(run_id, event)
            await self._signal(run_id)

        pipeline: Optional[BriefingPipeline] = None
        try:
            pipeline = self._pipeline_factory(provider)
            episode = await pipeline.run(on_status=on_status)
        except asyncio.CancelledError:
            logger.warning("run_cancelled run_id=%s", run_id)
            self._store.update_finished(run_id, RunState.FAILED, error="cancelled")
            raise
        except Exception as exc:
            logger.error("run_failed run_id=%s error=%s", run_id, exc)
            self._store.update_finished(run_id, RunState.FAILED, error=str(exc) or exc.__class__.__name__)
        else:
            if episode is None:
                self._store.update_finished(run_id, RunState.SKIPPED)
                logger.info("run_skipped run_id=%s", run_id)
            else:
                self._store.update_finished(run_id, RunState.COMPLETED, episode_id=episode.id)
                logger.info("run_completed run_id=%s episode_id=%s", run_id, episode.id)
        finally:
            if pipeline is not None:
                await pipeline.aclose()
            await self._signal(run_id)

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        return self._store.get(run_id)

    async def subscribe(self, run_id: str) -> AsyncIterator[ProgressEvent]:
        """Yield the run's events in order, from the first, until the run finishes."""
        if self._store.get(run_id) is None:
            return
        condition = self._condition(run_id)
        cursor = 0
        while True:
            for event in self._store.list_events(run_id, start=cursor):
                cursor += 1
                yield event
            if self._store.is_finished(run_id) and self._store.event_count(run_id) <= cursor:
                return
            async with condition:
                await condition.wait_for(
                    lambda: self._store.event_count(run_id) > cursor or self._store.is_finished(run_id)
                )

    async def wait(self, run_id: str, timeout: Optional[float] = None) -> Optional[RunRecord]:
        """Wait for a run to finish without exposing its task to cancellation."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self._store.get(run_id)

    def scheduled_key(self, now_utc: Optional[datetime] = None) -> Optional[str]:
        now = now_utc or datetime.now(timezone.utc)
        try:
            tz = ZoneInfo(self.schedule_timezone)
        except Exception:
            tz = ZoneInfo("UTC")
        local_now = now.astimezone(tz)
        target_minute = self.schedule_hour * 60 + self.schedule_minute
        current_minute = local_now.hour * 60 + local_now.minute
        if current_minute < target_minute:
            return None
        return f"daily:{local_now.date().isoformat()}"

    def trigger_due_daily_run(self, now_utc: Optional[datetime] = None) -> Optional[str]:
        """Start today's scheduled run once its local time has passed; returns the day's run id, or None when not due."""
        key = self.scheduled_key(now_utc)
        if key is None:
            return None
        return self.start_run(trigger="schedule", idempotency_key=key)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Let in-flight runs finish."""
        pending = [task for task in self._tasks.values() if not task.done()]
        if not pending:
            return
        logger.info("run_service_draining runs=%d", len(pending))
        await asyncio.wait(pending, timeout=timeout)

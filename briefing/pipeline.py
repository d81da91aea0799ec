"""
Briefing pipeline orchestrator.

One run walks collect -> persist -> score -> write -> render -> publish and
ends in exactly one of: skipped (no episode, one skip notification),
generated (one ready notification) or failed (episode marked failed when it
exists, one failure notification, error re-raised). Cancellation takes the
failed path too and re-raises ``CancelledError``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from core import Episode, EpisodeStatus, ProgressEvent, ScoredItem, StepState
from llm import UsageTracker
from storage import BriefingStore

from .collector import Collector
from .notification import (
    SKIP_ALL_DUPLICATES,
    SKIP_LOW_SCORES,
    SKIP_NO_ITEMS,
    BaseNotifier,
    Blocks,
    failed_message,
    ready_message,
    skipped_message,
)
from .publisher import EpisodePublisher
from .scorer import RelevanceScorer
from .script_writer import ScriptWriter
from .timing import count_words


logger = logging.getLogger(__name__)

TOTAL_STEPS = 10

STEP_COLLECT = 1
STEP_DEDUP = 2
STEP_PERSIST = 3
STEP_SCORE = 4
STEP_SCRIPT = 5
STEP_EPISODE = 6
STEP_AUDIO = 7
STEP_FINALIZE = 8
STEP_BACKFILL = 9
STEP_NOTIFY = 10

CANCELLED_ERROR = "cancelled"

StatusSink = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class BriefingPipeline:
    """State machine tying collector, scorer, writer and publisher together."""

    def __init__(
        self,
        *,
        store: BriefingStore,
        collector: Collector,
        scorer: RelevanceScorer,
        writer: ScriptWriter,
        publisher: EpisodePublisher,
        notifier: BaseNotifier,
        provider: str = "anthropic",
        provider_label: Optional[str] = None,
        timezone: str = "UTC",
        resources: Sequence[Any] = (),
    ):
        self.store = store
        self.collector = collector
        self.scorer = scorer
        self.writer = writer
        self.publisher = publisher
        self.notifier = notifier
        self.provider = provider
        self.provider_label = provider_label or provider
        self.timezone = timezone
        self._resources = list(resources)

    def today(self) -> str:
        return datetime.now(ZoneInfo(self.timezone)).date().isoformat()

    async def _emit(
        self,
        sink: Optional[StatusSink],
        step: int,
        state: StepState,
        message: str,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        if sink is None:
            return
        event = ProgressEvent(step=step, total_steps=TOTAL_STEPS, state=state, message=message, detail=detail or {})
        try:
            result = sink(event)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("progress_sink_failed step=%d error=%s", step, exc)

    async def _notify(self, text: str, blocks: Optional[Blocks] = None) -> None:
        try:
            await self.notifier.notify(text, blocks)
        except Exception as exc:
            logger.error("notify_failed error=%s", exc)

    async def _skip(self, sink: Optional[StatusSink], step: int, date: str, reason: str, message: str) -> None:
        logger.warning("pipeline_skipped date=%s reason=%s", date, reason)
        await self._emit(sink, step, StepState.SKIPPED, message, {"reason": reason})
        await self._notify(skipped_message(date, reason))

    async def _mark_failed(self, episode_id: str, metadata: Dict[str, Any], error: str) -> None:
        try:
            await self.store.update_episode(
                episode_id,
                status=EpisodeStatus.FAILED,
                metadata={**metadata, "provider": self.provider, "error": error},
            )
        except Exception as exc:
            logger.error("episode_mark_failed_error episode_id=%s error=%s", episode_id, exc)

    async def _backfill(self, items: Sequence[ScoredItem], episode_id: str) -> int:
        """Attach the episode and final score to each selected item; returns failures."""
        failures = 0
        for item in items:
            try:
                await self.store.update_raw_item(item.id, episode_id=episode_id, relevance_score=item.relevance_score)
            except Exception as exc:
                failures += 1
                logger.warning("item_backfill_failed item_id=%s error=%s", item.id, exc)
        return failures

    async def run(
        self,
        *,
        on_status: Optional[StatusSink] = None,
        date: Optional[str] = None,
    ) -> Optional[Episode]:
        """
        Execute one pipeline run.

        Args:
            on_status: optional progress sink (sync or async); its failures are ignored
            date: episode date, defaults to today in the configured timezone

        Returns:
            The generated episode, or None when the run was skipped.

        Raises:
            Exception: whatever made the run fail, after cleanup and notification
        """
        date = date or self.today()
        usage = UsageTracker()
        step = STEP_COLLECT
        episode_id: Optional[str] = None
        metadata: Dict[str, Any] = {"provider": self.provider}

        logger.info("pipeline_started date=%s provider=%s", date, self.provider)

        try:
            await self._emit(on_status, step, StepState.RUNNING, f"Collecting items from {len(self.collector.adapters)} adapters...")
            collection = await self.collector.collect(usage=usage)
            failed_adapters = [report.name for report in collection.adapter_reports if not report.ok]
            await self._emit(
                on_status,
                step,
                StepState.COMPLETED,
                f"Collected {collection.fetched_count} items.",
                {"fetched": collection.fetched_count, "failed_adapters": failed_adapters},
            )

            step = STEP_DEDUP
            if collection.fetched_count == 0:
                await self._skip(on_status, step, date, SKIP_NO_ITEMS, "No items collected. Pipeline aborted.")
                return None
            if collection.is_empty:
                await self._skip(
                    on_status, step, date, SKIP_ALL_DUPLICATES, "All items were duplicates of recent content. Skipping."
                )
                return None
            await self._emit(
                on_status,
                step,
                StepState.COMPLETED,
                f"{len(collection.items)} items after deduplication.",
                {"item_count": len(collection.items), "duplicates": collection.duplicate_count},
            )

            step = STEP_PERSIST
            await self._emit(on_status, step, StepState.RUNNING, f"Saving {len(collection.items)} raw items...")
            raw_items = await self.store.insert_raw_items(collection.items)
            logger.info("raw_items_inserted count=%d", len(raw_items))
            await self._emit(on_status, step, StepState.COMPLETED, f"Saved {len(raw_items)} items.")

            step = STEP_SCORE
            await self._emit(
                on_status, step, StepState.RUNNING, f"Scoring {len(raw_items)} items for relevance...", {"item_count": len(raw_items)}
            )
            scoring = await self.scorer.score(raw_items, usage=usage)
            selected: List[ScoredItem] = scoring.items
            metadata["scoring_fallback"] = scoring.fallback
            if not selected:
                await self._skip(on_status, step, date, SKIP_LOW_SCORES, "All items scored too low. Pipeline aborted.")
                return None
            await self._emit(
                on_status,
                step,
                StepState.COMPLETED,
                f"{len(selected)} items passed the relevance filter.",
                {"passed_count": len(selected), "fallback": scoring.fallback},
            )

            step = STEP_SCRIPT
            await self._emit(on_status, step, StepState.RUNNING, f"Writing the briefing script from {len(selected)} sources...")
            script = await self.writer.write(selected, date=date, usage=usage)
            word_count = count_words(script.clean_script)
            await self._emit(
                on_status,
                step,
                StepState.COMPLETED,
                f"Script written: {word_count} words, {len(script.sections)} sections.",
                {"word_count": word_count, "section_count": len(script.sections)},
            )

            step = STEP_EPISODE
            await self._emit(on_status, step, StepState.RUNNING, "Creating episode record...")
            metadata["usage"] = usage.as_dict()
            episode = await self.store.create_episode(
                Episode(
                    date=date,
                    script=script.script,
                    clean_script=script.clean_script,
                    summary=script.summary,
                    sections=script.sections,
                    source_item_ids=script.source_item_ids,
                    status=EpisodeStatus.PENDING,
                    metadata=dict(metadata),
                )
            )
            episode_id = episode.id
            logger.info("episode_created episode_id=%s", episode_id)
            await self._emit(on_status, step, StepState.COMPLETED, "Episode record created.", {"episode_id": episode_id})

            step = STEP_AUDIO
            await self._emit(on_status, step, StepState.RUNNING, "Generating audio... this may take a minute or two.")
            await self.store.update_episode(episode_id, status=EpisodeStatus.RENDERING)
            result = await self.publisher.render_and_publish(
                script.clean_script,
                episode_id=episode_id,
                date=date,
                before_upload=lambda: self.store.update_episode(episode_id, status=EpisodeStatus.PUBLISHING),
            )
            await self._emit(
                on_status,
                step,
                StepState.COMPLETED,
                f"Audio generated: ~{round(result.audio_duration_seconds / 60)} minutes.",
                {"audio_url": result.audio_url, "duration_seconds": result.audio_duration_seconds},
            )

            step = STEP_FINALIZE
            await self._emit(on_status, step, StepState.RUNNING, "Finalising episode with audio...")
            metadata["usage"] = usage.as_dict()
            metadata["audio_size_bytes"] = result.audio_size_bytes
            episode = await self.store.update_episode(
                episode_id,
                audio_url=result.audio_url,
                audio_duration_seconds=result.audio_duration_seconds,
                status=EpisodeStatus.GENERATED,
                metadata=dict(metadata),
            )
            await self._emit(on_status, step, StepState.COMPLETED, "Episode finalised.", {"episode_id": episode_id})

            step = STEP_BACKFILL
            await self._emit(on_status, step, StepState.RUNNING, "Updating source items with scores...")
            failures = await self._backfill(selected, episode_id)
            await self._emit(
                on_status,
                step,
                StepState.COMPLETED,
                f"Updated {len(selected) - failures} of {len(selected)} items.",
                {"failures": failures},
            )

            step = STEP_NOTIFY
            await self._emit(on_status, step, StepState.RUNNING, "Sending notification...")
            text, blocks = ready_message(
                date,
                summary=script.summary,
                word_count=word_count,
                duration_seconds=result.audio_duration_seconds,
                source_count=len(selected),
                provider_label=self.provider_label,
            )
            await self._notify(text, blocks)

            logger.info("pipeline_complete date=%s episode_id=%s provider=%s", date, episode_id, self.provider)
            await self._emit(
                on_status,
                step,
                StepState.COMPLETED,
                "Pipeline complete! Your briefing is ready.",
                {"episode_id": episode_id, "date": date},
            )
            return episode
        except asyncio.CancelledError:
            logger.warning("pipeline_cancelled date=%s episode_id=%s provider=%s step=%d", date, episode_id, self.provider, step)
            await self._emit(on_status, step, StepState.FAILED, "Pipeline cancelled.", {"error": CANCELLED_ERROR})
            if episode_id:
                await self._mark_failed(episode_id, metadata, CANCELLED_ERROR)
            await self._notify(failed_message(date, CANCELLED_ERROR))
            raise
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.exception("pipeline_failed date=%s episode_id=%s provider=%s step=%d", date, episode_id, self.provider, step)
            await self._emit(on_status, step, StepState.FAILED, f"Pipeline failed: {error}", {"error": error})
            if episode_id:
                await self._mark_failed(episode_id, metadata, error)
            await self._notify(failed_message(date, error))
            raise

    async def aclose(self) -> None:
        for resource in self._resources:
            close = getattr(resource, "aclose", None)
            if close is None:
                close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                result = close()
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("resource_close_failed resource=%r error=%s", resource, exc)

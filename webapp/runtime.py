"""Shared runtime singletons for the web and CLI entrypoints."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from briefing import EpisodeChat, build_chat, build_pipeline
from config import Settings, get_settings
from orchestrator import PipelineFactory, RunService
from storage import BriefingStore, get_blob_store, get_store

ChatFactory = Callable[[Optional[str]], EpisodeChat]


@dataclass
class BriefingRuntime:
    settings: Settings
    store: BriefingStore
    run_service: RunService
    chat_factory: ChatFactory

    async def aclose(self) -> None:
        await self.run_service.shutdown()
        await self.store.close()


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    store: Optional[BriefingStore] = None,
    pipeline_factory: Optional[PipelineFactory] = None,
    chat_factory: Optional[ChatFactory] = None,
) -> BriefingRuntime:
    """One store shared by every run and chat; each run or chat turn gets collaborators for its provider."""
    settings = settings or get_settings()
    store = store or get_store(settings.storage)

    if pipeline_factory is None:
        blob_store = get_blob_store(settings.storage)

        def pipeline_factory(provider: Optional[str]):
            return build_pipeline(settings, provider=provider, store=store, blob_store=blob_store)

    if chat_factory is None:

        def chat_factory(provider: Optional[str]) -> EpisodeChat:
            return build_chat(settings, store=store, provider=provider)

    run_service = RunService(
        pipeline_factory,
        schedule_hour=settings.api.schedule_cron_hour,
        schedule_minute=settings.api.schedule_cron_minute,
        schedule_timezone=settings.api.schedule_timezone,
    )
    return BriefingRuntime(settings=settings, store=store, run_service=run_service, chat_factory=chat_factory)


_RUNTIME: Optional[BriefingRuntime] = None


def get_runtime() -> BriefingRuntime:
    global _RUNTIME
    if _RUNTIME is None:
        _RUNTIME = build_runtime()
    return _RUNTIME


def set_runtime(runtime: Optional[BriefingRuntime]) -> None:
    global _RUNTIME
    _RUNTIME = runtime

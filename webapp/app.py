"""Briefing HTTP API: FastAPI routes, SSE progress stream and the schedule ticker."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator

from config import get_settings
from core import Episode, EpisodeStatus, SearchQuery
from utils.exceptions import BriefingError, ChatSessionNotFound, ConfigurationError
from webapp.auth import require_api_key
from webapp.runtime import BriefingRuntime, get_runtime


logger = logging.getLogger(__name__)

API_PREFIX = "/api/briefing"
LIST_EXCLUDE = {"script", "clean_script"}


class GenerateRequest(BaseModel):
    provider: Optional[str] = Field(default=None, description="anthropic/claude or openai/gpt")


class QueryCreateRequest(BaseModel):
    query: str
    category: Optional[str] = None

    @field_validator("query")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("query is required")
        return text


class ChatRequest(BaseModel):
    message: str
    session_id: Optional[str] = None
    provider: Optional[str] = Field(default=None, description="anthropic/claude or openai/gpt")

    @field_validator("message")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("message is required")
        return text


def _sse(event: str, data: Dict[str, Any]) -> str:
    payload = json.dumps(data, ensure_ascii=False, default=str)
    return f"event: {event}\ndata: {payload}\n\n"


def _episode_payload(episode: Episode, *, full: bool = True) -> Dict[str, Any]:
    payload = episode.model_dump(mode="json", exclude=None if full else LIST_EXCLUDE)
    payload["word_count"] = episode.word_count
    return payload


async def _schedule_ticker(runtime: BriefingRuntime) -> None:
    interval = max(1.0, float(runtime.settings.api.schedule_poll_sec))
    while True:
        try:
            run_id = runtime.run_service.trigger_due_daily_run()
            if run_id:
                logger.debug("schedule_tick run_id=%s", run_id)
        except Exception as exc:
            logger.error("schedule_tick_failed error=%s", exc)
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = get_runtime()
    ticker: Optional[asyncio.Task] = None
    if runtime.settings.api.schedule_enabled:
        ticker = asyncio.create_task(_schedule_ticker(runtime))
        logger.info(
            "schedule_enabled at=%02d:%02d tz=%s",
            runtime.settings.api.schedule_cron_hour,
            runtime.settings.api.schedule_cron_minute,
            runtime.settings.api.schedule_timezone,
        )
    try:
        yield
    finally:
        if ticker is not None:
            ticker.cancel()
            try:
                await ticker
            except asyncio.CancelledError:
                pass
        await runtime.aclose()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Daily Briefing API", version="0.3.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BriefingError)
    async def briefing_error_handler(request: Request, exc: BriefingError) -> JSONResponse:
        logger.error("request_failed path=%s error=%s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": exc.message, "details": exc.details})

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds")}

    @app.post(f"{API_PREFIX}/generate", status_code=202, dependencies=[Depends(require_api_key)])
    async def generate(
        req: Optional[GenerateRequest] = None,
        runtime: BriefingRuntime = Depends(get_runtime),
    ) -> Dict[str, Any]:
        provider = req.provider if req else None
        try:
            run_id = runtime.run_service.start_run(provider)
        except ConfigurationError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc
        return {"run_id": run_id, "status": "started"}

    @app.get(f"{API_PREFIX}/generate/{{run_id}}")
    async def get_run(run_id: str, runtime: BriefingRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        record = runtime.run_service.get_run(run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="run_id not found")
        return record.model_dump(mode="json")

    @app.get(f"{API_PREFIX}/generate/{{run_id}}/stream")
    async def stream_run(run_id: str, runtime: BriefingRuntime = Depends(get_runtime)) -> StreamingResponse:
        service = runtime.run_service
        if service.get_run(run_id) is None:
            raise HTTPException(status_code=404, detail="run_id not found")

        async def _event_stream():
            yield "retry: 3000\n\n"
            yield _sse("connected", {"run_id": run_id})
            async for event in service.subscribe(run_id):
                yield _sse("progress", event.model_dump(mode="json"))
            record = service.get_run(run_id)
            yield _sse(
                "stream_end",
                {
                    "run_id": run_id,
                    "status": record.state.value if record else None,
                    "episode_id": record.episode_id if record else None,
                    "error": record.error if record else None,
                },
            )

        headers = {
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
        return StreamingResponse(_event_stream(), media_type="text/event-stream", headers=headers)

    @app.get(f"{API_PREFIX}/episodes")
    async def list_episodes(
        offset: int = Query(default=0, ge=0),
        limit: int = Query(default=20, ge=1, le=100),
        status: Optional[List[EpisodeStatus]] = Query(default=None),
        runtime: BriefingRuntime = Depends(get_runtime),
    ) -> Dict[str, Any]:
        episodes = await runtime.store.list_episodes(offset=offset, limit=limit, statuses=status)
        total = await runtime.store.count_episodes(statuses=status)
        return {
            "episodes": [_episode_payload(episode, full=False) for episode in episodes],
            "total": total,
            "offset": offset,
            "limit": limit,
        }

    @app.get(f"{API_PREFIX}/episodes/latest")
    async def latest_episode(runtime: BriefingRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        episode = await runtime.store.latest_episode(statuses=[EpisodeStatus.GENERATED, EpisodeStatus.DELIVERED])
        if episode is None:
            raise HTTPException(status_code=404, detail="no published episode")
        return _episode_payload(episode)

    @app.get(f"{API_PREFIX}/episodes/{{episode_id}}")
    async def get_episode(episode_id: str, runtime: BriefingRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        episode = await runtime.store.get_episode(episode_id)
        if episode is None:
            raise HTTPException(status_code=404, detail="episode not found")
        items = await runtime.store.get_raw_items(episode.source_item_ids)
        payload = _episode_payload(episode)
        payload["sources"] = [
            {
                "id": item.id,
                "title": item.title,
                "url": item.url,
                "source_type": item.source_type.value,
                "relevance_score": item.relevance_score,
                "published_at": item.published_at.isoformat() if item.published_at else None,
            }
            for item in items
        ]
        return payload

    @app.get(f"{API_PREFIX}/queries")
    async def list_queries(runtime: BriefingRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        queries = await runtime.store.list_queries(active_only=True)
        return {"queries": [query.model_dump(mode="json") for query in queries]}

    @app.post(f"{API_PREFIX}/queries", status_code=201, dependencies=[Depends(require_api_key)])
    async def add_query(req: QueryCreateRequest, runtime: BriefingRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        query = await runtime.store.add_query(SearchQuery(query=req.query, category=req.category, added_by="api"))
        return query.model_dump(mode="json")

    @app.delete(f"{API_PREFIX}/queries/{{query_id}}", dependencies=[Depends(require_api_key)])
    async def delete_query(query_id: str, runtime: BriefingRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        if not await runtime.store.deactivate_query(query_id):
            raise HTTPException(status_code=404, detail="query not found")
        return {"id": query_id, "active": False}

    @app.get(f"{API_PREFIX}/sources")
    async def list_sources(runtime: BriefingRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        sources = await runtime.store.list_sources(active_only=False)
        return {"sources": [source.model_dump(mode="json") for source in sources]}

    @app.post(f"{API_PREFIX}/chat", dependencies=[Depends(require_api_key)])
    async def chat(req: ChatRequest, runtime: BriefingRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        try:
            episode_chat = runtime.chat_factory(req.provider)
        except ConfigurationError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc
        try:
            turn = await episode_chat.reply(req.message, session_id=req.session_id)
        except ChatSessionNotFound as exc:
            raise HTTPException(status_code=404, detail="chat session not found") from exc
        finally:
            await episode_chat.aclose()
        return {"session_id": turn.session_id, "reply": turn.content}

    return app


app = create_app()

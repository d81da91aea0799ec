"""CLI entrypoint: run the pipeline, serve the API, tick the schedule, manage sources, chat."""

from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timezone
import json
import sys
from typing import Any, Dict, Optional

from config import get_settings
from core import SearchQuery, Source, SourceType
from utils.exceptions import BriefingError
from utils.logger import setup_logging


def _json(text: str) -> Dict[str, Any]:
    raw = str(text or "").strip()
    if not raw:
        return {}
    return json.loads(raw)


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _parse_now(text: str) -> Optional[datetime]:
    raw = str(text or "").strip()
    if not raw:
        return None
    return datetime.fromisoformat(raw.replace("Z", "+00:00")).astimezone(timezone.utc)


async def _run(args: argparse.Namespace) -> int:
    from briefing import RecordingNotifier, build_pipeline
    from render import LocalWaveSynthesizer

    settings = get_settings()
    overrides: Dict[str, Any] = {}
    if args.local_audio:
        overrides["synthesizer"] = LocalWaveSynthesizer(words_per_minute=settings.pipeline.words_per_minute)
    if args.no_notify:
        overrides["notifier"] = RecordingNotifier()

    pipeline = build_pipeline(settings, provider=args.provider, **overrides)
    try:
        episode = await pipeline.run(date=args.date or None)
    except Exception as exc:
        _print({"status": "failed", "error": str(exc)})
        return 1
    finally:
        await pipeline.aclose()

    if episode is None:
        _print({"status": "skipped"})
        return 0
    _print(
        {
            "status": episode.status.value,
            "episode_id": episode.id,
            "date": episode.date,
            "audio_url": episode.audio_url,
            "audio_duration_seconds": episode.audio_duration_seconds,
            "word_count": episode.word_count,
            "summary": episode.summary,
        }
    )
    return 0


async def _schedule_tick(args: argparse.Namespace) -> int:
    from webapp.runtime import build_runtime

    runtime = build_runtime()
    try:
        service = runtime.run_service
        key = service.scheduled_key(_parse_now(args.now_utc))
        if key is None:
            _print({"status": "not_due"})
            return 0
        local_date = key.split(":", 1)[1]
        latest = await runtime.store.list_episodes(offset=0, limit=1)
        if latest and latest[0].date == local_date:
            _print({"status": "already_ran", "date": local_date, "episode_id": latest[0].id})
            return 0

        run_id = service.trigger_due_daily_run(_parse_now(args.now_utc))
        record = await service.wait(run_id)
        _print(record.model_dump(mode="json", exclude={"events"}) if record else {"run_id": run_id})
        return 0 if record is None or record.error is None else 1
    finally:
        await runtime.aclose()


async def _episodes(args: argparse.Namespace) -> int:
    from storage import get_store

    store = get_store(get_settings().storage)
    try:
        episodes = await store.list_episodes(offset=args.offset, limit=args.limit)
        total = await store.count_episodes()
    finally:
        await store.close()
    _print(
        {
            "total": total,
            "episodes": [
                {
                    "id": ep.id,
                    "date": ep.date,
                    "status": ep.status.value,
                    "audio_url": ep.audio_url,
                    "summary": ep.summary,
                }
                for ep in episodes
            ],
        }
    )
    return 0


async def _add_source(args: argparse.Namespace) -> int:
    from storage import get_store

    store = get_store(get_settings().storage)
    try:
        source = await store.upsert_source(
            Source(
                name=args.name,
                url=args.url,
                type=SourceType(args.type),
                category=args.category or None,
                config=_json(args.config_json),
            )
        )
    finally:
        await store.close()
    _print(source.model_dump(mode="json"))
    return 0


async def _add_query(args: argparse.Namespace) -> int:
    from storage import get_store

    store = get_store(get_settings().storage)
    try:
        query = await store.add_query(SearchQuery(query=args.query, category=args.category or None, added_by="cli"))
    finally:
        await store.close()
    _print(query.model_dump(mode="json"))
    return 0


async def _chat(args: argparse.Namespace) -> int:
    from briefing import build_chat
    from storage import get_store

    settings = get_settings()
    store = get_store(settings.storage)
    chat = build_chat(settings, store=store, provider=args.provider)
    try:
        turn = await chat.reply(args.message, session_id=args.session_id or None)
    finally:
        await chat.aclose()
        await store.close()
    _print({"session_id": turn.session_id, "reply": turn.content})
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Daily briefing CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the pipeline once in the foreground")
    run.add_argument("--provider", default=None, help="anthropic/claude or openai/gpt")
    run.add_argument("--date", default="", help="Episode date (YYYY-MM-DD)")
    run.add_argument("--local-audio", action="store_true", help="Render a local WAV instead of calling the TTS API")
    run.add_argument("--no-notify", action="store_true", help="Record notifications instead of posting them")

    serve = sub.add_parser("serve", help="Start the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    tick = sub.add_parser("schedule-tick", help="Start today's scheduled run if it is due")
    tick.add_argument("--now-utc", default="")

    episodes = sub.add_parser("episodes", help="List episodes, newest first")
    episodes.add_argument("--offset", type=int, default=0)
    episodes.add_argument("--limit", type=int, default=10)

    source = sub.add_parser("add-source", help="Register or update a content source")
    source.add_argument("--name", required=True)
    source.add_argument("--url", required=True)
    source.add_argument("--type", required=True, choices=[t.value for t in SourceType])
    source.add_argument("--category", default="")
    source.add_argument("--config-json", default="{}")

    query = sub.add_parser("add-query", help="Add a standing web-search query")
    query.add_argument("--query", required=True)
    query.add_argument("--category", default="")

    chat = sub.add_parser("chat", help="Ask a question about recent episodes")
    chat.add_argument("message")
    chat.add_argument("--session-id", default="", help="Continue an earlier chat session")
    chat.add_argument("--provider", default=None, help="anthropic/claude or openai/gpt")

    args = parser.parse_args()
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "webapp.app:app",
            host=args.host or settings.api.host,
            port=args.port or settings.api.port,
        )
        return

    handlers = {
        "run": _run,
        "schedule-tick": _schedule_tick,
        "episodes": _episodes,
        "add-source": _add_source,
        "add-query": _add_query,
        "chat": _chat,
    }
    try:
        code = asyncio.run(handlers[args.command](args))
    except BriefingError as exc:
        _print({"status": "error", "error": str(exc)})
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()

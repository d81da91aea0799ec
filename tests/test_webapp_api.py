from __future__ import annotations

import time
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from briefing import EpisodeChat
from config import APISettings, Settings
from core import Source, SourceType
from llm import normalize_provider
from webapp.app import API_PREFIX, create_app
from webapp.runtime import build_runtime, set_runtime

from fakes import ScriptedLLM, StaticAdapter, make_candidates, score_reply, script_reply


def _settings(key: Optional[str] = None) -> Settings:
    return Settings(api=APISettings(key=key, schedule_enabled=False))


@pytest.fixture
def api_factory(store, make_pipeline):
    """TestClient over a runtime whose runs and chats use scripted collaborators and the shared store."""

    def _factory(*, key: Optional[str] = None, item_count: int = 10, chat_llm: Optional[ScriptedLLM] = None):
        def pipeline_factory(provider):
            llm = ScriptedLLM([score_reply({}), script_reply, "Agents reshape checkout."])
            return make_pipeline(adapters=[StaticAdapter("feed", make_candidates(item_count))], llm=llm)

        def chat_factory(provider):
            if provider:
                normalize_provider(provider)
            return EpisodeChat(store, chat_llm or ScriptedLLM())

        set_runtime(
            build_runtime(_settings(key), store=store, pipeline_factory=pipeline_factory, chat_factory=chat_factory)
        )
        return TestClient(create_app())

    yield _factory
    set_runtime(None)


def _wait_finished(client: TestClient, run_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        payload = client.get(f"{API_PREFIX}/generate/{run_id}").json()
        if payload["state"] not in ("queued", "running"):
            return payload
        if time.monotonic() > deadline:
            raise AssertionError(f"run {run_id} still {payload['state']}")
        time.sleep(0.02)


def test_health(api_factory) -> None:
    with api_factory() as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_generate_runs_in_background_and_publishes(api_factory) -> None:
    with api_factory() as client:
        response = client.post(f"{API_PREFIX}/generate", json={"provider": "claude"})
        assert response.status_code == 202
        run_id = response.json()["run_id"]

        run = _wait_finished(client, run_id)
        assert run["state"] == "completed"
        assert run["provider"] == "anthropic"
        assert run["events"][-1]["state"] == "completed"

        listing = client.get(f"{API_PREFIX}/episodes").json()
        assert listing["total"] == 1
        summary = listing["episodes"][0]
        assert summary["id"] == run["episode_id"]
        assert "script" not in summary
        assert summary["word_count"] > 0

        latest = client.get(f"{API_PREFIX}/episodes/latest").json()
        assert latest["id"] == run["episode_id"]
        assert "[source:" in latest["script"]

        detail = client.get(f"{API_PREFIX}/episodes/{run['episode_id']}").json()
        assert len(detail["sources"]) == 2
        assert detail["sources"][0]["relevance_score"] == 7.0


def test_generate_without_body_uses_default_provider(api_factory) -> None:
    with api_factory() as client:
        response = client.post(f"{API_PREFIX}/generate")
        assert response.status_code == 202
        run = _wait_finished(client, response.json()["run_id"])

    assert run["provider"] is None
    assert run["state"] == "completed"


def test_run_without_items_is_skipped(api_factory) -> None:
    with api_factory(item_count=0) as client:
        run_id = client.post(f"{API_PREFIX}/generate").json()["run_id"]
        run = _wait_finished(client, run_id)
        latest = client.get(f"{API_PREFIX}/episodes/latest")

    assert run["state"] == "skipped"
    assert run["episode_id"] is None
    assert latest.status_code == 404


def test_unknown_provider_is_rejected(api_factory) -> None:
    with api_factory() as client:
        response = client.post(f"{API_PREFIX}/generate", json={"provider": "gemini"})

    assert response.status_code == 400


def test_missing_resources_return_404(api_factory) -> None:
    with api_factory() as client:
        assert client.get(f"{API_PREFIX}/generate/nope").status_code == 404
        assert client.get(f"{API_PREFIX}/generate/nope/stream").status_code == 404
        assert client.get(f"{API_PREFIX}/episodes/nope").status_code == 404
        assert client.get(f"{API_PREFIX}/episodes/latest").status_code == 404
        assert client.delete(f"{API_PREFIX}/queries/nope").status_code == 404


def test_api_key_guards_mutations(api_factory) -> None:
    with api_factory(key="s3cret") as client:
        assert client.post(f"{API_PREFIX}/generate").status_code == 401
        assert client.post(f"{API_PREFIX}/generate", headers={"x-api-key": "wrong"}).status_code == 401
        assert client.post(f"{API_PREFIX}/queries", json={"query": "x"}).status_code == 401
        assert client.post(f"{API_PREFIX}/chat", json={"message": "x"}).status_code == 401

        assert client.post(f"{API_PREFIX}/generate", headers={"x-api-key": "s3cret"}).status_code == 202
        assert client.post(f"{API_PREFIX}/generate", headers={"Authorization": "Bearer s3cret"}).status_code == 202
        assert client.post(f"{API_PREFIX}/generate?api_key=s3cret").status_code == 202

        # reads stay open
        assert client.get(f"{API_PREFIX}/episodes").status_code == 200
        assert client.get(f"{API_PREFIX}/queries").status_code == 200


def test_query_crud(api_factory) -> None:
    with api_factory() as client:
        created = client.post(f"{API_PREFIX}/queries", json={"query": "  agentic commerce ", "category": "commerce"})
        assert created.status_code == 201
        query = created.json()
        assert query["query"] == "agentic commerce"
        assert query["added_by"] == "api"

        assert client.post(f"{API_PREFIX}/queries", json={"query": "   "}).status_code == 422

        listed = client.get(f"{API_PREFIX}/queries").json()["queries"]
        assert [q["id"] for q in listed] == [query["id"]]

        deleted = client.delete(f"{API_PREFIX}/queries/{query['id']}")
        assert deleted.json() == {"id": query["id"], "active": False}
        assert client.get(f"{API_PREFIX}/queries").json()["queries"] == []


@pytest.mark.asyncio
async def test_sources_lists_inactive_too(api_factory, store) -> None:
    await store.upsert_source(Source(name="Blog", url="https://blog.example/rss", type=SourceType.FEED))
    await store.upsert_source(Source(name="Old", url="https://old.example/rss", type=SourceType.FEED, active=False))

    with api_factory() as client:
        sources = client.get(f"{API_PREFIX}/sources").json()["sources"]

    assert sorted(s["name"] for s in sources) == ["Blog", "Old"]


def test_stream_replays_progress_and_ends(api_factory) -> None:
    with api_factory() as client:
        run_id = client.post(f"{API_PREFIX}/generate").json()["run_id"]
        _wait_finished(client, run_id)

        response = client.get(f"{API_PREFIX}/generate/{run_id}/stream")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    body = response.text
    assert "event: connected" in body
    assert body.count("event: progress") >= 10
    assert body.rstrip().splitlines()[-2] == "event: stream_end"
    assert '"status": "completed"' in body


def test_chat_continues_session(api_factory) -> None:
    chat_llm = ScriptedLLM(["Nothing published yet.", "Still nothing."])
    with api_factory(chat_llm=chat_llm) as client:
        first = client.post(f"{API_PREFIX}/chat", json={"message": "What happened this week?", "provider": "claude"})
        assert first.status_code == 200
        session_id = first.json()["session_id"]
        assert first.json()["reply"] == "Nothing published yet."

        second = client.post(f"{API_PREFIX}/chat", json={"message": "And today?", "session_id": session_id})
        assert second.json() == {"session_id": session_id, "reply": "Still nothing."}

    assert len(chat_llm.calls[1]["messages"]) == 4


def test_chat_rejects_bad_requests(api_factory) -> None:
    with api_factory() as client:
        assert client.post(f"{API_PREFIX}/chat", json={"message": "  "}).status_code == 422
        assert client.post(f"{API_PREFIX}/chat", json={"message": "hi", "session_id": "nope"}).status_code == 404
        assert client.post(f"{API_PREFIX}/chat", json={"message": "hi", "provider": "gemini"}).status_code == 400

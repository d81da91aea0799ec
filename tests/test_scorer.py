from __future__ import annotations

import json
from typing import List

import pytest

from briefing import PLACEHOLDER_SCORE, RelevanceScorer, parse_scores, select_items
from core import RawItem, ScoredItem, SourceType
from llm import UsageTracker
from utils.exceptions import LLMError, ScoringError

from fakes import ScriptedLLM, score_reply


def _raw_items(count: int) -> List[RawItem]:
    return [
        RawItem(
            id=f"item-{idx}",
            source_type=SourceType.WEB_SEARCH,
            title=f"Headline {idx}",
            url=f"https://example.com/{idx}",
            content="x" * 1000,
        )
        for idx in range(count)
    ]


def _scored(scores: List[float]) -> List[ScoredItem]:
    return [
        ScoredItem(id=f"s{idx}", source_type=SourceType.FEED, title=f"T{idx}", relevance_score=score)
        for idx, score in enumerate(scores)
    ]


def test_parse_scores_tolerates_surrounding_prose() -> None:
    text = 'Sure! ```json\n[{"id": "a", "score": 8.5, "reason": "big"}, {"id": 7, "score": "nine"}, {"score": 3}]\n```'

    scores = parse_scores(text)

    assert scores == {"a": (8.5, "big"), "7": (0.0, "")}


def test_parse_scores_rejects_non_json() -> None:
    with pytest.raises(ScoringError):
        parse_scores("I could not score these items, sorry.")
    with pytest.raises(ScoringError):
        parse_scores("[not json at all]")


def test_select_keeps_everything_above_threshold_up_to_max() -> None:
    selected = select_items(_scored([9, 7, 6, 8, 6.5, 2]), min_score=6.0, min_items=2, max_items=3)
    assert [item.relevance_score for item in selected] == [9, 8, 7]


def test_select_tops_up_to_min_items_regardless_of_score() -> None:
    selected = select_items(_scored([1, 7, 3, 2]), min_score=6.0, min_items=3, max_items=12)
    assert [item.relevance_score for item in selected] == [7, 3, 2]


def test_select_is_stable_on_ties() -> None:
    selected = select_items(_scored([5, 8, 5, 8, 5]), min_score=6.0, min_items=4, max_items=12)
    assert [item.id for item in selected] == ["s1", "s3", "s0", "s2"]


@pytest.mark.asyncio
async def test_score_tops_up_when_few_items_pass() -> None:
    scores = {idx: 2 + (idx % 3) for idx in range(20)}
    scores.update({4: 9, 11: 7, 17: 8})
    llm = ScriptedLLM([score_reply(scores)])
    scorer = RelevanceScorer(llm, model="cheap-model", min_score=6.0, min_items=8, max_items=12)
    usage = UsageTracker()

    result = await scorer.score(_raw_items(20), usage=usage)

    assert len(result.items) == 8
    assert [item.id for item in result.items[:3]] == ["item-4", "item-17", "item-11"]
    values = [item.relevance_score for item in result.items]
    assert values == sorted(values, reverse=True)
    assert result.fallback is False
    assert llm.calls[0]["model"] == "cheap-model"
    assert usage.by_stage["scoring"].calls == 1


@pytest.mark.asyncio
async def test_score_falls_back_on_unparseable_response() -> None:
    llm = ScriptedLLM(["The items all look interesting to me."])
    scorer = RelevanceScorer(llm, max_items=12)
    items = _raw_items(15)

    result = await scorer.score(items)

    assert result.fallback is True
    assert [item.id for item in result.items] == [item.id for item in items[:12]]
    assert {item.relevance_score for item in result.items} == {PLACEHOLDER_SCORE}


@pytest.mark.asyncio
async def test_score_gives_unscored_items_zero() -> None:
    llm = ScriptedLLM([json.dumps([{"id": "item-1", "score": 9, "reason": "on topic"}])])
    scorer = RelevanceScorer(llm, min_items=3, max_items=12)

    result = await scorer.score(_raw_items(3))

    assert [(item.id, item.relevance_score) for item in result.items] == [
        ("item-1", 9.0),
        ("item-0", 0.0),
        ("item-2", 0.0),
    ]
    assert result.items[1].score_reason == "Not scored"


@pytest.mark.asyncio
async def test_score_propagates_provider_failure() -> None:
    llm = ScriptedLLM([RuntimeError("overloaded")])
    scorer = RelevanceScorer(llm)

    with pytest.raises(LLMError):
        await scorer.score(_raw_items(2))


@pytest.mark.asyncio
async def test_prompt_truncates_snippets_and_includes_recent_topics() -> None:
    class _Topics:
        async def build(self) -> str:
            return "\n\n## Recently Covered Topics (last 1 episodes)\n\n- 2026-03-01: Agents at checkout"

    scorer = RelevanceScorer(ScriptedLLM(), topics=_Topics())

    prompt = await scorer.build_prompt(_raw_items(1))

    assert "Agents at checkout" in prompt
    payload = json.loads(prompt.split("## Items to Score", 1)[1])
    assert payload[0]["id"] == "item-0"
    assert len(payload[0]["content_snippet"]) == 300


@pytest.mark.asyncio
async def test_score_empty_input_makes_no_call() -> None:
    llm = ScriptedLLM()

    result = await RelevanceScorer(llm).score([])

    assert result.items == []
    assert llm.calls == []

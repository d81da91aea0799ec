"""LLM relevance scoring and bounded top-K selection."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core import RawItem, ScoredItem
from llm import BaseLLM, TokenUsage, UsageTracker
from utils.exceptions import ScoringError

from .prompts import SCORING_PROMPT, context_prompt
from .topics import RecentTopicsBuilder


logger = logging.getLogger(__name__)

PLACEHOLDER_SCORE = 5.0
SCORING_SNIPPET_CHARS = 300
SCORING_MAX_TOKENS = 4096
NOT_SCORED_REASON = "Not scored"
PLACEHOLDER_REASON = "Scoring response unparseable; placeholder score"

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


@dataclass
class ScoringResult:
    items: List[ScoredItem] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    fallback: bool = False
    candidate_count: int = 0


def scoring_payload(items: Sequence[RawItem]) -> List[Dict[str, Any]]:
    return [
        {
            "id": item.id,
            "title": item.title,
            "content_snippet": (item.content_snippet or item.content or "")[:SCORING_SNIPPET_CHARS],
            "source_type": item.source_type.value,
            "url": item.url,
        }
        for item in items
    ]


def _to_score(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_scores(text: str) -> Dict[str, Tuple[float, str]]:
    """
    Extract ``{id: (score, reason)}`` from a model response.

    The first ``[`` through the last ``]`` must decode as a JSON array.
    Entries without an id are ignored.

    Raises:
        ScoringError: no JSON array could be decoded
    """
    match = _JSON_ARRAY_RE.search(str(text or ""))
    if not match:
        raise ScoringError("No JSON array in scoring response")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ScoringError(f"Invalid JSON in scoring response: {exc}") from exc
    if not isinstance(payload, list):
        raise ScoringError("Scoring response is not a JSON array")

    scores: Dict[str, Tuple[float, str]] = {}
    for entry in payload:
        if not isinstance(entry, dict) or entry.get("id") in (None, ""):
            continue
        scores[str(entry["id"])] = (_to_score(entry.get("score")), str(entry.get("reason") or ""))
    return scores


def _scored(item: RawItem, score: float, reason: str) -> ScoredItem:
    fields = item.model_dump(exclude={"relevance_score", "score_reason"})
    return ScoredItem(**fields, relevance_score=score, score_reason=reason)


def attach_scores(items: Sequence[RawItem], scores: Dict[str, Tuple[float, str]]) -> List[ScoredItem]:
    """Scores in input order; items the model skipped get 0."""
    return [_scored(item, *scores.get(item.id, (0.0, NOT_SCORED_REASON))) for item in items]


def select_items(
    scored: Sequence[ScoredItem],
    *,
    min_score: float = 6.0,
    min_items: int = 8,
    max_items: int = 12,
) -> List[ScoredItem]:
    """
    Highest scores first (stable on ties).

    Everything at or above ``min_score`` is kept; when that is fewer than
    ``min_items`` the top ``min_items`` are taken regardless of score.
    The result never exceeds ``max_items``.
    """
    ranked = sorted(scored, key=lambda item: -item.relevance_score)
    selected = [item for item in ranked if item.relevance_score >= min_score]
    if len(selected) < min_items:
        selected = ranked[:min_items]
    return selected[:max_items]


def fallback_selection(items: Sequence[RawItem], max_items: int) -> List[ScoredItem]:
    return [_scored(item, PLACEHOLDER_SCORE, PLACEHOLDER_REASON) for item in list(items)[:max_items]]


class RelevanceScorer:
    """Scores a candidate set with one batched model call and selects the top items."""

    def __init__(
        self,
        llm: BaseLLM,
        *,
        topics: Optional[RecentTopicsBuilder] = None,
        model: Optional[str] = None,
        min_score: float = 6.0,
        min_items: int = 8,
        max_items: int = 12,
        focus: Optional[str] = None,
        max_tokens: int = SCORING_MAX_TOKENS,
    ):
        self.llm = llm
        self.topics = topics
        self.model = model
        self.min_score = min_score
        self.min_items = min_items
        self.max_items = max_items
        self.focus = focus
        self.max_tokens = max_tokens

    async def build_prompt(self, items: Sequence[RawItem]) -> str:
        recent_block = await self.topics.build() if self.topics is not None else ""
        payload = json.dumps(scoring_payload(items), indent=2, ensure_ascii=False)
        return f"{SCORING_PROMPT}{recent_block}\n\n## Items to Score\n\n{payload}"

    async def score(
        self,
        items: Sequence[RawItem],
        *,
        usage: Optional[UsageTracker] = None,
    ) -> ScoringResult:
        if not items:
            logger.info("scoring_skipped reason=no_items")
            return ScoringResult()

        logger.info("scoring_started items=%d model=%s", len(items), self.model or self.llm.model)
        response = await self.llm.agenerate(
            await self.build_prompt(items),
            system_prompt=context_prompt(self.focus),
            max_tokens=self.max_tokens,
            model=self.model,
        )
        if usage is not None:
            usage.record("scoring", response.usage)

        try:
            scores = parse_scores(response.text)
        except ScoringError as exc:
            logger.error("scoring_parse_failed error=%s", exc)
            logger.warning("scoring_fallback returning=%d of=%d", min(self.max_items, len(items)), len(items))
            return ScoringResult(
                items=fallback_selection(items, self.max_items),
                usage=response.usage,
                fallback=True,
                candidate_count=len(items),
            )

        selected = select_items(
            attach_scores(items, scores),
            min_score=self.min_score,
            min_items=self.min_items,
            max_items=self.max_items,
        )
        if selected:
            logger.info(
                "scoring_complete selected=%d scores=%s-%s",
                len(selected),
                selected[-1].relevance_score,
                selected[0].relevance_score,
            )
        return ScoringResult(items=selected, usage=response.usage, candidate_count=len(items))

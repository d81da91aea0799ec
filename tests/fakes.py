"""Scripted collaborators shared by the pipeline, scorer and API tests."""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from core import ActiveSourceConfig, CandidateItem, SourceType
from llm import BaseLLM, LLMResponse, TokenUsage, UsageTracker
from render import AudioSynthesizer, VoiceConfig
from sources import SourceAdapter


Reply = Union[str, BaseException, Callable[[str], str]]

_ITEM_ID_RE = re.compile(r'"id": "([^"]+)"')


def item_ids_in(prompt: str) -> List[str]:
    return _ITEM_ID_RE.findall(prompt)


class ScriptedLLM(BaseLLM):
    """Replies from a script of strings, exceptions or prompt -> text callables."""

    def __init__(self, replies: Sequence[Reply] = (), default: Reply = "ok"):
        super().__init__(model="fake-model")
        self.replies = list(replies)
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    @property
    def provider(self) -> str:
        return "fake"

    async def acomplete(self, messages, *, max_tokens=None, model=None, **kwargs) -> LLMResponse:
        system = next((m.content for m in messages if m.role.value == "system"), None)
        prompt = messages[-1].content
        self.calls.append(
            {"prompt": prompt, "system": system, "max_tokens": max_tokens, "model": model, "messages": list(messages)}
        )
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        text = reply(prompt) if callable(reply) else reply
        return LLMResponse(text=text, model=model or self.model, usage=TokenUsage(10, 5, 1))


class StaticAdapter(SourceAdapter):
    def __init__(self, name: str, items: Sequence[CandidateItem] = (), error: Optional[BaseException] = None, rate_limited: bool = False):
        super().__init__()
        self.name = name
        self.source_type = SourceType.FEED
        self.rate_limited = rate_limited
        self.items = list(items)
        self.error = error
        self.calls = 0

    async def fetch(self, config: ActiveSourceConfig, *, usage: Optional[UsageTracker] = None) -> List[CandidateItem]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.items)


class FakeSynthesizer(AudioSynthesizer):
    content_type = "audio/mpeg"
    extension = "mp3"

    def __init__(self, error: Optional[BaseException] = None):
        self.error = error
        self.texts: List[str] = []

    @property
    def provider(self) -> str:
        return "fake"

    async def synthesize(self, text: str, voice: Optional[VoiceConfig] = None) -> bytes:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return b"ID3" + text.encode("utf-8")[:64]


def make_candidates(count: int, prefix: str = "Story") -> List[CandidateItem]:
    return [
        CandidateItem(
            source_type=SourceType.FEED,
            title=f"{prefix} {idx}",
            url=f"https://news.example.com/{prefix.lower()}-{idx}",
            content=f"{prefix} {idx} body text about agentic commerce.",
            content_snippet=f"{prefix} {idx} snippet",
        )
        for idx in range(count)
    ]


def score_reply(scores: Dict[int, float]) -> Callable[[str], str]:
    """Scoring reply giving the n-th prompted item ``scores[n]`` (default 7)."""

    def _reply(prompt: str) -> str:
        ids = item_ids_in(prompt.split("## Items to Score", 1)[1])
        payload = [{"id": item_id, "score": scores.get(idx, 7), "reason": f"reason {idx}"} for idx, item_id in enumerate(ids)]
        return "Here are the scores:\n" + json.dumps(payload)

    return _reply


def script_reply(prompt: str) -> str:
    """Five-paragraph script citing the first two items of the source material."""
    ids = item_ids_in(prompt.split("## Source Material", 1)[1])
    first, second = ids[0], ids[1 % len(ids)]
    return (
        "Good morning and welcome to the briefing. Three stories matter today.\n\n"
        f"Retailers are wiring agents into checkout flows. Early pilots show higher conversion [source: {first}].\n\n"
        f"Ad platforms opened new buying APIs for autonomous agents. Budgets are starting to move [source: {second}].\n\n"
        "Search traffic keeps shifting toward assistants. Publishers are renegotiating their deals.\n\n"
        "That is all for today. See you tomorrow morning."
    )



class GatedSynthesizer(FakeSynthesizer):
    """Blocks inside ``synthesize`` until ``release`` is set; ``started`` marks entry."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def synthesize(self, text: str, voice: Optional[VoiceConfig] = None) -> bytes:
        self.started.set()
        await self.release.wait()
        return await super().synthesize(text, voice)

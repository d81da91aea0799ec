"""Script generation and the artifacts derived from one generated script."""

from __future__ import annotations

import json
import logging
import re
from datetime import date as date_cls
from typing import Any, Dict, List, Optional, Sequence

from core import ScoredItem, ScriptResult, Section
from llm import BaseLLM, UsageTracker
from utils.exceptions import LLMError, ScriptGenerationError

from .prompts import SCRIPT_PROMPT, SUMMARY_PROMPT, context_prompt, fallback_summary
from .timing import DEFAULT_WORDS_PER_MINUTE, count_words, seconds_for_words


logger = logging.getLogger(__name__)

SOURCE_CONTENT_CHARS = 2000
SCRIPT_MAX_TOKENS = 8192
SUMMARY_MAX_TOKENS = 200
SUMMARY_SCRIPT_CHARS = 3000
MIN_SCRIPT_CHARS = 200
MAX_STORY_SECTIONS = 3
TITLE_MAX_CHARS = 60

_CITATION_RE = re.compile(r"\[source:\s*([^\]]+)\]")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_SENTENCE_END_RE = re.compile(r"[.!?]")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_citations(text: str) -> str:
    """Remove ``[source: id]`` markers and collapse whitespace to single spaces."""
    return _WHITESPACE_RE.sub(" ", _CITATION_RE.sub("", str(text or ""))).strip()


def extract_source_ids(text: str) -> List[str]:
    """Cited ids, deduplicated in order of first appearance."""
    seen: Dict[str, None] = {}
    for match in _CITATION_RE.finditer(str(text or "")):
        ref = match.group(1).strip()
        if ref:
            seen.setdefault(ref, None)
    return list(seen)


def split_paragraphs(script: str) -> List[str]:
    return [part for part in _PARAGRAPH_SPLIT_RE.split(str(script or "")) if part.strip()]


def section_title(paragraph: str) -> Optional[str]:
    first = _SENTENCE_END_RE.split(strip_citations(paragraph), maxsplit=1)[0].strip()
    if not first:
        return None
    if len(first) > TITLE_MAX_CHARS:
        return first[: TITLE_MAX_CHARS - 3] + "..."
    return first


def parse_sections(script: str, words_per_minute: int = DEFAULT_WORDS_PER_MINUTE) -> List[Section]:
    """
    Positional section breakdown of a generated script.

    Paragraph 0 is the opener and, when there is more than one paragraph,
    the last is the closer. Paragraphs in between become ``story_1`` to
    ``story_3`` and then a single ``deeper_thread``; any further paragraphs
    get no entry of their own but still advance the word offset. Offsets
    count words of the citation-free text.
    """
    paragraphs = split_paragraphs(script)
    if not paragraphs:
        return []

    last = len(paragraphs) - 1
    sections: List[Section] = []
    word_index = 0
    middle_seen = 0

    for position, paragraph in enumerate(paragraphs):
        label: Optional[str]
        title: Optional[str] = None
        if position == 0:
            label = "opener"
        elif position == last:
            label = "closer"
        else:
            middle_seen += 1
            if middle_seen <= MAX_STORY_SECTIONS:
                label = f"story_{middle_seen}"
            elif middle_seen == MAX_STORY_SECTIONS + 1:
                label = "deeper_thread"
            else:
                label = None
            if label:
                title = section_title(paragraph)

        if label:
            sections.append(
                Section(
                    label=label,
                    title=title,
                    word_index=word_index,
                    estimated_timestamp_seconds=seconds_for_words(word_index, words_per_minute),
                    source_ids=extract_source_ids(paragraph),
                )
            )
        word_index += count_words(strip_citations(paragraph))

    return sections


def source_material(items: Sequence[ScoredItem]) -> List[Dict[str, Any]]:
    return [
        {
            "id": item.id,
            "title": item.title,
            "content": (item.content or "")[:SOURCE_CONTENT_CHARS],
            "source_type": item.source_type.value,
            "url": item.url,
            "relevance_score": item.relevance_score,
        }
        for item in items
    ]


class ScriptWriter:
    """Generates the briefing script, its clean text, sections and summary."""

    def __init__(
        self,
        llm: BaseLLM,
        *,
        focus: Optional[str] = None,
        min_script_chars: int = MIN_SCRIPT_CHARS,
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
        max_tokens: int = SCRIPT_MAX_TOKENS,
    ):
        self.llm = llm
        self.focus = focus
        self.min_script_chars = min_script_chars
        self.words_per_minute = words_per_minute
        self.max_tokens = max_tokens

    def build_prompt(self, items: Sequence[ScoredItem], date: str) -> str:
        payload = json.dumps(source_material(items), indent=2, ensure_ascii=False, default=str)
        return f"{SCRIPT_PROMPT}\n\nToday's date: {date}\n\n## Source Material\n\n{payload}"

    async def summarize(self, script: str, *, usage: Optional[UsageTracker] = None) -> str:
        """One or two sentence description; falls back to a fixed sentence on any failure."""
        try:
            response = await self.llm.agenerate(
                SUMMARY_PROMPT.format(script=script[:SUMMARY_SCRIPT_CHARS]),
                max_tokens=SUMMARY_MAX_TOKENS,
            )
        except LLMError as exc:
            logger.warning("summary_failed error=%s", exc)
            return fallback_summary(self.focus)
        if usage is not None:
            usage.record("summary", response.usage)
        return response.text.strip() or fallback_summary(self.focus)

    async def write(
        self,
        items: Sequence[ScoredItem],
        *,
        date: Optional[str] = None,
        usage: Optional[UsageTracker] = None,
    ) -> ScriptResult:
        """
        Generate the script for ``items``.

        Raises:
            ScriptGenerationError: no items, or the script is shorter than the floor
            LLMError: the generation call failed
        """
        if not items:
            raise ScriptGenerationError("No items provided for script generation")
        date = date or date_cls.today().isoformat()

        logger.info("script_started items=%d date=%s provider=%s", len(items), date, self.llm.provider)
        response = await self.llm.agenerate(
            self.build_prompt(items, date),
            system_prompt=context_prompt(self.focus),
            max_tokens=self.max_tokens,
        )
        if usage is not None:
            usage.record("script", response.usage)

        script = response.text or ""
        if len(script) < self.min_script_chars:
            raise ScriptGenerationError(
                "Script generation returned insufficient content",
                {"chars": len(script), "min_chars": self.min_script_chars},
            )

        clean_script = strip_citations(script)
        source_item_ids = extract_source_ids(script)
        sections = parse_sections(script, self.words_per_minute)
        summary = await self.summarize(script, usage=usage)

        words = count_words(clean_script)
        logger.info(
            "script_complete words=%d minutes=%.1f sources=%d sections=%d",
            words,
            words / float(self.words_per_minute),
            len(source_item_ids),
            len(sections),
        )
        usage_dict = {"input_tokens": response.usage.input_tokens, "output_tokens": response.usage.output_tokens}
        return ScriptResult(
            script=script,
            clean_script=clean_script,
            sections=sections,
            source_item_ids=source_item_ids,
            summary=summary,
            usage=usage_dict,
        )

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from briefing import Collector, dedup_recent
from core import ActiveSourceConfig, CandidateItem, SearchQuery, SourceType
from llm import UsageTracker

from fakes import StaticAdapter, make_candidates


def _candidate(title: str, url: Optional[str]) -> CandidateItem:
    return CandidateItem(source_type=SourceType.FEED, title=title, url=url)


class _SlowAdapter(StaticAdapter):
    async def fetch(self, config: ActiveSourceConfig, *, usage: Optional[UsageTracker] = None) -> List[CandidateItem]:
        await asyncio.sleep(5)
        return list(self.items)


class _OrderedAdapter(StaticAdapter):
    def __init__(self, name: str, log: List[str], **kwargs):
        super().__init__(name, **kwargs)
        self.log = log

    async def fetch(self, config: ActiveSourceConfig, *, usage: Optional[UsageTracker] = None) -> List[CandidateItem]:
        self.log.append(f"start:{self.name}")
        await asyncio.sleep(0.01)
        self.log.append(f"end:{self.name}")
        return list(self.items)


def test_dedup_drops_exact_url_or_title_matches() -> None:
    candidates = [
        _candidate("Fresh story", "https://a.example/fresh"),
        _candidate("Seen Before", "https://a.example/new-url"),
        _candidate("Another title", "https://a.example/seen"),
        _candidate("Seen before, with a twist", "https://a.example/twist"),
    ]
    recent = [("https://a.example/seen", "old title"), (None, "seen before")]

    kept, dropped = dedup_recent(candidates, recent)

    assert [c.title for c in kept] == ["Fresh story", "Seen before, with a twist"]
    assert dropped == 2


def test_dedup_empty_keys_never_match() -> None:
    candidates = [_candidate("", None), _candidate("Untitled", None)]
    recent = [(None, ""), ("", "")]

    kept, dropped = dedup_recent(candidates, recent)

    assert len(kept) == 2
    assert dropped == 0


@pytest.mark.asyncio
async def test_collect_isolates_failing_adapter(store) -> None:
    good = StaticAdapter("feed", make_candidates(3))
    bad = StaticAdapter("scrape", error=RuntimeError("listing page 500"))
    collector = Collector([good, bad], store)

    result = await collector.collect(ActiveSourceConfig())

    assert result.fetched_count == 3
    assert len(result.items) == 3
    reports = {report.name: report for report in result.adapter_reports}
    assert reports["feed"].ok and reports["feed"].items == 3
    assert not reports["scrape"].ok
    assert "listing page 500" in reports["scrape"].error


@pytest.mark.asyncio
async def test_collect_times_out_slow_adapter(store) -> None:
    slow = _SlowAdapter("transcript", make_candidates(2, "Slow"))
    fast = StaticAdapter("feed", make_candidates(1))
    collector = Collector([slow, fast], store, adapter_timeout_sec=0.05)

    result = await collector.collect(ActiveSourceConfig())

    assert [item.title for item in result.items] == ["Story 0"]
    reports = {report.name: report for report in result.adapter_reports}
    assert "timed out" in reports["transcript"].error


@pytest.mark.asyncio
async def test_rate_limited_adapters_run_after_parallel_group(store) -> None:
    log: List[str] = []
    adapters = [
        _OrderedAdapter("search_a", log, rate_limited=True),
        _OrderedAdapter("feed", log),
        _OrderedAdapter("search_b", log, rate_limited=True),
        _OrderedAdapter("scrape", log),
    ]
    collector = Collector(adapters, store)

    await collector.fetch_all(ActiveSourceConfig())

    assert set(log[:4]) == {"start:feed", "end:feed", "start:scrape", "end:scrape"}
    assert log[4:] == ["start:search_a", "end:search_a", "start:search_b", "end:search_b"]


@pytest.mark.asyncio
async def test_collect_drops_items_seen_in_window(store) -> None:
    await store.insert_raw_items(make_candidates(2))
    adapter = StaticAdapter("feed", make_candidates(4))
    collector = Collector([adapter], store, window_days=7)

    result = await collector.collect(ActiveSourceConfig())

    assert result.fetched_count == 4
    assert result.duplicate_count == 2
    assert [item.title for item in result.items] == ["Story 2", "Story 3"]


@pytest.mark.asyncio
async def test_collect_ignores_items_outside_window(store) -> None:
    await store.insert_raw_items(make_candidates(2))
    adapter = StaticAdapter("feed", make_candidates(2))
    collector = Collector([adapter], store, window_days=7)

    result = await collector.collect(ActiveSourceConfig(), now=datetime.now(timezone.utc) + timedelta(days=8))

    assert result.duplicate_count == 0
    assert len(result.items) == 2


@pytest.mark.asyncio
async def test_collect_loads_active_config_from_store(store) -> None:
    seen: List[ActiveSourceConfig] = []

    class _Capturing(StaticAdapter):
        async def fetch(self, config, *, usage=None):
            seen.append(config)
            return []

    await store.add_query(SearchQuery(query="agentic checkout"))
    result = await Collector([_Capturing("web_search")], store).collect()

    assert result.is_empty
    assert result.fetched_count == 0
    assert [q.query for q in seen[0].queries] == ["agentic checkout"]

"""Collection across source adapters with recency deduplication."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import time
from typing import Iterable, List, Optional, Sequence, Tuple

from core import ActiveSourceConfig, CandidateItem
from llm import UsageTracker
from sources import SourceAdapter
from storage import BriefingStore


logger = logging.getLogger(__name__)

RecentKey = Tuple[Optional[str], str]


@dataclass
class AdapterReport:
    name: str
    items: int = 0
    error: Optional[str] = None
    elapsed_sec: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict:
        return {"name": self.name, "items": self.items, "error": self.error, "elapsed_sec": round(self.elapsed_sec, 2)}


@dataclass
class CollectionResult:
    items: List[CandidateItem] = field(default_factory=list)
    fetched_count: int = 0
    duplicate_count: int = 0
    adapter_reports: List[AdapterReport] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.items


def _normalize_title(title: Optional[str]) -> str:
    return str(title or "").strip().lower()


def dedup_recent(
    candidates: Sequence[CandidateItem],
    recent_keys: Iterable[RecentKey],
) -> Tuple[List[CandidateItem], int]:
    """
    Drop candidates whose URL or normalized title exactly matches a recent item.

    Empty URLs and empty titles never match. Returns the kept candidates in
    input order and the number dropped.
    """
    recent_urls = set()
    recent_titles = set()
    for url, title in recent_keys:
        if url:
            recent_urls.add(url)
        normalized = _normalize_title(title)
        if normalized:
            recent_titles.add(normalized)

    kept: List[CandidateItem] = []
    for candidate in candidates:
        if candidate.url and candidate.url in recent_urls:
            continue
        title = candidate.normalized_title()
        if title and title in recent_titles:
            continue
        kept.append(candidate)
    return kept, len(candidates) - len(kept)


class Collector:
    """
    Runs every adapter and merges their candidates.

    Adapters flagged ``rate_limited`` run one after another once the
    concurrent group has settled. A failing or timed-out adapter contributes
    zero items and is reported; it never aborts the others.
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        store: BriefingStore,
        *,
        window_days: int = 7,
        adapter_timeout_sec: Optional[float] = 180.0,
    ):
        self.adapters = list(adapters)
        self.store = store
        self.window_days = window_days
        self.adapter_timeout_sec = adapter_timeout_sec

    async def _run_adapter(
        self,
        adapter: SourceAdapter,
        config: ActiveSourceConfig,
        usage: Optional[UsageTracker],
    ) -> Tuple[List[CandidateItem], AdapterReport]:
        report = AdapterReport(name=adapter.name)
        started = time.monotonic()
        try:
            items = await asyncio.wait_for(adapter.fetch(config, usage=usage), timeout=self.adapter_timeout_sec)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            report.error = f"timed out after {self.adapter_timeout_sec}s"
            items = []
        except Exception as exc:
            report.error = str(exc) or exc.__class__.__name__
            items = []
        report.elapsed_sec = time.monotonic() - started
        report.items = len(items)

        if report.error:
            logger.error("adapter_failed adapter=%s error=%s", adapter.name, report.error)
        else:
            logger.info("adapter_complete adapter=%s items=%d elapsed=%.1fs", adapter.name, report.items, report.elapsed_sec)
        return list(items), report

    async def fetch_all(
        self,
        config: ActiveSourceConfig,
        *,
        usage: Optional[UsageTracker] = None,
    ) -> Tuple[List[CandidateItem], List[AdapterReport]]:
        parallel = [adapter for adapter in self.adapters if not adapter.rate_limited]
        sequential = [adapter for adapter in self.adapters if adapter.rate_limited]

        outcomes = list(await asyncio.gather(*(self._run_adapter(a, config, usage) for a in parallel)))
        for adapter in sequential:
            outcomes.append(await self._run_adapter(adapter, config, usage))

        items: List[CandidateItem] = []
        reports: List[AdapterReport] = []
        for adapter_items, report in outcomes:
            items.extend(adapter_items)
            reports.append(report)
        return items, reports

    async def recent_keys(self, now: Optional[datetime] = None) -> List[RecentKey]:
        since = (now or datetime.now(timezone.utc)) - timedelta(days=self.window_days)
        return await self.store.recent_item_keys(since)

    async def collect(
        self,
        config: Optional[ActiveSourceConfig] = None,
        *,
        usage: Optional[UsageTracker] = None,
        now: Optional[datetime] = None,
    ) -> CollectionResult:
        if config is None:
            config = await self.store.active_config()

        logger.info(
            "collection_started adapters=%s sources=%d queries=%d",
            ",".join(adapter.name for adapter in self.adapters),
            len(config.sources),
            len(config.queries),
        )
        fetched, reports = await self.fetch_all(config, usage=usage)
        if not fetched:
            logger.warning("collection_empty adapters=%d failed=%d", len(reports), sum(1 for r in reports if not r.ok))
            return CollectionResult(adapter_reports=reports)

        kept, duplicates = dedup_recent(fetched, await self.recent_keys(now))
        logger.info(
            "collection_complete fetched=%d duplicates=%d kept=%d window_days=%d",
            len(fetched),
            duplicates,
            len(kept),
            self.window_days,
        )
        return CollectionResult(
            items=kept,
            fetched_count=len(fetched),
            duplicate_count=duplicates,
            adapter_reports=reports,
        )

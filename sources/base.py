"""Source adapter contract and shared fetch/normalize helpers."""

from __future__ import annotations

import asyncio
import html as html_lib
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from core import ActiveSourceConfig, CandidateItem, SourceType
from llm import UsageTracker


logger = logging.getLogger(__name__)

USER_AGENT = "DailyBriefing/1.0"
DEFAULT_TIMEOUT_SEC = 15.0

T = TypeVar("T")


def is_transient_http_error(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


def parse_datetime(value: Any) -> Optional[datetime]:
    text = str(value or "").strip()
    if not text:
        return None

    normalized = text.replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(normalized)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except ValueError:
        pass

    try:
        dt2 = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if dt2 is None:
        return None
    if dt2.tzinfo is None:
        dt2 = dt2.replace(tzinfo=timezone.utc)
    return dt2.astimezone(timezone.utc)


def safe_truncate(text: str, max_len: int = 9000) -> str:
    value = str(text or "")
    value = value.replace("\r\n", "\n").replace("\r", "\n")
    value = re.sub(r"[ \t\f\v]+", " ", value)
    value = re.sub(r"\n{3,}", "\n\n", value).strip()
    if len(value) <= max_len:
        return value
    return value[: max_len - 3].rstrip() + "..."


def strip_html(value: str) -> str:
    text = str(value or "")
    text = re.sub(r"<script[^>]*>.*?</script>", " ", text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<style[^>]*>.*?</style>", " ", text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html_lib.unescape(text)
    return re.sub(r"\s+", " ", text).strip()


async def gather_isolated(
    label: str,
    targets: Sequence[T],
    fetch_one: Callable[[T], Awaitable[List[CandidateItem]]],
    describe: Callable[[T], str] = str,
) -> List[CandidateItem]:
    """Fetch every target concurrently; a failing target is logged and contributes nothing."""
    if not targets:
        return []
    results = await asyncio.gather(*(fetch_one(target) for target in targets), return_exceptions=True)

    items: List[CandidateItem] = []
    for target, result in zip(targets, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.error("source_failed adapter=%s target=%s error=%s", label, describe(target), result)
            continue
        items.extend(result)
    return items


class SourceAdapter(ABC):
    """
    Fetch-and-normalize collaborator for one source type.

    ``fetch`` receives the whole active configuration and picks the entries
    of its own type. Per-source failures are absorbed inside the adapter;
    anything that escapes is isolated by the collector.
    """

    name: str = "adapter"
    source_type: SourceType
    rate_limited: bool = False

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        max_attempts: int = 3,
        retry_backoff: float = 1.0,
    ):
        self._client = client
        self.timeout = timeout
        self.max_attempts = max(1, int(max_attempts))
        self.retry_backoff = max(0.0, float(retry_backoff))

    @abstractmethod
    async def fetch(
        self,
        config: ActiveSourceConfig,
        *,
        usage: Optional[UsageTracker] = None,
    ) -> List[CandidateItem]:
        """Return normalized candidates for the active sources of this type."""

    async def _get(self, url: str, *, headers: Optional[Dict[str, str]] = None, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """GET with retries on 429, 5xx and transport errors; other HTTP errors raise at once."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(is_transient_http_error),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, min=self.retry_backoff, max=10),
            reraise=True,
        ):
            with attempt:
                return await self._get_once(url, headers=headers, params=params)

    async def _get_once(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        merged = {"User-Agent": USER_AGENT}
        merged.update(headers or {})
        if self._client is not None:
            response = await self._client.get(url, headers=merged, params=params, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), follow_redirects=True) as client:
                response = await client.get(url, headers=merged, params=params)
        response.raise_for_status()
        return response

    async def _get_text(self, url: str, *, headers: Optional[Dict[str, str]] = None) -> str:
        response = await self._get(url, headers=headers)
        return str(response.text or "")

    async def _get_json(self, url: str, *, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._get(url, params=params)
        return response.json()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name}, rate_limited={self.rate_limited})"

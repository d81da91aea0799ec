"""Best-effort run notifications: Slack incoming webhook plus an in-memory recorder."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from utils.exceptions import NotificationError


logger = logging.getLogger(__name__)

Blocks = List[Dict[str, Any]]

SKIP_NO_ITEMS = "no_items"
SKIP_ALL_DUPLICATES = "all_duplicates"
SKIP_LOW_SCORES = "low_scores"

SKIP_REASONS = {
    SKIP_NO_ITEMS: "No items collected.",
    SKIP_ALL_DUPLICATES: "All items duplicated recent content.",
    SKIP_LOW_SCORES: "All items scored too low.",
}


def skipped_message(date: str, reason: str) -> str:
    return f"⚠️ Briefing pipeline for {date}: {SKIP_REASONS.get(reason, reason)} Skipping."


def failed_message(date: str, error: str) -> str:
    return f"❌ Briefing pipeline failed for {date}: {error}"


def ready_message(
    date: str,
    *,
    summary: str,
    word_count: int,
    duration_seconds: int,
    source_count: int,
    provider_label: str,
) -> Tuple[str, Blocks]:
    minutes = int(round((duration_seconds or 0) / 60.0))
    blocks: Blocks = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*🎙️ Morning Briefing — {date}*\n{summary}"},
        },
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"{word_count} words · ~{minutes} min · {source_count} sources · {provider_label}",
                }
            ],
        },
    ]
    return f"🎙️ Morning briefing for {date} is ready!", blocks


class BaseNotifier(ABC):
    """``notify`` never raises; delivery problems are logged."""

    @abstractmethod
    async def notify(self, text: str, blocks: Optional[Blocks] = None) -> None:
        ...

    async def aclose(self) -> None:
        return None


class SlackNotifier(BaseNotifier):
    def __init__(
        self,
        webhook_url: Optional[str],
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._client = client

    async def _post(self, body: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.webhook_url, json=body, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
            return await client.post(self.webhook_url, json=body)

    async def notify(self, text: str, blocks: Optional[Blocks] = None) -> None:
        if not self.webhook_url:
            logger.warning("slack_skipped reason=webhook_not_configured")
            return

        body: Dict[str, Any] = {"text": text}
        if blocks:
            body["blocks"] = blocks
        try:
            response = await self._post(body)
            if response.status_code >= 300:
                raise NotificationError(
                    f"Slack webhook returned {response.status_code}",
                    {"body": response.text[:200]},
                )
        except Exception as exc:
            logger.error("slack_failed error=%s", exc)
            return
        logger.info("slack_sent")


@dataclass
class Notification:
    text: str
    blocks: Optional[Blocks] = None


class RecordingNotifier(BaseNotifier):
    """Keeps every notification in memory; used for dry runs and tests."""

    def __init__(self):
        self.sent: List[Notification] = []

    async def notify(self, text: str, blocks: Optional[Blocks] = None) -> None:
        self.sent.append(Notification(text=text, blocks=blocks))
        logger.info("notification_recorded text=%s", text)

    @property
    def texts(self) -> List[str]:
        return [notification.text for notification in self.sent]

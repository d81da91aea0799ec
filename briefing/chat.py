"""
Episode chat.

Answers questions about recently published episodes. Every turn rebuilds
the episode context (summaries, section titles, cited sources, and the full
script of the newest episode) and sends it ahead of the question; earlier
turns of the session go along as conversation history.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from core import ChatMessage, ChatRole, Episode, RawItem
from llm import BaseLLM, Message
from storage import BriefingStore
from utils.exceptions import ChatSessionNotFound

from .prompts import CHAT_CONTEXT_UNAVAILABLE, CHAT_NO_EPISODES, DEFAULT_FOCUS, chat_prompt


logger = logging.getLogger(__name__)

EPISODE_SEPARATOR = "\n\n---\n\n"


def render_episode_block(episode: Episode, sources: Sequence[RawItem], *, include_script: bool = False) -> str:
    parts = [f"### Episode: {episode.date}", f"**Summary:** {episode.summary or 'No summary'}"]

    titled = [section for section in episode.sections if section.title]
    if titled:
        lines = "\n".join(f"  - {section.label}: {section.title}" for section in titled)
        parts.append(f"**Sections:**\n{lines}")

    if sources:
        lines = "\n".join(f"  - [{item.source_type.value}] {item.title} ({item.url or 'no link'})" for item in sources)
        parts.append(f"**Sources:**\n{lines}")

    if include_script and episode.clean_script:
        parts.append(f"**Full Script:**\n{episode.clean_script}")

    return "\n\n".join(parts)


def render_episode_context(episodes: Sequence[Episode], items: Dict[str, RawItem]) -> str:
    """Context block for ``episodes`` (newest first); only the newest carries its script."""
    if not episodes:
        return CHAT_NO_EPISODES
    blocks = [
        render_episode_block(
            episode,
            [items[item_id] for item_id in episode.source_item_ids if item_id in items],
            include_script=index == 0,
        )
        for index, episode in enumerate(episodes)
    ]
    header = f"## Recent Briefing Episodes ({len(episodes)} most recent)"
    return f"{header}\n\n{EPISODE_SEPARATOR.join(blocks)}"


class EpisodeChat:
    """Store-backed chat over the most recent published episodes."""

    def __init__(
        self,
        store: BriefingStore,
        llm: BaseLLM,
        *,
        focus: str = DEFAULT_FOCUS,
        episode_limit: int = 10,
        history_limit: int = 20,
        max_tokens: int = 2048,
    ):
        self.store = store
        self.llm = llm
        self.focus = focus
        self.episode_limit = max(1, int(episode_limit))
        self.history_limit = max(0, int(history_limit))
        self.max_tokens = max_tokens

    async def build_context(self) -> str:
        try:
            episodes = await self.store.recent_published_episodes(self.episode_limit)
            item_ids: List[str] = []
            for episode in episodes:
                item_ids.extend(i for i in episode.source_item_ids if i not in item_ids)
            items = {item.id: item for item in await self.store.get_raw_items(item_ids)}
        except Exception as exc:
            logger.warning("chat_context_unavailable error=%s", exc)
            return CHAT_CONTEXT_UNAVAILABLE
        logger.info("chat_context_loaded episodes=%d sources=%d", len(episodes), len(items))
        return render_episode_context(episodes, items)

    async def _history(self, session_id: str) -> List[Message]:
        if self.history_limit == 0:
            return []
        turns = await self.store.list_chat_messages(session_id, limit=self.history_limit)
        return [
            Message.user(turn.content) if turn.role == ChatRole.USER else Message.assistant(turn.content)
            for turn in turns
        ]

    async def reply(self, message: str, *, session_id: Optional[str] = None) -> ChatMessage:
        """
        Answer ``message`` and record both turns.

        Args:
            message: the user's question
            session_id: existing session to continue; a new one is created when omitted

        Returns:
            The stored assistant turn (its ``session_id`` names the session).

        Raises:
            ChatSessionNotFound: ``session_id`` does not exist
            LLMError: the provider call failed; no turns are recorded
        """
        question = message.strip()
        if session_id is None:
            session = await self.store.create_chat_session()
            session_id = session.id
            history: List[Message] = []
        else:
            if await self.store.get_chat_session(session_id) is None:
                raise ChatSessionNotFound(session_id)
            history = await self._history(session_id)

        context = await self.build_context()
        response = await self.llm.agenerate(
            f"{context}{EPISODE_SEPARATOR}{question}",
            system_prompt=chat_prompt(self.focus),
            history=history,
            max_tokens=self.max_tokens,
        )
        answer = response.text.strip()

        await self.store.add_chat_message(ChatMessage(session_id=session_id, role=ChatRole.USER, content=question))
        stored = await self.store.add_chat_message(
            ChatMessage(session_id=session_id, role=ChatRole.ASSISTANT, content=answer)
        )
        logger.info("chat_reply session_id=%s history=%d chars=%d", session_id, len(history), len(answer))
        return stored

    async def aclose(self) -> None:
        await self.llm.aclose()

"""
Base LLM
Text-generation capability shared by every provider.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
import inspect
import logging

from utils.exceptions import LLMError

from .usage import TokenUsage


logger = logging.getLogger(__name__)


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """Conversation message"""
    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content)


@dataclass
class LLMResponse:
    """Generated text plus the usage it cost"""
    text: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: Optional[str] = None


def is_retryable(exc: BaseException) -> bool:
    """Connection failures, rate limits and 5xx are retried; other API errors are not."""
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if status is None:
        return exc.__class__.__name__ in {"APIConnectionError", "APITimeoutError", "ConnectError", "ReadTimeout"}
    return status == 429 or status >= 500


class BaseLLM(ABC):
    """
    Abstract text-generation capability.

    Providers implement ``acomplete`` (and optionally ``aweb_search``);
    callers use ``agenerate``, which wraps every provider failure in
    ``LLMError`` so that errors stay distinct from short or empty output.
    """

    def __init__(
        self,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        **kwargs,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.extra_config = kwargs

    @property
    @abstractmethod
    def provider(self) -> str:
        """Provider name"""

    @abstractmethod
    async def acomplete(
        self,
        messages: List[Message],
        *,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs,
    ) -> LLMResponse:
        """Run one provider call for ``messages``."""

    async def agenerate(
        self,
        user_prompt: str,
        *,
        system_prompt: Optional[str] = None,
        history: Sequence[Message] = (),
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> LLMResponse:
        """
        Generate the next reply for ``user_prompt``.

        Args:
            user_prompt: user message
            system_prompt: optional system instruction
            history: earlier user/assistant turns, oldest first
            max_tokens: output token cap (provider default if unset)
            model: per-call model override (e.g. a cheaper scoring model)

        Returns:
            LLMResponse

        Raises:
            LLMError: the provider call failed after retries
        """
        messages = []
        if system_prompt:
            messages.append(Message.system(system_prompt))
        messages.extend(m for m in history if m.role != MessageRole.SYSTEM)
        messages.append(Message.user(user_prompt))

        try:
            return await self.acomplete(messages, max_tokens=max_tokens, model=model)
        except LLMError:
            raise
        except Exception as exc:
            logger.error("llm_call_failed provider=%s model=%s error=%s", self.provider, model or self.model, exc)
            raise LLMError(f"{self.provider} generation failed: {exc}", provider=self.provider) from exc

    async def aweb_search(self, prompt: str, *, max_tokens: Optional[int] = None) -> LLMResponse:
        """Answer ``prompt`` using the provider's hosted web-search tool."""
        raise LLMError(f"{self.provider} does not support web search", provider=self.provider)

    async def aclose(self) -> None:
        """Release pooled HTTP connections held by the provider client."""
        client = getattr(self, "_async_client", None)
        if client is None:
            return None
        close_fn = getattr(client, "close", None)
        if callable(close_fn):
            maybe_awaitable = close_fn()
            if inspect.isawaitable(maybe_awaitable):
                await maybe_awaitable
        self._async_client = None
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model}, provider={self.provider})"

"""
Anthropic LLM
Claude models through the Messages API.
"""
from typing import Any, Dict, List, Optional, Tuple
import logging

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from utils.exceptions import LLMError

from .base import BaseLLM, LLMResponse, Message, MessageRole, is_retryable
from .usage import TokenUsage


logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 5}


class AnthropicLLM(BaseLLM):
    """
    Anthropic Claude implementation.

    Models:
    - claude-sonnet-4-5-20250929 (script and summary)
    - claude-haiku-4-5-20251001 (scoring)
    """

    def __init__(
        self,
        model: str = "claude-sonnet-4-5-20250929",
        api_key: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        client: Any = None,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self._async_client = client

    @property
    def provider(self) -> str:
        return "anthropic"

    def _get_async_client(self):
        if self._async_client is None:
            from anthropic import AsyncAnthropic
            self._async_client = AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
            )
        return self._async_client

    @staticmethod
    def _convert_messages(messages: List[Message]) -> Tuple[Optional[str], List[Dict[str, str]]]:
        """Anthropic takes the system prompt as a separate parameter."""
        system_prompt = None
        converted = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_prompt = msg.content
            else:
                converted.append(msg.to_dict())
        return system_prompt, converted

    @retry(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _create(self, **request_params):
        client = self._get_async_client()
        return await client.messages.create(**request_params)

    @staticmethod
    def _to_response(response) -> LLMResponse:
        text = "".join(
            getattr(block, "text", "") or ""
            for block in response.content
            if getattr(block, "type", None) == "text"
        )
        usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            calls=1,
        )
        return LLMResponse(
            text=text,
            model=response.model,
            usage=usage,
            finish_reason=response.stop_reason,
        )

    async def acomplete(
        self,
        messages: List[Message],
        *,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs,
    ) -> LLMResponse:
        system_prompt, converted = self._convert_messages(messages)
        request_params = {
            "model": model or self.model,
            "messages": converted,
            "temperature": kwargs.get("temperature", self.temperature),
            "max_tokens": max_tokens or self.max_tokens,
        }
        if system_prompt:
            request_params["system"] = system_prompt
        if kwargs.get("tools"):
            request_params["tools"] = kwargs["tools"]

        response = await self._create(**request_params)
        return self._to_response(response)

    async def aweb_search(self, prompt: str, *, max_tokens: Optional[int] = None) -> LLMResponse:
        try:
            return await self.acomplete(
                [Message.user(prompt)],
                max_tokens=max_tokens or 4096,
                tools=[WEB_SEARCH_TOOL],
            )
        except Exception as exc:
            raise LLMError(f"anthropic web search failed: {exc}", provider=self.provider) from exc

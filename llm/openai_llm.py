"""
OpenAI LLM
GPT models through Chat Completions; web search through the Responses API.
"""
from typing import Any, List, Optional
import logging

from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from utils.exceptions import LLMError

from .base import BaseLLM, LLMResponse, Message, is_retryable
from .usage import TokenUsage


logger = logging.getLogger(__name__)


class OpenAILLM(BaseLLM):
    """
    OpenAI implementation.

    Models:
    - gpt-4.1 (script and summary)
    - gpt-4.1-mini (scoring)
    """

    def __init__(
        self,
        model: str = "gpt-4.1",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        client: Any = None,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self.base_url = base_url
        self._async_client = client

    @property
    def provider(self) -> str:
        return "openai"

    def _get_async_client(self):
        if self._async_client is None:
            from openai import AsyncOpenAI
            self._async_client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._async_client

    @retry(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _create_chat(self, **request_params):
        client = self._get_async_client()
        return await client.chat.completions.create(**request_params)

    @retry(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _create_response(self, **request_params):
        client = self._get_async_client()
        return await client.responses.create(**request_params)

    async def acomplete(
        self,
        messages: List[Message],
        *,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs,
    ) -> LLMResponse:
        request_params = {
            "model": model or self.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": kwargs.get("temperature", self.temperature),
            "max_tokens": max_tokens or self.max_tokens,
        }
        response = await self._create_chat(**request_params)

        choice = response.choices[0]
        usage = TokenUsage(
            input_tokens=response.usage.prompt_tokens,
            output_tokens=response.usage.completion_tokens,
            calls=1,
        )
        return LLMResponse(
            text=choice.message.content or "",
            model=response.model,
            usage=usage,
            finish_reason=choice.finish_reason,
        )

    async def aweb_search(self, prompt: str, *, max_tokens: Optional[int] = None) -> LLMResponse:
        try:
            response = await self._create_response(
                model=self.model,
                tools=[{"type": "web_search_preview"}],
                input=prompt,
                max_output_tokens=max_tokens or 4096,
            )
        except Exception as exc:
            raise LLMError(f"openai web search failed: {exc}", provider=self.provider) from exc

        usage = getattr(response, "usage", None)
        return LLMResponse(
            text=getattr(response, "output_text", "") or "",
            model=getattr(response, "model", self.model),
            usage=TokenUsage(
                input_tokens=getattr(usage, "input_tokens", 0) or 0,
                output_tokens=getattr(usage, "output_tokens", 0) or 0,
                calls=1,
            ),
        )

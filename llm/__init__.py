"""
LLM Module
Provider-neutral text generation with explicit usage accounting.
"""
from .base import BaseLLM, LLMResponse, Message, MessageRole
from .usage import TokenUsage, UsageTracker
from .openai_llm import OpenAILLM
from .anthropic_llm import AnthropicLLM
from .factory import (
    DEFAULT_MODELS,
    DEFAULT_SCORING_MODELS,
    PROVIDER_LABELS,
    get_llm,
    normalize_provider,
    provider_label,
    scoring_model_for,
)

__all__ = [
    "BaseLLM",
    "LLMResponse",
    "Message",
    "MessageRole",
    "TokenUsage",
    "UsageTracker",
    "OpenAILLM",
    "AnthropicLLM",
    "DEFAULT_MODELS",
    "DEFAULT_SCORING_MODELS",
    "PROVIDER_LABELS",
    "get_llm",
    "normalize_provider",
    "provider_label",
    "scoring_model_for",
]

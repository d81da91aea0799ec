"""
LLM Factory
Builds a provider from an explicit provider key plus settings.
"""
from typing import Optional
import logging

from utils.exceptions import ConfigurationError

from .anthropic_llm import AnthropicLLM
from .base import BaseLLM
from .openai_llm import OpenAILLM


logger = logging.getLogger(__name__)


DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-5-20250929",
    "openai": "gpt-4.1",
}

DEFAULT_SCORING_MODELS = {
    "anthropic": "claude-haiku-4-5-20251001",
    "openai": "gpt-4.1-mini",
}

PROVIDER_LABELS = {
    "anthropic": "Claude",
    "openai": "GPT-4.1",
}

_ALIASES = {
    "claude": "anthropic",
    "gpt": "openai",
}


def normalize_provider(provider: Optional[str]) -> str:
    """Map a user-facing key (``claude``, ``openai``...) to a provider name."""
    key = str(provider or "").strip().lower()
    key = _ALIASES.get(key, key)
    if key not in DEFAULT_MODELS:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}", {"supported": sorted(DEFAULT_MODELS)})
    return key


def provider_label(provider: Optional[str]) -> str:
    try:
        return PROVIDER_LABELS[normalize_provider(provider)]
    except ConfigurationError:
        return str(provider or "unknown")


def scoring_model_for(provider: str, override: Optional[str] = None) -> str:
    return override or DEFAULT_SCORING_MODELS[normalize_provider(provider)]


def get_llm(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    settings=None,
    **kwargs,
) -> BaseLLM:
    """
    Build an LLM instance.

    Args:
        provider: ``anthropic``/``claude`` or ``openai`` (settings default when unset)
        model: model name (provider default when unset)
        settings: ``LLMSettings``; loaded from the environment when omitted
        **kwargs: overrides for temperature, max_tokens, timeout, client

    Returns:
        BaseLLM instance

    Example:
        llm = get_llm()
        llm = get_llm(provider="openai", model="gpt-4.1")
    """
    if settings is None:
        from config import get_llm_settings
        settings = get_llm_settings()

    provider = normalize_provider(provider or settings.provider)
    configured = settings.model_name if provider == normalize_provider(settings.provider) else None
    model = model or configured or DEFAULT_MODELS[provider]

    api_keys = {
        "anthropic": settings.anthropic_api_key,
        "openai": settings.openai_api_key,
    }
    api_key = kwargs.pop("api_key", None) or api_keys.get(provider)

    defaults = {
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
        "timeout": settings.timeout,
    }
    for key, value in defaults.items():
        kwargs.setdefault(key, value)

    logger.info("llm_selected provider=%s model=%s", provider, model)
    if provider == "openai":
        return OpenAILLM(model=model, api_key=api_key, base_url=kwargs.pop("base_url", None), **kwargs)
    return AnthropicLLM(model=model, api_key=api_key, **kwargs)

"""LLM adapter layer — OpenAI and Anthropic behind a common protocol."""

from artimport.llm.anthropic_provider import AnthropicProvider
from artimport.llm.base import LLMProvider, parse_json_reply
from artimport.llm.openai_provider import OpenAIProvider


def get_provider(provider_name: str, **kwargs: object) -> LLMProvider:
    """Return an LLM provider. provider_name: 'openai' | 'anthropic'."""
    if provider_name.lower() == "anthropic":
        return AnthropicProvider(**kwargs)
    return OpenAIProvider(**kwargs)


def provider_from_settings(settings) -> LLMProvider | None:
    """Provider configured in settings, or None when its API key is missing."""
    name = settings.artimport_llm_provider.lower()
    if name == "anthropic":
        api_key, model = settings.anthropic_api_key, settings.artimport_anthropic_model
    else:
        api_key, model = settings.openai_api_key, settings.artimport_openai_model
    if not api_key:
        return None
    return get_provider(name, api_key=api_key, model=model)


__all__ = [
    "LLMProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "get_provider",
    "provider_from_settings",
    "parse_json_reply",
]

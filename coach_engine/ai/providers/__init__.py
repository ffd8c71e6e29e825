"""
LLM providers and the name → class registry driven by ``Settings.llm_providers``.
"""

from typing import Dict, List, Optional, Tuple, Type

from coach_engine.ai.providers.anthropic_provider import AnthropicProvider
from coach_engine.ai.providers.base import LLMProvider, usable_key
from coach_engine.ai.providers.openai_provider import OpenAIProvider
from coach_engine.ai.providers.stub_provider import StubProvider
from coach_engine.config import ProviderDescriptor, Settings
from coach_engine.logging_config import get_logger

logger = get_logger(__name__)

PROVIDER_REGISTRY: Dict[str, Type[LLMProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "stub": StubProvider,
}


def _api_key_for(name: str, settings: Settings) -> Optional[str]:
    return {
        "anthropic": settings.anthropic_api_key,
        "openai": settings.openai_api_key,
    }.get(name)


def build_providers(settings: Settings) -> List[Tuple[ProviderDescriptor, LLMProvider]]:
    """
    Instantiate configured providers in failover order.

    Providers that need an API key and have none (or a placeholder) are
    skipped with a warning.
    """
    built: List[Tuple[ProviderDescriptor, LLMProvider]] = []
    for descriptor in settings.llm_providers:
        cls = PROVIDER_REGISTRY.get(descriptor.name)
        if cls is None:
            logger.warning("Unknown LLM provider %r in configuration; skipped", descriptor.name)
            continue
        key = _api_key_for(descriptor.name, settings)
        if descriptor.name != "stub" and not usable_key(key):
            logger.warning("No API key for LLM provider %r; skipped", descriptor.name)
            continue
        built.append((descriptor, cls(descriptor, api_key=key)))
    return built


__all__ = [
    "LLMProvider",
    "AnthropicProvider",
    "OpenAIProvider",
    "StubProvider",
    "PROVIDER_REGISTRY",
    "build_providers",
    "usable_key",
]

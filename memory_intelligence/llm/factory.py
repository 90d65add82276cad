"""
LLM Factory - Builds the chat provider behind the LLM classifier.
"""

import os
from typing import Dict, List, Optional, Type

from ..config import ClassifierConfig
from .anthropic_provider import AnthropicProvider
from .base import LLMConfig, LLMError, LLMProvider
from .openai_provider import OpenAIProvider

# Checked in order by detect_provider_from_env
ENV_KEYS = (
    ("openai", "OPENAI_API_KEY"),
    ("anthropic", "ANTHROPIC_API_KEY"),
)


class LLMFactory:
    """Registry of provider classes keyed by lowercase name."""

    _providers: Dict[str, Type[LLMProvider]] = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
    }

    @classmethod
    def register_provider(cls, name: str, provider_class: type):
        """Register a custom provider class under `name`."""
        if not issubclass(provider_class, LLMProvider):
            raise ValueError("Provider class must inherit from LLMProvider")
        cls._providers[name.lower()] = provider_class

    @classmethod
    def create_from_config(cls, config: LLMConfig) -> LLMProvider:
        """
        Instantiate the provider named by `config.provider`.

        Raises:
            LLMError: If the provider is not registered.
        """
        provider_class = cls._providers.get(config.provider.lower())
        if provider_class is None:
            raise LLMError(
                f"Unknown LLM provider: {config.provider}. "
                f"Available providers: {', '.join(cls.list_providers())}"
            )
        return provider_class(config)

    @classmethod
    def create_for_classifier(cls, config: ClassifierConfig, timeout: float) -> LLMProvider:
        """Provider for the classifier, with the detector's call timeout as request timeout."""
        return cls.create_from_config(LLMConfig(
            provider=config.provider.lower(),
            model=config.model,
            api_key=config.api_key,
            api_base=config.api_base,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=timeout,
            max_retries=config.max_retries,
        ))

    @classmethod
    def detect_provider_from_env(cls) -> Optional[str]:
        """Name of the first provider with an API key in the environment."""
        for name, env_var in ENV_KEYS:
            if os.environ.get(env_var):
                return name
        return None

    @classmethod
    def list_providers(cls) -> List[str]:
        return list(cls._providers)

"""
LLM Integration Module - Provides abstraction for multiple LLM providers.

The classification backend of the detector talks to an LLM through this
interface; OpenAI and Anthropic are supported.
"""

from .base import (
    LLMProvider,
    LLMConfig,
    LLMResponse,
    LLMMessage,
    LLMUsage,
    MessageRole,
    LLMError,
    LLMRateLimitError,
    LLMAuthenticationError,
    LLMContextLengthError,
)
from .openai_provider import OpenAIProvider
from .anthropic_provider import AnthropicProvider
from .factory import LLMFactory
from .prompts import (
    MEMORY_DETECTION_SYSTEM,
    MEMORY_DETECTION_PROMPT,
    format_memory_detection_prompt,
)

__all__ = [
    # Core classes
    "LLMProvider",
    "LLMConfig",
    "LLMResponse",
    "LLMMessage",
    "LLMUsage",
    "MessageRole",
    # Errors
    "LLMError",
    "LLMRateLimitError",
    "LLMAuthenticationError",
    "LLMContextLengthError",
    # Providers
    "OpenAIProvider",
    "AnthropicProvider",
    "LLMFactory",
    # Prompt templates
    "MEMORY_DETECTION_SYSTEM",
    "MEMORY_DETECTION_PROMPT",
    "format_memory_detection_prompt",
]

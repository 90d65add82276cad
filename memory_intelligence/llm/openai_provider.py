"""
OpenAI Provider - Chat completions through the OpenAI API.
"""

import logging
import os
from typing import List

from .base import (
    LLMConfig,
    LLMError,
    LLMMessage,
    LLMProvider,
    LLMRateLimitError,
    LLMResponse,
    LLMUsage,
    classify_error_message,
    error_message_from,
    retry_after_from,
)

logger = logging.getLogger(__name__)

AUTH_MARKERS = ("authentication", "api_key", "api key")
CONTEXT_MARKERS = ("context_length", "maximum context")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    name = "openai"

    def __init__(self, config: LLMConfig):
        super().__init__(config)

        self.api_key = config.api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            logger.warning("No OpenAI API key provided. Set OPENAI_API_KEY environment variable.")

        self.api_base = config.api_base or "https://api.openai.com/v1"
        self._client = None

    def _get_client(self):
        """Get or create the OpenAI client; SDK retries are disabled."""
        if self._client is None:
            import openai

            self._client = openai.OpenAI(
                api_key=self.api_key,
                base_url=self.api_base,
                timeout=self.config.timeout,
                max_retries=0,
            )
        return self._client

    def _request(self, messages: List[LLMMessage], **kwargs) -> LLMResponse:
        params = dict(self.config.extra_options)
        params.update(
            model=kwargs.get("model", self.config.model),
            messages=[msg.to_dict() for msg in messages],
            temperature=kwargs.get("temperature", self.config.temperature),
            max_tokens=kwargs.get("max_tokens", self.config.max_tokens),
        )
        if kwargs.get("json_mode"):
            params["response_format"] = {"type": "json_object"}

        response = self._get_client().chat.completions.create(**params)

        usage = response.usage
        choice = response.choices[0] if response.choices else None
        return LLMResponse(
            content=(choice.message.content if choice and choice.message else "") or "",
            model=response.model,
            usage=LLMUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
            ),
            finish_reason=choice.finish_reason if choice else None,
        )

    def _handle_error(self, error: Exception) -> LLMError:
        mapped = classify_error_message(error_message_from(error), AUTH_MARKERS, CONTEXT_MARKERS)
        if isinstance(mapped, LLMRateLimitError):
            mapped.retry_after = retry_after_from(error)
        return mapped

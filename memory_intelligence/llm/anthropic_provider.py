"""
Anthropic Provider - Messages through the Anthropic Claude API.
"""

import logging
import os
from typing import List, Tuple

from .base import (
    LLMConfig,
    LLMError,
    LLMMessage,
    LLMProvider,
    LLMRateLimitError,
    LLMResponse,
    LLMUsage,
    MessageRole,
    classify_error_message,
    error_message_from,
    retry_after_from,
)

logger = logging.getLogger(__name__)

AUTH_MARKERS = ("authentication", "api_key", "x-api-key")
CONTEXT_MARKERS = ("prompt is too long", "context length", "context window")

# Anthropic has no JSON response mode; the reply is steered instead
JSON_PREFILL = "{"


class AnthropicProvider(LLMProvider):
    """Anthropic Claude messages provider."""

    name = "anthropic"

    def __init__(self, config: LLMConfig):
        super().__init__(config)

        self.api_key = config.api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            logger.warning("No Anthropic API key provided. Set ANTHROPIC_API_KEY environment variable.")

        self.api_base = config.api_base or "https://api.anthropic.com"
        self._client = None

    def _get_client(self):
        """Get or create the Anthropic client; SDK retries are disabled."""
        if self._client is None:
            import anthropic

            self._client = anthropic.Anthropic(
                api_key=self.api_key,
                base_url=self.api_base,
                timeout=self.config.timeout,
                max_retries=0,
            )
        return self._client

    def _prepare_messages(self, messages: List[LLMMessage]) -> Tuple[str, List[dict]]:
        """
        Split system messages from the conversation.

        Returns:
            Tuple of (system_prompt, conversation_messages).
        """
        system_parts = []
        conversation = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_parts.append(msg.content)
            else:
                conversation.append(msg.to_dict())
        return "\n".join(system_parts).strip(), conversation

    def _request(self, messages: List[LLMMessage], **kwargs) -> LLMResponse:
        system, conversation = self._prepare_messages(messages)
        json_mode = kwargs.get("json_mode", False)
        if json_mode:
            conversation.append({"role": "assistant", "content": JSON_PREFILL})

        params = dict(self.config.extra_options)
        params.update(
            model=kwargs.get("model", self.config.model),
            messages=conversation,
            max_tokens=kwargs.get("max_tokens", self.config.max_tokens),
            temperature=kwargs.get("temperature", self.config.temperature),
        )
        if system:
            params["system"] = system

        response = self._get_client().messages.create(**params)

        text = "".join(getattr(block, "text", "") for block in response.content or [])
        if json_mode:
            text = JSON_PREFILL + text
        usage = response.usage
        return LLMResponse(
            content=text,
            model=response.model,
            usage=LLMUsage(
                prompt_tokens=usage.input_tokens if usage else 0,
                completion_tokens=usage.output_tokens if usage else 0,
            ),
            finish_reason=response.stop_reason,
        )

    def _handle_error(self, error: Exception) -> LLMError:
        mapped = classify_error_message(error_message_from(error), AUTH_MARKERS, CONTEXT_MARKERS)
        if isinstance(mapped, LLMRateLimitError):
            mapped.retry_after = retry_after_from(error)
        return mapped

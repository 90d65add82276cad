"""
Base LLM Provider - Shared types and the retry loop for chat providers.

Providers implement a single request (`_request`) and an error mapping
(`_handle_error`); `complete` wraps them with retries and usage tracking.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-haiku-20240307",
}


class MessageRole(str, Enum):
    """Role of the message sender."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class LLMMessage:
    """One chat message sent to a provider."""
    role: MessageRole
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}


@dataclass
class LLMUsage:
    """Token counts for one or more requests."""
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "LLMUsage") -> "LLMUsage":
        return LLMUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


@dataclass
class LLMResponse:
    """Text returned by a provider."""
    content: str
    model: str
    usage: LLMUsage = field(default_factory=LLMUsage)
    finish_reason: Optional[str] = None


@dataclass
class LLMConfig:
    """Connection and sampling settings for one provider."""
    provider: str  # "openai", "anthropic"
    model: str = ""
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    temperature: float = 0.1
    max_tokens: int = 1000
    timeout: float = 5.0

    # Attempts per complete() call, including the first
    max_retries: int = 1
    retry_delay: float = 0.5

    extra_options: dict = field(default_factory=dict)

    def __post_init__(self):
        if not self.model:
            self.model = DEFAULT_MODELS.get(self.provider, DEFAULT_MODELS["openai"])


class LLMError(Exception):
    """Base exception for LLM-related errors."""
    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limit is exceeded."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMError):
    """Raised when authentication fails."""
    pass


class LLMContextLengthError(LLMError):
    """Raised when context length is exceeded."""
    pass


def classify_error_message(message: str, auth_markers, context_markers) -> LLMError:
    """Map a provider error message onto the LLMError hierarchy."""
    lowered = message.lower()
    if "rate_limit" in lowered or "rate limit" in lowered:
        return LLMRateLimitError(message)
    if any(marker in lowered for marker in auth_markers):
        return LLMAuthenticationError(message)
    if any(marker in lowered for marker in context_markers):
        return LLMContextLengthError(message)
    return LLMError(message)


def retry_after_from(error: Exception) -> Optional[float]:
    """Retry-After header of an SDK error's HTTP response, if present."""
    headers = getattr(getattr(error, "response", None), "headers", None)
    if not headers:
        return None
    raw = headers.get("Retry-After")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def error_message_from(error: Exception) -> str:
    """Prefer the message inside an SDK error's JSON body over str(error)."""
    response = getattr(error, "response", None)
    if response is not None:
        try:
            body = response.json()
        except (AttributeError, ValueError):
            body = None
        if isinstance(body, dict):
            message = (body.get("error") or {}).get("message")
            if message:
                return message
    return str(error)


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Instances are shared by the processor's worker threads, so usage
    accounting is guarded by a lock.
    """

    name = "base"

    def __init__(self, config: LLMConfig):
        self.config = config
        self._total_usage = LLMUsage()
        self._usage_lock = threading.Lock()

    @property
    def total_usage(self) -> LLMUsage:
        """Usage across all successful requests."""
        with self._usage_lock:
            return self._total_usage

    def reset_usage(self):
        with self._usage_lock:
            self._total_usage = LLMUsage()

    @abstractmethod
    def _request(self, messages: List[LLMMessage], **kwargs) -> LLMResponse:
        """Send one request to the backend."""

    @abstractmethod
    def _handle_error(self, error: Exception) -> LLMError:
        """Convert an SDK exception to an LLMError."""

    def complete(self, messages: List[LLMMessage], **kwargs) -> LLMResponse:
        """
        Generate a completion, retrying transient failures.

        Args:
            messages: Conversation to complete.
            **kwargs: model, temperature, max_tokens, and json_mode to
                request a JSON object where the backend supports it.

        Raises:
            LLMError: When the last attempt fails or the error is not retryable.
        """
        attempt = 0
        while True:
            try:
                response = self._request(messages, **kwargs)
            except LLMError:
                raise
            except Exception as e:
                error = self._handle_error(e)
                wait_time = self._retry_wait(error, attempt)
                if wait_time is None:
                    raise error from e
                logger.warning(f"{self.name} request failed ({error}). Retrying in {wait_time}s...")
                time.sleep(wait_time)
                attempt += 1
                continue

            with self._usage_lock:
                self._total_usage = self._total_usage + response.usage
            return response

    def _retry_wait(self, error: LLMError, attempt: int) -> Optional[float]:
        """
        Seconds to wait before the next attempt, or None to give up.

        Rate limits honour Retry-After; other errors back off
        exponentially until max_retries is used up.
        """
        if attempt >= self.config.max_retries - 1:
            return None
        if isinstance(error, (LLMAuthenticationError, LLMContextLengthError)):
            return None
        if isinstance(error, LLMRateLimitError) and error.retry_after:
            return error.retry_after
        return self.config.retry_delay * (2 ** attempt)

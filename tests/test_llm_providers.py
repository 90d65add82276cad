"""Tests for the OpenAI and Anthropic providers and the factory."""

import os
from unittest.mock import MagicMock, patch

import pytest

from memory_intelligence.config import ClassifierConfig
from memory_intelligence.llm import (
    AnthropicProvider,
    LLMFactory,
    LLMConfig,
    LLMMessage,
    LLMResponse,
    LLMUsage,
    MessageRole,
    OpenAIProvider,
    format_memory_detection_prompt,
)
from memory_intelligence.llm.base import (
    LLMAuthenticationError,
    LLMContextLengthError,
    LLMError,
    LLMProvider,
    LLMRateLimitError,
)
from memory_intelligence.memory.types import ConversationTurn


@pytest.fixture
def messages():
    return [
        LLMMessage(role=MessageRole.SYSTEM, content="Extract facts."),
        LLMMessage(role=MessageRole.USER, content="I prefer morning workouts"),
    ]


def openai_client(content='{"memories": []}'):
    client = MagicMock()
    response = MagicMock()
    response.model = "gpt-4o-mini"
    response.usage.prompt_tokens = 100
    response.usage.completion_tokens = 20
    response.choices[0].message.content = content
    response.choices[0].finish_reason = "stop"
    client.chat.completions.create.return_value = response
    return client


def anthropic_client(text='{"memories": []}'):
    client = MagicMock()
    response = MagicMock()
    response.model = "claude-3-haiku-20240307"
    response.usage.input_tokens = 80
    response.usage.output_tokens = 10
    response.content = [MagicMock(text=text)]
    response.stop_reason = "end_turn"
    client.messages.create.return_value = response
    return client


class TestLLMConfig:
    """Test provider configuration defaults."""

    def test_default_models(self):
        assert LLMConfig(provider="openai").model == "gpt-4o-mini"
        assert LLMConfig(provider="anthropic").model == "claude-3-haiku-20240307"
        assert LLMConfig(provider="openai", model="gpt-4o").model == "gpt-4o"

    def test_usage_addition(self):
        total = LLMUsage(1, 2) + LLMUsage(4, 5)
        assert (total.prompt_tokens, total.completion_tokens, total.total_tokens) == (5, 7, 12)


class TestRetryWait:
    """Tests for the retry policy shared by providers."""

    def make_provider(self, **overrides):
        return OpenAIProvider(LLMConfig(provider="openai", api_key="sk-test", **overrides))

    def test_backoff(self):
        provider = self.make_provider(max_retries=3, retry_delay=0.5)

        assert provider._retry_wait(LLMError("boom"), 0) == 0.5
        assert provider._retry_wait(LLMError("boom"), 1) == 1.0
        assert provider._retry_wait(LLMError("boom"), 2) is None

    def test_rate_limit_uses_retry_after(self):
        provider = self.make_provider(max_retries=3)
        assert provider._retry_wait(LLMRateLimitError("slow down", retry_after=7), 0) == 7

    @pytest.mark.parametrize("error", [LLMAuthenticationError("bad key"), LLMContextLengthError("too long")])
    def test_fatal_errors(self, error):
        assert self.make_provider(max_retries=3)._retry_wait(error, 0) is None


class TestOpenAIProvider:
    """Test cases for OpenAIProvider."""

    def test_api_key_from_env(self):
        with patch.dict(os.environ, {"OPENAI_API_KEY": "env-key"}):
            provider = OpenAIProvider(LLMConfig(provider="openai"))
        assert provider.api_key == "env-key"
        assert provider.api_base == "https://api.openai.com/v1"

    def test_complete(self, messages):
        client = openai_client('{"memories": [1]}')
        provider = OpenAIProvider(LLMConfig(provider="openai", api_key="sk-test"))

        with patch.object(OpenAIProvider, "_get_client", return_value=client):
            response = provider.complete(messages)

        assert response.content == '{"memories": [1]}'
        assert response.finish_reason == "stop"
        assert response.usage.total_tokens == 120
        assert provider.total_usage.prompt_tokens == 100

        params = client.chat.completions.create.call_args.kwargs
        assert params["model"] == "gpt-4o-mini"
        assert params["messages"][0] == {"role": "system", "content": "Extract facts."}
        assert "response_format" not in params

    def test_json_mode(self, messages):
        client = openai_client()
        provider = OpenAIProvider(LLMConfig(provider="openai", api_key="sk-test"))

        with patch.object(OpenAIProvider, "_get_client", return_value=client):
            provider.complete(messages, json_mode=True)

        params = client.chat.completions.create.call_args.kwargs
        assert params["response_format"] == {"type": "json_object"}

    def test_retries_then_succeeds(self, messages):
        client = openai_client()
        response = client.chat.completions.create.return_value
        client.chat.completions.create.side_effect = [Exception("server error"), response]
        provider = OpenAIProvider(LLMConfig(provider="openai", api_key="sk-test", max_retries=2, retry_delay=0))

        with patch.object(OpenAIProvider, "_get_client", return_value=client):
            result = provider.complete(messages)

        assert result.content == '{"memories": []}'
        assert client.chat.completions.create.call_count == 2

    def test_authentication_error_not_retried(self, messages):
        client = openai_client()
        client.chat.completions.create.side_effect = Exception("Invalid API key provided")
        provider = OpenAIProvider(LLMConfig(provider="openai", api_key="sk-test", max_retries=3, retry_delay=0))

        with patch.object(OpenAIProvider, "_get_client", return_value=client):
            with pytest.raises(LLMAuthenticationError):
                provider.complete(messages)

        assert client.chat.completions.create.call_count == 1

    @pytest.mark.parametrize("message, expected", [
        ("Rate limit reached for requests", LLMRateLimitError),
        ("Incorrect API key", LLMAuthenticationError),
        ("This model's maximum context length is 8192 tokens", LLMContextLengthError),
        ("Something else", LLMError),
    ])
    def test_handle_error(self, message, expected):
        provider = OpenAIProvider(LLMConfig(provider="openai", api_key="sk-test"))
        assert type(provider._handle_error(Exception(message))) is expected

    def test_rate_limit_retry_after_header(self):
        error = Exception("rate limit")
        error.response = MagicMock()
        error.response.json.side_effect = ValueError("not json")
        error.response.headers = {"Retry-After": "12"}
        provider = OpenAIProvider(LLMConfig(provider="openai", api_key="sk-test"))

        mapped = provider._handle_error(error)

        assert isinstance(mapped, LLMRateLimitError)
        assert mapped.retry_after == 12.0


class TestAnthropicProvider:
    """Test cases for AnthropicProvider."""

    def test_prepare_messages(self, messages):
        provider = AnthropicProvider(LLMConfig(provider="anthropic", api_key="sk-ant"))

        system, conversation = provider._prepare_messages(messages)

        assert system == "Extract facts."
        assert conversation == [{"role": "user", "content": "I prefer morning workouts"}]

    def test_complete(self, messages):
        client = anthropic_client('{"memories": []}')
        provider = AnthropicProvider(LLMConfig(provider="anthropic", api_key="sk-ant"))

        with patch.object(AnthropicProvider, "_get_client", return_value=client):
            response = provider.complete(messages)

        assert response.content == '{"memories": []}'
        assert response.finish_reason == "end_turn"
        assert response.usage.total_tokens == 90
        assert provider.total_usage.completion_tokens == 10

        params = client.messages.create.call_args.kwargs
        assert params["system"] == "Extract facts."
        assert params["temperature"] == 0.1
        assert params["messages"] == [{"role": "user", "content": "I prefer morning workouts"}]

    def test_json_mode_prefills_brace(self, messages):
        """The reply continues an assistant turn that opens the JSON object."""
        client = anthropic_client('"memories": []}')
        provider = AnthropicProvider(LLMConfig(provider="anthropic", api_key="sk-ant"))

        with patch.object(AnthropicProvider, "_get_client", return_value=client):
            response = provider.complete(messages, json_mode=True)

        assert response.content == '{"memories": []}'
        params = client.messages.create.call_args.kwargs
        assert params["messages"][-1] == {"role": "assistant", "content": "{"}
        assert "json_mode" not in params

    @pytest.mark.parametrize("message, expected", [
        ("rate_limit_error", LLMRateLimitError),
        ("invalid x-api-key", LLMAuthenticationError),
        ("prompt is too long: 300000 tokens", LLMContextLengthError),
        ("overloaded", LLMError),
    ])
    def test_handle_error(self, message, expected):
        provider = AnthropicProvider(LLMConfig(provider="anthropic", api_key="sk-ant"))
        assert type(provider._handle_error(Exception(message))) is expected


class TestLLMFactory:
    """Tests for LLMFactory."""

    def test_list_providers(self):
        assert {"openai", "anthropic"} <= set(LLMFactory.list_providers())

    def test_create_from_config(self):
        provider = LLMFactory.create_from_config(LLMConfig(provider="Anthropic", api_key="sk-ant"))
        assert isinstance(provider, AnthropicProvider)

    def test_unknown_provider(self):
        with pytest.raises(LLMError, match="Unknown LLM provider"):
            LLMFactory.create_from_config(LLMConfig(provider="nope"))

    def test_create_for_classifier(self):
        config = ClassifierConfig(provider="openai", model="gpt-4o", api_key="sk-test", max_retries=2)

        provider = LLMFactory.create_for_classifier(config, timeout=2.0)

        assert isinstance(provider, OpenAIProvider)
        assert provider.config.model == "gpt-4o"
        assert provider.config.timeout == 2.0
        assert provider.config.max_retries == 2

    def test_register_provider(self):
        class EchoProvider(LLMProvider):
            name = "echo"

            def _request(self, messages, **kwargs):
                return LLMResponse(content=messages[-1].content, model=self.config.model)

            def _handle_error(self, error):
                return LLMError(str(error))

        LLMFactory.register_provider("Echo", EchoProvider)
        try:
            provider = LLMFactory.create_from_config(LLMConfig(provider="echo", model="echo-1"))
            assert isinstance(provider, EchoProvider)
            assert "echo" in LLMFactory.list_providers()
            reply = provider.complete([LLMMessage(role=MessageRole.USER, content="I prefer tea")])
            assert reply.content == "I prefer tea"
        finally:
            LLMFactory._providers.pop("echo")

    def test_register_rejects_non_provider(self):
        with pytest.raises(ValueError):
            LLMFactory.register_provider("bad", dict)

    def test_detect_provider_from_env(self):
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "sk-ant"}, clear=True):
            assert LLMFactory.detect_provider_from_env() == "anthropic"
        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk", "ANTHROPIC_API_KEY": "sk-ant"}, clear=True):
            assert LLMFactory.detect_provider_from_env() == "openai"
        with patch.dict(os.environ, {}, clear=True):
            assert LLMFactory.detect_provider_from_env() is None


class TestPrompts:
    """Test the detection prompt."""

    def test_format_memory_detection_prompt(self):
        prompt = format_memory_detection_prompt(
            'I said "hi"',
            [ConversationTurn(role="user", content="hello"), ConversationTurn(role="assistant", content="hey")],
        )

        assert "Message: \"I said 'hi'\"" in prompt
        assert "user: hello\nassistant: hey" in prompt
        assert '{"memories": []}' in prompt

    def test_empty_history(self):
        assert "(none)" in format_memory_detection_prompt("I prefer tea with lemon")

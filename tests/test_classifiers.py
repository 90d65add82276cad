"""
Tests for classification backends.
"""

import pytest
from unittest.mock import MagicMock

from memory_intelligence.config import ClassifierConfig
from memory_intelligence.errors import ClassificationUnavailable
from memory_intelligence.llm.anthropic_provider import AnthropicProvider
from memory_intelligence.llm.base import LLMError, LLMResponse, LLMUsage, MessageRole
from memory_intelligence.llm.openai_provider import OpenAIProvider
from memory_intelligence.memory.classifiers import (
    LLMClassifier,
    RuleBasedClassifier,
    create_classifier,
    extract_json_payload,
)


def classify(text):
    return RuleBasedClassifier().classify(text, {})["memories"]


class TestRuleBasedClassifier:
    """Test the offline pattern classifier."""

    def test_preference(self):
        memories = classify("I prefer morning workouts")

        assert memories == [{
            "content": "I prefer morning workouts",
            "category": "preference",
            "importance": 0.6,
            "keywords": ["prefer", "morning", "workouts"],
        }]

    def test_personal_info(self):
        memories = classify("I'm allergic to peanuts")
        assert memories[0]["category"] == "personal_info"
        assert memories[0]["importance"] == 0.8

    def test_instruction(self):
        memories = classify("Always respond in Spanish")
        assert memories[0]["category"] == "instruction"

    def test_context(self):
        memories = classify("I'm training for a marathon")
        assert memories[0]["category"] == "context"

    def test_small_talk_ignored(self):
        assert classify("The weather is nice today") == []

    def test_one_memory_per_statement(self):
        """Test that each sentence is categorized on its own."""
        memories = classify("I love hiking. I live in Denver.")

        assert [m["content"] for m in memories] == ["I love hiking.", "I live in Denver."]
        assert [m["category"] for m in memories] == ["preference", "personal_info"]

    def test_explicit_trigger(self):
        """Test that a remember request is kept with raised importance."""
        memories = classify("Remember that I'm vegan")

        assert len(memories) == 1
        assert memories[0]["content"] == "I'm vegan"
        assert memories[0]["category"] == "context"
        assert memories[0]["importance"] == pytest.approx(0.8)
        assert memories[0]["explicit"] is True


class TestExtractJsonPayload:
    """Test tolerant JSON parsing of LLM output."""

    def test_plain_json(self):
        assert extract_json_payload('{"memories": []}') == {"memories": []}

    def test_markdown_fence(self):
        assert extract_json_payload('```json\n{"memories": []}\n```') == {"memories": []}

    def test_surrounding_prose_and_trailing_comma(self):
        assert extract_json_payload('Here you go: {"a": 1,} hope it helps') == {"a": 1}

    def test_array(self):
        assert extract_json_payload("[1, 2]") == [1, 2]

    @pytest.mark.parametrize("content", ["", "no json here", "{broken"])
    def test_unparseable(self, content):
        with pytest.raises(ValueError):
            extract_json_payload(content)


class TestLLMClassifier:
    """Test the LLM-backed classifier with a mock provider."""

    def _provider(self, content):
        provider = MagicMock()
        provider.complete.return_value = LLMResponse(content=content, model="test-model", usage=LLMUsage())
        return provider

    def test_classify(self):
        provider = self._provider('{"memories": [{"content": "I prefer tea"}]}')

        result = LLMClassifier(provider).classify("I prefer tea", {})

        assert result == {"memories": [{"content": "I prefer tea"}]}
        messages = provider.complete.call_args[0][0]
        assert messages[0].role == MessageRole.SYSTEM
        assert "I prefer tea" in messages[1].content
        assert provider.complete.call_args[1]["json_mode"] is True

    def test_provider_error(self):
        provider = MagicMock()
        provider.complete.side_effect = LLMError("rate limited")

        with pytest.raises(ClassificationUnavailable):
            LLMClassifier(provider).classify("I prefer tea", {})

    def test_unparseable_response(self):
        with pytest.raises(ClassificationUnavailable):
            LLMClassifier(self._provider("I cannot help with that")).classify("I prefer tea", {})


class TestCreateClassifier:
    """Test classifier selection from configuration."""

    def test_default_is_rules(self):
        assert isinstance(create_classifier(), RuleBasedClassifier)

    def test_llm_openai(self):
        classifier = create_classifier(
            ClassifierConfig(backend="llm", provider="openai", api_key="sk-test"),
            timeout=2.0,
        )

        assert isinstance(classifier, LLMClassifier)
        assert isinstance(classifier.provider, OpenAIProvider)
        assert classifier.provider.config.timeout == 2.0

    def test_llm_auto_detects_provider(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")

        classifier = create_classifier(ClassifierConfig(backend="llm", provider="auto"))

        assert isinstance(classifier.provider, AnthropicProvider)

    def test_llm_auto_without_keys(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        with pytest.raises(ClassificationUnavailable):
            create_classifier(ClassifierConfig(backend="llm", provider="auto"))

    def test_unknown_provider(self):
        with pytest.raises(ClassificationUnavailable):
            create_classifier(ClassifierConfig(backend="llm", provider="bogus"))

    def test_unknown_backend(self):
        with pytest.raises(ClassificationUnavailable):
            create_classifier(ClassifierConfig(backend="magic"))

"""
Classification backends used by the detector.

A classifier turns a message into raw structured candidates. The
detector owns validation; classifiers only produce output and raise
ClassificationUnavailable when the backend cannot answer.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Dict, List, Optional

from ..config import ClassifierConfig
from ..errors import ClassificationUnavailable
from ..llm.base import LLMError, LLMMessage, LLMProvider, MessageRole
from ..llm.factory import LLMFactory
from ..llm.prompts import MEMORY_DETECTION_SYSTEM, format_memory_detection_prompt
from .facts import split_statements
from .text import extract_keywords
from .triggers import detect_explicit_trigger
from .types import ConversationTurn, MemoryCategory

logger = logging.getLogger(__name__)


class Classifier(ABC):
    """Interchangeable text-classification backend."""

    name = "base"

    @abstractmethod
    def classify(
        self,
        text: str,
        schema_hint: Dict[str, Any],
        history: Optional[List[ConversationTurn]] = None,
    ) -> Any:
        """
        Classify a message into raw candidate memories.

        Args:
            text: Normalized message text
            schema_hint: Allowed categories and content bounds
            history: Recent turns, most recent last

        Returns:
            Structured output: a list of candidate dicts, or a dict
            wrapping them under "memories"

        Raises:
            ClassificationUnavailable: If the backend fails.
        """
        pass


# ========== JSON extraction ==========

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def extract_json_payload(content: str) -> Any:
    """
    Parse JSON from an LLM response.

    Tolerates markdown fences, prose around the JSON and trailing commas.

    Raises:
        ValueError: If no JSON object or array can be recovered.
    """
    cleaned = _FENCE_RE.sub("", content or "").strip()
    if not cleaned:
        raise ValueError("Empty classifier response")

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for opener, closer in (("{", "}"), ("[", "]")):
        start = cleaned.find(opener)
        end = cleaned.rfind(closer)
        if start == -1 or end <= start:
            continue
        snippet = _TRAILING_COMMA_RE.sub(r"\1", cleaned[start:end + 1])
        try:
            return json.loads(snippet)
        except json.JSONDecodeError:
            continue

    raise ValueError(f"No JSON found in classifier response: {cleaned[:80]!r}")


class LLMClassifier(Classifier):
    """Classifier that asks an LLM for JSON-formatted candidates."""

    name = "llm"

    def __init__(self, provider: LLMProvider):
        self.provider = provider

    def classify(
        self,
        text: str,
        schema_hint: Dict[str, Any],
        history: Optional[List[ConversationTurn]] = None,
    ) -> Any:
        messages = [
            LLMMessage(role=MessageRole.SYSTEM, content=MEMORY_DETECTION_SYSTEM),
            LLMMessage(role=MessageRole.USER, content=format_memory_detection_prompt(text, history)),
        ]
        try:
            response = self.provider.complete(messages, json_mode=True)
        except LLMError as e:
            raise ClassificationUnavailable(f"LLM classification failed: {e}") from e

        try:
            return extract_json_payload(response.content)
        except ValueError as e:
            raise ClassificationUnavailable(str(e)) from e


# ========== Rule-based classification ==========

CATEGORY_PATTERNS = [
    (MemoryCategory.INSTRUCTION, 0.8, re.compile(
        r"\b(always|never|don'?t|do not|stop|please)\b.*\b(tell|remind|call|answer|respond|reply|use|give|ask|mention|suggest|recommend)\b"
        r"|\bcall me\b|\brespond in\b|\bkeep (your )?(answers|responses|replies)\b",
        re.IGNORECASE,
    )),
    (MemoryCategory.PERSONAL_INFO, 0.8, re.compile(
        r"\b(allergic|allergy|diagnosed|intolerant|diabetic|asthma|injur(y|ed))\b",
        re.IGNORECASE,
    )),
    (MemoryCategory.PERSONAL_INFO, 0.7, re.compile(
        r"\bmy name is\b|\bi am a\b|\bi'?m an?\b|\bi work\b|\bi live\b|\byears old\b"
        r"|\bmy (wife|husband|partner|son|daughter|kids|children|job|doctor)\b",
        re.IGNORECASE,
    )),
    (MemoryCategory.PREFERENCE, 0.6, re.compile(
        r"\b(prefer|like|love|hate|dislike|enjoy|favou?rite|can'?t stand)\w*\b",
        re.IGNORECASE,
    )),
    (MemoryCategory.CONTEXT, 0.7, re.compile(
        r"\b(want to|goal is|trying to|hope to|plan(ning)? to|working on|training for|preparing for|aiming to)\b",
        re.IGNORECASE,
    )),
]


class RuleBasedClassifier(Classifier):
    """
    Offline classifier based on phrase patterns.

    Each sentence of the message is matched against category cues; the
    first matching cue decides the category and base importance. An
    explicit "remember that ..." request is always returned, with raised
    importance.
    """

    name = "rules"

    def __init__(self, max_keywords: int = 10):
        self.max_keywords = max_keywords

    def _categorize(self, statement: str):
        for category, importance, pattern in CATEGORY_PATTERNS:
            if pattern.search(statement):
                return category, importance
        return None, 0.0

    def classify(
        self,
        text: str,
        schema_hint: Dict[str, Any],
        history: Optional[List[ConversationTurn]] = None,
    ) -> Any:
        memories = []
        seen = set()

        trigger = detect_explicit_trigger(text)
        if trigger:
            category, importance = self._categorize(trigger.content)
            memories.append({
                "content": trigger.content,
                "category": (category or MemoryCategory.CONTEXT).value,
                "importance": min(1.0, max(importance, 0.6) + 0.2),
                "keywords": extract_keywords(trigger.content, self.max_keywords),
                "explicit": True,
            })
            seen.add(trigger.content.lower())

        for statement in split_statements(text):
            lowered = statement.lower()
            if any(previous in lowered for previous in seen):
                continue
            category, importance = self._categorize(statement)
            if category is None:
                continue
            seen.add(lowered)
            memories.append({
                "content": statement,
                "category": category.value,
                "importance": importance,
                "keywords": extract_keywords(statement, self.max_keywords),
            })

        return {"memories": memories}


def create_classifier(config: Optional[ClassifierConfig] = None, timeout: float = 5.0) -> Classifier:
    """
    Build the classifier named by configuration.

    Args:
        config: Classifier configuration ("rules" or "llm" backend)
        timeout: Per-request timeout handed to the LLM client

    Returns:
        A classifier instance
    """
    config = config or ClassifierConfig()
    backend = config.backend.lower()

    if backend == "rules":
        return RuleBasedClassifier()

    if backend == "llm":
        if config.provider.lower() == "auto":
            detected = LLMFactory.detect_provider_from_env()
            if detected is None:
                raise ClassificationUnavailable(
                    "No LLM API key found. Set OPENAI_API_KEY or ANTHROPIC_API_KEY."
                )
            config = replace(config, provider=detected)
        try:
            provider = LLMFactory.create_for_classifier(config, timeout=timeout)
        except LLMError as e:
            raise ClassificationUnavailable(str(e)) from e
        logger.info(f"Using LLM classifier ({provider.config.provider}/{provider.config.model})")
        return LLMClassifier(provider)

    raise ClassificationUnavailable(
        f"Unknown classifier backend: {config.backend}. Available backends: rules, llm"
    )

"""
Memory detection.

Turns a chat message plus a little recent history into validated
candidate memories, delegating the actual classification to a
pluggable backend.
"""

import logging
import re
import time
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from ..config import DetectorConfig
from ..errors import BackendUnavailable, ClassificationUnavailable, ValidationError
from ..processing.timeouts import run_with_timeout
from .classifiers import Classifier
from .text import extract_keywords, normalize_whitespace, truncate
from .triggers import ExplicitTrigger, detect_explicit_trigger
from .types import CandidateMemory, ConversationTurn, MemoryCategory, validate_importance

if TYPE_CHECKING:
    from ..observability.monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


_PLACEHOLDER_RE = re.compile(r"\b(undefined|null|n/a)\b", re.IGNORECASE)


class Detector:
    """
    Analyzes a message and produces candidate memories.

    detect() is the fast path used by chat callers: it never raises and
    returns an empty list when the backend is down. analyze() is the same
    pipeline but raises BackendUnavailable, so background tasks can retry
    and feed the circuit breaker.
    """

    COMPONENT = "detector"

    def __init__(
        self,
        classifier: Classifier,
        config: Optional[DetectorConfig] = None,
        monitor: Optional["PerformanceMonitor"] = None,
    ):
        self.classifier = classifier
        self.config = config or DetectorConfig()
        self.monitor = monitor

    # ========== Public API ==========

    def detect(
        self,
        owner_id: str,
        message: str,
        recent_history: Optional[Iterable[Any]] = None,
        source_conversation_id: Optional[str] = None,
        source_message_id: Optional[str] = None,
    ) -> List[CandidateMemory]:
        """
        Detect candidate memories, degrading to an empty list on failure.

        Args:
            owner_id: Owner the message belongs to
            message: The new user message
            recent_history: Prior turns, most recent last
            source_conversation_id: Conversation the message came from
            source_message_id: Id of the message

        Returns:
            Validated candidates (possibly empty)
        """
        try:
            return self.analyze(
                owner_id,
                message,
                recent_history,
                source_conversation_id=source_conversation_id,
                source_message_id=source_message_id,
            )
        except BackendUnavailable as e:
            logger.warning(f"Memory detection unavailable for owner {owner_id}: {e}")
            return []
        except Exception as e:
            logger.exception(f"Unexpected memory detection error for owner {owner_id}: {e}")
            return []

    def analyze(
        self,
        owner_id: str,
        message: str,
        recent_history: Optional[Iterable[Any]] = None,
        source_conversation_id: Optional[str] = None,
        source_message_id: Optional[str] = None,
    ) -> List[CandidateMemory]:
        """
        Detect candidate memories, raising when the backend fails.

        Raises:
            ClassificationUnavailable: If the backend errors, times out or
                returns output that cannot be interpreted.
        """
        text = self.prepare_message(message)
        if not text:
            logger.debug(f"Skipping detection for empty message (owner {owner_id})")
            return []

        history = self.prepare_history(recent_history)
        start = time.perf_counter()
        try:
            raw = run_with_timeout(
                self.classifier.classify,
                self.config.call_timeout,
                text,
                self.schema_hint(),
                history,
                name="classification",
            )
            candidates = self.parse_candidates(
                raw,
                message=text,
                source_conversation_id=source_conversation_id,
                source_message_id=source_message_id,
            )
        except ClassificationUnavailable:
            self._record(start, False)
            raise
        except Exception as e:
            self._record(start, False)
            raise ClassificationUnavailable(f"Classification failed: {type(e).__name__}: {e}") from e

        self._record(start, True)
        logger.debug(f"Detected {len(candidates)} candidate(s) for owner {owner_id}")
        return candidates

    def detect_explicit_trigger(self, message: str) -> Optional[ExplicitTrigger]:
        """Explicit "remember that ..." request in the message, if any."""
        return detect_explicit_trigger(normalize_whitespace(message))

    # ========== Input preparation ==========

    def prepare_message(self, message: Optional[str]) -> str:
        """Collapse whitespace and cap the message length."""
        return truncate(normalize_whitespace(message or ""), self.config.max_message_chars)

    def prepare_history(self, recent_history: Optional[Iterable[Any]]) -> List[ConversationTurn]:
        """Keep only the last few non-empty turns, each truncated."""
        turns = []
        for item in list(recent_history or [])[-self.config.history_limit:] if self.config.history_limit > 0 else []:
            turn = ConversationTurn.from_value(item)
            content = truncate(normalize_whitespace(turn.content), self.config.max_turn_chars)
            if content:
                turns.append(ConversationTurn(role=turn.role, content=content))
        return turns

    def schema_hint(self) -> Dict[str, Any]:
        """Output contract handed to the classification backend."""
        return {
            "categories": [c.value for c in MemoryCategory],
            "min_content_length": self.config.min_content_length,
            "max_content_length": self.config.max_content_length,
            "importance_range": [0.0, 1.0],
            "max_keywords": self.config.max_keywords,
        }

    # ========== Output parsing ==========

    def parse_candidates(
        self,
        raw: Any,
        message: str = "",
        source_conversation_id: Optional[str] = None,
        source_message_id: Optional[str] = None,
    ) -> List[CandidateMemory]:
        """
        Interpret backend output and keep only valid candidates.

        Accepts a list of candidate dicts, {"memories": [...]}, or a single
        {"shouldRemember": ..., "extractedInfo": ...} result.
        """
        items = self._candidate_items(raw)
        trigger = detect_explicit_trigger(message) if message else None

        candidates: List[CandidateMemory] = []
        seen = set()
        rejected = 0
        for item in items:
            try:
                candidate = self._build_candidate(item, trigger)
            except ValidationError as e:
                rejected += 1
                logger.debug(f"Rejected candidate: {e}")
                continue

            key = candidate.content.lower()
            if key in seen:
                continue
            seen.add(key)
            candidate.source_conversation_id = source_conversation_id
            candidate.source_message_id = source_message_id
            candidates.append(candidate)

        if rejected:
            logger.info(f"Rejected {rejected} invalid candidate(s) from {self.classifier.name} classifier")
        return candidates

    def _candidate_items(self, raw: Any) -> List[Any]:
        if raw is None:
            return []
        if isinstance(raw, list):
            return raw
        if isinstance(raw, dict):
            if "memories" in raw:
                memories = raw["memories"]
                if not isinstance(memories, list):
                    raise ClassificationUnavailable("'memories' must be a list")
                return memories
            should_remember = raw.get("shouldRemember", raw.get("should_remember"))
            if should_remember is not None and not should_remember:
                return []
            return [raw]
        raise ClassificationUnavailable(f"Unexpected classifier output type: {type(raw).__name__}")

    def _build_candidate(self, item: Any, trigger: Optional[ExplicitTrigger]) -> CandidateMemory:
        if not isinstance(item, dict):
            raise ValidationError(f"Candidate must be an object, got {type(item).__name__}")

        content = item.get("content") or item.get("extractedInfo") or item.get("extracted_info") or ""
        if not isinstance(content, str):
            raise ValidationError("Candidate content must be text", field="content")
        content = normalize_whitespace(content)
        self.validate_content(content)

        category = MemoryCategory.parse(item.get("category", ""))
        importance = validate_importance(item.get("importance"))
        keywords = self._coerce_keywords(item.get("keywords"), content)

        explicit = bool(item.get("explicit")) or (
            trigger is not None and trigger.content.lower() in content.lower()
        )

        return CandidateMemory(
            content=content,
            category=category,
            importance=importance,
            keywords=keywords,
            explicit=explicit,
        )

    def validate_content(self, content: str) -> None:
        """Length bounds plus a few quality checks for junk output."""
        length = len(content)
        if length < self.config.min_content_length or length > self.config.max_content_length:
            raise ValidationError(
                f"Content length {length} outside "
                f"[{self.config.min_content_length}, {self.config.max_content_length}]",
                field="content",
            )
        if _PLACEHOLDER_RE.search(content):
            raise ValidationError("Content contains placeholder text", field="content")

        words = content.lower().split()
        if len(words) > 3 and len(set(words)) / len(words) < 0.5:
            raise ValidationError("Content is overly repetitive", field="content")

    def _coerce_keywords(self, raw: Any, content: str) -> List[str]:
        if not isinstance(raw, list):
            return extract_keywords(content, self.config.max_keywords)
        keywords: List[str] = []
        for value in raw:
            if not isinstance(value, str):
                continue
            keyword = normalize_whitespace(value).lower()
            if keyword and keyword not in keywords:
                keywords.append(keyword)
        return keywords[:self.config.max_keywords]

    def _record(self, start: float, success: bool) -> None:
        if self.monitor is not None:
            self.monitor.record_sample(self.COMPONENT, (time.perf_counter() - start) * 1000, success)

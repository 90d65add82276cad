"""
Atomic fact extraction and merging.

A memory's content is split into minimal statements so that merging two
memories can keep the union of what they say without repeating a
statement both already contain.
"""

import re
from typing import Iterable, List

from .text import content_terms, jaccard, normalize_whitespace
from .types import AtomicFact, MAX_MEMORY_CONTENT_LENGTH


_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?;])\s+|\n+")

# Statements sharing this much vocabulary are treated as the same fact
REDUNDANCY_THRESHOLD = 0.8


def split_statements(content: str) -> List[str]:
    """
    Split content into sentence level statements.

    Clauses joined by connectives such as "but" stay in one statement so
    the qualifier is never separated from what it qualifies.
    """
    statements = []
    for sentence in _SENTENCE_SPLIT_RE.split(content or ""):
        sentence = normalize_whitespace(sentence).strip(" ,;")
        if len(sentence) >= 3:
            statements.append(sentence)
    return statements


def extract_atomic_facts(memory_id: str, content: str, confidence: float = 1.0) -> List[AtomicFact]:
    """Build AtomicFact rows for a memory's content."""
    return [
        AtomicFact(memory_id=memory_id, statement=statement, confidence=confidence)
        for statement in split_statements(content)
    ]


def is_redundant(statement: str, existing: Iterable[str], threshold: float = REDUNDANCY_THRESHOLD) -> bool:
    """True when an existing statement already covers this one."""
    terms = content_terms(statement)
    if not terms:
        return True
    for other in existing:
        other_terms = content_terms(other)
        if terms <= other_terms or jaccard(terms, other_terms) >= threshold:
            return True
    return False


def merge_fact_statements(existing: List[str], new: List[str]) -> List[str]:
    """Existing statements followed by the new ones they do not already cover."""
    merged = list(existing)
    for statement in new:
        if not is_redundant(statement, merged):
            merged.append(statement)
    return merged


def _as_sentence(statement: str) -> str:
    statement = statement.strip()
    if statement and statement[-1] not in ".!?":
        statement += "."
    return statement


def join_statements(statements: List[str], max_chars: int = MAX_MEMORY_CONTENT_LENGTH) -> str:
    """Render statements as prose, dropping trailing ones that would exceed max_chars."""
    parts: List[str] = []
    length = 0
    for statement in statements:
        sentence = _as_sentence(statement)
        extra = len(sentence) + (1 if parts else 0)
        if length + extra > max_chars:
            break
        parts.append(sentence)
        length += extra
    return " ".join(parts)


def merge_content(existing_content: str, new_content: str, max_chars: int = MAX_MEMORY_CONTENT_LENGTH) -> str:
    """
    Union of the non-redundant atomic facts of two contents.

    The existing content is returned unchanged when the new content adds
    nothing.
    """
    existing = split_statements(existing_content)
    merged = merge_fact_statements(existing, split_statements(new_content))
    if len(merged) == len(existing):
        return existing_content
    return join_statements(merged, max_chars=max_chars)

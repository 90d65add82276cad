"""
Text helpers shared by detection, fact extraction and ranking.
"""

import re
from collections import Counter
from typing import List, Set


_WORD_RE = re.compile(r"[a-z0-9']+")
_WHITESPACE_RE = re.compile(r"\s+")

STOPWORDS = frozenset("""
a about after again all also am an and any are as at be because been before being
but by can could did do does doing don't for from had has have having he her here
hers him his how i i'm if in into is it it's its just me more most my myself no not
now of on once only or other our ours out over own same she should so some such than
that the their them then there these they this those through to too under until up
very was we were what when where which while who whom why will with would you your
yours really please thanks thank want wants
""".split())


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces and strip the ends."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def truncate(text: str, max_chars: int) -> str:
    """Cut text to max_chars, preferring a word boundary."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    space = cut.rfind(" ")
    if space > max_chars * 0.8:
        cut = cut[:space]
    return cut.rstrip()


def stem(word: str) -> str:
    """Very small suffix stripper so 'workouts' and 'workout' compare equal."""
    for suffix in ("ings", "ing", "ies", "es", "ed", "s"):
        if word.endswith(suffix) and len(word) - len(suffix) >= 4:
            if suffix == "ies":
                return word[:-3] + "y"
            return word[: -len(suffix)]
    return word


def tokenize(text: str, min_length: int = 3) -> List[str]:
    """Lowercase, split into words and drop short words."""
    words = _WORD_RE.findall((text or "").lower())
    return [w.strip("'") for w in words if len(w.strip("'")) >= min_length]


def content_terms(text: str) -> Set[str]:
    """Stemmed, stopword-free term set used for overlap comparisons."""
    return {stem(w) for w in tokenize(text) if w not in STOPWORDS}


def extract_keywords(text: str, max_keywords: int = 10) -> List[str]:
    """Most frequent non-stopword terms, in order of first appearance on ties."""
    words = [w for w in tokenize(text, min_length=4) if w not in STOPWORDS]
    counts = Counter(words)
    ordered = sorted(counts, key=lambda w: (-counts[w], words.index(w)))
    return ordered[:max_keywords]


def jaccard(a: Set[str], b: Set[str]) -> float:
    """Jaccard overlap of two term sets."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)

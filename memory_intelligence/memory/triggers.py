"""
Explicit "remember this" trigger detection.
"""

import re
from dataclasses import dataclass
from typing import Optional

_SENTENCE_START = r"(?:^|(?<=[.!?])\s+)\s*(?:please\s+|oh,?\s+|also,?\s+)?"

EXPLICIT_TRIGGERS = [
    re.compile(_SENTENCE_START + r"make\s+sure\s+(?:you\s+)?remember\s+(?:that\s+)?(.+)", re.IGNORECASE),
    re.compile(_SENTENCE_START + r"remember\s+(?:that\s+)?(.+)", re.IGNORECASE),
    re.compile(_SENTENCE_START + r"save\s+(?:this\s+)?(?:to\s+(?:your\s+)?memory\s*:?\s*)?(.+)", re.IGNORECASE),
    re.compile(_SENTENCE_START + r"don'?t\s+forget\s+(?:that\s+)?(.+)", re.IGNORECASE),
    re.compile(_SENTENCE_START + r"keep\s+in\s+mind\s+(?:that\s+)?(.+)", re.IGNORECASE),
    re.compile(_SENTENCE_START + r"note\s+(?:that\s+)?(.+)", re.IGNORECASE),
]

EXPLICIT_CONFIDENCE = 0.95


@dataclass
class ExplicitTrigger:
    """An explicit request to remember something."""
    content: str
    confidence: float = EXPLICIT_CONFIDENCE
    type: str = "explicit_save"


def detect_explicit_trigger(message: str) -> Optional[ExplicitTrigger]:
    """Return the explicit save request in a message, if there is one."""
    for pattern in EXPLICIT_TRIGGERS:
        match = pattern.search(message or "")
        if match:
            content = match.group(1).strip().rstrip(".!")
            if content:
                return ExplicitTrigger(content=content)
    return None

"""
LLM Prompt Templates - Prompts used by memory detection and context building.
"""

from typing import Iterable, List, Optional


# =============================================================================
# Memory Detection Prompts
# =============================================================================

MEMORY_DETECTION_SYSTEM = """You extract durable facts about a user from conversation messages.
Only keep information that will still be useful in future conversations.
Respond with JSON only, using the exact format requested."""

MEMORY_DETECTION_PROMPT = """Analyze this conversation message and decide whether it contains information worth remembering for future conversations.

Categories (use these exact values):
- "preference": likes, dislikes, preferred activities, ways of doing things
- "personal_info": facts about the person (background, health conditions, allergies, job, family)
- "context": ongoing situations, goals, projects, plans
- "instruction": how the assistant should behave or communicate

Message: "{message}"

Previous context:
{history}

Return zero or more memories. Each "content" must be a clean, self-contained statement of 10-500 characters.
Respond with JSON in this format:
{{
    "memories": [
        {{
            "content": "clean version of the information to remember",
            "category": "preference|personal_info|context|instruction",
            "importance": 0.0-1.0,
            "keywords": ["keyword1", "keyword2"]
        }}
    ]
}}
If nothing is worth remembering, respond with {{"memories": []}}."""


def format_history(turns: Iterable, empty: str = "(none)") -> str:
    """Render prior turns as 'role: content' lines."""
    lines = [f"{turn.role}: {turn.content}" for turn in turns]
    return "\n".join(lines) if lines else empty


def format_memory_detection_prompt(message: str, history: Optional[List] = None) -> str:
    """Format the memory detection prompt with the message and recent turns."""
    return MEMORY_DETECTION_PROMPT.format(
        message=message.replace('"', "'"),
        history=format_history(history or []),
    )


# =============================================================================
# Memory Context Prompts
# =============================================================================

MEMORY_CONTEXT_HEADER = "REMEMBERED INFORMATION ABOUT THIS USER:"

MEMORY_CONTEXT_FOOTER = (
    "Use this remembered information to personalize your responses naturally. "
    "Don't explicitly mention that you're using stored information unless it is "
    "directly relevant to the conversation."
)

CATEGORY_HEADINGS = {
    "instruction": "Instructions",
    "preference": "Preferences",
    "personal_info": "Personal information",
    "context": "Current context",
}

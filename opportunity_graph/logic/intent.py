"""Deterministic intent routing for the combined chat endpoint."""

import re
from enum import Enum
from typing import Optional

from opportunity_graph.config_loader import DomainConfig, get_config


class Intent(str, Enum):
    QUERY = "QUERY"
    MUTATION = "MUTATION"


# Question openers win over edit verbs: "Which projects add value to Retail?"
_QUESTION_START = re.compile(
    r"^\s*(what|which|who|where|when|why|how|show|list|find|display|give|get|is|are|does|do|can you show)\b",
    re.IGNORECASE,
)


def classify_intent(text: str, config: Optional[DomainConfig] = None) -> Intent:
    """MUTATION when the request starts with (or politely asks for) an edit verb."""
    config = config or get_config()
    text = (text or "").strip()
    if not text or _QUESTION_START.match(text):
        return Intent.QUERY

    verbs = "|".join(re.escape(v) for v in config.intent.mutation_keywords)
    if not verbs:
        return Intent.QUERY
    pattern = rf"^(?:please\s+|can you\s+|could you\s+|i want to\s+|i'd like to\s+|let's\s+)*(?:{verbs})\b"
    if re.match(pattern, text, re.IGNORECASE):
        return Intent.MUTATION
    return Intent.QUERY

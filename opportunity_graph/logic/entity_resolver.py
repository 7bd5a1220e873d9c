"""Entity Resolver — tiered name lookup across candidate entity types.

Tiers, in order, stopping at the first one that returns anything:

    exact    case-sensitive equality of name/title
    partial  case-sensitive substring
    fuzzy    case-insensitive substring
    none     a sample of existing entities ("nothing matched, here's what exists")

Every tier query is capped at ``row_limit`` rows. The resolver only reads.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from opportunity_graph.logic.schema_registry import SchemaDescriptor

logger = logging.getLogger(__name__)

TIER_EXACT = "exact"
TIER_PARTIAL = "partial"
TIER_FUZZY = "fuzzy"
TIER_NONE = "none"

# Sentence-initial or filler words that are capitalized for grammar, not meaning.
_STOPWORDS = {
    "a", "an", "the", "and", "or", "of", "in", "for", "to", "on", "at", "by", "with",
    "what", "which", "who", "where", "when", "why", "how", "show", "find", "list",
    "give", "get", "display", "tell", "are", "is", "there", "any", "all", "me", "my",
    "can", "could", "would", "should", "do", "does", "i", "we", "you", "please",
    "available", "related", "about", "some", "every", "each", "this", "that", "these",
    "those", "it", "they", "them", "their", "our", "your", "most", "top", "many",
}

_QUOTED = re.compile(r"(?<!\w)[\"“']([^\"”']{2,60})[\"”'](?!\w)")
_CAPITALIZED_PHRASE = re.compile(r"\b[A-Z][\w&-]*(?:\s+(?:&\s+)?[A-Z][\w&-]*)*")
# "... for retail", "... in insurance?" -> trailing object of a preposition
_TRAILING_OBJECT = re.compile(r"\b(?:for|in|within|of|about)\s+([a-z][\w&-]*(?:\s+[a-z][\w&-]*)?)\s*[?.!]*\s*$")


@dataclass
class Resolution:
    term: str
    tier: str
    matches: list[str] = field(default_factory=list)
    entity_type: Optional[str] = None

    @property
    def exact(self) -> bool:
        return self.tier == TIER_EXACT

    @property
    def suggestions(self) -> list[str]:
        """Near matches worth offering back to the user; empty on an exact hit."""
        return [] if self.exact else list(self.matches)

    def to_dict(self) -> dict:
        return {
            "term": self.term,
            "exact": self.exact,
            "tier": self.tier,
            "matches": list(self.matches),
            "entityType": self.entity_type,
        }


def _is_noise(word: str, schema: SchemaDescriptor) -> bool:
    """Grammar words and schema vocabulary, including simple plurals."""
    w = word.lower()
    keywords = schema.keywords()
    if w in _STOPWORDS or w in keywords or schema.canonical_type(w) is not None:
        return True
    if w.endswith("ies") and w[:-3] + "y" in keywords:
        return True
    return w.endswith("s") and w[:-1] in keywords


def _is_schema_word(phrase: str, schema: SchemaDescriptor) -> bool:
    return all(_is_noise(w, schema) for w in phrase.split())


def _trim_phrase(phrase: str, schema: SchemaDescriptor) -> str:
    """Drop leading/trailing stopwords and schema words from a capitalized run."""
    words = phrase.split()
    while words and _is_noise(words[0], schema):
        words.pop(0)
    while words and _is_noise(words[-1], schema):
        words.pop()
    return " ".join(words)


def extract_candidate_terms(text: str, schema: SchemaDescriptor) -> list[str]:
    """Proper-noun-like terms worth resolving against the graph.

    Picks up quoted strings, capitalized (multi-word) phrases and the trailing
    object of a prepositional phrase ("projects for retail"). Schema words and
    grammar words are ignored.
    """
    text = text or ""
    terms: list[str] = []

    def _add(term: str):
        term = term.strip(" ?.!,;:")
        if len(term) < 2 or _is_schema_word(term, schema):
            return
        if term.lower() not in (t.lower() for t in terms):
            terms.append(term)

    for match in _QUOTED.finditer(text):
        _add(match.group(1))

    for match in _CAPITALIZED_PHRASE.finditer(text):
        _add(_trim_phrase(match.group(0), schema))

    trailing = _TRAILING_OBJECT.search(text)
    if trailing:
        _add(_trim_phrase(trailing.group(1), schema))

    return terms


class EntityResolver:
    """Resolve user terms to stored entity names through a StoreHandle."""

    def __init__(self, store, schema: SchemaDescriptor, row_limit: int = 10):
        self.store = store
        self.schema = schema
        self.row_limit = row_limit

    def _types(self, candidate_types: Iterable[str]) -> list[str]:
        types = []
        for entity_type in candidate_types or []:
            if not self.schema.is_entity_type(entity_type):
                logger.debug(f"Ignoring unknown candidate type '{entity_type}'")
                continue
            if entity_type not in types:
                types.append(entity_type)
        return types

    def _search(self, types: list[str], lookup) -> tuple[list[str], Optional[str]]:
        matches: list[str] = []
        first_type = None
        for entity_type in types:
            for name in lookup(entity_type):
                if name not in matches:
                    matches.append(name)
                    first_type = first_type or entity_type
                if len(matches) >= self.row_limit:
                    return matches, first_type
        return matches, first_type

    def resolve(self, term: str, candidate_types: Iterable[str]) -> Resolution:
        term = (term or "").strip()
        types = self._types(candidate_types)
        if not term or not types:
            return Resolution(term=term, tier=TIER_NONE)

        limit = self.row_limit
        tiers = [
            (TIER_EXACT, lambda t: self.store.find_exact(t, term, limit=limit)),
            (TIER_PARTIAL, lambda t: self.store.find_containing(t, term, case_sensitive=True, limit=limit)),
            (TIER_FUZZY, lambda t: self.store.find_containing(t, term, case_sensitive=False, limit=limit)),
            (TIER_NONE, lambda t: self.store.sample_names(t, limit=limit)),
        ]
        for tier, lookup in tiers:
            matches, entity_type = self._search(types, lookup)
            if matches:
                logger.debug(f"Resolved '{term}' at tier {tier}: {matches[:3]}")
                return Resolution(term=term, tier=tier, matches=matches, entity_type=entity_type)

        return Resolution(term=term, tier=TIER_NONE)

"""Query Validator — static structural checks on a candidate query.

Deterministic and free of I/O. The rule set is deliberately small: a query
that slips through and fails at execution time is handled by the executor's
syntax-error fallback, while a valid query rejected here would be lost.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Union

from opportunity_graph.logic.cypher_text import (
    final_projection,
    has_clause,
    node_labels,
    relationship_types,
    split_top_level,
)
from opportunity_graph.logic.schema_registry import SchemaDescriptor

# (a)-[r]->(b), (a)<-[:T]-(b), (a)-->(b), a-[r]-b
_REL_PATTERN = re.compile(r"<?-\s*\[[^\]]*\]\s*->?|\)\s*<?--\s*>?\s*\(")
_FUNCTION_CALL = re.compile(r"^[A-Za-z_][\w.]*\s*\(")
_ALIAS = re.compile(r"\s+AS\s+`?\w+`?\s*$", re.IGNORECASE)
_WILDCARD = re.compile(r"^(?:\*|`?\w+`?\s*\.\s*\*)$")


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def _projection_items(query: str) -> list[str]:
    items = []
    for item in split_top_level(final_projection(query)):
        item = _ALIAS.sub("", item).strip()
        if item:
            items.append(item)
    return items


def _returns_relationship_pattern(items: list[str]) -> bool:
    for item in items:
        # Pattern comprehensions and function arguments bind their own patterns.
        if item.startswith("[") or _FUNCTION_CALL.match(item):
            continue
        if _REL_PATTERN.search(item):
            return True
    return False


def validate_query(candidate: Union[str, object], schema: Optional[SchemaDescriptor] = None) -> ValidationResult:
    """Check a query (or anything with a ``.text``) against the structural rules."""
    query = candidate if isinstance(candidate, str) else getattr(candidate, "text", "")
    query = (query or "").strip()
    errors: list[str] = []
    warnings: list[str] = []

    if not query:
        return ValidationResult(valid=False, errors=["Query is empty"])

    if not has_clause(query, "MATCH"):
        errors.append("Query has no MATCH clause")
    if not has_clause(query, "RETURN"):
        errors.append("Query has no RETURN clause")
    else:
        items = _projection_items(query)
        if _returns_relationship_pattern(items):
            errors.append("RETURN references a relationship pattern; bind it to a variable in MATCH and return the variable")
        if len(items) > 1 and any(_WILDCARD.match(item) for item in items):
            errors.append("RETURN mixes a * wildcard with named items")

    if schema is not None:
        for label in node_labels(query):
            if not schema.is_entity_type(label):
                warnings.append(f"Unknown node label '{label}'")
        for rel in relationship_types(query):
            if not schema.is_relationship_type(rel):
                warnings.append(f"Unknown relationship type '{rel}'")

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

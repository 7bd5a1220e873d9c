"""Fallback Synthesizer — deterministic, keyword-driven queries.

Used whenever the LLM candidate fails validation or errors at execution.
No LLM call. ``build_fallback_query`` is total: whatever the input it returns
a non-empty query that passes the validator.
"""

import logging
import re
from typing import Optional

from opportunity_graph.config_loader import DomainConfig, FallbackCategory, get_config
from opportunity_graph.logic.entity_resolver import EntityResolver, extract_candidate_terms
from opportunity_graph.logic.schema_registry import SchemaDescriptor, get_schema
from opportunity_graph.logic.synthesizer import SOURCE_FALLBACK, CandidateQuery
from opportunity_graph.logic.validator import validate_query

logger = logging.getLogger(__name__)

LAST_RESORT = CandidateQuery(
    text="MATCH (n) RETURN n LIMIT 25",
    explanation="Showing a sample of 25 nodes from the graph.",
    source=SOURCE_FALLBACK,
)

_WORD = re.compile(r"[a-z][a-z-]*")


def classify_category(text: str, config: DomainConfig) -> Optional[FallbackCategory]:
    """First category (in config order) with a keyword that starts a word of the text."""
    words = _WORD.findall((text or "").lower())
    for category in config.fallback.categories:
        for keyword in category.keywords:
            keyword = keyword.lower()
            if any(word.startswith(keyword) for word in words):
                return category
    return None


def _type_listing(entity_type: str, config: DomainConfig) -> CandidateQuery:
    category = config.fallback.category_for_type(entity_type)
    if category is not None:
        return CandidateQuery(text=category.query, explanation=category.explanation, source=SOURCE_FALLBACK)
    return CandidateQuery(
        text=f"MATCH (n:`{entity_type}`) RETURN n LIMIT 50",
        explanation=f"Showing up to 50 {entity_type} nodes.",
        source=SOURCE_FALLBACK,
    )


def _neighbourhood(name: str, entity_type: str, schema: SchemaDescriptor) -> CandidateQuery:
    prop = schema.name_property(entity_type)
    return CandidateQuery(
        text=(
            f"MATCH (n:`{entity_type}`) WHERE n.{prop} = $name "
            f"OPTIONAL MATCH (n)-[r]-(m) RETURN n, r, m LIMIT 50"
        ),
        explanation=f"Showing '{name}' ({entity_type}) and its direct connections.",
        params={"name": name},
        source=SOURCE_FALLBACK,
    )


def _resolve_term(
    listing: CandidateQuery,
    entity_type: str,
    text: str,
    resolver: EntityResolver,
    schema: SchemaDescriptor,
    config: DomainConfig,
) -> CandidateQuery:
    """Target an exactly-named entity, or annotate the listing with near matches."""
    terms = extract_candidate_terms(text, schema)
    if not terms:
        return listing

    term = terms[0]
    candidate_types = [entity_type] + [t for t in config.pipeline.diagnosis_types if t != entity_type]
    resolution = resolver.resolve(term, candidate_types)

    if resolution.exact:
        return _neighbourhood(resolution.matches[0], resolution.entity_type, schema)

    if resolution.matches:
        if resolution.tier == "none":
            note = f"No entity named '{term}' was found. Some existing entries: {', '.join(resolution.matches[:5])}."
        else:
            note = f"No exact match for '{term}'. Did you mean: {', '.join(resolution.matches[:5])}?"
    else:
        note = f"No entity named '{term}' was found."
    return CandidateQuery(
        text=listing.text,
        explanation=f"{listing.explanation} {note}".strip(),
        params=listing.params,
        source=SOURCE_FALLBACK,
    )


def _build(text: str, context: Optional[dict], resolver: Optional[EntityResolver],
           config: DomainConfig, schema: SchemaDescriptor) -> CandidateQuery:
    category = classify_category(text, config)

    entity_type = None
    if category is not None:
        candidate = CandidateQuery(text=category.query, explanation=category.explanation, source=SOURCE_FALLBACK)
        entity_type = category.entity_type
    elif context and schema.is_entity_type(context.get("currentEntityType")):
        entity_type = context["currentEntityType"]
        candidate = _type_listing(entity_type, config)
    else:
        candidate = CandidateQuery(
            text=config.fallback.default_query,
            explanation=config.fallback.default_explanation,
            source=SOURCE_FALLBACK,
        )

    if entity_type and resolver is not None:
        try:
            candidate = _resolve_term(candidate, entity_type, text, resolver, schema, config)
        except Exception as e:
            logger.warning(f"Fallback term resolution failed, keeping category listing: {e}")

    return candidate


def build_fallback_query(
    text: str,
    context: Optional[dict] = None,
    resolver: Optional[EntityResolver] = None,
    config: Optional[DomainConfig] = None,
    schema: Optional[SchemaDescriptor] = None,
) -> CandidateQuery:
    """Deterministic replacement query for ``text``. Never raises.

    Term resolution is best effort: if the store lookup fails the category
    listing is returned unannotated, and the executor reports the store error.
    """
    try:
        config = config or get_config()
        schema = schema or get_schema()
        candidate = _build(text or "", context, resolver, config, schema)
    except Exception as e:
        logger.warning(f"Fallback synthesis failed, using last-resort query: {e}")
        return LAST_RESORT

    if not validate_query(candidate).valid:
        logger.warning(f"Configured fallback query is invalid, using last-resort query: {candidate.text!r}")
        return LAST_RESORT

    logger.info(f"Fallback query selected: {candidate.text}")
    return candidate

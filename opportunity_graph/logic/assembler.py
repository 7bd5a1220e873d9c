"""Result Assembler & Execution.

Runs the chosen query on the request's StoreHandle and turns the rows into
the graph view model plus a summary sentence. Three outcomes share one
response shape:

    execution error  -> one fallback substitution, explanation annotated
    zero entities    -> no-result diagnosis ("Did you mean ...?")
    entities found   -> deduplicated graph + "Found N entities (A, B, C)"
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from opportunity_graph.config_loader import PipelineSettings
from opportunity_graph.database import GraphStoreError, GraphUnavailableError
from opportunity_graph.db_result_helpers import rows_to_graph
from opportunity_graph.logic.cypher_text import string_literals
from opportunity_graph.logic.entity_resolver import TIER_FUZZY, TIER_PARTIAL, EntityResolver, extract_candidate_terms
from opportunity_graph.logic.schema_registry import SchemaDescriptor
from opportunity_graph.logic.synthesizer import SOURCE_FALLBACK, CandidateQuery

logger = logging.getLogger(__name__)

ORIGINAL_QUERY_FAILED = "The original query had errors, so a simpler query was used instead."
EXECUTION_FAILED = "The query could not be run against the graph."
MAX_DIAGNOSIS_TERMS = 3


@dataclass
class AssembledResult:
    query: str
    graph_data: dict
    summary: str
    explanation: str
    execution_time_ms: int = 0
    used_fallback: bool = False
    row_count: int = 0
    needs_visualization_confirmation: bool = False
    params: dict = field(default_factory=dict)
    suggestions: list[dict] = field(default_factory=list)

    @property
    def node_count(self) -> int:
        return len(self.graph_data.get("nodes", []))


def assemble_graph(rows: Iterable[Iterable], schema: Optional[SchemaDescriptor] = None) -> dict:
    """Deduplicated {nodes, edges} for all rows of one execution."""
    known = list(schema.entity_types) if schema is not None else None
    return rows_to_graph(rows, known)


def summarize_graph(graph: dict, max_groups: int = 3) -> str:
    nodes = graph.get("nodes", [])
    groups: list[str] = []
    for node in nodes:
        group = node.get("group")
        if group and group not in groups:
            groups.append(group)
    noun = "entity" if len(nodes) == 1 else "entities"
    summary = f"Found {len(nodes)} {noun}"
    if groups:
        summary += f" ({', '.join(groups[:max_groups])})"
    return summary


# =============================================================================
# NO-RESULT DIAGNOSIS
# =============================================================================

def _diagnosis_terms(text: str, candidate: CandidateQuery, schema: SchemaDescriptor) -> list[str]:
    terms = extract_candidate_terms(text, schema)
    literals = string_literals(candidate.text)
    literals += [v for v in candidate.params.values() if isinstance(v, str)]
    for literal in literals:
        if literal.lower() not in (t.lower() for t in terms):
            terms.append(literal)
    return terms[:MAX_DIAGNOSIS_TERMS]


def diagnose_empty_result(
    text: str,
    candidate: CandidateQuery,
    resolver: EntityResolver,
    diagnosis_types: list[str],
) -> list[dict]:
    """Near matches for the terms of a query that found nothing.

    Each term is resolved per type so every suggestion carries its own type.
    Only partial / case-insensitive hits count as near matches.
    """
    suggestions: list[dict] = []
    seen: set[str] = set()
    for term in _diagnosis_terms(text, candidate, resolver.schema):
        for entity_type in diagnosis_types:
            resolution = resolver.resolve(term, [entity_type])
            if resolution.tier not in (TIER_PARTIAL, TIER_FUZZY):
                continue
            for name in resolution.matches:
                if name.lower() == term.lower() or name in seen:
                    continue
                seen.add(name)
                suggestions.append({"name": name, "type": entity_type, "term": term})
    return suggestions


def did_you_mean(suggestions: list[dict], limit: int = 5) -> str:
    names = [f"{s['name']} ({s['type']})" for s in suggestions[:limit]]
    return f"Did you mean: {', '.join(names)}?"


# =============================================================================
# EXECUTION
# =============================================================================

def execute_candidate(
    store,
    candidate: CandidateQuery,
    text: str,
    schema: SchemaDescriptor,
    context: Optional[dict] = None,
    resolver: Optional[EntityResolver] = None,
    fallback_fn: Optional[Callable[[str, Optional[dict]], CandidateQuery]] = None,
    settings: Optional[PipelineSettings] = None,
) -> AssembledResult:
    """Execute ``candidate`` with at most one fallback substitution.

    A fallback candidate is never replaced again; if it fails too the result
    is empty with a generic explanation. Only GraphUnavailableError propagates.
    """
    settings = settings or PipelineSettings()
    t0 = time.time()
    explanation = candidate.explanation
    used_fallback = candidate.source == SOURCE_FALLBACK

    try:
        rows = store.execute(candidate.text, candidate.params)
    except GraphUnavailableError:
        raise
    except GraphStoreError as e:
        if used_fallback or fallback_fn is None:
            logger.warning(f"Query failed and no further fallback is allowed: {e}")
            return AssembledResult(
                query=candidate.text,
                params=dict(candidate.params),
                graph_data={"nodes": [], "edges": []},
                summary="No results",
                explanation=EXECUTION_FAILED,
                execution_time_ms=int((time.time() - t0) * 1000),
                used_fallback=used_fallback,
            )

        logger.warning(f"Generated query failed at execution ({type(e).__name__}: {e}); substituting fallback")
        candidate = fallback_fn(text, context)
        used_fallback = True
        explanation = f"{candidate.explanation} {ORIGINAL_QUERY_FAILED}".strip()
        try:
            rows = store.execute(candidate.text, candidate.params)
        except GraphUnavailableError:
            raise
        except GraphStoreError as retry_error:
            logger.warning(f"Fallback query failed as well: {retry_error}")
            rows = []
            explanation = EXECUTION_FAILED

    graph = assemble_graph(rows, schema)
    result = AssembledResult(
        query=candidate.text,
        params=dict(candidate.params),
        graph_data=graph,
        summary="",
        explanation=explanation,
        used_fallback=used_fallback,
        row_count=len(rows),
    )

    if graph["nodes"]:
        result.summary = summarize_graph(graph)
        result.needs_visualization_confirmation = len(graph["nodes"]) > settings.large_result_threshold
    elif rows:
        result.summary = f"Returned {len(rows)} row{'s' if len(rows) != 1 else ''} without graph entities"
    else:
        result.summary = "No results found"
        if resolver is not None:
            try:
                result.suggestions = diagnose_empty_result(text, candidate, resolver, settings.diagnosis_types)
            except GraphUnavailableError:
                raise
            except GraphStoreError as e:
                logger.warning(f"No-result diagnosis failed: {e}")
            if result.suggestions:
                result.explanation = f"{did_you_mean(result.suggestions)} {result.explanation}".strip()

    result.execution_time_ms = int((time.time() - t0) * 1000)
    return result

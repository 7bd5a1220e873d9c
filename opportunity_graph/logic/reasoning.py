"""Reasoning Stage — first LLM call.

Turns the user's question into candidate interpretations, picks one, and
proposes cheap exploration queries (or asks for clarification). The stage
never raises: a timeout, provider error or unparseable answer yields a
degraded trace whose only interpretation is the raw question.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from opportunity_graph.config_loader import PipelineSettings
from opportunity_graph.llm_router import LLMResult, parse_json_response
from opportunity_graph.logic.entity_resolver import extract_candidate_terms
from opportunity_graph.logic.schema_registry import SchemaDescriptor
from opportunity_graph.prompts import REASONING_PROMPT

logger = logging.getLogger(__name__)

LLMFunc = Callable[..., LLMResult]


@dataclass
class ExplorationQuery:
    query: str
    purpose: str = ""
    params: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"query": self.query, "purpose": self.purpose, "params": dict(self.params)}


@dataclass
class ReasoningTrace:
    interpretations: list[str]
    chosen_interpretation: str
    needs_clarification: bool = False
    clarification: Optional[dict] = None
    exploration_queries: list[ExplorationQuery] = field(default_factory=list)
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            "interpretations": list(self.interpretations),
            "chosenInterpretation": self.chosen_interpretation,
            "needsClarification": self.needs_clarification,
            "clarification": self.clarification,
            "explorationQueries": [q.to_dict() for q in self.exploration_queries],
            "degraded": self.degraded,
        }


def degraded_trace(text: str) -> ReasoningTrace:
    """One interpretation equal to the raw text, nothing to explore."""
    return ReasoningTrace(
        interpretations=[text],
        chosen_interpretation=text,
        degraded=True,
    )


# =============================================================================
# PROMPT HELPERS (shared with the synthesizer)
# =============================================================================

def format_history(history: Optional[list], turns: int = 6) -> str:
    """Render the client-held conversation as ordered turns, oldest first."""
    if not history:
        return "(none)"
    lines = []
    recent = list(history)[-turns:]
    for i, turn in enumerate(recent, 1):
        turn = turn if isinstance(turn, dict) else dict(turn)
        lines.append(f"Turn {i}:")
        lines.append(f"  User: {turn.get('userRequest', '')}")
        if turn.get("cypherQuery"):
            lines.append(f"  Query: {turn['cypherQuery']}")
        if turn.get("feedback"):
            lines.append(f"  Feedback: {turn['feedback']}")
    return "\n".join(lines)


def format_context(context: Optional[dict]) -> str:
    if not context:
        return "(none)"
    lines = []
    if context.get("currentEntityType"):
        lines.append(f"Currently displayed type: {context['currentEntityType']}")
    if context.get("selectedEntityIds"):
        lines.append(f"Selected node ids: {', '.join(map(str, context['selectedEntityIds']))}")
    return "\n".join(lines) or "(none)"


# =============================================================================
# OUTPUT PARSING
# =============================================================================

def _parse_exploration_queries(raw) -> list[ExplorationQuery]:
    queries = []
    for item in raw or []:
        if isinstance(item, str):
            item = {"query": item}
        if not isinstance(item, dict):
            continue
        query = item.get("query")
        if not isinstance(query, str) or not query.strip():
            continue
        params = item.get("params") if isinstance(item.get("params"), dict) else {}
        queries.append(ExplorationQuery(query=query.strip(), purpose=str(item.get("purpose") or ""), params=params))
    return queries


def _parse_clarification(data: dict) -> Optional[dict]:
    raw = data.get("clarification")
    if not isinstance(raw, dict):
        return None
    question = raw.get("question")
    if not isinstance(question, str) or not question.strip():
        return None
    options = [str(o) for o in raw.get("options") or [] if str(o).strip()]
    return {"question": question.strip(), "options": options}


def parse_reasoning(data: dict, text: str) -> ReasoningTrace:
    interpretations = [str(i) for i in data.get("interpretations") or [] if str(i).strip()]
    chosen = data.get("chosen_interpretation") or data.get("chosenInterpretation")
    if not isinstance(chosen, str) or not chosen.strip():
        chosen = interpretations[0] if interpretations else text
    if not interpretations:
        interpretations = [chosen]

    clarification = _parse_clarification(data)
    needs_clarification = bool(data.get("needs_clarification") or data.get("needsClarification"))
    # A clarification flag without a question cannot be shown; carry on instead.
    needs_clarification = needs_clarification and clarification is not None

    return ReasoningTrace(
        interpretations=interpretations,
        chosen_interpretation=chosen,
        needs_clarification=needs_clarification,
        clarification=clarification if needs_clarification else None,
        exploration_queries=_parse_exploration_queries(
            data.get("exploration_queries") or data.get("explorationQueries")
        ),
    )


# =============================================================================
# TERM EXPLORATION GUARANTEE
# =============================================================================

def _covers(query: ExplorationQuery, term: str, entity_type: str) -> bool:
    text = query.query
    if f":{entity_type}" not in text and f":`{entity_type}`" not in text:
        return False
    haystack = (text + " " + " ".join(str(v) for v in query.params.values())).lower()
    return term.lower() in haystack


def term_exploration_query(term: str, entity_type: str, schema: SchemaDescriptor, limit: int = 10) -> ExplorationQuery:
    prop = schema.name_property(entity_type)
    return ExplorationQuery(
        query=(
            f"MATCH (n:`{entity_type}`) WHERE toLower(n.{prop}) CONTAINS toLower($term) "
            f"RETURN n.{prop} AS name LIMIT {int(limit)}"
        ),
        purpose=f"Check whether '{term}' is a {entity_type}",
        params={"term": term},
    )


def ensure_term_exploration(
    trace: ReasoningTrace,
    text: str,
    schema: SchemaDescriptor,
    settings: PipelineSettings,
) -> ReasoningTrace:
    """Make sure every proper-noun term is checked against each plausible type.

    Missing checks are added as parameterised queries. Queries that check a
    term are kept ahead of the LLM's other proposals when the list is capped.
    """
    types = [t for t in settings.exploration_types if schema.is_entity_type(t)]
    terms = extract_candidate_terms(text, schema)
    if not types or not terms:
        trace.exploration_queries = trace.exploration_queries[:settings.max_exploration_queries]
        return trace

    required: list[ExplorationQuery] = []
    added = 0
    for term in terms:
        for entity_type in types:
            covering = [q for q in trace.exploration_queries if _covers(q, term, entity_type)]
            if covering:
                required.extend(q for q in covering if q not in required)
            else:
                required.append(term_exploration_query(term, entity_type, schema, settings.exploration_row_limit))
                added += 1

    optional = [q for q in trace.exploration_queries if q not in required]
    trace.exploration_queries = (required + optional)[:settings.max_exploration_queries]
    if added:
        logger.info(f"Added {added} term exploration queries for {terms}")
    return trace


# =============================================================================
# STAGE ENTRY POINT
# =============================================================================

def reason(
    text: str,
    history: Optional[list],
    context: Optional[dict],
    schema: SchemaDescriptor,
    llm: LLMFunc,
    settings: Optional[PipelineSettings] = None,
) -> ReasoningTrace:
    """Run the reasoning LLM call and return a trace; degrades instead of raising."""
    settings = settings or PipelineSettings()
    prompt = REASONING_PROMPT.format(
        schema=schema.describe(),
        context=format_context(context),
        history=format_history(history, settings.history_turns),
        question=text,
    )

    trace = None
    try:
        result = llm(
            user_prompt=prompt,
            temperature=settings.reasoning_temperature,
            max_output_tokens=settings.reasoning_max_tokens,
            timeout_s=settings.reasoning_timeout_s,
        )
        if result.ok:
            data = parse_json_response(result.text)
            if data is not None:
                trace = parse_reasoning(data, text)
            else:
                logger.warning(f"Reasoning output was not valid JSON: {result.text[:200]!r}")
        else:
            logger.warning(f"Reasoning LLM call failed: {result.error}")
    except Exception as e:
        logger.warning(f"Reasoning stage failed, degrading: {e}")

    if trace is None:
        trace = degraded_trace(text)

    if trace.needs_clarification:
        return trace
    return ensure_term_exploration(trace, text, schema, settings)

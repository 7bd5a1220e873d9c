"""Query Synthesizer — second LLM call.

Produces exactly one CandidateQuery from the question, the chosen
interpretation and the exploration digests. Anything unusable (timeout,
provider error, non-JSON, missing query) comes back as a candidate with empty
text, which the validator rejects, so the caller falls through to the
deterministic fallback without special-casing LLM failures.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from opportunity_graph.config_loader import PipelineSettings
from opportunity_graph.llm_router import parse_json_response
from opportunity_graph.logic.exploration import ExplorationResult, format_exploration_summaries
from opportunity_graph.logic.mutation import MutationPlan, build_plan, unsafe_plan
from opportunity_graph.logic.reasoning import LLMFunc, ReasoningTrace, format_context, format_history
from opportunity_graph.logic.schema_registry import SchemaDescriptor
from opportunity_graph.prompts import MUTATION_PROMPT, SYNTHESIS_PROMPT

logger = logging.getLogger(__name__)

SOURCE_LLM = "llm"
SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True)
class CandidateQuery:
    text: str
    explanation: str = ""
    params: dict = field(default_factory=dict, hash=False, compare=False)
    source: str = SOURCE_LLM

    @property
    def empty(self) -> bool:
        return not self.text.strip()


def _call_for_json(llm: LLMFunc, prompt: str, temperature: float, max_tokens: int, timeout_s: float,
                   stage: str) -> Optional[dict]:
    try:
        result = llm(
            user_prompt=prompt,
            temperature=temperature,
            max_output_tokens=max_tokens,
            timeout_s=timeout_s,
        )
    except Exception as e:
        logger.warning(f"{stage} LLM call raised: {e}")
        return None

    if not result.ok:
        logger.warning(f"{stage} LLM call failed: {result.error}")
        return None

    data = parse_json_response(result.text)
    if data is None:
        logger.warning(f"{stage} output was not valid JSON: {result.text[:200]!r}")
    return data


def _query_fields(data: Optional[dict]) -> tuple[str, str, dict]:
    if not data:
        return "", "", {}
    query = data.get("query") or data.get("cypher") or ""
    explanation = data.get("explanation") or ""
    params = data.get("params") if isinstance(data.get("params"), dict) else {}
    if not isinstance(query, str):
        query = ""
    return query.strip(), str(explanation).strip(), params


def synthesize_query(
    text: str,
    trace: ReasoningTrace,
    explorations: list[ExplorationResult],
    schema: SchemaDescriptor,
    history: Optional[list],
    llm: LLMFunc,
    settings: Optional[PipelineSettings] = None,
) -> CandidateQuery:
    settings = settings or PipelineSettings()
    prompt = SYNTHESIS_PROMPT.format(
        schema=schema.describe(),
        question=text,
        interpretation=trace.chosen_interpretation,
        explorations=format_exploration_summaries(explorations),
        history=format_history(history, settings.history_turns),
    )
    data = _call_for_json(
        llm, prompt,
        settings.synthesis_temperature, settings.synthesis_max_tokens, settings.synthesis_timeout_s,
        stage="Synthesis",
    )
    query, explanation, params = _query_fields(data)
    return CandidateQuery(text=query, explanation=explanation, params=params, source=SOURCE_LLM)


def synthesize_mutation(
    text: str,
    schema: SchemaDescriptor,
    history: Optional[list],
    context: Optional[dict],
    llm: LLMFunc,
    settings: Optional[PipelineSettings] = None,
) -> MutationPlan:
    """Mutation mode: the LLM drafts a write statement, the plan classifies its risk."""
    settings = settings or PipelineSettings()
    prompt = MUTATION_PROMPT.format(
        schema=schema.describe(),
        context=format_context(context),
        history=format_history(history, settings.history_turns),
        request=text,
    )
    data = _call_for_json(
        llm, prompt,
        settings.synthesis_temperature, settings.synthesis_max_tokens, settings.synthesis_timeout_s,
        stage="Mutation",
    )
    query, explanation, params = _query_fields(data)
    if not query:
        return unsafe_plan()
    return build_plan(query, explanation, schema, params)

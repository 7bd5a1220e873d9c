"""Query pipeline — wires the stages together for one request.

Read path:
    reasoning -> (clarification) -> exploration -> synthesis -> validation
    -> (fallback) -> execution (one syntax fallback) -> assembly

Mutation path:
    synthesis in mutation mode -> PROPOSED plan returned to the caller
    caller confirms -> executed once | caller cancels -> discarded

Every request opens its own StoreHandle and closes it on every exit path.
No state is kept between requests.
"""

import functools
import logging
import time
from typing import Optional

from opportunity_graph.config_loader import DomainConfig, get_config
from opportunity_graph.database import GraphStoreError, GraphUnavailableError, Neo4jConnection, db
from opportunity_graph.llm_router import DEFAULT_MODEL, llm_call
from opportunity_graph.logic.assembler import execute_candidate
from opportunity_graph.logic.entity_resolver import EntityResolver
from opportunity_graph.logic.exploration import run_explorations
from opportunity_graph.logic.fallback import build_fallback_query
from opportunity_graph.logic.intent import Intent, classify_intent
from opportunity_graph.logic.mutation import (
    NO_PLAN_EXPLANATION,
    MutationPlan,
    PlanStateError,
    cancel,
    confirm_and_execute,
)
from opportunity_graph.logic.reasoning import LLMFunc, reason
from opportunity_graph.logic.schema_registry import SchemaDescriptor, get_schema
from opportunity_graph.logic.synthesizer import SOURCE_FALLBACK, CandidateQuery, synthesize_mutation, synthesize_query
from opportunity_graph.logic.validator import validate_query

logger = logging.getLogger(__name__)

INVALID_QUERY_NOTE = "The generated query was not valid, so a simpler query was used instead."
MUTATION_FAILED = "The change could not be applied. The graph was not modified."


def _counter_message(counters: dict) -> str:
    parts = [
        f"{value} {key.replace('_', ' ')}"
        for key, value in counters.items()
        if value
    ]
    return "Change applied: " + (", ".join(parts) if parts else "no changes were needed") + "."


class QueryPipeline:
    """One instance can serve many requests; it holds configuration only."""

    def __init__(
        self,
        connection: Optional[Neo4jConnection] = None,
        config: Optional[DomainConfig] = None,
        schema: Optional[SchemaDescriptor] = None,
        llm: Optional[LLMFunc] = None,
        model: Optional[str] = None,
    ):
        self.connection = connection or db
        self.config = config or get_config()
        self.schema = schema or get_schema()
        self.settings = self.config.pipeline
        self.llm = llm or functools.partial(llm_call, model or DEFAULT_MODEL)

    # -------------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------------

    def answer(self, request: dict) -> dict:
        text = (request.get("queryText") or "").strip()
        context = request.get("context") or {}
        history = request.get("conversationHistory") or []

        t0 = time.time()
        with self.connection.resolve_store_handle(context.get("graphVersion")) as store:
            response = self._answer(store, text, context, history)
        logger.info(f"[pipeline] answered in {time.time() - t0:.2f}s: {text[:80]!r}")
        return response

    def _fallback(self, resolver: EntityResolver):
        return lambda text, context: build_fallback_query(text, context, resolver, self.config, self.schema)

    def _answer(self, store, text: str, context: dict, history: list) -> dict:
        resolver = EntityResolver(store, self.schema, self.settings.resolver_row_limit)
        fallback_fn = self._fallback(resolver)
        trace = None
        explorations = []

        if text:
            trace = reason(text, history, context, self.schema, self.llm, self.settings)
            if trace.needs_clarification:
                return {
                    "success": False,
                    "needsClarification": trace.clarification,
                    "message": trace.clarification["question"],
                    "reasoning": trace.to_dict(),
                }

            explorations = run_explorations(store, trace.exploration_queries, self.settings)
            candidate = synthesize_query(text, trace, explorations, self.schema, history, self.llm, self.settings)
        else:
            candidate = CandidateQuery(text="", source=SOURCE_FALLBACK)

        validation = validate_query(candidate, self.schema)
        for warning in validation.warnings:
            logger.info(f"Query validation warning: {warning}")
        if not validation.valid:
            logger.info(f"Candidate query rejected ({'; '.join(validation.errors)}): {candidate.text!r}")
            replacement = fallback_fn(text, context)
            note = INVALID_QUERY_NOTE if text else ""
            candidate = CandidateQuery(
                text=replacement.text,
                explanation=f"{replacement.explanation} {note}".strip(),
                params=replacement.params,
                source=SOURCE_FALLBACK,
            )

        result = execute_candidate(
            store, candidate, text, self.schema,
            context=context,
            resolver=resolver,
            fallback_fn=fallback_fn,
            settings=self.settings,
        )

        message = result.explanation or result.summary
        if result.needs_visualization_confirmation:
            message = (
                f"{message} {result.summary}. This is a large result; "
                f"confirm before rendering all {result.node_count} nodes."
            ).strip()

        query_result = {
            "query": result.query,
            "params": result.params,
            "graphData": result.graph_data,
            "summary": result.summary,
            "executionTimeMs": result.execution_time_ms,
            "rowCount": result.row_count,
        }
        if trace is not None:
            reasoning = trace.to_dict()
            reasoning["explorationResults"] = [e.to_dict() for e in explorations]
            query_result["reasoning"] = reasoning

        return {
            "success": True,
            "message": message,
            "queryResult": query_result,
            "usedFallback": result.used_fallback,
            "needsVisualizationConfirmation": result.needs_visualization_confirmation,
            "suggestions": result.suggestions,
        }

    # -------------------------------------------------------------------------
    # Mutation path
    # -------------------------------------------------------------------------

    def propose_mutation(self, request: dict) -> dict:
        text = (request.get("queryText") or "").strip()
        context = request.get("context") or {}
        history = request.get("conversationHistory") or []

        plan = synthesize_mutation(text, self.schema, history, context, self.llm, self.settings)
        if not plan.query:
            message = NO_PLAN_EXPLANATION
        else:
            message = (
                f"Please review this {plan.risk_level.value} risk change before it is applied: "
                f"{plan.explanation}"
            ).strip()
        logger.info(f"Proposed mutation plan {plan.plan_id} (risk {plan.risk_level.value})")
        return {
            "success": False,
            "needsConfirmation": bool(plan.query),
            "mutationPlan": plan.to_dict(),
            "message": message,
        }

    def execute_mutation(self, request: dict) -> dict:
        plan = MutationPlan.from_dict(request.get("mutationPlan") or {}, self.schema)
        version = request.get("graphVersion") or (request.get("context") or {}).get("graphVersion")

        try:
            with self.connection.resolve_store_handle(version) as store:
                counters = confirm_and_execute(plan, store)
        except PlanStateError as e:
            logger.warning(f"Refused mutation: {e}")
            return {"success": False, "message": str(e), "mutationPlan": plan.to_dict()}
        except GraphUnavailableError:
            raise
        except GraphStoreError as e:
            logger.warning(f"Mutation plan {plan.plan_id} failed: {e}")
            return {"success": False, "message": MUTATION_FAILED, "mutationPlan": plan.to_dict()}

        return {
            "success": True,
            "message": _counter_message(counters),
            "queryResult": {"query": plan.query, "counters": counters},
            "mutationPlan": plan.to_dict(),
        }

    def cancel_mutation(self, request: dict) -> dict:
        plan = MutationPlan.from_dict(request.get("mutationPlan") or {}, self.schema)
        try:
            cancel(plan)
        except PlanStateError as e:
            return {"success": False, "message": str(e), "mutationPlan": plan.to_dict()}
        return {
            "success": True,
            "message": "Change cancelled. The graph was not modified.",
            "mutationPlan": plan.to_dict(),
        }

    # -------------------------------------------------------------------------
    # Combined chat entry point
    # -------------------------------------------------------------------------

    def classify(self, request: dict) -> Intent:
        return classify_intent(request.get("queryText") or "", self.config)

    def chat(self, request: dict) -> dict:
        intent = self.classify(request)
        if intent == Intent.MUTATION:
            response = self.propose_mutation(request)
        else:
            response = self.answer(request)
        response["intent"] = intent.value
        return response

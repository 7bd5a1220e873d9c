"""Tests for the reasoning stage: parsing, degradation, term exploration."""

from conftest import TIMEOUT, ScriptedLLM

from opportunity_graph.llm_router import LLMResult
from opportunity_graph.logic.reasoning import (
    ExplorationQuery,
    ReasoningTrace,
    ensure_term_exploration,
    format_history,
    reason,
)


def _reasoning(**overrides):
    data = {
        "interpretations": ["List all industries"],
        "chosen_interpretation": "List all industries",
        "needs_clarification": False,
        "exploration_queries": [],
    }
    data.update(overrides)
    return data


class TestParsing:
    def test_well_formed_output(self, schema, settings):
        llm = ScriptedLLM(_reasoning(
            interpretations=["Industries in the graph", "Industry sectors"],
            chosen_interpretation="Industries in the graph",
        ))
        trace = reason("Show me all industries", [], {}, schema, llm, settings)
        assert trace.degraded is False
        assert trace.interpretations == ["Industries in the graph", "Industry sectors"]
        assert trace.chosen_interpretation == "Industries in the graph"
        assert trace.exploration_queries == []

    def test_code_fenced_json(self, schema, settings):
        llm = ScriptedLLM('```json\n{"interpretations": ["x"], "chosen_interpretation": "x"}\n```')
        trace = reason("Show me all industries", [], {}, schema, llm, settings)
        assert trace.degraded is False
        assert trace.chosen_interpretation == "x"

    def test_truncated_json_is_repaired(self, schema, settings):
        llm = ScriptedLLM('{"interpretations": ["x", "y"], "chosen_interpretation": "y"')
        trace = reason("Show me all industries", [], {}, schema, llm, settings)
        assert trace.degraded is False
        assert trace.chosen_interpretation == "y"

    def test_missing_chosen_uses_first_interpretation(self, schema, settings):
        llm = ScriptedLLM({"interpretations": ["first", "second"]})
        trace = reason("Show me all industries", [], {}, schema, llm, settings)
        assert trace.chosen_interpretation == "first"

    def test_exploration_queries_are_parsed(self, schema, settings):
        llm = ScriptedLLM(_reasoning(exploration_queries=[
            {"query": "MATCH (i:Industry) RETURN i.name AS name LIMIT 10", "purpose": "list industries"},
            "MATCH (s:Sector) RETURN s.name LIMIT 10",
            {"purpose": "no query here"},
            42,
        ]))
        trace = reason("Show me all industries", [], {}, schema, llm, settings)
        assert [q.purpose for q in trace.exploration_queries] == ["list industries", ""]

    def test_clarification(self, schema, settings):
        llm = ScriptedLLM(_reasoning(
            needs_clarification=True,
            clarification={"question": "Which kind of opportunity?", "options": ["AI", "Process"]},
        ))
        trace = reason("opportunities", [], {}, schema, llm, settings)
        assert trace.needs_clarification is True
        assert trace.clarification == {"question": "Which kind of opportunity?", "options": ["AI", "Process"]}

    def test_clarification_without_question_is_ignored(self, schema, settings):
        llm = ScriptedLLM(_reasoning(needs_clarification=True, clarification={"options": ["a"]}))
        trace = reason("opportunities", [], {}, schema, llm, settings)
        assert trace.needs_clarification is False
        assert trace.clarification is None


class TestDegradation:
    """Timeouts, provider errors and garbage all produce the trivial trace."""

    def _assert_trivial(self, trace, text):
        assert trace.degraded is True
        assert trace.interpretations == [text]
        assert trace.chosen_interpretation == text
        assert trace.needs_clarification is False

    def test_timeout(self, schema, settings):
        trace = reason("Show me all industries", [], {}, schema, ScriptedLLM(TIMEOUT), settings)
        self._assert_trivial(trace, "Show me all industries")
        assert trace.exploration_queries == []

    def test_provider_error(self, schema, settings):
        llm = ScriptedLLM(LLMResult(text="", error="quota exceeded"))
        trace = reason("Show me all industries", [], {}, schema, llm, settings)
        self._assert_trivial(trace, "Show me all industries")

    def test_not_json(self, schema, settings):
        llm = ScriptedLLM("I think the user wants industries.")
        trace = reason("Show me all industries", [], {}, schema, llm, settings)
        self._assert_trivial(trace, "Show me all industries")

    def test_json_array_is_not_a_trace(self, schema, settings):
        trace = reason("Show me all industries", [], {}, schema, ScriptedLLM("[1, 2, 3]"), settings)
        self._assert_trivial(trace, "Show me all industries")

    def test_llm_raising_is_contained(self, schema, settings):
        def exploding_llm(**kwargs):
            raise ConnectionError("network down")

        trace = reason("Show me all industries", [], {}, schema, exploding_llm, settings)
        self._assert_trivial(trace, "Show me all industries")

    def test_timeout_is_passed_to_llm(self, schema, settings):
        llm = ScriptedLLM(_reasoning())
        reason("Show me all industries", [], {}, schema, llm, settings)
        assert llm.calls[0]["timeout_s"] == settings.reasoning_timeout_s


class TestPrompt:
    def test_prompt_contains_schema_context_history_and_question(self, schema, settings):
        llm = ScriptedLLM(_reasoning())
        history = [
            {"userRequest": "Show industries", "cypherQuery": "MATCH (i:Industry) RETURN i"},
            {"userRequest": "Only banking", "cypherQuery": "MATCH (i:Industry {name:'Banking'}) RETURN i",
             "feedback": "too few"},
        ]
        context = {"currentEntityType": "Industry", "selectedEntityIds": ["4:i:1"]}
        reason("And its sectors?", history, context, schema, llm, settings)

        prompt = llm.prompts[0]
        assert "(Industry)-[:HAS_SECTOR]->(Sector)" in prompt
        assert "Currently displayed type: Industry" in prompt
        assert "4:i:1" in prompt
        assert prompt.index("Show industries") < prompt.index("Only banking")
        assert "Feedback: too few" in prompt
        assert "And its sectors?" in prompt

    def test_history_is_limited_to_recent_turns(self):
        history = [{"userRequest": f"question {i}"} for i in range(10)]
        rendered = format_history(history, turns=6)
        assert "question 3" not in rendered
        assert "question 4" in rendered and "question 9" in rendered


class TestTermExploration:
    def test_degraded_trace_still_explores_capitalized_terms(self, schema, settings):
        trace = reason("What projects are available for Retail Banking?", [], {}, schema,
                       ScriptedLLM(TIMEOUT), settings)
        assert trace.degraded is True
        labels = {q.query.split("`")[1] for q in trace.exploration_queries}
        assert labels == {"Industry", "Sector", "Department"}
        assert all(q.params == {"term": "Retail Banking"} for q in trace.exploration_queries)

    def test_existing_coverage_is_not_duplicated(self, schema, settings):
        trace = ReasoningTrace(
            interpretations=["x"], chosen_interpretation="x",
            exploration_queries=[ExplorationQuery(
                query="MATCH (s:Sector) WHERE s.name CONTAINS $term RETURN s.name LIMIT 10",
                purpose="sector check", params={"term": "Retail Banking"},
            )],
        )
        trace = ensure_term_exploration(trace, "Projects for Retail Banking", schema, settings)
        sector_queries = [q for q in trace.exploration_queries if "Sector" in q.query]
        assert len(sector_queries) == 1
        assert len(trace.exploration_queries) == 3

    def test_term_checks_survive_the_cap(self, schema, settings):
        filler = [ExplorationQuery(query=f"MATCH (n:Module) RETURN n.name LIMIT {i + 1}") for i in range(10)]
        trace = ReasoningTrace(interpretations=["x"], chosen_interpretation="x", exploration_queries=filler)
        trace = ensure_term_exploration(trace, "Pain points in Life Insurance", schema, settings)
        assert len(trace.exploration_queries) == settings.max_exploration_queries
        assert sum(1 for q in trace.exploration_queries if q.params.get("term") == "Life Insurance") == 3

    def test_no_terms_no_added_queries(self, schema, settings):
        trace = reason("Show me all industries", [], {}, schema, ScriptedLLM(_reasoning()), settings)
        assert trace.exploration_queries == []

    def test_clarification_skips_exploration(self, schema, settings):
        llm = ScriptedLLM(_reasoning(
            needs_clarification=True,
            clarification={"question": "Which Retail Banking?", "options": []},
        ))
        trace = reason("Projects for Retail Banking", [], {}, schema, llm, settings)
        assert trace.exploration_queries == []

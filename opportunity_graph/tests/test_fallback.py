"""Tests for the deterministic fallback synthesizer."""

from unittest.mock import MagicMock

import pytest

from opportunity_graph.logic.entity_resolver import EntityResolver
from opportunity_graph.logic.fallback import LAST_RESORT, build_fallback_query, classify_category
from opportunity_graph.logic.synthesizer import SOURCE_FALLBACK
from opportunity_graph.logic.validator import validate_query


# =============================================================================
# CATEGORY CLASSIFICATION
# =============================================================================

class TestClassifyCategory:
    @pytest.mark.parametrize("text,expected", [
        ("Which projects exist?", "project"),
        ("List all opportunities", "project"),
        ("What pain points do banks have?", "pain_point"),
        ("Biggest problems in retail", "pain_point"),
        ("Show connections between things", "relationship"),
        ("Show me all industries", "industry"),
        ("list sectors", "sector"),
        ("departments please", "department"),
        ("which roles are needed", "role"),
        ("show sub-modules", "module"),
    ])
    def test_keyword_categories(self, config, text, expected):
        assert classify_category(text, config).name == expected

    def test_project_wins_over_entity_types(self, config):
        assert classify_category("projects for the Banking industry", config).name == "project"

    def test_pain_wins_over_relationship(self, config):
        assert classify_category("pain points connected to sectors", config).name == "pain_point"

    def test_no_keyword(self, config):
        assert classify_category("hello there", config) is None


# =============================================================================
# QUERY SELECTION
# =============================================================================

class TestBuildFallbackQuery:
    def test_default_query(self, config, schema):
        candidate = build_fallback_query("hello there", config=config, schema=schema)
        assert candidate.text == "MATCH (n) RETURN n LIMIT 25"
        assert candidate.source == SOURCE_FALLBACK

    def test_entity_type_listing(self, config, schema):
        candidate = build_fallback_query("Show me all industries", config=config, schema=schema)
        assert candidate.text == "MATCH (n:Industry) RETURN n LIMIT 50"
        assert "industries" in candidate.explanation

    def test_context_entity_type_used_when_no_keyword(self, config, schema):
        candidate = build_fallback_query(
            "what else is there?", context={"currentEntityType": "Sector"}, config=config, schema=schema
        )
        assert candidate.text == "MATCH (n:Sector) RETURN n LIMIT 50"

    def test_context_type_without_category_gets_generic_listing(self, config, schema):
        candidate = build_fallback_query(
            "anything?", context={"currentEntityType": "SubModule"}, config=config, schema=schema
        )
        assert candidate.text == "MATCH (n:`SubModule`) RETURN n LIMIT 50"
        assert validate_query(candidate).valid

    def test_unknown_context_type_is_ignored(self, config, schema):
        candidate = build_fallback_query(
            "anything?", context={"currentEntityType": "Company) DETACH DELETE (x"}, config=config, schema=schema
        )
        assert candidate.text == "MATCH (n) RETURN n LIMIT 25"


class TestFallbackTermResolution:
    def test_exact_match_targets_neighbourhood(self, config, schema, store):
        resolver = EntityResolver(store, schema)
        candidate = build_fallback_query(
            "Show sectors of Retail Banking", resolver=resolver, config=config, schema=schema
        )
        assert "$name" in candidate.text
        assert candidate.params == {"name": "Retail Banking"}
        assert "Retail Banking" in candidate.explanation
        assert validate_query(candidate).valid

    def test_no_exact_match_lists_near_matches_and_keeps_listing(self, config, schema, store):
        resolver = EntityResolver(store, schema)
        candidate = build_fallback_query(
            "What projects are available for retail?", resolver=resolver, config=config, schema=schema
        )
        # Still the general project listing, not a query targeting "retail"
        assert candidate.text == config.fallback.categories[0].query
        assert "Retail Banking" in candidate.explanation
        assert "Did you mean" in candidate.explanation

    def test_no_resolution_without_entity_category(self, config, schema, store):
        resolver = EntityResolver(store, schema)
        candidate = build_fallback_query("Tell me about Zurich", resolver=resolver, config=config, schema=schema)
        assert candidate.text == "MATCH (n) RETURN n LIMIT 25"
        assert store.lookups == []

    def test_resolver_failure_keeps_category_listing(self, config, schema):
        resolver = MagicMock()
        resolver.resolve.side_effect = RuntimeError("boom")
        candidate = build_fallback_query("Sectors in Insurance", resolver=resolver, config=config, schema=schema)
        assert candidate.text == "MATCH (n:Sector) RETURN n LIMIT 50"


class TestFallbackTotality:
    """For any input the fallback returns a non-empty, validator-accepted query."""

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "?",
        "asdkjh qwe",
        "Show me all industries",
        "DROP everything; MATCH (n) DETACH DELETE n",
        "'unterminated quote",
        "projects " * 200,
        "ÄÖÜ 数据 🚀",
    ])
    def test_always_valid(self, config, schema, store, text):
        resolver = EntityResolver(store, schema)
        candidate = build_fallback_query(text, context=None, resolver=resolver, config=config, schema=schema)
        assert candidate.text.strip()
        assert validate_query(candidate).valid

    def test_none_text(self, config, schema):
        candidate = build_fallback_query(None, config=config, schema=schema)
        assert validate_query(candidate).valid

    def test_broken_config_falls_back_to_last_resort(self, config, schema):
        broken = MagicMock()
        broken.fallback.categories = [MagicMock(keywords=["project"], query="RETURN 1", explanation="x",
                                                entity_type=None)]
        candidate = build_fallback_query("projects", config=broken, schema=schema)
        assert candidate == LAST_RESORT

    def test_exception_in_classification_falls_back_to_last_resort(self, schema):
        broken = MagicMock()
        broken.fallback.categories = None  # not iterable
        candidate = build_fallback_query("projects", config=broken, schema=schema)
        assert candidate == LAST_RESORT

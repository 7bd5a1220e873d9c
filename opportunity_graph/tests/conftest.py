"""Shared fixtures for the opportunity graph test suite.

Loads the REAL domain config (domains/opportunities/config.yaml) so tests pin
actual schema and fallback values. The graph store and the LLM are replaced by
in-memory fakes; no Neo4j or API key is needed.
"""

import json
import re
from typing import Optional

import pytest

from opportunity_graph.config_loader import get_config
from opportunity_graph.llm_router import LLMResult
from opportunity_graph.logic.schema_registry import load_schema


# =============================================================================
# FAKE NEO4J GRAPH ELEMENTS (duck-typed like neo4j.graph.Node / Relationship / Path)
# =============================================================================

class FakeNode:
    def __init__(self, element_id: str, labels, **props):
        self.element_id = element_id
        self.labels = frozenset([labels] if isinstance(labels, str) else labels)
        self._props = props

    def items(self):
        return self._props.items()

    def get(self, key, default=None):
        return self._props.get(key, default)

    @property
    def name(self) -> Optional[str]:
        return self._props.get("name") or self._props.get("title")


class FakeRelationship:
    def __init__(self, element_id: str, start_node: FakeNode, rel_type: str, end_node: FakeNode, **props):
        self.element_id = element_id
        self.start_node = start_node
        self.end_node = end_node
        self.type = rel_type
        self._props = props

    def items(self):
        return self._props.items()


class FakePath:
    def __init__(self, nodes, relationships):
        self.nodes = tuple(nodes)
        self.relationships = tuple(relationships)
        self.start_node = self.nodes[0]
        self.end_node = self.nodes[-1]


# =============================================================================
# FAKE STORE HANDLE
# =============================================================================

_LABEL = re.compile(r":`?(\w+)`?")


class FakeStore:
    """In-memory stand-in for database.StoreHandle.

    ``responses`` maps a query substring to the rows returned for it;
    ``errors`` maps a query substring to the exception raised for it.
    Name lookups (find_exact, find_containing, sample_names) and the
    parameterised term-exploration queries are answered from ``nodes``.
    """

    def __init__(self, nodes=(), responses=None, errors=None, version="base"):
        self.nodes = list(nodes)
        self.responses = dict(responses or {})
        self.errors = dict(errors or {})
        self.version = version
        self.executed: list[tuple[str, dict]] = []
        self.writes: list[tuple[str, dict]] = []
        self.lookups: list[tuple[str, str, str]] = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        self.closed = True

    def _names(self, entity_type: str) -> list[str]:
        return [n.name for n in self.nodes if entity_type in n.labels and n.name]

    def execute(self, query, params=None, timeout=None):
        params = params or {}
        self.executed.append((query, params))
        for key, exc in self.errors.items():
            if key in query:
                raise exc
        for key, rows in self.responses.items():
            if key in query:
                return rows(query, params) if callable(rows) else list(rows)
        if "term" in params and "CONTAINS toLower($term)" in query:
            label = _LABEL.search(query).group(1)
            term = params["term"].lower()
            return [[name] for name in self._names(label) if term in name.lower()][:10]
        return []

    def execute_write(self, query, params=None):
        for key, exc in self.errors.items():
            if key in query:
                raise exc
        self.writes.append((query, params or {}))
        return {"nodes_created": 1, "nodes_deleted": 0, "relationships_created": 0,
                "relationships_deleted": 0, "properties_set": 2, "labels_added": 1, "labels_removed": 0}

    def find_exact(self, entity_type, term, limit=10):
        self.lookups.append(("exact", entity_type, term))
        return [n for n in self._names(entity_type) if n == term][:limit]

    def find_containing(self, entity_type, term, case_sensitive=True, limit=10):
        self.lookups.append(("partial" if case_sensitive else "fuzzy", entity_type, term))
        if case_sensitive:
            return [n for n in self._names(entity_type) if term in n][:limit]
        return [n for n in self._names(entity_type) if term.lower() in n.lower()][:limit]

    def sample_names(self, entity_type, limit=10):
        self.lookups.append(("none", entity_type, ""))
        return sorted(self._names(entity_type))[:limit]

    def neighbors(self, element_id, limit=30):
        return self.responses.get("__neighbors__", [])[:limit]

    def count_nodes(self):
        return len(self.nodes)

    def count_relationships(self):
        return 0


class FakeConnection:
    """Stand-in for database.Neo4jConnection that hands out one FakeStore."""

    def __init__(self, store: FakeStore):
        self.store = store
        self.versions: list[Optional[str]] = []

    def resolve_store_handle(self, version=None):
        self.versions.append(version)
        if version not in (None, "base", "admin_draft"):
            raise ValueError(f"Unknown graph version '{version}'")
        self.store.version = version or "base"
        return self.store


# =============================================================================
# SCRIPTED LLM
# =============================================================================

class ScriptedLLM:
    """Returns queued responses in order; records every prompt it was given.

    A response may be a dict (sent as JSON), a raw string, or an LLMResult.
    An exhausted script answers with a provider error.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: list[str] = []
        self.calls: list[dict] = []

    def __call__(self, user_prompt, **kwargs):
        self.prompts.append(user_prompt)
        self.calls.append(kwargs)
        if not self.responses:
            return LLMResult(text="", error="no scripted response")
        response = self.responses.pop(0)
        if isinstance(response, LLMResult):
            return response
        if isinstance(response, dict):
            return LLMResult(text=json.dumps(response))
        return LLMResult(text=response)


TIMEOUT = LLMResult(text="", error="timeout after 20s", timed_out=True)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def config():
    """Real DomainConfig from domains/opportunities/config.yaml (not mocked)."""
    return get_config("opportunities")


@pytest.fixture
def schema(config):
    return load_schema(config)


@pytest.fixture
def settings(config):
    return config.pipeline


@pytest.fixture
def industries():
    return [
        FakeNode("4:i:1", "Industry", name="Banking"),
        FakeNode("4:i:2", "Industry", name="Insurance"),
    ]


@pytest.fixture
def catalogue(industries):
    """A small graph: two industries, a few sectors, one department, one project."""
    return industries + [
        FakeNode("4:s:1", "Sector", name="Retail Banking"),
        FakeNode("4:s:2", "Sector", name="Investment Banking"),
        FakeNode("4:s:3", "Sector", name="Life Insurance"),
        FakeNode("4:d:1", "Department", name="Compliance"),
        FakeNode("4:p:1", "ProjectOpportunity", title="Fraud Detection Copilot", priority="High"),
    ]


@pytest.fixture
def store(catalogue):
    return FakeStore(nodes=catalogue)

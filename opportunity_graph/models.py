"""Pydantic schemas for the opportunity graph query API.

Request bodies use camelCase on the wire (``queryText``, ``graphVersion``);
fields are declared in snake_case and accept either spelling.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# READ PATH
# =============================================================================

class ConversationTurn(CamelModel):
    """One refinement step, held by the client and replayed into prompts."""
    user_request: str
    cypher_query: Optional[str] = None
    feedback: Optional[str] = None


class QueryContext(CamelModel):
    current_entity_type: Optional[str] = Field(None, description="Node type currently displayed in the UI")
    selected_entity_ids: list[str] = Field(default_factory=list, description="Element ids of selected nodes")
    graph_version: Optional[str] = Field(None, description="Named graph version, e.g. 'base' or 'admin_draft'")


class ChatQueryRequest(CamelModel):
    query_text: str
    context: Optional[QueryContext] = None
    conversation_history: list[ConversationTurn] = Field(default_factory=list)

    def to_pipeline(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# MUTATION PATH
# =============================================================================

class MutationPlanPayload(CamelModel):
    """Caller-held plan, round-tripped between proposal and confirm/cancel."""
    plan_id: Optional[str] = None
    query: str = ""
    params: dict = Field(default_factory=dict)
    explanation: str = ""
    risk_level: Optional[str] = None
    affected_entity_types: list[str] = Field(default_factory=list)
    status: str = "PROPOSED"


class MutationRequest(CamelModel):
    mutation_plan: MutationPlanPayload
    graph_version: Optional[str] = None

    def to_pipeline(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# GRAPH & SCHEMA
# =============================================================================

class GraphStats(CamelModel):
    nodes: int
    relationships: int
    connected: bool
    graph_version: str = "base"


class GraphNeighborhoodResponse(CamelModel):
    """One-hop neighbourhood of a node in the graph view-model shape."""
    center_node_id: str
    graph_data: dict = Field(default_factory=lambda: {"nodes": [], "edges": []})
    truncated: bool = Field(default=False, description="True if the max_nodes limit was reached")

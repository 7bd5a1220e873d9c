"""Mutation Plan Workflow — risk classification and the confirm/cancel state machine.

    PROPOSED --confirm_and_execute--> CONFIRMED   (executed exactly once)
    PROPOSED --cancel---------------> CANCELLED   (never executed)

Plans are held by the caller between proposal and confirmation; nothing is
stored server-side and nothing expires.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from opportunity_graph.logic.cypher_text import node_labels, split_top_level, strip_literals
from opportunity_graph.logic.schema_registry import SchemaDescriptor

logger = logging.getLogger(__name__)

NO_PLAN_EXPLANATION = "Could not generate a safe mutation plan"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class PlanStatus(str, Enum):
    PROPOSED = "PROPOSED"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class PlanStateError(Exception):
    """Raised when a plan is confirmed or cancelled outside the PROPOSED state."""


@dataclass
class MutationPlan:
    query: str
    explanation: str
    risk_level: RiskLevel
    affected_entity_types: list[str] = field(default_factory=list)
    params: dict = field(default_factory=dict)
    plan_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: PlanStatus = PlanStatus.PROPOSED

    def to_dict(self) -> dict:
        return {
            "planId": self.plan_id,
            "query": self.query,
            "params": dict(self.params),
            "explanation": self.explanation,
            "riskLevel": self.risk_level.value,
            "affectedEntityTypes": list(self.affected_entity_types),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict, schema: Optional[SchemaDescriptor] = None) -> "MutationPlan":
        """Rebuild a caller-held plan. Risk and affected types are recomputed from the query."""
        query = (data.get("query") or "").strip()
        return cls(
            query=query,
            explanation=data.get("explanation") or "",
            risk_level=classify_risk(query),
            affected_entity_types=affected_entity_types(query, schema),
            params=dict(data.get("params") or {}),
            plan_id=data.get("planId") or uuid.uuid4().hex,
            status=PlanStatus(data.get("status") or PlanStatus.PROPOSED.value),
        )


# =============================================================================
# RISK HEURISTICS
# =============================================================================

_CLAUSE = re.compile(
    r"\b(ON\s+CREATE\s+SET|ON\s+MATCH\s+SET|OPTIONAL\s+MATCH|MATCH|WHERE|WITH|UNWIND|FOREACH|"
    r"CREATE|MERGE|SET|REMOVE|DETACH\s+DELETE|DELETE|DROP|RETURN|CALL|LOAD\s+CSV|ORDER\s+BY|SKIP|LIMIT)\b",
    re.IGNORECASE,
)
_DESTRUCTIVE = {"DELETE", "DETACH DELETE", "DROP"}
_BULK = {"UNWIND", "FOREACH", "LOAD CSV"}
_WRITES = {"CREATE", "MERGE", "SET", "REMOVE", "ON CREATE SET", "ON MATCH SET"}
_LABELLED_NODE = re.compile(r"\(\s*\w*\s*:\s*`?\w+`?")
_INLINE_FILTER = re.compile(r"\{\s*`?\w+`?\s*:")
_NODE_PATTERN = re.compile(r"\(\s*(\w*)\s*((?::\s*`?\w+`?\s*)*)(\{[^{}]*\})?\s*\)")
_REL_VARIABLE = re.compile(r"\[\s*(\w+)")
_WRITE_TARGET = re.compile(r"^\s*(\w+)\s*(?:\.|:|\+?=)")
# n.name = ..., n.id IN ..., n.name STARTS WITH ..., elementId(n) = ...
_IDENTITY_CONDITION = re.compile(
    r"^\s*\(?\s*(?:(\w+)\s*\.\s*`?\w+`?\s*(?:=(?!~)|IN\b|STARTS\s+WITH\b)"
    r"|(?:elementId|id)\s*\(\s*(\w+)\s*\)\s*(?:=|IN\b))",
    re.IGNORECASE,
)
_NOT_OR = re.compile(r"\b(OR|XOR|NOT)\b", re.IGNORECASE)


def _clauses(query: str) -> list[tuple[str, str]]:
    """Split a statement into (KEYWORD, body) pairs."""
    text = strip_literals(query)
    matches = list(_CLAUSE.finditer(text))
    clauses = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        keyword = " ".join(match.group(1).upper().split())
        clauses.append((keyword, text[match.end():end]))
    return clauses


def _where_filtered(where: str) -> set[str]:
    """Variables pinned by an equality-style conjunct of a WHERE clause."""
    filtered = set()
    for conjunct in re.split(r"\bAND\b", where, flags=re.IGNORECASE):
        if _NOT_OR.search(conjunct):
            continue
        condition = _IDENTITY_CONDITION.match(conjunct)
        if condition:
            filtered.add(condition.group(1) or condition.group(2))
    return filtered


def _write_targets(clauses: list[tuple[str, str]]) -> set[str]:
    targets = set()
    for keyword, body in clauses:
        if keyword in ("SET", "REMOVE", "ON CREATE SET", "ON MATCH SET"):
            for item in split_top_level(body):
                target = _WRITE_TARGET.match(item)
                if target:
                    targets.add(target.group(1))
        elif keyword in ("CREATE", "MERGE"):
            targets.update(node.group(1) for node in _NODE_PATTERN.finditer(body) if node.group(1))
    return targets


def _unscoped_write_targets(clauses: list[tuple[str, str]]) -> set[str]:
    """Matched variables that a write touches without an identity filter.

    A node is scoped by an inline ``{key: ...}`` map or by an equality in the
    WHERE right after its MATCH; a relationship is scoped when every node of
    its pattern is.
    """
    bound, filtered = set(), set()
    relationships = {}
    for i, (keyword, body) in enumerate(clauses):
        if keyword not in ("MATCH", "OPTIONAL MATCH"):
            continue
        for pattern in split_top_level(body):
            nodes = []
            for node in _NODE_PATTERN.finditer(pattern):
                variable, props = node.group(1), node.group(3)
                inline = bool(props and _INLINE_FILTER.search(props))
                if variable:
                    bound.add(variable)
                    if inline:
                        filtered.add(variable)
                nodes.append((variable, inline))
            for rel in _REL_VARIABLE.finditer(pattern):
                relationships[rel.group(1)] = nodes
        following = clauses[i + 1] if i + 1 < len(clauses) else None
        if following and following[0] == "WHERE":
            filtered |= _where_filtered(following[1])

    for rel, nodes in relationships.items():
        bound.add(rel)
        if nodes and all(inline or variable in filtered for variable, inline in nodes):
            filtered.add(rel)

    return (_write_targets(clauses) & bound) - filtered


def classify_risk(query: str) -> RiskLevel:
    """Heuristic risk of a write statement.

    HIGH for deletes/drops (and for an empty plan), MEDIUM for bulk writes
    (UNWIND/FOREACH, several new labelled nodes, or a write to a matched
    variable without an identity filter), LOW for a single scoped change.
    """
    if not (query or "").strip():
        return RiskLevel.HIGH

    clauses = _clauses(query)
    keywords = {keyword for keyword, _ in clauses}

    if keywords & _DESTRUCTIVE:
        return RiskLevel.HIGH
    if keywords & _BULK:
        return RiskLevel.MEDIUM

    created_nodes = sum(
        len(_LABELLED_NODE.findall(body)) for keyword, body in clauses if keyword in ("CREATE", "MERGE")
    )
    if created_nodes > 1:
        return RiskLevel.MEDIUM

    has_match = bool(keywords & {"MATCH", "OPTIONAL MATCH"})
    if keywords & _WRITES and has_match and _unscoped_write_targets(clauses):
        return RiskLevel.MEDIUM

    return RiskLevel.LOW


def affected_entity_types(query: str, schema: Optional[SchemaDescriptor] = None) -> list[str]:
    """Labels the statement touches, schema labels first."""
    labels = node_labels(query or "")
    if schema is None:
        return labels
    known = [label for label in labels if schema.is_entity_type(label)]
    unknown = [label for label in labels if not schema.is_entity_type(label)]
    return known + unknown


def build_plan(query: str, explanation: str, schema: Optional[SchemaDescriptor] = None,
               params: Optional[dict] = None) -> MutationPlan:
    query = (query or "").strip()
    return MutationPlan(
        query=query,
        explanation=explanation or "",
        risk_level=classify_risk(query),
        affected_entity_types=affected_entity_types(query, schema),
        params=dict(params or {}),
    )


def unsafe_plan() -> MutationPlan:
    return MutationPlan(query="", explanation=NO_PLAN_EXPLANATION, risk_level=RiskLevel.HIGH)


# =============================================================================
# STATE TRANSITIONS
# =============================================================================

def confirm_and_execute(plan: MutationPlan, store) -> dict:
    """Execute a PROPOSED plan once and mark it CONFIRMED.

    The plan is marked before the write runs, so a failed execution still
    consumes it; a retry has to go through a fresh proposal.
    """
    if plan.status != PlanStatus.PROPOSED:
        raise PlanStateError(f"Plan {plan.plan_id} is {plan.status.value}; only PROPOSED plans can be executed")
    if not plan.query:
        raise PlanStateError(f"Plan {plan.plan_id} has no query to execute")

    plan.status = PlanStatus.CONFIRMED
    logger.info(f"Executing mutation plan {plan.plan_id} (risk {plan.risk_level.value})")
    return store.execute_write(plan.query, plan.params)


def cancel(plan: MutationPlan) -> MutationPlan:
    if plan.status != PlanStatus.PROPOSED:
        raise PlanStateError(f"Plan {plan.plan_id} is {plan.status.value}; only PROPOSED plans can be cancelled")
    plan.status = PlanStatus.CANCELLED
    logger.info(f"Cancelled mutation plan {plan.plan_id}")
    return plan

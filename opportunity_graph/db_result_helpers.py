"""Neo4j result → graph view-model conversion helpers.

Rows come back from the gateway as plain lists of record values. A value can
be a Node, a Relationship, a Path, a list of any of those (``nodes(p)``,
``collect(n)``), or a scalar. These helpers walk the values and collect the
graph elements in the shape the UI renders:

    nodes: [{id, label, group, properties}]
    edges: [{id, from, to, type, properties}]

Uses duck-typing (checks for .labels / .start_node / .relationships) instead of
isinstance checks against neo4j.graph so tests can feed lightweight fakes.
"""

from __future__ import annotations

from typing import Iterable, Optional

_DISPLAY_KEYS = ("name", "title")


def is_node(val) -> bool:
    return hasattr(val, "labels") and hasattr(val, "element_id")


def is_relationship(val) -> bool:
    return hasattr(val, "start_node") and hasattr(val, "end_node") and hasattr(val, "type")


def is_path(val) -> bool:
    return hasattr(val, "relationships") and hasattr(val, "nodes")


def _jsonable(value):
    """Convert driver-specific property values (temporal, spatial) to JSON-safe ones."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if hasattr(value, "iso_format"):
        return value.iso_format()
    return str(value)


def element_properties(element) -> dict:
    return {key: _jsonable(value) for key, value in dict(element.items()).items()}


def display_label(properties: dict) -> str:
    """Human-readable label for a node: its name, else its title."""
    for key in _DISPLAY_KEYS:
        value = properties.get(key)
        if value:
            return str(value)
    return "Unnamed"


def primary_label(labels: Iterable[str], known_labels: Optional[Iterable[str]] = None) -> str:
    """Pick the group label; schema labels win over ad hoc extra labels."""
    labels = sorted(labels)
    if not labels:
        return "Unknown"
    if known_labels is not None:
        known = set(known_labels)
        for label in labels:
            if label in known:
                return label
    return labels[0]


def node_to_dict(node, known_labels: Optional[Iterable[str]] = None) -> dict:
    properties = element_properties(node)
    return {
        "id": node.element_id,
        "label": display_label(properties),
        "group": primary_label(node.labels, known_labels),
        "properties": properties,
    }


def relationship_to_dict(rel) -> dict:
    return {
        "id": rel.element_id,
        "from": rel.start_node.element_id,
        "to": rel.end_node.element_id,
        "type": rel.type,
        "properties": element_properties(rel),
    }


def iter_graph_elements(value):
    """Yield every Node / Relationship reachable from one record value."""
    if value is None:
        return
    if is_path(value):
        yield from value.nodes
        yield from value.relationships
    elif is_relationship(value):
        # Endpoints are hydrated with the relationship; render them too so
        # an edge never dangles in the view model.
        if is_node(value.start_node) and value.start_node.labels:
            yield value.start_node
        if is_node(value.end_node) and value.end_node.labels:
            yield value.end_node
        yield value
    elif is_node(value):
        yield value
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_graph_elements(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_graph_elements(item)


def rows_to_graph(rows: Iterable[Iterable], known_labels: Optional[Iterable[str]] = None) -> dict:
    """Collect deduplicated nodes and edges from all rows of one execution.

    Identity is the store's element id: a node that appears in many rows (or
    in many paths) is emitted exactly once.
    """
    nodes: dict[str, dict] = {}
    edges: dict[str, dict] = {}
    known = list(known_labels) if known_labels is not None else None

    for row in rows:
        for value in row:
            for element in iter_graph_elements(value):
                if is_relationship(element):
                    if element.element_id not in edges:
                        edges[element.element_id] = relationship_to_dict(element)
                elif element.element_id not in nodes:
                    nodes[element.element_id] = node_to_dict(element, known)

    return {"nodes": list(nodes.values()), "edges": list(edges.values())}


def scalar_values(rows: Iterable[Iterable], limit: int = 10) -> list[str]:
    """Distinct display strings from a result set: node names or scalar values."""
    values: list[str] = []
    for row in rows:
        for value in row:
            candidates = []
            if is_node(value):
                candidates.append(display_label(element_properties(value)))
            elif isinstance(value, (list, tuple)):
                candidates.extend(str(v) for v in value if isinstance(v, (str, int, float)))
            elif isinstance(value, (str, int, float)) and not isinstance(value, bool):
                candidates.append(str(value))
            for candidate in candidates:
                if candidate and candidate not in values:
                    values.append(candidate)
                if len(values) >= limit:
                    return values
    return values

"""Schema Registry — static catalogue of entity types and relationship types.

The descriptor is built once from the domain config and shared read-only by
every request. It is used for prompt construction, validator warnings, and to
decide which labels may be interpolated into lookup queries.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from opportunity_graph.config_loader import DomainConfig, get_config


@dataclass(frozen=True)
class SchemaDescriptor:
    entity_types: Mapping[str, tuple[str, ...]]
    relationship_types: tuple[str, ...]
    relationship_endpoints: tuple[tuple[str, str, str], ...]
    display_properties: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def is_entity_type(self, name: Optional[str]) -> bool:
        return bool(name) and name in self.entity_types

    def is_relationship_type(self, name: Optional[str]) -> bool:
        return bool(name) and name in self.relationship_types

    def name_property(self, entity_type: str) -> str:
        """Property that holds the human-readable name (``name`` or ``title``)."""
        return self.display_properties.get(entity_type, "name")

    def canonical_type(self, word: str) -> Optional[str]:
        """Map a loosely written type ("sectors", "pain point") to its label."""
        squashed = re.sub(r"[\s_-]+", "", (word or "")).lower()
        for name in self.entity_types:
            label = name.lower()
            if squashed in (label, label + "s", label + "es") or (
                label.endswith("y") and squashed == label[:-1] + "ies"
            ):
                return name
        return None

    def keywords(self) -> set[str]:
        """Lower-case words that belong to the schema vocabulary."""
        words: set[str] = set()
        for name in self.entity_types:
            words.add(name.lower())
            # ProjectOpportunity -> project, opportunity
            for part in re.findall(r"[A-Z][a-z]+", name):
                words.add(part.lower())
        for rel in self.relationship_types:
            words.add(rel.lower())
            words.update(part.lower() for part in rel.split("_"))
        return words

    def describe(self) -> str:
        """Render the schema for LLM prompts."""
        lines = ["Node labels (required properties):"]
        for name, required in self.entity_types.items():
            lines.append(f"- {name} ({', '.join(required)})")
        lines.append("Relationships:")
        for source, rel, target in self.relationship_endpoints:
            lines.append(f"- ({source})-[:{rel}]->({target})")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "entityTypes": {name: list(props) for name, props in self.entity_types.items()},
            "relationshipTypes": list(self.relationship_types),
            "relationshipEndpoints": [list(triple) for triple in self.relationship_endpoints],
        }


def load_schema(config: DomainConfig) -> SchemaDescriptor:
    """Build the immutable descriptor from the domain config's schema section."""
    raw = config.schema
    entity_types = {
        name: tuple(entity.required) for name, entity in raw.entity_types.items()
    }
    display = {
        name: entity.display_property for name, entity in raw.entity_types.items()
    }

    rel_types = list(raw.relationship_types)
    for _, rel, _ in raw.relationship_endpoints:
        if rel not in rel_types:
            rel_types.append(rel)

    for source, rel, target in raw.relationship_endpoints:
        for label in (source, target):
            if label not in entity_types:
                raise ValueError(f"Relationship {rel} references unknown entity type '{label}'")

    return SchemaDescriptor(
        entity_types=MappingProxyType(entity_types),
        relationship_types=tuple(rel_types),
        relationship_endpoints=tuple(tuple(t) for t in raw.relationship_endpoints),
        display_properties=MappingProxyType(display),
    )


_schema: Optional[SchemaDescriptor] = None


def get_schema() -> SchemaDescriptor:
    """Process-wide schema, loaded on first use and never mutated afterwards."""
    global _schema
    if _schema is None:
        _schema = load_schema(get_config())
    return _schema

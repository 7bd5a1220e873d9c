"""Configuration Loader for the natural-language graph query pipeline.

This module provides a type-safe, validated configuration system.
All domain-specific knowledge (graph schema, named graph versions, pipeline
limits, fallback keyword categories) is externalized to YAML files under
``domains/<domain_id>/config.yaml``.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


# =============================================================================
# PYDANTIC MODELS FOR CONFIGURATION VALIDATION
# =============================================================================

class EntityTypeConfig(BaseModel):
    """A node label and the properties every node of that label must carry."""
    required: list[str] = Field(default_factory=lambda: ["name"])
    display_property: str = "name"


class SchemaConfig(BaseModel):
    """Raw schema section: entity types and (from, type, to) endpoint triples."""
    entity_types: dict[str, EntityTypeConfig] = Field(default_factory=dict)
    relationship_types: list[str] = Field(default_factory=list)
    relationship_endpoints: list[tuple[str, str, str]] = Field(default_factory=list)


class PipelineSettings(BaseModel):
    """Timeouts and bounds for the two LLM stages, exploration and assembly."""
    reasoning_timeout_s: float = 20.0
    synthesis_timeout_s: float = 20.0
    reasoning_temperature: float = 0.1
    synthesis_temperature: float = 0.1
    reasoning_max_tokens: int = 1200
    synthesis_max_tokens: int = 800
    history_turns: int = 6
    max_exploration_queries: int = 10
    exploration_row_limit: int = 10
    exploration_label_limit: int = 5
    exploration_timeout_s: float = 5.0
    exploration_types: list[str] = Field(default_factory=lambda: ["Industry", "Sector", "Department"])
    resolver_row_limit: int = 10
    diagnosis_types: list[str] = Field(default_factory=lambda: ["Industry", "Sector", "Department"])
    large_result_threshold: int = 100


class FallbackCategory(BaseModel):
    """A keyword-triggered canned query."""
    name: str
    keywords: list[str]
    query: str
    explanation: str = ""
    entity_type: Optional[str] = None


class FallbackConfig(BaseModel):
    default_query: str = "MATCH (n) RETURN n LIMIT 25"
    default_explanation: str = "Showing a sample of 25 nodes from the graph."
    categories: list[FallbackCategory] = Field(default_factory=list)

    def category_for_type(self, entity_type: str) -> Optional[FallbackCategory]:
        for category in self.categories:
            if category.entity_type == entity_type:
                return category
        return None


class IntentConfig(BaseModel):
    mutation_keywords: list[str] = Field(default_factory=lambda: [
        "add", "create", "connect", "update", "delete", "remove",
    ])


@dataclass
class DomainConfig:
    """Complete domain configuration container."""

    # Domain metadata
    domain_id: str = ""
    domain_name: str = ""
    description: str = ""
    version: str = "1.0"

    schema: SchemaConfig = field(default_factory=SchemaConfig)
    graph_versions: dict[str, Optional[str]] = field(default_factory=lambda: {"base": None})
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    intent: IntentConfig = field(default_factory=IntentConfig)
    sample_questions: list[str] = field(default_factory=list)


# =============================================================================
# CONFIGURATION LOADER
# =============================================================================

DEFAULT_DOMAIN = os.environ.get("DOMAIN_ID", "opportunities")

_PACKAGE_DIR = Path(__file__).parent
_DOMAINS_DIR = _PACKAGE_DIR / "domains"


def _resolve_config_path(domain_id: str) -> Path:
    return _DOMAINS_DIR / domain_id / "config.yaml"


def get_available_domains() -> list[dict]:
    """List domain configurations discovered under domains/."""
    domains = []
    if not _DOMAINS_DIR.exists():
        return domains

    for domain_dir in sorted(_DOMAINS_DIR.iterdir()):
        config_path = domain_dir / "config.yaml"
        if domain_dir.is_dir() and config_path.exists():
            with open(config_path, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f) or {}
            domain_meta = raw.get("domain", {})
            domains.append({
                "id": domain_dir.name,
                "name": domain_meta.get("name", domain_dir.name),
                "description": domain_meta.get("description", ""),
                "version": domain_meta.get("version", "1.0"),
                "config_file": str(config_path),
            })
    return domains


def parse_domain_config(raw: dict) -> DomainConfig:
    """Build a validated DomainConfig from an already-parsed YAML mapping."""
    config = DomainConfig()

    domain = raw.get("domain", {})
    config.domain_id = domain.get("id", "")
    config.domain_name = domain.get("name", "")
    config.description = domain.get("description", "")
    config.version = str(domain.get("version", "1.0"))

    config.schema = SchemaConfig(**(raw.get("schema") or {}))
    config.graph_versions = dict(raw.get("graph_versions") or {"base": None})
    config.pipeline = PipelineSettings(**(raw.get("pipeline") or {}))
    config.fallback = FallbackConfig(**(raw.get("fallback") or {}))
    config.intent = IntentConfig(**(raw.get("intent") or {}))
    config.sample_questions = list(raw.get("sample_questions") or [])
    return config


def load_domain_config(config_path: Optional[str] = None, domain_id: Optional[str] = None) -> DomainConfig:
    """Load and validate domain configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses domain_id to find config.
        domain_id: Domain identifier. If None, uses DEFAULT_DOMAIN.

    Returns:
        Validated DomainConfig object
    """
    if config_path is None:
        config_path = _resolve_config_path(domain_id or DEFAULT_DOMAIN)

    with open(config_path, 'r', encoding='utf-8') as f:
        raw = yaml.safe_load(f) or {}

    return parse_domain_config(raw)


_configs: dict[str, DomainConfig] = {}


def get_config(domain_id: Optional[str] = None) -> DomainConfig:
    """Get the loaded domain configuration (cached per domain)."""
    if domain_id is None:
        domain_id = DEFAULT_DOMAIN

    if domain_id not in _configs:
        _configs[domain_id] = load_domain_config(domain_id=domain_id)

    return _configs[domain_id]


def get_domain_config_summary(domain_id: Optional[str] = None) -> dict:
    """Summary of the active domain configuration for settings UIs."""
    config = get_config(domain_id)
    return {
        "domain": {
            "id": config.domain_id,
            "name": config.domain_name,
            "description": config.description,
            "version": config.version,
        },
        "entity_types": list(config.schema.entity_types.keys()),
        "graph_versions": list(config.graph_versions.keys()),
        "fallback_categories": [c.name for c in config.fallback.categories],
        "sample_questions": config.sample_questions,
    }

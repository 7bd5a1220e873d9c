"""Logic module for the natural-language graph query pipeline.

Stage modules that talk to the graph store (resolver, exploration, assembler,
pipeline) are imported from their own modules; database.py depends on
cypher_text from this package.
"""

from .mutation import MutationPlan, PlanStateError, RiskLevel, classify_risk
from .schema_registry import SchemaDescriptor, get_schema, load_schema
from .validator import ValidationResult, validate_query

__all__ = [
    'SchemaDescriptor',
    'get_schema',
    'load_schema',
    'MutationPlan',
    'PlanStateError',
    'RiskLevel',
    'classify_risk',
    'ValidationResult',
    'validate_query',
]

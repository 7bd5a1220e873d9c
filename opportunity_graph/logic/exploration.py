"""Exploration Execution — run the reasoning stage's probe queries.

Probes run one after another against the request's StoreHandle. Each result is
reduced to a digest (row count + a few labels) so the synthesis prompt stays
small whatever the size of the graph. A failing probe becomes a note; only a
lost connection aborts the request.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from opportunity_graph.config_loader import PipelineSettings
from opportunity_graph.database import GraphStoreError, GraphUnavailableError
from opportunity_graph.db_result_helpers import scalar_values
from opportunity_graph.logic.cypher_text import has_write_clause

logger = logging.getLogger(__name__)


@dataclass
class ExplorationResult:
    query: str
    purpose: str
    summary: str
    row_count: int = 0
    labels: list[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "purpose": self.purpose,
            "summary": self.summary,
            "rowCount": self.row_count,
            "labels": list(self.labels),
            "error": self.error,
        }


def summarize_rows(rows: list, label_limit: int = 5) -> tuple[str, list[str]]:
    labels = scalar_values(rows, limit=label_limit)
    if not rows:
        return "0 results", labels
    summary = f"{len(rows)} result{'s' if len(rows) != 1 else ''}"
    if labels:
        summary += ": " + ", ".join(labels)
    return summary, labels


def run_explorations(store, queries: list, settings: Optional[PipelineSettings] = None) -> list[ExplorationResult]:
    """Execute up to ``max_exploration_queries`` probes sequentially."""
    settings = settings or PipelineSettings()
    results = []

    for probe in list(queries or [])[:settings.max_exploration_queries]:
        query, purpose, params = probe.query, probe.purpose, probe.params

        if has_write_clause(query):
            logger.warning(f"Refusing write clause in exploration query: {query[:120]}")
            results.append(ExplorationResult(
                query=query, purpose=purpose,
                summary="Skipped: exploration queries must be read-only",
                error="refused",
            ))
            continue

        try:
            rows = store.execute(query, params, timeout=settings.exploration_timeout_s)
        except GraphUnavailableError:
            raise
        except GraphStoreError as e:
            logger.warning(f"Exploration query failed ({purpose or query[:60]}): {e}")
            results.append(ExplorationResult(
                query=query, purpose=purpose,
                summary=f"Failed: {type(e).__name__}",
                error=str(e),
            ))
            continue

        rows = rows[:settings.exploration_row_limit]
        summary, labels = summarize_rows(rows, settings.exploration_label_limit)
        results.append(ExplorationResult(
            query=query, purpose=purpose, summary=summary,
            row_count=len(rows), labels=labels,
        ))

    return results


def format_exploration_summaries(results: list[ExplorationResult]) -> str:
    """Render digests for the synthesis prompt."""
    if not results:
        return "(no exploration was run)"
    lines = []
    for i, result in enumerate(results, 1):
        lines.append(f"{i}. {result.purpose or 'Exploration'}")
        lines.append(f"   Query: {result.query}")
        lines.append(f"   Result: {result.summary}")
    return "\n".join(lines)

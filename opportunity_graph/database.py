import logging
import os
import re
import time
from typing import Optional

from dotenv import load_dotenv
from neo4j import GraphDatabase, Query, READ_ACCESS, WRITE_ACCESS
from neo4j.exceptions import (
    ClientError,
    CypherSyntaxError,
    CypherTypeError,
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
)

from opportunity_graph.config_loader import get_config
from opportunity_graph.logic.cypher_text import has_write_clause

load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class GraphStoreError(Exception):
    """Base class for graph store failures surfaced to the pipeline."""


class GraphUnavailableError(GraphStoreError):
    """The store cannot be reached. Fatal for the current request."""


class QuerySyntaxError(GraphStoreError):
    """The statement was rejected by the engine (syntax, type, schema, access mode)."""


class QueryTimeoutError(GraphStoreError):
    """The statement exceeded its transaction timeout."""


def _is_connection_error(e: Exception) -> bool:
    if isinstance(e, (ServiceUnavailable, SessionExpired)):
        return True
    # Engine errors quote the statement text; never sniff their message.
    if isinstance(e, (Neo4jError, GraphStoreError)):
        return False
    error_msg = str(e).lower()
    return "defunct" in error_msg or "connection" in error_msg


def _translate_error(e: Exception) -> GraphStoreError:
    """Map driver exceptions onto the pipeline's error taxonomy."""
    if isinstance(e, GraphStoreError):
        return e
    if isinstance(e, (ServiceUnavailable, SessionExpired)):
        return GraphUnavailableError(str(e))
    if isinstance(e, (CypherSyntaxError, CypherTypeError)):
        return QuerySyntaxError(str(e))
    if isinstance(e, Neo4jError):
        code = getattr(e, "code", "") or ""
        if "TransactionTimedOut" in code:
            return QueryTimeoutError(str(e))
        if isinstance(e, ClientError) and code.startswith("Neo.ClientError.Statement"):
            return QuerySyntaxError(str(e))
        return GraphStoreError(str(e))
    if isinstance(e, DriverError):
        return GraphUnavailableError(str(e))
    return GraphStoreError(str(e))


def _quote_label(label: str) -> str:
    if not label or not _LABEL_RE.match(label):
        raise ValueError(f"Invalid label: {label!r}")
    return f"`{label}`"


def _names(records) -> list[str]:
    names = []
    for record in records:
        name = record["name"]
        if name and name not in names:
            names.append(name)
    return names


class StoreHandle:
    """One named graph version, bound to one lazily opened session.

    Always use as a context manager (or call ``close()``) so the session is
    released on every exit path.
    """

    def __init__(self, connection: "Neo4jConnection", database: str, version: str):
        self.connection = connection
        self.database = database
        self.version = version
        self._session = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _get_session(self):
        if self._session is None:
            driver = self.connection.connect()
            self._session = driver.session(database=self.database, default_access_mode=READ_ACCESS)
        return self._session

    def _drop_session(self):
        if self._session is not None:
            try:
                self._session.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing stale session: {e}")
            self._session = None

    def _run(self, query_func):
        def _attempt():
            try:
                return query_func(self._get_session())
            except Exception as e:
                if _is_connection_error(e):
                    self._drop_session()
                raise

        try:
            return self.connection._execute_with_retry(_attempt)
        except GraphStoreError:
            raise
        except Exception as e:
            raise _translate_error(e) from e

    def close(self):
        self._drop_session()

    # -------------------------------------------------------------------------
    # Generic execution
    # -------------------------------------------------------------------------

    def execute(self, query: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> list[list]:
        """Run a read-only statement and return the raw record values per row."""
        if has_write_clause(query):
            raise QuerySyntaxError("Write clauses are not allowed on the read path")

        def _query(session):
            result = session.run(Query(query, timeout=timeout), params or {})
            return [list(record.values()) for record in result]

        t = time.time()
        rows = self._run(_query)
        logger.debug(f"[{self.version}] {len(rows)} rows in {time.time() - t:.3f}s")
        return rows

    def execute_write(self, query: str, params: Optional[dict] = None) -> dict:
        """Run a write statement in its own write transaction; returns update counters.

        Runs exactly once: a connection lost after commit is reported, never
        replayed.
        """
        def _work(tx):
            summary = tx.run(query, params or {}).consume()
            counters = summary.counters
            return {
                "nodes_created": counters.nodes_created,
                "nodes_deleted": counters.nodes_deleted,
                "relationships_created": counters.relationships_created,
                "relationships_deleted": counters.relationships_deleted,
                "properties_set": counters.properties_set,
                "labels_added": counters.labels_added,
                "labels_removed": counters.labels_removed,
            }

        try:
            driver = self.connection.connect()
            with driver.session(database=self.database, default_access_mode=WRITE_ACCESS) as session:
                return session.execute_write(_work)
        except GraphStoreError:
            raise
        except Exception as e:
            logger.error(f"[{self.version}] write failed, not retried: {e}")
            raise _translate_error(e) from e

    # -------------------------------------------------------------------------
    # Narrow lookups (entity resolution, neighbourhood expansion, stats)
    # -------------------------------------------------------------------------

    def find_exact(self, entity_type: str, term: str, limit: int = 10) -> list[str]:
        """Case-sensitive name/title equality."""
        query = f"""
            MATCH (n:{_quote_label(entity_type)})
            WHERE n.name = $term OR n.title = $term
            RETURN coalesce(n.name, n.title) AS name
            ORDER BY name
            LIMIT $limit
        """
        return self._run(lambda s: _names(s.run(query, term=term, limit=limit)))

    def find_containing(self, entity_type: str, term: str, case_sensitive: bool = True, limit: int = 10) -> list[str]:
        """Substring containment on name/title."""
        if case_sensitive:
            where = "n.name CONTAINS $term OR n.title CONTAINS $term"
        else:
            where = "toLower(n.name) CONTAINS toLower($term) OR toLower(n.title) CONTAINS toLower($term)"
        query = f"""
            MATCH (n:{_quote_label(entity_type)})
            WHERE {where}
            RETURN coalesce(n.name, n.title) AS name
            ORDER BY size(name), name
            LIMIT $limit
        """
        return self._run(lambda s: _names(s.run(query, term=term, limit=limit)))

    def sample_names(self, entity_type: str, limit: int = 10) -> list[str]:
        """Existing entity names of a type, for "nothing matched, here's what exists"."""
        query = f"""
            MATCH (n:{_quote_label(entity_type)})
            WHERE coalesce(n.name, n.title) IS NOT NULL
            RETURN coalesce(n.name, n.title) AS name
            ORDER BY name
            LIMIT $limit
        """
        return self._run(lambda s: _names(s.run(query, limit=limit)))

    def neighbors(self, element_id: str, limit: int = 30) -> list[list]:
        """Rows (n, r, m) for the one-hop neighbourhood of a node."""
        query = """
            MATCH (n) WHERE elementId(n) = $element_id
            OPTIONAL MATCH (n)-[r]-(m)
            RETURN n, r, m
            LIMIT $limit
        """

        def _query(session):
            result = session.run(query, element_id=element_id, limit=limit)
            return [list(record.values()) for record in result]

        return self._run(_query)

    def count_nodes(self) -> int:
        return self._run(lambda s: s.run("MATCH (n) RETURN count(n) AS count").single()["count"])

    def count_relationships(self) -> int:
        return self._run(lambda s: s.run("MATCH ()-[r]->() RETURN count(r) AS count").single()["count"])


class Neo4jConnection:
    def __init__(self):
        self.uri = os.getenv("NEO4J_URI")
        self.user = os.getenv("NEO4J_USER")
        self.password = os.getenv("NEO4J_PASSWORD")
        self.database = os.getenv("NEO4J_DATABASE", "neo4j")
        self.driver = None

    def connect(self):
        if not self.driver:
            if not self.uri:
                raise GraphUnavailableError("NEO4J_URI is not configured")
            self.driver = GraphDatabase.driver(
                self.uri,
                auth=(self.user, self.password),
                max_connection_lifetime=3600,
                max_connection_pool_size=50,
                connection_acquisition_timeout=30,
                keep_alive=True,
            )
        return self.driver

    def warmup(self):
        """Pre-connect and warm up connection pool. Call on server start."""
        t = time.time()
        try:
            driver = self.connect()
            with driver.session(database=self.database) as session:
                session.run("RETURN 1").single()
            logger.info(f"Neo4j connection warmed up in {time.time() - t:.2f}s")
        except Exception as e:
            logger.warning(f"Neo4j warmup failed: {e}")

    def reconnect(self):
        """Force reconnection by closing existing driver and creating new one."""
        if self.driver:
            try:
                self.driver.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing driver: {e}")
            self.driver = None
        return self.connect()

    def close(self):
        if self.driver:
            self.driver.close()
            self.driver = None

    def _execute_with_retry(self, query_func, max_retries=2):
        """Execute a query function with automatic retry on connection failure."""
        last_error = None
        for attempt in range(max_retries + 1):
            try:
                return query_func()
            except GraphStoreError:
                raise
            except Exception as e:
                if not _is_connection_error(e):
                    raise
                last_error = e
                if attempt < max_retries:
                    logger.warning(f"Graph store connection lost (attempt {attempt + 1}), reconnecting: {e}")
                    self.reconnect()
                else:
                    raise GraphUnavailableError(str(e)) from e
        raise GraphUnavailableError(str(last_error))

    def database_for_version(self, version: Optional[str]) -> str:
        """Neo4j database that stores a named graph version."""
        versions = get_config().graph_versions
        version = version or "base"
        if version not in versions:
            raise ValueError(f"Unknown graph version '{version}'. Available: {sorted(versions)}")
        return versions[version] or self.database

    def resolve_store_handle(self, version: Optional[str] = None) -> StoreHandle:
        """Bind a named graph version to a StoreHandle.

        Versions are separate databases, so generated queries are executed
        verbatim; no label rewriting.
        """
        version = version or "base"
        return StoreHandle(self, self.database_for_version(version), version)


# Process-wide driver holder; handles are request-scoped.
db = Neo4jConnection()

"""Memgraph implementation of GraphProvider, over the neo4j Bolt driver."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from datetime import time as dt_time
from typing import Any, Callable

from neo4j.exceptions import ServiceUnavailable, SessionExpired
from neo4j.graph import Node, Path, Relationship

from kgm.core.decay import build_gc_query
from kgm.core.errors import TransientStoreError
from kgm.graph import cypher as q
from kgm.graph.config import MemgraphConfig
from kgm.graph.interface import (
    Actor,
    EdgeRef,
    GraphProvider,
    NodeRef,
    SchemaSnapshot,
    SearchResult,
)

logger = logging.getLogger(__name__)

RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY = 0.150  # seconds, multiplied by the attempt number

DEFAULT_GC_MIN_WEIGHT = 0.01
DEFAULT_GC_MAX_NODES = 5000

MAX_SAFE_INTEGER = 2**53 - 1

_RETRYABLE_FRAGMENTS = ("connection", "service unavailable", "session expired", "terminated")

# Labels written by KGM itself; ensure_schema indexes their identity properties.
KNOWN_LABELS = (
    "ContextSet",
    "ContextItem",
    "GraphSchema",
    "Scope",
    "AgentDoc",
    "Session",
    "Message",
    "Agent",
    "Skill",
    "Node",
    "ConfigSnapshot",
    "AuditEvent",
)


def is_retryable_error(exc: BaseException) -> bool:
    """Transient connectivity failures worth another attempt."""
    if isinstance(exc, (ServiceUnavailable, SessionExpired)):
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _RETRYABLE_FRAGMENTS)


def is_existing_schema_error(exc: BaseException) -> bool:
    """Index/constraint statements that failed only because they already hold."""
    message = str(exc).lower()
    if "already exists" in message:
        return True
    return "unique constraint violation" in message


def normalize_value(value: Any) -> Any:
    """Convert driver values into plain JSON-compatible Python values."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
            return value
        return str(value)
    if isinstance(value, (Node, Relationship)):
        return {k: normalize_value(v) for k, v in value.items()}
    if isinstance(value, Path):
        return [normalize_value(node) for node in value.nodes]
    if isinstance(value, dict):
        return {k: normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_value(v) for v in value]
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    iso_format = getattr(value, "iso_format", None)
    if callable(iso_format):
        # neo4j.time.Date / DateTime / Time / Duration
        return iso_format()
    return value


def normalize_rows(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [normalize_value(row) for row in rows]


class MemgraphGraphProvider(GraphProvider):
    """Knowledge graph backed by Memgraph.

    The driver is created lazily on first use and shared by all threads; each
    query runs in its own write session and is retried on transient failures.
    """

    id = "memgraph"

    def __init__(
        self,
        config: MemgraphConfig,
        driver=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], int] | None = None,
    ):
        self.config = config
        self._driver = driver
        self._sleep = sleep
        self._clock = clock or (lambda: int(time.time() * 1000))

    def connect(self) -> None:
        """Open the driver."""
        if self._driver is not None:
            return
        from neo4j import GraphDatabase

        url = self.config.url.strip() or "bolt://127.0.0.1:7687"
        user = self.config.user.strip()
        auth = (user, self.config.password.strip()) if user else None
        self._driver = GraphDatabase.driver(
            url,
            auth=auth,
            max_connection_pool_size=self.config.max_pool_size,
            connection_timeout=self.config.timeout_ms / 1000,
        )
        logger.info("Memgraph driver created for %s", url)

    def close(self) -> None:
        """Close the driver."""
        if self._driver:
            self._driver.close()
            self._driver = None

    def _session(self, database: str | None = None):
        from neo4j import WRITE_ACCESS

        if self._driver is None:
            self.connect()
        db = (database or self.config.database or "").strip() or None
        return self._driver.session(database=db, default_access_mode=WRITE_ACCESS)

    def _run(
        self,
        cypher: str,
        params: dict[str, Any] | None = None,
        database: str | None = None,
    ) -> list[dict[str, Any]]:
        last_error: Exception | None = None
        for attempt in range(1, RETRY_ATTEMPTS + 1):
            try:
                with self._session(database) as session:
                    result = session.run(cypher, params or {})
                    rows = [dict(record.items()) for record in result]
                return normalize_rows(rows)
            except Exception as e:
                if not is_retryable_error(e):
                    raise
                last_error = e
                logger.debug("Retryable Memgraph error (attempt %d/%d): %s", attempt, RETRY_ATTEMPTS, e)
                if attempt < RETRY_ATTEMPTS:
                    self._sleep(RETRY_BASE_DELAY * attempt)
        raise TransientStoreError(f"graph store unavailable: {last_error}") from last_error

    def query(
        self,
        actor: Actor,
        scope: str,
        cypher: str,
        params: dict[str, Any] | None = None,
        database: str | None = None,
    ) -> list[dict[str, Any]]:
        return self._run(cypher, params, database)

    def ensure_schema(self, actor: Actor, scope: str) -> None:
        """Create key/scope indexes for KGM labels. Idempotent."""
        for label in KNOWN_LABELS:
            for prop in ("key", "scope"):
                stmt = f"CREATE INDEX ON :{q.identifier(label)}({prop})"
                try:
                    self._run(stmt)
                except TransientStoreError:
                    raise
                except Exception as e:
                    if not is_existing_schema_error(e):
                        raise
                    logger.debug("Schema statement skipped: %s (%s)", stmt, e)

    def upsert_node(
        self,
        actor: Actor,
        scope: str,
        label: str,
        key: str,
        properties: dict[str, Any] | None = None,
    ) -> NodeRef:
        self._run(
            q.upsert_node_query(label),
            {"key": key, "scope": scope, "props": q.writable_props(properties), "now": self._clock()},
        )
        return NodeRef(key=key, label=label)

    def upsert_edge(
        self,
        actor: Actor,
        scope: str,
        edge_type: str,
        from_ref: NodeRef,
        to_ref: NodeRef,
        properties: dict[str, Any] | None = None,
    ) -> EdgeRef:
        self._run(
            q.upsert_edge_query(edge_type, from_ref.label, to_ref.label),
            {
                "fromKey": from_ref.key,
                "toKey": to_ref.key,
                "scope": scope,
                "props": q.writable_props(properties),
                "now": self._clock(),
            },
        )
        return EdgeRef(type=edge_type)

    def search(
        self,
        actor: Actor,
        scope: str,
        query: str,
        limit: int | float | None = None,
    ) -> list[SearchResult]:
        rows = self._run(q.search_query(limit), {"scope": scope, "query": query})
        results = []
        for row in rows:
            key = row.get("key")
            label = row.get("label")
            props = row.get("properties")
            results.append(SearchResult(
                key=key if isinstance(key, str) else str(key or ""),
                label=label if isinstance(label, str) else str(label or ""),
                properties=props if isinstance(props, dict) else None,
            ))
        return results

    def touch(
        self,
        actor: Actor,
        scope: str,
        keys: list[str],
        now: int | None = None,
    ) -> None:
        keys = [k for k in keys if isinstance(k, str) and k.strip()]
        if not keys:
            return
        self._run(
            q.TOUCH_QUERY,
            {"scope": scope, "keys": keys, "now": self._clock() if now is None else now},
        )

    def gc(
        self,
        actor: Actor,
        scope: str,
        min_weight: float | None = None,
        max_nodes: int | None = None,
        now: int | None = None,
    ) -> dict:
        cypher, params = build_gc_query(
            scope,
            DEFAULT_GC_MIN_WEIGHT if min_weight is None else min_weight,
            DEFAULT_GC_MAX_NODES if max_nodes is None else max_nodes,
        )
        rows = self._run(cypher, params)
        removed = rows[0].get("removed") if rows else 0
        try:
            removed = int(removed or 0)
        except (TypeError, ValueError):
            removed = 0
        return {"removed": removed}

    def describe_schema(self, actor: Actor, scope: str) -> SchemaSnapshot:
        try:
            rows = self._run("SHOW SCHEMA INFO")
        except Exception as e:
            logger.debug("SHOW SCHEMA INFO failed: %s", e)
            return SchemaSnapshot(observed={"error": str(e)})
        return SchemaSnapshot(observed={"rows": rows})

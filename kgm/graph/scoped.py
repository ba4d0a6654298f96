"""Scope-enforcing wrapper around any GraphProvider."""

from __future__ import annotations

from typing import Any

from kgm.core.errors import ScopeNotAllowed
from kgm.core.rbac import is_scope_allowed
from kgm.graph.interface import (
    Actor,
    EdgeRef,
    GraphProvider,
    NodeRef,
    SchemaSnapshot,
    SearchResult,
)


class ScopedGraphProvider(GraphProvider):
    """Checks ``is_scope_allowed`` before every call and only then delegates."""

    def __init__(self, inner: GraphProvider):
        self.inner = inner
        self.id = inner.id

    def _check(self, actor: Actor, scope: str) -> None:
        if not is_scope_allowed(actor, scope):
            raise ScopeNotAllowed()

    def connect(self) -> None:
        self.inner.connect()

    def close(self) -> None:
        self.inner.close()

    def query(
        self,
        actor: Actor,
        scope: str,
        cypher: str,
        params: dict[str, Any] | None = None,
        database: str | None = None,
    ) -> list[dict[str, Any]]:
        self._check(actor, scope)
        return self.inner.query(actor, scope, cypher, params, database)

    def ensure_schema(self, actor: Actor, scope: str) -> None:
        self._check(actor, scope)
        self.inner.ensure_schema(actor, scope)

    def upsert_node(self, actor, scope, label, key, properties=None) -> NodeRef:
        self._check(actor, scope)
        return self.inner.upsert_node(actor, scope, label, key, properties)

    def upsert_edge(self, actor, scope, edge_type, from_ref, to_ref, properties=None) -> EdgeRef:
        self._check(actor, scope)
        return self.inner.upsert_edge(actor, scope, edge_type, from_ref, to_ref, properties)

    def search(self, actor, scope, query, limit=None) -> list[SearchResult]:
        self._check(actor, scope)
        return self.inner.search(actor, scope, query, limit)

    def touch(self, actor, scope, keys, now=None) -> None:
        self._check(actor, scope)
        self.inner.touch(actor, scope, keys, now)

    def gc(self, actor, scope, min_weight=None, max_nodes=None, now=None) -> dict:
        self._check(actor, scope)
        return self.inner.gc(actor, scope, min_weight, max_nodes, now)

    def describe_schema(self, actor, scope) -> SchemaSnapshot:
        self._check(actor, scope)
        return self.inner.describe_schema(actor, scope)

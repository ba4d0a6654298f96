"""Shared test helpers for KGM tests."""

import re

from kgm.config import Config, KgmSettings
from kgm.graph.interface import EdgeRef, GraphProvider, NodeRef, SchemaSnapshot, SearchResult


def kgm_config(tmp_path=None, mode="fs+kgm", enabled=True, **kw) -> Config:
    """Config with KGM enabled and state under ``tmp_path``."""
    extra = {"state_dir": str(tmp_path)} if tmp_path is not None else {}
    extra.update(kw)
    return Config(kgm=KgmSettings(enabled=enabled, mode=mode), **extra)


class FakeGraph(GraphProvider):
    """In-memory provider.

    Keeps nodes and edges in dicts and understands the context-set queries,
    so context tests exercise real semantics. Other queries return the rows
    registered in ``canned`` (first matching fragment wins) or nothing.
    """

    id = "fake"

    def __init__(self, canned=None):
        self.nodes = {}     # (scope, key) -> props incl. "label"
        self.edges = []     # dicts with scope/type/from/to
        self.queries = []   # (actor, scope, cypher, params)
        self.canned = dict(canned or {})
        self.touched = []
        self.gc_calls = []
        self.schema_calls = []
        self.closed = False

    def close(self):
        self.closed = True

    def cyphers(self):
        return [q[2] for q in self.queries]

    # -- raw queries ---------------------------------------------------------

    def query(self, actor, scope, cypher, params=None, database=None):
        params = params or {}
        self.queries.append((actor, scope, cypher, params))
        for fragment, result in self.canned.items():
            if fragment in cypher:
                if isinstance(result, Exception):
                    raise result
                return result(cypher, params) if callable(result) else [dict(r) for r in result]

        if cypher.startswith("MERGE (cs:ContextSet"):
            node = self.nodes.setdefault((scope, params["contextKey"]), {
                "label": "ContextSet", "key": params["contextKey"], "scope": scope,
            })
            node.update(updatedAt=params["now"], agentId=params["agentId"])
            return []
        if cypher.startswith("UNWIND $items"):
            kind = re.search(r"ci.kind = '(\w+)'", cypher).group(1)
            for item in params["items"]:
                existing = self.nodes.get((scope, item["key"]))
                created = existing["createdAt"] if existing else params["now"]
                self.nodes[(scope, item["key"])] = {
                    "label": "ContextItem", "key": item["key"], "scope": scope,
                    "kind": kind, "refType": kind, "refKey": item["refKey"],
                    "createdAt": created, "updatedAt": params["now"],
                }
                edge = {"scope": scope, "type": "INCLUDES", "from": params["contextKey"], "to": item["key"]}
                if edge not in self.edges:
                    self.edges.append(edge)
            return []
        if cypher.startswith("UNWIND $keys"):
            for key in params["keys"]:
                if self.nodes.pop((scope, key), None) is not None:
                    self.edges = [e for e in self.edges if key not in (e["from"], e["to"])]
            return []
        if "-[:INCLUDES]->(ci:ContextItem" in cypher:
            return self._context_items(scope, cypher, params)
        if cypher.startswith("MATCH (m:Message"):
            return [
                {k: n.get(k) for k in ("key", "preview", "role", "sessionKey", "sessionId", "entryId")}
                for (s, key), n in self.nodes.items()
                if s == scope and n["label"] == "Message" and key in params["keys"]
            ]
        return []

    def _context_items(self, scope, cypher, params):
        included = [e["to"] for e in self.edges
                    if e["scope"] == scope and e["type"] == "INCLUDES" and e["from"] == params["contextKey"]]
        items = [self.nodes[(scope, key)] for key in included if (scope, key) in self.nodes]
        kind = re.search(r"kind: '(\w+)'", cypher)
        if kind:
            items = [i for i in items if i["kind"] == kind.group(1)]
        items.sort(key=lambda i: i["createdAt"], reverse=True)
        limit = re.search(r"LIMIT (\d+)", cypher)
        if limit:
            items = items[: int(limit.group(1))]
        if kind:
            return [{"refKey": i["refKey"], "createdAt": i["createdAt"]} for i in items]
        return [{k: i[k] for k in ("key", "kind", "refType", "refKey", "createdAt")} for i in items]

    # -- typed operations ----------------------------------------------------

    def ensure_schema(self, actor, scope):
        self.schema_calls.append((actor, scope))

    def upsert_node(self, actor, scope, label, key, properties=None):
        node = self.nodes.setdefault((scope, key), {"key": key, "scope": scope})
        node.update(properties or {})
        node["label"] = label
        return NodeRef(key=key, label=label)

    def upsert_edge(self, actor, scope, edge_type, from_ref, to_ref, properties=None):
        edge = {"scope": scope, "type": edge_type, "from": from_ref.key, "to": to_ref.key}
        if edge not in self.edges:
            self.edges.append(edge)
        return EdgeRef(type=edge_type)

    def search(self, actor, scope, query, limit=None):
        return [
            SearchResult(key=key, label=n["label"], properties=n)
            for (s, key), n in self.nodes.items() if s == scope and query in key
        ]

    def touch(self, actor, scope, keys, now=None):
        self.touched.append((scope, list(keys), now))

    def gc(self, actor, scope, min_weight=None, max_nodes=None, now=None):
        self.gc_calls.append((scope, min_weight, max_nodes))
        return {"removed": 0}

    def describe_schema(self, actor, scope):
        return SchemaSnapshot(observed={"rows": []})


class ExplodingGraph(FakeGraph):
    """Every write and query fails."""

    def query(self, actor, scope, cypher, params=None, database=None):
        raise ConnectionError("graph is down")

    def upsert_node(self, actor, scope, label, key, properties=None):
        raise ConnectionError("graph is down")

    def upsert_edge(self, actor, scope, edge_type, from_ref, to_ref, properties=None):
        raise ConnectionError("graph is down")

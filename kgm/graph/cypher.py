"""Cypher builders for the KGM provider.

Values always travel as bound parameters, with two exceptions kept here so
they can be reviewed in one place:

* Labels and relationship types cannot be parameterized in Cypher. They are
  interpolated only after passing ``identifier()``.
* Memgraph requires ``LIMIT`` to be an integer literal. ``limit_clause()``
  clamps the value to a positive ``int`` before embedding it.
"""

from __future__ import annotations

import math
import re

from kgm.core.errors import InvalidRequest

DEFAULT_SEARCH_LIMIT = 20

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def identifier(name: str, kind: str = "label") -> str:
    """Validate a label or relationship type for interpolation."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise InvalidRequest(f"invalid {kind}: {name!r}")
    return name


def clamp_limit(value: int | float | None, default: int) -> int:
    """Floor to an integer, minimum 1. None or non-finite values use ``default``."""
    if value is None or isinstance(value, bool):
        return max(1, int(default))
    try:
        number = float(value)
    except (TypeError, ValueError):
        return max(1, int(default))
    if not math.isfinite(number):
        return max(1, int(default))
    return max(1, math.floor(number))


def limit_clause(value: int | float | None, default: int) -> str:
    return f"LIMIT {clamp_limit(value, default)}"


# Identity of every node and edge; callers never overwrite these through properties.
RESERVED_PROPERTIES = frozenset({"key", "scope"})


def writable_props(properties: dict | None) -> dict:
    """Copy of ``properties`` without the reserved identity keys."""
    return {k: v for k, v in (properties or {}).items() if k not in RESERVED_PROPERTIES}


def upsert_node_query(label: str) -> str:
    label = identifier(label)
    return (
        f"MERGE (n:{label} {{ key: $key, scope: $scope }}) "
        "SET n += $props, n.updatedAt = $now "
        "RETURN n.key AS key"
    )


def upsert_edge_query(edge_type: str, from_label: str, to_label: str) -> str:
    edge_type = identifier(edge_type, "edge type")
    from_label = identifier(from_label)
    to_label = identifier(to_label)
    return (
        f"MATCH (a:{from_label} {{ key: $fromKey, scope: $scope }}) "
        f"MATCH (b:{to_label} {{ key: $toKey, scope: $scope }}) "
        f"MERGE (a)-[r:{edge_type} {{ scope: $scope }}]->(b) "
        "SET r += $props, r.updatedAt = $now "
        "RETURN type(r) AS type"
    )


def search_query(limit: int | float | None) -> str:
    # Memgraph dialect: IS NOT NULL rather than exists()
    return (
        "MATCH (n { scope: $scope }) "
        "WHERE (n.key CONTAINS $query) OR (n.label IS NOT NULL AND n.label CONTAINS $query) "
        "RETURN n.key AS key, labels(n)[0] AS label, n AS properties "
        + limit_clause(limit, DEFAULT_SEARCH_LIMIT)
    )


TOUCH_QUERY = (
    "MATCH (n { scope: $scope }) WHERE n.key IN $keys "
    "SET n.lastAccessAt = $now, n.accessCount = coalesce(n.accessCount, 0) + 1"
)

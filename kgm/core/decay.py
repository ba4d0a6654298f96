"""Memory decay and garbage collection.

A node's weight rewards access frequency logarithmically and decays
exponentially with time since the last access:

    weight = ln(1 + accessCount) * exp(-age / halfLifeMs)

GC deletes unpinned nodes whose stored ``weight`` (0 when absent) falls
below ``minWeight``. ``refresh_weights`` recomputes the stored weight of
accessed nodes so GC acts on current decay.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from kgm.graph.cypher import limit_clause

if TYPE_CHECKING:
    from kgm.graph.interface import Actor, GraphProvider

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class DecaySettings:
    half_life_ms: int = 14 * DAY_MS
    min_weight: float = 0.01
    max_nodes_per_scope: int = 50_000


DEFAULT_DECAY = DecaySettings()


def now_ms() -> int:
    return int(time.time() * 1000)


def compute_weight(
    access_count: float | None,
    last_access_at: float | None,
    now: float | None = None,
    half_life_ms: float | None = None,
) -> float:
    """Decay weight of a node. Zero for nodes that were never accessed."""
    now = now_ms() if now is None else now
    half_life = DEFAULT_DECAY.half_life_ms if half_life_ms is None else half_life_ms
    count = max(0.0, access_count or 0)
    last = max(0.0, last_access_at or 0)
    if not last or not half_life:
        return 0.0
    age = max(0.0, now - last)
    return math.log1p(count) * math.exp(-age / half_life)


def build_gc_query(scope: str, min_weight: float, max_nodes: int) -> tuple[str, dict]:
    """Bounded, pin-respecting delete for one scope."""
    cypher = (
        "MATCH (n { scope: $scope }) "
        "WHERE coalesce(n.weight, 0) < $minWeight AND coalesce(n.pinnedAt, 0) = 0 "
        f"WITH n {limit_clause(max_nodes, DEFAULT_DECAY.max_nodes_per_scope)} "
        "DETACH DELETE n "
        "RETURN count(*) AS removed"
    )
    return cypher, {"scope": scope, "minWeight": min_weight}


def refresh_weights(
    provider: GraphProvider,
    actor: Actor,
    scope: str,
    now: int | None = None,
    half_life_ms: int | None = None,
    max_nodes: int | None = None,
) -> int:
    """Recompute ``weight`` for accessed nodes in ``scope``. Returns the count updated."""
    now = now_ms() if now is None else now
    rows = provider.query(
        actor,
        scope,
        "MATCH (n { scope: $scope }) WHERE n.lastAccessAt IS NOT NULL "
        "RETURN n.key AS key, labels(n)[0] AS label, "
        "n.accessCount AS accessCount, n.lastAccessAt AS lastAccessAt "
        + limit_clause(max_nodes, DEFAULT_DECAY.max_nodes_per_scope),
        {"scope": scope},
    )
    updates = []
    for row in rows:
        key = row.get("key")
        if not isinstance(key, str) or not key:
            continue
        weight = compute_weight(
            _as_number(row.get("accessCount")),
            _as_number(row.get("lastAccessAt")),
            now=now,
            half_life_ms=half_life_ms,
        )
        updates.append({"key": key, "label": row.get("label"), "weight": weight})

    if not updates:
        return 0

    provider.query(
        actor,
        scope,
        "UNWIND $updates AS u "
        "MATCH (n { scope: $scope, key: u.key }) WHERE labels(n)[0] = u.label "
        "SET n.weight = u.weight",
        {"scope": scope, "updates": updates},
    )
    logger.debug("Refreshed %d node weights in %s", len(updates), scope)
    return len(updates)


def _as_number(value) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0

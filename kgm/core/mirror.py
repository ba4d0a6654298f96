"""Mirror platform entities (agents, skills, devices) into the admin scope.

Mirroring is active in every mode except ``fs-only``; reading back is only
used in ``kgm-primary`` mode. Everything here is best-effort and reports
through ``Outcome``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from kgm.core.outcome import Outcome
from kgm.core.rbac import resolve_admin_scope
from kgm.graph.interface import Actor

if TYPE_CHECKING:
    from kgm.config import KgmSettings
    from kgm.graph.interface import GraphProvider

logger = logging.getLogger(__name__)

READ_AGENTS_QUERY = (
    "MATCH (a:Agent { scope: $scope }) "
    "RETURN a.id AS id, a.name AS name, a.identity AS identity "
    "ORDER BY a.id"
)
READ_NODES_QUERY = "MATCH (n:Node { scope: $scope }) RETURN n AS node"

NODE_STRING_FIELDS = (
    "displayName", "platform", "version", "coreVersion", "uiVersion",
    "deviceFamily", "modelIdentifier", "remoteIp",
)


def _now() -> int:
    return int(time.time() * 1000)


def _mirror(settings: KgmSettings, provider: GraphProvider | None, label: str, nodes: list[tuple[str, dict]]) -> Outcome:
    if not settings.mirrors:
        return Outcome.skip("fs-only")
    if provider is None:
        return Outcome.skip("no provider")
    scope = resolve_admin_scope()
    actor = Actor.system()
    try:
        for key, props in nodes:
            provider.upsert_node(actor, scope, label, key, props)
    except Exception as e:
        return Outcome.failure(e, f"{label.lower()} mirror failed: {e}")
    return Outcome.success(len(nodes))


def mirror_agents(settings: KgmSettings, agents: list[dict], provider: GraphProvider | None = None) -> Outcome:
    now = _now()
    nodes = []
    for agent in agents:
        agent_id = str(agent.get("id") or "").strip()
        if not agent_id:
            continue
        nodes.append((f"agent:{agent_id}", {
            "id": agent_id,
            "name": agent.get("name"),
            "identity": agent.get("identity"),
            "updatedAt": now,
        }))
    return _mirror(settings, provider, "Agent", nodes)


def mirror_skills(
    settings: KgmSettings,
    agent_id: str,
    skills: list[dict],
    provider: GraphProvider | None = None,
) -> Outcome:
    now = _now()
    nodes = []
    for skill in skills:
        key = str(skill.get("skillKey") or "").strip() or str(skill.get("name") or "").strip()
        if not key:
            continue
        nodes.append((f"skill:{key}", {
            "id": key,
            "name": skill.get("name"),
            "skillKey": skill.get("skillKey"),
            "source": skill.get("source"),
            "agentId": agent_id,
            "primaryEnv": skill.get("primaryEnv"),
            "emoji": skill.get("emoji"),
            "homepage": skill.get("homepage"),
            "disabled": skill.get("disabled"),
            "eligible": skill.get("eligible"),
            "updatedAt": now,
        }))
    return _mirror(settings, provider, "Skill", nodes)


def mirror_nodes(settings: KgmSettings, devices: list[dict], provider: GraphProvider | None = None) -> Outcome:
    """Mirror paired device nodes (keyed ``node:<id>``)."""
    now = _now()
    nodes = []
    for device in devices:
        node_id = str(device.get("nodeId") or "").strip()
        if not node_id:
            continue
        props: dict[str, Any] = {"id": node_id}
        for name in NODE_STRING_FIELDS:
            props[name] = device.get(name)
        props.update({
            "caps": device.get("caps") or [],
            "commands": device.get("commands") or [],
            "connectedAtMs": device.get("connectedAtMs"),
            "paired": device.get("paired"),
            "connected": device.get("connected"),
            "lastSeenAt": now,
            "updatedAt": now,
        })
        nodes.append((f"node:{node_id}", props))
    return _mirror(settings, provider, "Node", nodes)


def _read(settings: KgmSettings, provider: GraphProvider | None, cypher: str) -> Outcome:
    if not settings.reads_from_graph:
        return Outcome.skip("not kgm-primary")
    if provider is None:
        return Outcome.skip("no provider")
    scope = resolve_admin_scope()
    try:
        return Outcome.success(provider.query(Actor.system(), scope, cypher, {"scope": scope}))
    except Exception as e:
        return Outcome.failure(e, f"read failed: {e}")


def read_agents(settings: KgmSettings, provider: GraphProvider | None = None) -> Outcome:
    """Agents from the graph; ``value`` is None when there are none."""
    outcome = _read(settings, provider, READ_AGENTS_QUERY)
    if not outcome.ok or outcome.skipped:
        return outcome
    agents = []
    for row in outcome.value:
        agent_id = str(row.get("id") or "").strip()
        if not agent_id:
            continue
        agents.append({
            "id": agent_id,
            "name": row["name"] if isinstance(row.get("name"), str) else None,
            "identity": row["identity"] if isinstance(row.get("identity"), dict) else None,
        })
    return Outcome.success(agents or None)


def _device_from_props(node: Any) -> dict | None:
    if not isinstance(node, dict):
        return None
    node_id = node["id"] if isinstance(node.get("id"), str) else str(node.get("key") or "")
    if not node_id:
        return None
    entry: dict[str, Any] = {"nodeId": node_id}
    for name in NODE_STRING_FIELDS + ("pathEnv",):
        entry[name] = node[name] if isinstance(node.get(name), str) else None
    entry["caps"] = node["caps"] if isinstance(node.get("caps"), list) else []
    entry["commands"] = node["commands"] if isinstance(node.get("commands"), list) else []
    entry["permissions"] = node["permissions"] if isinstance(node.get("permissions"), list) else None
    connected_at = node.get("connectedAtMs")
    entry["connectedAtMs"] = connected_at if isinstance(connected_at, (int, float)) and not isinstance(connected_at, bool) else None
    entry["paired"] = node["paired"] if isinstance(node.get("paired"), bool) else None
    entry["connected"] = node["connected"] if isinstance(node.get("connected"), bool) else None
    return entry


def _node_sort_key(entry: dict) -> tuple:
    name = (entry.get("displayName") or entry["nodeId"]).lower()
    return (0 if entry.get("connected") else 1, name, entry["nodeId"])


def read_nodes(settings: KgmSettings, provider: GraphProvider | None = None) -> Outcome:
    """Devices from the graph, connected first, then by display name and id."""
    outcome = _read(settings, provider, READ_NODES_QUERY)
    if not outcome.ok or outcome.skipped:
        return outcome
    entries = [e for e in (_device_from_props(row.get("node")) for row in outcome.value) if e]
    if not entries:
        return Outcome.success(None)
    return Outcome.success(sorted(entries, key=_node_sort_key))

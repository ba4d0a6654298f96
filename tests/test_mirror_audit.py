"""Test entity mirrors, graph reads and config snapshots."""

from kgm.config import KgmSettings
from kgm.core.audit import config_hash, record_config_snapshot
from kgm.core.mirror import mirror_agents, mirror_nodes, mirror_skills, read_agents, read_nodes
from tests.helpers import ExplodingGraph, FakeGraph, kgm_config

MIRRORING = KgmSettings(enabled=True, mode="fs+kgm")
PRIMARY = KgmSettings(enabled=True, mode="kgm-primary")


# ── Mode gating ──────────────────────────────────────────────


def test_effective_modes():
    assert KgmSettings(enabled=False, mode="kgm-primary").effective_mode == "fs-only"
    assert not KgmSettings(enabled=False).mirrors
    assert MIRRORING.mirrors and not MIRRORING.reads_from_graph
    assert PRIMARY.mirrors and PRIMARY.reads_from_graph


def test_mirrors_skip_in_fs_only():
    graph = FakeGraph()
    settings = KgmSettings(enabled=True, mode="fs-only")
    assert mirror_agents(settings, [{"id": "a"}], graph).reason == "fs-only"
    assert mirror_skills(settings, "a", [{"name": "s"}], graph).skipped
    assert mirror_nodes(KgmSettings(enabled=False), [{"nodeId": "n"}], graph).skipped
    assert graph.nodes == {}


def test_mirrors_skip_without_provider():
    assert mirror_agents(MIRRORING, [{"id": "a"}], None).reason == "no provider"


def test_reads_only_in_kgm_primary():
    graph = FakeGraph(canned={"MATCH (a:Agent": [{"id": "a"}]})
    outcome = read_agents(MIRRORING, graph)
    assert outcome.skipped
    assert graph.queries == []


# ── Mirrors ──────────────────────────────────────────────────


def test_mirror_agents():
    graph = FakeGraph()
    outcome = mirror_agents(MIRRORING, [
        {"id": "main", "name": "Main", "identity": {"emoji": "x"}},
        {"id": "  "},
    ], graph)

    assert outcome.ok and outcome.value == 1
    node = graph.nodes[("admin", "agent:main")]
    assert node["label"] == "Agent"
    assert node["name"] == "Main"
    assert node["identity"] == {"emoji": "x"}


def test_mirror_skills_prefers_skill_key():
    graph = FakeGraph()
    mirror_skills(MIRRORING, "main", [
        {"name": "Weather", "skillKey": "weather", "eligible": True},
        {"name": "Notes"},
        {},
    ], graph)

    assert graph.nodes[("admin", "skill:weather")]["agentId"] == "main"
    assert graph.nodes[("admin", "skill:Notes")]["id"] == "Notes"
    assert len(graph.nodes) == 2


def test_mirror_nodes():
    graph = FakeGraph()
    mirror_nodes(MIRRORING, [{"nodeId": "phone", "displayName": "Phone", "connected": True}], graph)
    node = graph.nodes[("admin", "node:phone")]
    assert node["label"] == "Node"
    assert node["caps"] == []
    assert node["connected"] is True
    assert node["lastSeenAt"] == node["updatedAt"]


def test_mirror_failure_is_an_outcome():
    outcome = mirror_agents(MIRRORING, [{"id": "a"}], ExplodingGraph())
    assert not outcome.ok
    assert isinstance(outcome.error, ConnectionError)
    assert "agent mirror failed" in outcome.reason


# ── Reads ────────────────────────────────────────────────────


def test_read_agents():
    graph = FakeGraph(canned={"MATCH (a:Agent": [
        {"id": "a", "name": "A", "identity": "not a dict"},
        {"id": None, "name": "skip"},
    ]})
    outcome = read_agents(PRIMARY, graph)
    assert outcome.value == [{"id": "a", "name": "A", "identity": None}]
    assert graph.queries[0][1] == "admin"


def test_read_agents_empty_means_none():
    assert read_agents(PRIMARY, FakeGraph()).value is None


def test_read_nodes_sorted_connected_first():
    rows = [
        {"node": {"id": "b", "displayName": "beta", "connected": False}},
        {"node": {"id": "z", "displayName": "Zed", "connected": True}},
        {"node": {"id": "a", "displayName": "Alpha", "connected": True}},
        {"node": {"key": "node:c", "caps": ["camera"], "connectedAtMs": True}},
        {"node": "garbage"},
    ]
    outcome = read_nodes(PRIMARY, FakeGraph(canned={"MATCH (n:Node": rows}))
    assert [e["nodeId"] for e in outcome.value] == ["a", "z", "b", "node:c"]

    fallback = outcome.value[-1]
    assert fallback["caps"] == ["camera"]
    assert fallback["connectedAtMs"] is None
    assert fallback["pathEnv"] is None
    assert fallback["permissions"] is None


def test_read_failure_is_an_outcome():
    outcome = read_nodes(PRIMARY, ExplodingGraph())
    assert not outcome.ok


# ── Config snapshots ─────────────────────────────────────────


def test_config_hash():
    assert config_hash("") is None
    assert config_hash("{}") == config_hash("{}")
    assert len(config_hash("{}")) == 64


def test_snapshot_writes_config_and_audit_nodes():
    graph = FakeGraph()
    raw = '{"kgm": {"enabled": true}}'
    outcome = record_config_snapshot(kgm_config(), raw, "config.apply", session_key="agent:main:main", note="hi", provider=graph)

    assert outcome.ok
    key = outcome.value["key"]
    assert key == f"config:{config_hash(raw)}"
    snapshot = graph.nodes[("admin", key)]
    assert snapshot["label"] == "ConfigSnapshot"
    assert snapshot["source"] == "config.apply"
    assert snapshot["author"] == "agent:main:main"
    assert snapshot["size"] == len(raw)

    audit = graph.nodes[("admin", outcome.value["auditKey"])]
    assert audit["label"] == "AuditEvent"
    assert audit["actor"] == "agent:main:main"
    assert audit["target"] == "config"
    assert audit["meta"] == {"hash": config_hash(raw), "note": "hi"}


def test_snapshot_without_content_uses_timestamp_key():
    graph = FakeGraph()
    outcome = record_config_snapshot(kgm_config(), "", "config.patch", provider=graph)
    assert outcome.value["key"].startswith("config:")
    assert graph.nodes[("admin", outcome.value["auditKey"])]["actor"] == "system"


def test_snapshot_skips():
    assert record_config_snapshot(kgm_config(enabled=False), "{}", "x", provider=FakeGraph()).skipped
    assert record_config_snapshot(kgm_config(mode="fs-only"), "{}", "x", provider=FakeGraph()).skipped
    assert record_config_snapshot(kgm_config(), "{}", "x", provider=None).reason == "no provider"


def test_snapshot_failure_is_an_outcome():
    outcome = record_config_snapshot(kgm_config(), "{}", "x", provider=ExplodingGraph())
    assert not outcome.ok

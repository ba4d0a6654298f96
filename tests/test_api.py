"""Test the HTTP API with FastAPI's TestClient."""

import json
from dataclasses import replace

from fastapi.testclient import TestClient

from kgm import __version__
from kgm.api import create_api
from kgm.config import AuthConfig
from kgm.core.services import create_services
from kgm.graph.registry import ProviderRegistry
from tests.helpers import ExplodingGraph, FakeGraph, kgm_config


def _client(graph=None, config=None, tmp_path=None):
    graph = graph if graph is not None else FakeGraph()
    svc = create_services(config or kgm_config(tmp_path), ProviderRegistry(lambda settings: graph))
    return TestClient(create_api(svc)), svc, graph


# ── Status and method table ──────────────────────────────────


def test_status():
    client, _, _ = _client()
    resp = client.get("/status")
    assert resp.status_code == 200
    body = resp.json()
    assert body["connected"] is True
    assert body["version"] == __version__


def test_methods_listing():
    client, _, _ = _client()
    methods = client.get("/methods").json()["methods"]
    assert "kgm.agent.search" in methods


# ── RPC ──────────────────────────────────────────────────────


def test_rpc_success():
    client, _, graph = _client()
    resp = client.post("/rpc/kgm.agent.putNode", json={"sessionKey": "agent:a:main", "label": "Entity", "key": "k1"})
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "node": {"key": "k1", "label": "Entity"}}
    assert ("agent:a", "k1") in graph.nodes


def test_rpc_without_body():
    client, _, _ = _client()
    assert client.post("/rpc/kgm.admin.init").json() == {"ok": True}


def test_rpc_unknown_method_is_400():
    client, _, _ = _client()
    resp = client.post("/rpc/kgm.nope", json={})
    assert resp.status_code == 400
    assert resp.json() == {"ok": False, "error": {"code": "INVALID_REQUEST", "message": "unknown method: kgm.nope"}}


def test_rpc_scope_denied_is_403():
    client, _, _ = _client()
    resp = client.post("/rpc/kgm.agent.search", json={"sessionKey": "agent:a:main", "scope": "agent:b", "query": "x"})
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "SCOPE_NOT_ALLOWED"


def test_rpc_disabled_is_503():
    client, _, _ = _client(config=kgm_config(enabled=False))
    resp = client.post("/rpc/kgm.agent.search", json={"query": "x"})
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "UNAVAILABLE"


def test_rpc_unexpected_store_error_is_500():
    client = TestClient(
        create_api(create_services(kgm_config(), ProviderRegistry(lambda s: ExplodingGraph()))),
        raise_server_exceptions=False,
    )
    resp = client.post("/rpc/kgm.agent.putNode", json={"label": "Entity", "key": "k1"})
    assert resp.status_code == 500


# ── Platform hooks ───────────────────────────────────────────


def test_config_read_masks_secrets():
    config = replace(kgm_config(), auth=AuthConfig(api_key="secret"))
    client, _, _ = _client(config=config)
    values = client.get("/config").json()["values"]
    assert values["kgm.enabled"] is True
    assert values["auth.api_key"] != "secret"


def test_config_write_applies_and_snapshots():
    client, svc, graph = _client()
    raw = json.dumps({"kgm": {"enabled": True, "mode": "kgm-primary"}})
    resp = client.post("/config", json={"raw": raw, "reason": "config.patch"})

    assert resp.json() == {"ok": True, "mode": "kgm-primary"}
    assert svc.config.kgm.mode == "kgm-primary"
    assert svc.methods.config is svc.config
    labels = {n["label"] for n in graph.nodes.values()}
    assert labels == {"ConfigSnapshot", "AuditEvent"}


def test_config_write_rejects_bad_json():
    client, _, _ = _client()
    resp = client.post("/config", json={"raw": "[1, 2]"})
    assert resp.status_code == 400
    resp = client.post("/config", json={"raw": "{nope"})
    assert resp.status_code == 400


def test_config_write_rejects_bad_values():
    client, svc, _ = _client()
    before = svc.config
    resp = client.post("/config", json={"raw": '{"kgm": {"memgraph": {"timeoutMs": "soon"}}}'})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_REQUEST"
    assert "invalid config" in resp.json()["error"]["message"]
    assert svc.config is before


def test_mirror_and_read_agents():
    client, svc, graph = _client(config=kgm_config(mode="kgm-primary"))
    resp = client.post("/mirror/agents", json={"agents": [{"id": "main", "name": "Main"}]})
    assert resp.json() == {"ok": True, "skipped": False}

    graph.canned["MATCH (a:Agent"] = [{"id": "main", "name": "Main", "identity": None}]
    body = client.get("/agents").json()
    assert body == {"ok": True, "source": "kgm", "agents": [{"id": "main", "name": "Main", "identity": None}]}


def test_read_nodes_falls_back_to_fs():
    client, _, _ = _client()
    assert client.get("/nodes").json() == {"ok": True, "source": "fs", "nodes": []}


def test_mirror_skills_skipped_in_fs_only():
    client, _, _ = _client(config=kgm_config(mode="fs-only"))
    resp = client.post("/mirror/skills", json={"agent_id": "main", "skills": [{"name": "s"}]})
    assert resp.json() == {"ok": True, "skipped": True, "reason": "fs-only"}


def test_mirror_failure_reported_not_raised():
    client, _, _ = _client(ExplodingGraph())
    body = client.post("/mirror/nodes", json={"nodes": [{"nodeId": "n1"}]}).json()
    assert body["ok"] is False
    assert "node mirror failed" in body["reason"]


def test_transcript_update_schedules_ingest():
    client, svc, _ = _client()
    try:
        body = client.post("/transcripts", json={"session_file": "/s/agents/main/sessions/x.jsonl"}).json()
        assert body == {"ok": True, "pending": ["/s/agents/main/sessions/x.jsonl"]}
    finally:
        svc.close()


def test_transcript_update_ignored_when_disabled():
    client, _, _ = _client(config=kgm_config(enabled=False))
    body = client.post("/transcripts", json={"session_file": "/x.jsonl"}).json()
    assert body == {"ok": True, "pending": []}


# ── Auth ─────────────────────────────────────────────────────


def test_api_key_required_when_enabled():
    config = replace(kgm_config(), auth=AuthConfig(enabled=True, api_key="k"))
    client, _, _ = _client(config=config)

    resp = client.post("/rpc/kgm.admin.status")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "UNAUTHORIZED"

    assert client.post("/rpc/kgm.admin.status", headers={"X-API-Key": "k"}).status_code == 200
    # status stays open for health checks
    assert client.get("/status").status_code == 200

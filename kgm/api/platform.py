"""Platform hooks: config writes, transcript updates, entity mirrors."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from kgm.config import config_to_flat
from kgm.core.outcome import Outcome
from kgm.core.services import Services


class ConfigWriteBody(BaseModel):
    raw: str
    reason: str = "config.apply"
    session_key: str | None = None
    note: str | None = None


class TranscriptUpdateBody(BaseModel):
    session_file: str


class AgentsBody(BaseModel):
    agents: list[dict]


class SkillsBody(BaseModel):
    agent_id: str
    skills: list[dict]


class NodesBody(BaseModel):
    nodes: list[dict]


def _outcome(outcome: Outcome) -> dict:
    body = {"ok": outcome.ok, "skipped": outcome.skipped}
    if outcome.reason:
        body["reason"] = outcome.reason
    return body


def register_routes(router: APIRouter, svc: Services, **kw):

    @router.get("/config")
    def api_config():
        return {"ok": True, "values": config_to_flat(svc.config)}

    @router.post("/config")
    def api_config_write(body: ConfigWriteBody):
        config = svc.apply_config(body.raw, body.reason, session_key=body.session_key, note=body.note)
        return {"ok": True, "mode": config.kgm.effective_mode}

    @router.post("/transcripts")
    def api_transcript_update(body: TranscriptUpdateBody):
        svc.on_transcript_update(body.session_file)
        return {"ok": True, "pending": svc.ingest_scheduler.pending()}

    @router.post("/mirror/agents")
    def api_mirror_agents(body: AgentsBody):
        return _outcome(svc.mirror_agents(body.agents))

    @router.post("/mirror/skills")
    def api_mirror_skills(body: SkillsBody):
        return _outcome(svc.mirror_skills(body.agent_id, body.skills))

    @router.post("/mirror/nodes")
    def api_mirror_nodes(body: NodesBody):
        return _outcome(svc.mirror_nodes(body.nodes))

    @router.get("/agents")
    def api_agents():
        agents = svc.read_agents()
        return {"ok": True, "source": "kgm" if agents is not None else "fs", "agents": agents or []}

    @router.get("/nodes")
    def api_nodes():
        nodes = svc.read_nodes()
        return {"ok": True, "source": "kgm" if nodes is not None else "fs", "nodes": nodes or []}

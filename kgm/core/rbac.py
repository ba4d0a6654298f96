"""Scope derivation and access checks.

Scope is the only isolation mechanism: every node and edge carries a
``scope`` property, ``"admin"`` for platform data and ``"agent:<id>"`` for
per-agent data. Agents may only touch their own scope.
"""

from __future__ import annotations

import re

from kgm.core.errors import InvalidRequest, ScopeNotAllowed
from kgm.graph.interface import Actor, ActorRole

ADMIN_SCOPE = "admin"
AGENT_SCOPE_PREFIX = "agent:"
DEFAULT_AGENT_ID = "main"

_MAX_AGENT_ID_LENGTH = 64
_INVALID_AGENT_CHARS = re.compile(r"[^a-z0-9_-]+")


def normalize_agent_id(agent_id: str | None) -> str:
    """Canonical agent id: lowercase, ``[a-z0-9_-]`` only, never empty."""
    raw = (agent_id or "").strip().lower()
    if not raw:
        return DEFAULT_AGENT_ID
    cleaned = _INVALID_AGENT_CHARS.sub("-", raw).strip("-")[:_MAX_AGENT_ID_LENGTH]
    return cleaned or DEFAULT_AGENT_ID


def resolve_agent_scope(agent_id: str) -> str:
    return f"{AGENT_SCOPE_PREFIX}{normalize_agent_id(agent_id)}"


def resolve_admin_scope() -> str:
    return ADMIN_SCOPE


def agent_id_from_scope(scope: str | None) -> str | None:
    """Return the agent id of an ``agent:<id>`` scope, else None."""
    if not scope or not scope.startswith(AGENT_SCOPE_PREFIX):
        return None
    return scope.split(":")[1] or None


def resolve_agent_id_from_session_key(session_key: str | None) -> str:
    """Parse ``agent:<id>:<rest>`` session keys; other keys belong to the default agent."""
    parts = (session_key or "").strip().split(":")
    if len(parts) >= 3 and parts[0].lower() == "agent" and parts[1].strip():
        return normalize_agent_id(parts[1])
    return DEFAULT_AGENT_ID


def resolve_actor_scope(actor: Actor, requested_scope: str | None = None) -> str | None:
    """Explicit scope wins; otherwise operators get admin, agents their own scope."""
    if requested_scope and requested_scope.strip():
        return requested_scope.strip()
    if actor.role is ActorRole.OPERATOR:
        return resolve_admin_scope()
    if actor.agent_id:
        return resolve_agent_scope(actor.agent_id)
    return None


def is_scope_allowed(actor: Actor, scope: str) -> bool:
    if actor.role is ActorRole.OPERATOR or actor.role is ActorRole.SYSTEM:
        return True
    if actor.role is ActorRole.AGENT:
        if not actor.agent_id:
            return False
        return scope == resolve_agent_scope(actor.agent_id)
    raise ValueError(f"unknown actor role: {actor.role!r}")


def require_scope(actor: Actor, scope: str | None) -> str:
    """Return ``scope`` if present and allowed for ``actor``; raise otherwise."""
    if not scope:
        raise InvalidRequest("scope required")
    if not is_scope_allowed(actor, scope):
        raise ScopeNotAllowed()
    return scope

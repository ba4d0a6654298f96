"""Test scope derivation and access checks."""

import pytest

from kgm.core.errors import InvalidRequest, ScopeNotAllowed
from kgm.core.rbac import (
    agent_id_from_scope,
    is_scope_allowed,
    normalize_agent_id,
    require_scope,
    resolve_actor_scope,
    resolve_admin_scope,
    resolve_agent_id_from_session_key,
    resolve_agent_scope,
)
from kgm.graph.interface import Actor


# ── Agent ids and scopes ─────────────────────────────────────


def test_normalize_agent_id():
    assert normalize_agent_id("Main") == "main"
    assert normalize_agent_id("  Ops Bot ") == "ops-bot"
    assert normalize_agent_id("a/b\\c") == "a-b-c"
    assert normalize_agent_id("--x--") == "x"


def test_normalize_agent_id_empty_defaults_to_main():
    assert normalize_agent_id("") == "main"
    assert normalize_agent_id(None) == "main"
    assert normalize_agent_id("///") == "main"


def test_normalize_agent_id_caps_length():
    assert len(normalize_agent_id("a" * 200)) == 64


def test_resolve_agent_scope():
    assert resolve_agent_scope("Research") == "agent:research"
    assert resolve_admin_scope() == "admin"


def test_agent_id_from_scope():
    assert agent_id_from_scope("agent:main") == "main"
    assert agent_id_from_scope("admin") is None
    assert agent_id_from_scope(None) is None


def test_agent_id_from_session_key():
    assert resolve_agent_id_from_session_key("agent:Ops:telegram:dm:42") == "ops"
    assert resolve_agent_id_from_session_key("agent:main:main") == "main"
    assert resolve_agent_id_from_session_key("global") == "main"
    assert resolve_agent_id_from_session_key("agent:x") == "main"
    assert resolve_agent_id_from_session_key(None) == "main"


# ── Actor scope resolution ───────────────────────────────────


def test_explicit_scope_wins():
    actor = Actor.agent("ops")
    assert resolve_actor_scope(actor, "  agent:other ") == "agent:other"


def test_operator_defaults_to_admin():
    assert resolve_actor_scope(Actor.operator()) == "admin"
    assert resolve_actor_scope(Actor.operator(), "   ") == "admin"


def test_agent_defaults_to_own_scope():
    assert resolve_actor_scope(Actor.agent("Ops")) == "agent:ops"


def test_system_without_agent_has_no_scope():
    assert resolve_actor_scope(Actor.system()) is None


# ── Allow checks ─────────────────────────────────────────────


def test_operator_and_system_allowed_everywhere():
    for actor in (Actor.operator(), Actor.system()):
        assert is_scope_allowed(actor, "admin")
        assert is_scope_allowed(actor, "agent:anyone")


def test_agent_only_allowed_own_scope():
    actor = Actor.agent("a")
    assert is_scope_allowed(actor, "agent:a")
    assert not is_scope_allowed(actor, "agent:b")
    assert not is_scope_allowed(actor, "admin")


def test_agent_without_id_denied():
    actor = Actor(role=Actor.agent("x").role, agent_id=None)
    assert not is_scope_allowed(actor, "agent:main")


def test_require_scope_missing():
    with pytest.raises(InvalidRequest, match="scope required"):
        require_scope(Actor.system(), None)


def test_require_scope_denied():
    with pytest.raises(ScopeNotAllowed) as exc:
        require_scope(Actor.agent("a"), "agent:b")
    assert exc.value.code == "SCOPE_NOT_ALLOWED"
    assert exc.value.message == "scope not allowed"


def test_require_scope_allowed_returns_scope():
    assert require_scope(Actor.agent("a"), "agent:a") == "agent:a"

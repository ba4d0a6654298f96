"""The kgm.* method table.

Each method validates its params with a pydantic model (camelCase on the
wire), resolves the actor and scope, enforces RBAC and calls into the
provider, schema registry or context manager. Results are plain dicts with
``ok: True``; failures raise ``KgmError`` subclasses.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Annotated, Any, Callable

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from kgm.core.context import ContextManager
from kgm.core.decay import refresh_weights
from kgm.core.errors import InvalidRequest, ScopeNotAllowed
from kgm.core.rbac import (
    AGENT_SCOPE_PREFIX,
    is_scope_allowed,
    require_scope,
    resolve_actor_scope,
    resolve_admin_scope,
    resolve_agent_id_from_session_key,
)
from kgm.core.schema import SchemaRegistry
from kgm.graph.cypher import RESERVED_PROPERTIES
from kgm.graph.interface import Actor, NodeRef

if TYPE_CHECKING:
    from kgm.config import Config
    from kgm.graph.registry import ProviderRegistry

logger = logging.getLogger(__name__)

GET_NODE_QUERY = (
    "MATCH (n { scope: $scope, key: $key }) "
    "RETURN labels(n)[0] AS label, n AS node LIMIT 1"
)
PIN_QUERY = (
    "MATCH (n { scope: $scope, key: $key }) "
    "SET n.pinnedAt = $pinnedAt RETURN n.key AS key"
)
PING_QUERY = "RETURN 1 as ping"


# -- param models ------------------------------------------------------------


def _no_identity_keys(value: dict[str, Any] | None) -> dict[str, Any] | None:
    reserved = sorted(RESERVED_PROPERTIES.intersection(value or {}))
    if reserved:
        raise ValueError(f"properties may not set {', '.join(reserved)}")
    return value


Properties = Annotated[dict[str, Any] | None, AfterValidator(_no_identity_keys)]


class Params(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ScopedParams(Params):
    session_key: str | None = None
    scope: str | None = None


class EnsureAgentParams(Params):
    agent_id: str = Field(min_length=1)


class SearchParams(ScopedParams):
    query: str
    limit: float | None = None


class GetParams(ScopedParams):
    key: str = Field(min_length=1)


class PutNodeParams(ScopedParams):
    label: str = Field(min_length=1)
    key: str = Field(min_length=1)
    properties: Properties = None


class PutEdgeParams(ScopedParams):
    edge_type: str = Field(alias="type", min_length=1)
    from_key: str = Field(min_length=1)
    from_label: str = Field(min_length=1)
    to_key: str = Field(min_length=1)
    to_label: str = Field(min_length=1)
    properties: Properties = None


class PinParams(ScopedParams):
    key: str = Field(min_length=1)
    pinned: bool | None = None


class TouchParams(ScopedParams):
    keys: list[str]


class GcParams(ScopedParams):
    min_weight: float | None = None
    max_nodes: int | None = Field(default=None, ge=1)


class ContextPatchParams(ScopedParams):
    add_nodes: list[str] | None = None
    add_messages: list[str] | None = None
    remove_nodes: list[str] | None = None
    remove_messages: list[str] | None = None


class ContextMaterializeParams(ScopedParams):
    max_nodes: float | None = None
    max_messages: float | None = None


# -- helpers -----------------------------------------------------------------


def resolve_actor(session_key: str | None) -> Actor:
    """A non-blank session key makes an agent actor; otherwise the operator."""
    if session_key and session_key.strip():
        session_key = session_key.strip()
        return Actor.agent(resolve_agent_id_from_session_key(session_key), session_key)
    return Actor.operator()


def _format_errors(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "params"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


class KgmMethods:
    """Dispatch table for kgm.* methods."""

    def __init__(self, config: Config, registry: ProviderRegistry):
        self.config = config
        self.registry = registry
        self._handlers: dict[str, tuple[type[BaseModel], Callable[[Any], dict]]] = {
            "kgm.admin.status": (Params, self.admin_status),
            "kgm.admin.init": (Params, self.admin_init),
            "kgm.admin.ensureAgent": (EnsureAgentParams, self.admin_ensure_agent),
            "kgm.schema.describe": (ScopedParams, self.schema_describe),
            "kgm.agent.search": (SearchParams, self.agent_search),
            "kgm.agent.get": (GetParams, self.agent_get),
            "kgm.agent.putNode": (PutNodeParams, self.agent_put_node),
            "kgm.agent.putEdge": (PutEdgeParams, self.agent_put_edge),
            "kgm.agent.link": (PutEdgeParams, self.agent_put_edge),
            "kgm.agent.pin": (PinParams, self.agent_pin),
            "kgm.agent.touch": (TouchParams, self.agent_touch),
            "kgm.agent.gc": (GcParams, self.agent_gc),
            "kgm.agent.ensureSchema": (ScopedParams, self.agent_ensure_schema),
            "kgm.agent.context.get": (ScopedParams, self.context_get),
            "kgm.agent.context.patch": (ContextPatchParams, self.context_patch),
            "kgm.agent.context.materialize": (ContextMaterializeParams, self.context_materialize),
        }

    @property
    def methods(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, method: str, params: dict | None = None) -> dict:
        entry = self._handlers.get(method)
        if entry is None:
            raise InvalidRequest(f"unknown method: {method}")
        model, handler = entry
        try:
            parsed = model.model_validate(params or {})
        except ValidationError as e:
            raise InvalidRequest(f"invalid {method} params: {_format_errors(e)}") from e
        return handler(parsed)

    # -- shared ------------------------------------------------------------

    def _provider(self):
        return self.registry.require(self.config.kgm)

    def _actor_and_scope(self, params: ScopedParams) -> tuple[Actor, str]:
        actor = resolve_actor(params.session_key)
        scope = resolve_actor_scope(actor, params.scope)
        return actor, require_scope(actor, scope)

    # -- admin -------------------------------------------------------------

    def admin_status(self, params: Params) -> dict:
        kgm = self.config.kgm
        provider = self.registry.resolve(kgm)
        connected = False
        error = None
        if provider is not None:
            try:
                provider.query(Actor.operator(), resolve_admin_scope(), PING_QUERY, {})
                connected = True
            except Exception as e:
                error = str(e)
        result = {
            "ok": True,
            "enabled": kgm.enabled,
            "mode": kgm.mode,
            "provider": provider.id if provider is not None else "none",
            "connected": connected,
        }
        if error:
            result["error"] = error
        return result

    def admin_init(self, params: Params) -> dict:
        SchemaRegistry(self._provider()).ensure_admin_schema(Actor.operator())
        return {"ok": True}

    def admin_ensure_agent(self, params: EnsureAgentParams) -> dict:
        agent_id = params.agent_id.strip()
        if not agent_id:
            raise InvalidRequest("agentId required")
        scope = SchemaRegistry(self._provider()).ensure_agent_schema(Actor.operator(), agent_id)
        return {"ok": True, "scope": scope}

    def schema_describe(self, params: ScopedParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        return {"ok": True, **SchemaRegistry(provider).describe(actor, scope)}

    # -- agent graph ops ---------------------------------------------------

    def agent_search(self, params: SearchParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        results = provider.search(actor, scope, params.query, params.limit)
        return {"ok": True, "results": [r.to_dict() for r in results]}

    def agent_get(self, params: GetParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        rows = provider.query(actor, scope, GET_NODE_QUERY, {"scope": scope, "key": params.key})
        if not rows:
            return {"ok": True, "found": False}
        return {"ok": True, "found": True, "label": rows[0].get("label"), "node": rows[0].get("node")}

    def agent_put_node(self, params: PutNodeParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        node = provider.upsert_node(actor, scope, params.label, params.key, params.properties)
        return {"ok": True, "node": node.to_dict()}

    def agent_put_edge(self, params: PutEdgeParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        edge = provider.upsert_edge(
            actor, scope, params.edge_type,
            NodeRef(key=params.from_key, label=params.from_label),
            NodeRef(key=params.to_key, label=params.to_label),
            params.properties,
        )
        return {"ok": True, "edge": edge.to_dict()}

    def agent_pin(self, params: PinParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        pinned = params.pinned is not False
        provider.query(actor, scope, PIN_QUERY, {
            "scope": scope,
            "key": params.key,
            "pinnedAt": int(time.time() * 1000) if pinned else None,
        })
        return {"ok": True, "key": params.key, "pinned": pinned}

    def agent_touch(self, params: TouchParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        provider.touch(actor, scope, params.keys)
        return {"ok": True}

    def agent_gc(self, params: GcParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        decay = self.config.kgm.decay
        min_weight = decay.min_weight if params.min_weight is None else params.min_weight
        max_nodes = decay.max_nodes_per_scope if params.max_nodes is None else params.max_nodes
        refreshed = refresh_weights(
            provider, actor, scope, half_life_ms=decay.half_life_ms, max_nodes=decay.max_nodes_per_scope,
        )
        result = provider.gc(actor, scope, min_weight=min_weight, max_nodes=max_nodes)
        logger.info("GC %s: refreshed=%d removed=%d", scope, refreshed, result.get("removed", 0))
        return {"ok": True, "refreshed": refreshed, **result}

    def agent_ensure_schema(self, params: ScopedParams) -> dict:
        provider = self._provider()
        actor = resolve_actor(params.session_key)
        scope = resolve_actor_scope(actor, params.scope)
        if not scope or not scope.startswith(AGENT_SCOPE_PREFIX):
            raise InvalidRequest("agent scope required")
        if not is_scope_allowed(actor, scope):
            raise ScopeNotAllowed()
        agent_id = scope.split(":")[1]
        scope = SchemaRegistry(provider).ensure_agent_schema(Actor.operator(), agent_id)
        return {"ok": True, "scope": scope}

    # -- context -------------------------------------------------------------

    def _context(self, provider) -> ContextManager:
        return ContextManager(provider, self.config)

    def context_get(self, params: ScopedParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        return {"ok": True, "items": self._context(provider).get(actor, scope)}

    def context_patch(self, params: ContextPatchParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        self._context(provider).patch(
            actor, scope,
            add_nodes=params.add_nodes,
            add_messages=params.add_messages,
            remove_nodes=params.remove_nodes,
            remove_messages=params.remove_messages,
        )
        return {"ok": True}

    def context_materialize(self, params: ContextMaterializeParams) -> dict:
        provider = self._provider()
        actor, scope = self._actor_and_scope(params)
        content = self._context(provider).materialize(
            actor, scope,
            session_key=params.session_key,
            max_nodes=params.max_nodes,
            max_messages=params.max_messages,
        )
        return {"ok": True, "content": content}

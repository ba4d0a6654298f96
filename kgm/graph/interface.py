"""Graph provider ABC. All graph backends implement this interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActorRole(str, Enum):
    OPERATOR = "operator"
    AGENT = "agent"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Who a graph operation runs on behalf of.

    Operators and the system are unrestricted; agents are confined to their
    own ``agent:<id>`` scope.
    """
    role: ActorRole
    agent_id: str | None = None
    session_key: str | None = None

    @classmethod
    def operator(cls) -> Actor:
        return cls(role=ActorRole.OPERATOR)

    @classmethod
    def agent(cls, agent_id: str, session_key: str | None = None) -> Actor:
        return cls(role=ActorRole.AGENT, agent_id=agent_id, session_key=session_key)

    @classmethod
    def system(cls, agent_id: str | None = None, session_key: str | None = None) -> Actor:
        return cls(role=ActorRole.SYSTEM, agent_id=agent_id, session_key=session_key)


@dataclass(frozen=True)
class NodeRef:
    """Identity of a node within a scope."""
    key: str
    label: str

    def to_dict(self) -> dict:
        return {"key": self.key, "label": self.label}


@dataclass(frozen=True)
class EdgeRef:
    type: str
    key: str | None = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"type": self.type}
        if self.key is not None:
            out["key"] = self.key
        return out


@dataclass
class SearchResult:
    key: str
    label: str
    score: float | None = None
    properties: dict[str, Any] | None = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"key": self.key, "label": self.label}
        if self.score is not None:
            out["score"] = self.score
        if self.properties is not None:
            out["properties"] = self.properties
        return out


@dataclass
class SchemaSnapshot:
    observed: dict[str, Any] = field(default_factory=dict)
    expected: dict[str, Any] | None = None


class GraphProvider(ABC):
    """Abstract base for KGM graph backends.

    Every operation takes the acting ``actor`` and the target ``scope``.
    Implementations talk to the store; scope enforcement is layered on top
    by ``kgm.graph.scoped.ScopedGraphProvider``.
    """

    id: str = "abstract"

    def connect(self) -> None:
        """Open connection to the graph database."""

    def close(self) -> None:
        """Close connection to the graph database."""

    @abstractmethod
    def query(
        self,
        actor: Actor,
        scope: str,
        cypher: str,
        params: dict[str, Any] | None = None,
        database: str | None = None,
    ) -> list[dict[str, Any]]:
        """Run a raw query and return normalized rows."""

    @abstractmethod
    def ensure_schema(self, actor: Actor, scope: str) -> None:
        """Create identity indexes. Idempotent."""

    @abstractmethod
    def upsert_node(
        self,
        actor: Actor,
        scope: str,
        label: str,
        key: str,
        properties: dict[str, Any] | None = None,
    ) -> NodeRef:
        """MERGE a node on (label, key, scope), overwrite properties and updatedAt."""

    @abstractmethod
    def upsert_edge(
        self,
        actor: Actor,
        scope: str,
        edge_type: str,
        from_ref: NodeRef,
        to_ref: NodeRef,
        properties: dict[str, Any] | None = None,
    ) -> EdgeRef:
        """MERGE an edge between two nodes of the same scope."""

    @abstractmethod
    def search(
        self,
        actor: Actor,
        scope: str,
        query: str,
        limit: int | float | None = None,
    ) -> list[SearchResult]:
        """Substring search over node keys and labels within a scope."""

    @abstractmethod
    def touch(
        self,
        actor: Actor,
        scope: str,
        keys: list[str],
        now: int | None = None,
    ) -> None:
        """Record an access on every node in ``keys``."""

    @abstractmethod
    def gc(
        self,
        actor: Actor,
        scope: str,
        min_weight: float | None = None,
        max_nodes: int | None = None,
        now: int | None = None,
    ) -> dict:
        """Delete unpinned nodes below ``min_weight``. Returns {"removed": n}."""

    @abstractmethod
    def describe_schema(self, actor: Actor, scope: str) -> SchemaSnapshot:
        """Best-effort view of the engine's schema metadata."""

"""Versioned schema scripts and drift description.

Two Cypher scripts ship with the package: one for the admin scope and one
applied to each agent scope. ``ensure_admin_schema`` also records both
scripts as ``GraphSchema`` registry nodes linked to ``Scope`` nodes, so a
running store can be compared against what this build expects.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from kgm.core.errors import TransientStoreError
from kgm.core.rbac import ADMIN_SCOPE, AGENT_SCOPE_PREFIX, resolve_admin_scope, resolve_agent_scope
from kgm.graph.interface import Actor, GraphProvider, NodeRef
from kgm.graph.memgraph_provider import is_existing_schema_error

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).parent.parent / "schema"
SCHEMA_VERSION = "v1"

REGISTRY_QUERY = (
    "MATCH (g:GraphSchema { scope: $adminScope })-[:APPLIES_TO { scope: $adminScope }]->"
    "(s:Scope { id: $scopeId, scope: $adminScope }) "
    "RETURN g.name AS name, g.version AS version, g.hash AS hash, "
    "g.appliesToKind AS appliesToKind, g.path AS path"
)


@dataclass(frozen=True)
class SchemaScript:
    kind: str      # "admin" or "agent"
    path: str      # stable package-relative path
    content: str

    @property
    def name(self) -> str:
        return f"kgm-{self.kind}"

    @property
    def hash(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()


def split_statements(script: str) -> list[str]:
    """Split on ';', dropping '//' comment lines and empty statements."""
    lines = [line for line in script.splitlines() if not line.strip().startswith("//")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


def scope_kind(scope: str) -> str:
    return "agent" if scope.startswith(AGENT_SCOPE_PREFIX) else "admin"


class SchemaRegistry:
    """Applies the schema scripts and reports expected vs observed schema."""

    def __init__(self, provider: GraphProvider, schema_dir: Path | None = None):
        self.provider = provider
        self.schema_dir = Path(schema_dir) if schema_dir else SCHEMA_DIR

    def load(self, kind: str) -> SchemaScript:
        filename = f"{kind}.cypherl"
        content = (self.schema_dir / filename).read_text(encoding="utf-8")
        return SchemaScript(kind=kind, path=f"kgm/schema/{filename}", content=content)

    def _execute(self, actor: Actor, scope: str, script: SchemaScript) -> None:
        for stmt in split_statements(script.content):
            try:
                self.provider.query(actor, scope, stmt)
            except TransientStoreError:
                raise
            except Exception as e:
                if not is_existing_schema_error(e):
                    logger.error("Schema statement failed (%s): %s", script.path, stmt)
                    raise
                logger.debug("Schema statement skipped: %s (%s)", stmt[:60], e)

    def ensure_admin_schema(self, actor: Actor) -> None:
        """Apply the admin script and (re)write the schema registry. Idempotent."""
        admin_scope = resolve_admin_scope()
        admin_script = self.load("admin")
        agent_script = self.load("agent")
        self._execute(actor, admin_scope, admin_script)

        now = int(time.time() * 1000)
        for kind in (ADMIN_SCOPE, "agent"):
            self.provider.upsert_node(
                actor, admin_scope, "Scope", f"scope:{kind}",
                {"id": kind, "kind": kind, "updatedAt": now},
            )

        for script in (admin_script, agent_script):
            schema_ref = self.provider.upsert_node(
                actor, admin_scope, "GraphSchema", f"schema:{script.kind}",
                {
                    "name": script.name,
                    "version": SCHEMA_VERSION,
                    "appliesToKind": script.kind,
                    "hash": script.hash,
                    "path": script.path,
                    "updatedAt": now,
                },
            )
            self.provider.upsert_edge(
                actor, admin_scope, "APPLIES_TO",
                schema_ref, NodeRef(key=f"scope:{script.kind}", label="Scope"),
            )
        logger.info("Admin schema ensured (%s)", SCHEMA_VERSION)

    def ensure_agent_schema(self, actor: Actor, agent_id: str) -> str:
        """Apply the agent script inside ``agent:<id>``. Returns the scope."""
        scope = resolve_agent_scope(agent_id)
        self._execute(actor, scope, self.load("agent"))
        logger.info("Agent schema ensured for %s", scope)
        return scope

    def describe(self, actor: Actor, scope: str) -> dict:
        observed = self.provider.describe_schema(actor, scope).observed or {}
        kind = scope_kind(scope)

        registry = None
        admin_scope = resolve_admin_scope()
        try:
            rows = self.provider.query(
                Actor.operator(), admin_scope, REGISTRY_QUERY,
                {"adminScope": admin_scope, "scopeId": kind},
            )
            if rows:
                row = rows[0]
                registry = {k: row.get(k) for k in ("name", "version", "hash", "appliesToKind", "path")}
        except Exception:
            logger.debug("Schema registry lookup failed", exc_info=True)

        return {
            "expectedSchema": {"script": f"kgm/schema/{kind}.cypherl", "registry": registry},
            "observedSchema": observed,
        }

"""Per-scope context sets and their materialization.

A scope owns one ``ContextSet`` (key ``context:<scope>``) that INCLUDES
``ContextItem`` nodes referring to graph nodes or transcript messages.
``materialize`` renders the set, rehydrated message text and the agent's
workspace documents into a markdown block for prompt injection.
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import TYPE_CHECKING, Callable

from kgm.core.rbac import agent_id_from_scope, resolve_agent_id_from_session_key
from kgm.core.sessions import (
    classify_session_key,
    load_session_entry,
    load_session_store,
    resolve_store_path,
)
from kgm.core.transcripts import read_transcript_message
from kgm.core.workspace import (
    build_context_docs,
    filter_bootstrap_files_for_session,
    filter_group_files,
    load_workspace_bootstrap_files,
    resolve_agent_workspace_dir,
)
from kgm.graph.cypher import clamp_limit, limit_clause

if TYPE_CHECKING:
    from kgm.config import Config
    from kgm.graph.interface import Actor, GraphProvider

logger = logging.getLogger(__name__)

ITEM_KINDS = ("node", "message")
DEFAULT_MAX_NODES = 20
DEFAULT_MAX_MESSAGES = 10
MAX_MESSAGE_CHARS = 1200

GET_QUERY = (
    "MATCH (cs:ContextSet { key: $contextKey, scope: $scope })-[:INCLUDES]->(ci:ContextItem) "
    "RETURN ci.key AS key, ci.kind AS kind, ci.refType AS refType, ci.refKey AS refKey, "
    "ci.createdAt AS createdAt "
    "ORDER BY ci.createdAt DESC"
)

UPSERT_SET_QUERY = (
    "MERGE (cs:ContextSet { key: $contextKey, scope: $scope }) "
    "SET cs.updatedAt = $now, cs.agentId = $agentId"
)

REMOVE_ITEMS_QUERY = (
    "UNWIND $keys AS key "
    "MATCH (ci:ContextItem { key: key, scope: $scope }) DETACH DELETE ci"
)

MESSAGE_DETAILS_QUERY = (
    "MATCH (m:Message { scope: $scope }) "
    "WHERE m.key IN $keys "
    "RETURN m.key AS key, m.preview AS preview, m.role AS role, m.sessionKey AS sessionKey, "
    "m.sessionId AS sessionId, m.entryId AS entryId"
)


def context_set_key(scope: str) -> str:
    return f"context:{scope}"


def context_item_key(kind: str, ref_key: str) -> str:
    return f"ctxitem:{kind}:{ref_key}"


def _add_items_query(kind: str) -> str:
    if kind not in ITEM_KINDS:
        raise ValueError(f"unknown context item kind: {kind!r}")
    return (
        "UNWIND $items AS item "
        "MERGE (ci:ContextItem { key: item.key, scope: $scope }) "
        f"SET ci.kind = '{kind}', ci.refType = '{kind}', ci.refKey = item.refKey, "
        "ci.createdAt = coalesce(ci.createdAt, $now), ci.updatedAt = $now "
        "WITH ci "
        "MATCH (cs:ContextSet { key: $contextKey, scope: $scope }) "
        "MERGE (cs)-[:INCLUDES { scope: $scope }]->(ci)"
    )


def _item_refs_query(kind: str, limit: int) -> str:
    return (
        "MATCH (cs:ContextSet { key: $contextKey, scope: $scope })"
        f"-[:INCLUDES]->(ci:ContextItem {{ kind: '{kind}' }}) "
        "RETURN ci.refKey AS refKey, ci.createdAt AS createdAt "
        f"ORDER BY ci.createdAt DESC {limit_clause(limit, limit)}"
    )


def _clean_keys(keys) -> list[str]:
    if not keys:
        return []
    return [k for k in keys if isinstance(k, str) and k.strip()]


def _str_or_none(value) -> str | None:
    return value if isinstance(value, str) else None


def _truncate(text: str) -> str:
    if len(text) <= MAX_MESSAGE_CHARS:
        return text
    return text[: MAX_MESSAGE_CHARS - 3] + "..."


class ContextManager:
    """Reads, patches and materializes the context set of a scope.

    Scope checks happen in the provider (``ScopedGraphProvider``) and in the
    method layer; this class assumes ``scope`` is already allowed.
    """

    def __init__(self, provider: GraphProvider, config: Config, clock: Callable[[], int] | None = None):
        self.provider = provider
        self.config = config
        self._clock = clock or (lambda: int(time.time() * 1000))

    def get(self, actor: Actor, scope: str) -> list[dict]:
        return self.provider.query(
            actor, scope, GET_QUERY,
            {"scope": scope, "contextKey": context_set_key(scope)},
        )

    def patch(
        self,
        actor: Actor,
        scope: str,
        add_nodes: list[str] | None = None,
        add_messages: list[str] | None = None,
        remove_nodes: list[str] | None = None,
        remove_messages: list[str] | None = None,
    ) -> None:
        """Upsert the set, then add and remove items. Re-adding keeps createdAt."""
        context_key = context_set_key(scope)
        now = self._clock()
        self.provider.query(
            actor, scope, UPSERT_SET_QUERY,
            {"scope": scope, "contextKey": context_key, "now": now, "agentId": actor.agent_id},
        )

        for kind, keys in (("node", add_nodes), ("message", add_messages)):
            keys = _clean_keys(keys)
            if not keys:
                continue
            items = [{"key": context_item_key(kind, k), "refKey": k} for k in keys]
            self.provider.query(
                actor, scope, _add_items_query(kind),
                {"scope": scope, "contextKey": context_key, "items": items, "now": now},
            )

        for kind, keys in (("node", remove_nodes), ("message", remove_messages)):
            keys = _clean_keys(keys)
            if not keys:
                continue
            self.provider.query(
                actor, scope, REMOVE_ITEMS_QUERY,
                {"scope": scope, "keys": [context_item_key(kind, k) for k in keys]},
            )

    def materialize(
        self,
        actor: Actor,
        scope: str,
        session_key: str | None = None,
        max_nodes: int | float | None = None,
        max_messages: int | float | None = None,
    ) -> str:
        """Render the context set as markdown. Empty string when nothing to show."""
        max_nodes = clamp_limit(max_nodes, DEFAULT_MAX_NODES)
        max_messages = clamp_limit(max_messages, DEFAULT_MAX_MESSAGES)
        context_key = context_set_key(scope)
        params = {"scope": scope, "contextKey": context_key}

        node_rows = self.provider.query(actor, scope, _item_refs_query("node", max_nodes), params)
        message_rows = self.provider.query(actor, scope, _item_refs_query("message", max_messages), params)

        node_keys = [str(r["refKey"]) for r in node_rows if r.get("refKey")]
        message_keys = [str(r["refKey"]) for r in message_rows if r.get("refKey")]

        details = {}
        if message_keys:
            rows = self.provider.query(
                actor, scope, MESSAGE_DETAILS_QUERY, {"scope": scope, "keys": message_keys},
            )
            details = self._message_details(rows)

        lines = ["## KGM Context"]
        if node_keys:
            lines += ["", "### Nodes"] + [f"- {key}" for key in node_keys]
        if message_keys:
            lines += ["", "### Messages"] + [self._message_line(key, details.get(key)) for key in message_keys]

        docs_included = False
        session_key = session_key or actor.session_key
        agent_id = agent_id_from_scope(scope) or actor.agent_id
        if agent_id:
            docs_included = self._append_docs(actor, scope, agent_id, session_key, lines)

        if node_keys or message_keys or docs_included:
            return "\n".join(lines)
        return ""

    def _message_details(self, rows: list[dict]) -> dict[str, dict]:
        """Join Message rows with transcript text, caching stores per path."""
        stores: dict[str, dict[str, dict]] = {}
        details = {}
        for row in rows:
            key = str(row.get("key") or "")
            if not key:
                continue
            session_key = _str_or_none(row.get("sessionKey"))
            session_id = _str_or_none(row.get("sessionId"))
            entry_id = _str_or_none(row.get("entryId"))
            text = None
            if session_key and session_id:
                agent_id = resolve_agent_id_from_session_key(session_key)
                store_path = resolve_store_path(self.config, agent_id)
                if store_path not in stores:
                    stores[store_path] = load_session_store(store_path)
                entry = stores[store_path].get(session_key) or {}
                message = read_transcript_message(
                    session_id,
                    store_path,
                    entry_id or key,
                    session_file=_str_or_none(entry.get("sessionFile")),
                )
                if message and message.text:
                    text = message.text
            details[key] = {
                "preview": _str_or_none(row.get("preview")),
                "role": _str_or_none(row.get("role")),
                "sessionKey": session_key,
                "text": text,
            }
        return details

    @staticmethod
    def _message_line(key: str, detail: dict | None) -> str:
        detail = detail or {}
        raw = detail.get("text") or detail.get("preview")
        if not raw:
            return f"- {key}"
        role = f" ({detail['role']})" if detail.get("role") else ""
        hint = f" [{detail['sessionKey']}]" if detail.get("sessionKey") else ""
        return f"- {key}{role}{hint}: {_truncate(raw)}"

    def _append_docs(
        self,
        actor: Actor,
        scope: str,
        agent_id: str,
        session_key: str | None,
        lines: list[str],
    ) -> bool:
        """Render workspace docs and mirror them as AgentDoc nodes (best-effort)."""
        included = False
        try:
            workspace_dir = resolve_agent_workspace_dir(self.config, agent_id)
            files = load_workspace_bootstrap_files(workspace_dir)
            files = filter_bootstrap_files_for_session(files, session_key)
            if session_key:
                _, entry = load_session_entry(self.config, session_key)
                if classify_session_key(session_key, entry) == "group":
                    files = filter_group_files(files)

            docs = build_context_docs(files, self.config.bootstrap_max_chars)
            if docs:
                included = True
                lines += ["", "### Agent Docs"]
                for doc in docs:
                    lines += [f"#### {doc.path}", doc.content]

            rendered = {doc.path: doc.content for doc in docs}
            now = self._clock()
            for f in files:
                if f.missing or not f.content or not f.content.strip():
                    continue
                self.provider.upsert_node(actor, scope, "AgentDoc", f"agentdoc:{f.name}", {
                    "agentId": agent_id,
                    "docType": f.name,
                    "hash": hashlib.sha256(f.content.encode("utf-8")).hexdigest(),
                    "updatedAt": now,
                    "sourcePath": f.path,
                    "size": len(f.content),
                    "raw": rendered.get(f.name, f.content.strip()),
                })
        except Exception:
            logger.warning("Agent docs ingestion failed for %s", scope, exc_info=True)
        return included

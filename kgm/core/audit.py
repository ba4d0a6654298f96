"""Config snapshot history in the admin scope."""

from __future__ import annotations

import hashlib
import logging
import time
from typing import TYPE_CHECKING

from kgm.core.outcome import Outcome
from kgm.core.rbac import resolve_admin_scope
from kgm.graph.interface import Actor

if TYPE_CHECKING:
    from kgm.config import Config
    from kgm.graph.interface import GraphProvider

logger = logging.getLogger(__name__)


def config_hash(raw: str | None) -> str | None:
    if not raw:
        return None
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def record_config_snapshot(
    config: Config,
    raw: str,
    reason: str,
    session_key: str | None = None,
    note: str | None = None,
    provider: GraphProvider | None = None,
) -> Outcome:
    """Write a ConfigSnapshot and matching AuditEvent for a config write."""
    if not config.kgm.mirrors:
        return Outcome.skip("kgm disabled or fs-only")
    if provider is None:
        return Outcome.skip("no provider")

    digest = config_hash(raw)
    ts = int(time.time() * 1000)
    key = f"config:{digest}" if digest else f"config:{ts}"
    audit_key = f"audit:config:{ts}"
    scope = resolve_admin_scope()
    actor = Actor.system()

    try:
        provider.upsert_node(actor, scope, "ConfigSnapshot", key, {
            "id": key,
            "ts": ts,
            "hash": digest,
            "source": reason,
            "author": session_key,
            "note": note,
            "size": len(raw or ""),
        })
        provider.upsert_node(actor, scope, "AuditEvent", audit_key, {
            "id": audit_key,
            "ts": ts,
            "actor": session_key or "system",
            "action": reason,
            "target": "config",
            "ok": True,
            "meta": {"hash": digest, "note": note},
        })
    except Exception as e:
        return Outcome.failure(e, f"config snapshot failed: {e}")
    return Outcome.success({"key": key, "auditKey": audit_key})

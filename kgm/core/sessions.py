"""Session store access and session-key classification.

The session store is a JSON object mapping session keys to entries such as
``{"sessionId": "...", "sessionFile": "...", "chatType": "group"}``. One
store exists per agent.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from kgm.core.rbac import resolve_agent_id_from_session_key

if TYPE_CHECKING:
    from kgm.config import Config

logger = logging.getLogger(__name__)

GROUP_CHAT_TYPES = ("group", "channel")


def resolve_store_path(config: Config, agent_id: str) -> str:
    if config.session_store:
        path = config.session_store.replace("{agentId}", agent_id)
        return os.path.expanduser(path)
    return str(Path(config.state_dir).expanduser() / "agents" / agent_id / "sessions" / "sessions.json")


def load_session_store(store_path: str) -> dict[str, dict]:
    """Read a store from disk. Missing or unreadable stores are empty."""
    try:
        data = json.loads(Path(store_path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        logger.debug("Unreadable session store %s: %s", store_path, e)
        return {}
    if not isinstance(data, dict):
        return {}
    return {k: v for k, v in data.items() if isinstance(v, dict)}


def load_session_entry(config: Config, session_key: str) -> tuple[str, dict | None]:
    agent_id = resolve_agent_id_from_session_key(session_key)
    store_path = resolve_store_path(config, agent_id)
    return store_path, load_session_store(store_path).get(session_key)


def _session_rest(session_key: str) -> str:
    parts = session_key.split(":", 2)
    if len(parts) == 3 and parts[0].lower() == "agent":
        return parts[2]
    return session_key


def is_subagent_session_key(session_key: str | None) -> bool:
    if not session_key:
        return False
    return _session_rest(session_key.strip().lower()).startswith("subagent:")


def classify_session_key(session_key: str, entry: dict | None = None) -> str:
    """One of ``global``, ``unknown``, ``group`` or ``direct``."""
    if session_key == "global":
        return "global"
    if session_key == "unknown":
        return "unknown"
    if entry and entry.get("chatType") in GROUP_CHAT_TYPES:
        return "group"
    if ":group:" in session_key or ":channel:" in session_key:
        return "group"
    return "direct"

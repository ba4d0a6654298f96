"""Transcript ingest: mirror the latest message of a session file into the graph.

Transcript writers fire an update per appended line; the scheduler debounces
those per file so a burst of writes results in one ingest of the final state.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import TYPE_CHECKING, Callable

from kgm.core.outcome import Outcome
from kgm.core.rbac import normalize_agent_id, resolve_agent_scope
from kgm.core.sessions import load_session_store, resolve_store_path
from kgm.core.transcripts import (
    extract_text,
    line_timestamp,
    read_first_json_line,
    read_last_message_line,
    resolve_entry_id,
)
from kgm.graph.interface import Actor, NodeRef

if TYPE_CHECKING:
    from kgm.config import Config
    from kgm.graph.interface import GraphProvider

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200
DEBOUNCE_SECONDS = 0.25

_AGENT_SEGMENT = re.compile(r"[\\/]agents[\\/]([^\\/]+)[\\/]sessions[\\/]", re.IGNORECASE)


def agent_id_from_session_file(session_file: str) -> str | None:
    match = _AGENT_SEGMENT.search(session_file)
    if not match:
        return None
    return normalize_agent_id(match.group(1))


def find_session_entry(store_path: str, session_file: str, session_id: str | None) -> tuple[str, dict] | None:
    """Store entry owning ``session_file``, matched by file path or session id."""
    for key, entry in load_session_store(store_path).items():
        if entry.get("sessionFile") and entry.get("sessionFile") == session_file:
            return key, entry
        if session_id and entry.get("sessionId") == session_id:
            return key, entry
    return None


def ingest_session_transcript_file(
    config: Config,
    session_file: str,
    provider: GraphProvider | None,
    store_path: str | None = None,
) -> Outcome:
    """Upsert Session and Message nodes for the latest message in ``session_file``."""
    if not config.kgm.enabled:
        return Outcome.skip("kgm disabled")
    if provider is None:
        return Outcome.skip("no provider")

    agent_id = agent_id_from_session_file(session_file)
    if not agent_id:
        return Outcome.skip("not an agent session file")

    header = read_first_json_line(session_file) or {}
    session_id = header.get("id").strip() if isinstance(header.get("id"), str) else ""
    if not session_id:
        return Outcome.skip("missing session id")

    store_path = store_path or resolve_store_path(config, agent_id)
    resolved = find_session_entry(store_path, session_file, session_id)
    if not resolved:
        return Outcome.skip("session not in store")
    session_key, _ = resolved

    line = read_last_message_line(session_file)
    if not line or not isinstance(line.get("message"), dict):
        return Outcome.skip("no message")
    message = line["message"]

    text = extract_text(message.get("content")) or "message"
    timestamp = line_timestamp(line, int(time.time() * 1000))
    entry_id = resolve_entry_id(session_id, line, timestamp)
    scope = resolve_agent_scope(agent_id)
    actor = Actor.system(agent_id=agent_id, session_key=session_key)

    try:
        session_ref = provider.upsert_node(actor, scope, "Session", session_key, {
            "sessionId": session_id,
            "agentId": agent_id,
            "sessionKey": session_key,
            "updatedAt": timestamp,
        })
        message_ref = provider.upsert_node(actor, scope, "Message", entry_id, {
            "entryId": entry_id,
            "sessionId": session_id,
            "sessionKey": session_key,
            "role": message.get("role") or "unknown",
            "ts": timestamp,
            "preview": text[:PREVIEW_CHARS],
        })
        provider.upsert_edge(
            actor, scope, "HAS_MESSAGE",
            NodeRef(key=session_ref.key, label="Session"),
            NodeRef(key=message_ref.key, label="Message"),
        )
    except Exception as e:
        return Outcome.failure(e, f"transcript ingest failed: {e}")
    return Outcome.success({"scope": scope, "sessionKey": session_key, "entryId": entry_id})


class TranscriptIngestScheduler:
    """Per-file debounce: the last event for a path wins after ``delay`` seconds."""

    def __init__(self, callback: Callable[[str], None], delay: float = DEBOUNCE_SECONDS):
        self._callback = callback
        self._delay = delay
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._closed = False

    def schedule(self, session_file: str) -> None:
        session_file = (session_file or "").strip()
        if not session_file:
            return
        with self._lock:
            if self._closed:
                return
            existing = self._timers.pop(session_file, None)
            if existing is not None:
                existing.cancel()
            timer = threading.Timer(self._delay, self._fire, args=(session_file,))
            timer.daemon = True
            self._timers[session_file] = timer
            timer.start()

    def _fire(self, session_file: str) -> None:
        with self._lock:
            timer = self._timers.get(session_file)
            if timer is None or timer is not threading.current_thread():
                return
            del self._timers[session_file]
        try:
            self._callback(session_file)
        except Exception:
            logger.warning("Transcript ingest failed for %s", session_file, exc_info=True)

    def pending(self) -> list[str]:
        with self._lock:
            return sorted(self._timers)

    def shutdown(self) -> None:
        """Cancel every pending timer; later events are ignored."""
        with self._lock:
            self._closed = True
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        logger.info("Transcript ingest scheduler stopped (%d pending cancelled)", len(timers))

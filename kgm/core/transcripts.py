"""Session transcript (JSONL) reading.

A transcript starts with a header line carrying the session ``id``; later
lines wrap a ``message`` with ``role``, ``content`` and an optional ``id``
and ``timestamp``.
"""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

LAST_MSG_MAX_BYTES = 16384
LAST_MSG_MAX_LINES = 20
HEADER_MAX_BYTES = 4096

TEXT_PART_TYPES = ("text", "output_text", "input_text", "")


@dataclass
class TranscriptMessage:
    entry_id: str
    role: str | None
    text: str | None
    ts: int


def _parse_object(line: str) -> dict | None:
    try:
        parsed = json.loads(line)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def read_first_json_line(path: str) -> dict | None:
    try:
        with open(path, "rb") as f:
            chunk = f.read(HEADER_MAX_BYTES).decode("utf-8", errors="replace")
    except OSError:
        return None
    for line in chunk.splitlines():
        if line.strip():
            parsed = _parse_object(line)
            if parsed is not None:
                return parsed
    return None


def read_last_message_line(path: str) -> dict | None:
    """Latest line with a ``message`` among the file's tail."""
    try:
        with open(path, "rb") as f:
            size = os.fstat(f.fileno()).st_size
            if size == 0:
                return None
            f.seek(max(0, size - LAST_MSG_MAX_BYTES))
            chunk = f.read(LAST_MSG_MAX_BYTES).decode("utf-8", errors="replace")
    except OSError:
        return None
    lines = [line for line in chunk.splitlines() if line.strip()][-LAST_MSG_MAX_LINES:]
    for line in reversed(lines):
        parsed = _parse_object(line)
        if parsed and parsed.get("message"):
            return parsed
    return None


def extract_text(content: Any) -> str | None:
    """Text of a message: a plain string, or the first non-empty text part."""
    if isinstance(content, str):
        return content.strip() or None
    if not isinstance(content, list):
        return None
    for part in content:
        if not isinstance(part, dict) or not isinstance(part.get("text"), str):
            continue
        part_type = part.get("type") if isinstance(part.get("type"), str) else ""
        if part_type in TEXT_PART_TYPES:
            text = part["text"].strip()
            if text:
                return text
    return None


def coerce_timestamp(value: Any) -> int | None:
    """Epoch ms from a number or an ISO-8601 string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and math.isfinite(value):
        return math.floor(value)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return int(parsed.timestamp() * 1000)
    return None


def line_timestamp(line: dict, default: int) -> int:
    message = line.get("message") if isinstance(line.get("message"), dict) else {}
    ts = coerce_timestamp(message.get("timestamp"))
    if ts is None:
        ts = coerce_timestamp(line.get("timestamp"))
    return default if ts is None else ts


def resolve_entry_id(session_id: str, line: dict, timestamp: int) -> str:
    message = line.get("message") if isinstance(line.get("message"), dict) else {}
    message_id = message.get("id") or line.get("id")
    if isinstance(message_id, str) and message_id.strip():
        return message_id.strip()
    return f"{session_id}:{timestamp}"


def resolve_transcript_path(session_id: str, store_path: str, session_file: str | None = None) -> str:
    if session_file:
        return session_file
    return str(Path(store_path).parent / f"{session_id}.jsonl")


def read_transcript_message(
    session_id: str,
    store_path: str,
    entry_id: str,
    session_file: str | None = None,
) -> TranscriptMessage | None:
    """Find the transcript message whose entry id is ``entry_id``."""
    path = resolve_transcript_path(session_id, store_path, session_file)
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for raw in f:
                if not raw.strip():
                    continue
                line = _parse_object(raw)
                if not line or not isinstance(line.get("message"), dict):
                    continue
                ts = line_timestamp(line, 0)
                if resolve_entry_id(session_id, line, ts) != entry_id:
                    continue
                message = line["message"]
                role = message.get("role")
                return TranscriptMessage(
                    entry_id=entry_id,
                    role=role if isinstance(role, str) else None,
                    text=extract_text(message.get("content")),
                    ts=ts,
                )
    except OSError as e:
        logger.debug("Transcript unavailable %s: %s", path, e)
    return None

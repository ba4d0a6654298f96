"""Agent workspace bootstrap documents.

Each agent has a workspace directory holding a fixed set of markdown files
(AGENTS.md, SOUL.md, ...). They are rendered into the materialized context
and mirrored into the graph as AgentDoc nodes.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from kgm.core.rbac import DEFAULT_AGENT_ID, normalize_agent_id
from kgm.core.sessions import is_subagent_session_key

if TYPE_CHECKING:
    from kgm.config import Config

logger = logging.getLogger(__name__)

AGENTS_FILENAME = "AGENTS.md"
SOUL_FILENAME = "SOUL.md"
TOOLS_FILENAME = "TOOLS.md"
IDENTITY_FILENAME = "IDENTITY.md"
USER_FILENAME = "USER.md"
HEARTBEAT_FILENAME = "HEARTBEAT.md"
BOOTSTRAP_FILENAME = "BOOTSTRAP.md"
MEMORY_FILENAME = "MEMORY.md"
MEMORY_ALT_FILENAME = "memory.md"

BOOTSTRAP_FILENAMES = (
    AGENTS_FILENAME,
    SOUL_FILENAME,
    TOOLS_FILENAME,
    IDENTITY_FILENAME,
    USER_FILENAME,
    HEARTBEAT_FILENAME,
    BOOTSTRAP_FILENAME,
)

SUBAGENT_ALLOWLIST = frozenset({AGENTS_FILENAME, TOOLS_FILENAME})
GROUP_DOC_DENYLIST = frozenset({USER_FILENAME, MEMORY_FILENAME, MEMORY_ALT_FILENAME})

HEAD_RATIO = 0.7
TAIL_RATIO = 0.2


@dataclass
class BootstrapFile:
    name: str
    path: str
    content: str | None = None
    missing: bool = False


@dataclass
class ContextDoc:
    path: str
    content: str


def resolve_agent_workspace_dir(config: Config, agent_id: str) -> str:
    agent_id = normalize_agent_id(agent_id)
    state_dir = Path(config.state_dir).expanduser()
    if agent_id == DEFAULT_AGENT_ID:
        if config.workspace_dir:
            return os.path.expanduser(config.workspace_dir)
        return str(state_dir / "workspace")
    return str(state_dir / f"workspace-{agent_id}")


def _read(path: Path) -> BootstrapFile:
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return BootstrapFile(name=path.name, path=str(path), missing=True)
    return BootstrapFile(name=path.name, path=str(path), content=content)


def load_workspace_bootstrap_files(workspace_dir: str) -> list[BootstrapFile]:
    """Standard files in order; MEMORY.md / memory.md only when present."""
    root = Path(workspace_dir)
    files = [_read(root / name) for name in BOOTSTRAP_FILENAMES]

    seen: list[Path] = []
    for name in (MEMORY_FILENAME, MEMORY_ALT_FILENAME):
        path = root / name
        if not path.is_file():
            continue
        # case-insensitive filesystems resolve both names to one file
        if any(path.samefile(other) for other in seen):
            continue
        seen.append(path)
        files.append(_read(path))
    return files


def filter_bootstrap_files_for_session(
    files: list[BootstrapFile], session_key: str | None
) -> list[BootstrapFile]:
    if not is_subagent_session_key(session_key):
        return files
    return [f for f in files if f.name in SUBAGENT_ALLOWLIST]


def filter_group_files(files: list[BootstrapFile]) -> list[BootstrapFile]:
    return [f for f in files if f.name not in GROUP_DOC_DENYLIST]


def trim_content(content: str, name: str, max_chars: int) -> str:
    """Keep head and tail of an oversized document around a marker."""
    trimmed = content.rstrip()
    if len(trimmed) <= max_chars:
        return trimmed
    head = int(max_chars * HEAD_RATIO)
    tail = int(max_chars * TAIL_RATIO)
    marker = (
        f"\n\n[...truncated, read {name} for full content...]\n"
        f"…(truncated {name}: kept {head}+{tail} chars of {len(trimmed)})…\n\n"
    )
    return trimmed[:head] + marker + (trimmed[-tail:] if tail else "")


def build_context_docs(files: list[BootstrapFile], max_chars: int) -> list[ContextDoc]:
    docs = []
    for f in files:
        if f.missing or not f.content or not f.content.strip():
            continue
        docs.append(ContextDoc(path=f.name, content=trim_content(f.content, f.name, max_chars)))
    return docs

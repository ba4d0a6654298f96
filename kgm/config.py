"""Configuration management. All settings from environment variables with sensible defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

from kgm.core.decay import DEFAULT_DECAY, DecaySettings
from kgm.graph.config import MemgraphConfig, load_memgraph_config

logger = logging.getLogger(__name__)

VALID_PROVIDERS = ("memgraph", "none")
VALID_MODES = ("fs-only", "fs+kgm", "kgm-primary")
DEFAULT_MODE = "fs+kgm"

_BOOL_TRUTHY = {"true", "1", "yes"}


@dataclass(frozen=True)
class KgmSettings:
    enabled: bool = False
    provider: str = "memgraph"   # "memgraph" or "none"
    mode: str = DEFAULT_MODE     # "fs-only", "fs+kgm", "kgm-primary"
    memgraph: MemgraphConfig = field(default_factory=MemgraphConfig)
    decay: DecaySettings = field(default_factory=lambda: DEFAULT_DECAY)

    @property
    def effective_mode(self) -> str:
        """Mode actually in force. A disabled KGM behaves as filesystem-only."""
        if not self.enabled:
            return "fs-only"
        return self.mode or DEFAULT_MODE

    @property
    def mirrors(self) -> bool:
        return self.effective_mode != "fs-only"

    @property
    def reads_from_graph(self) -> bool:
        return self.effective_mode == "kgm-primary"


@dataclass(frozen=True)
class AuthConfig:
    enabled: bool = False
    api_key: str | None = None  # Static API key (checked via X-API-Key header)
    header_name: str = "X-API-Key"


@dataclass(frozen=True)
class Config:
    kgm: KgmSettings = field(default_factory=KgmSettings)
    auth: AuthConfig = field(default_factory=AuthConfig)
    state_dir: str = str(Path.home() / ".kgm")
    # May contain "{agentId}"; empty = <state_dir>/agents/{agentId}/sessions/sessions.json
    session_store: str = ""
    workspace_dir: str = ""    # default agent's workspace; empty = <state_dir>/workspace
    bootstrap_max_chars: int = 20_000
    http_host: str = "0.0.0.0"
    http_port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


def _parse_cors_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins. '*' means allow all."""
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]


def _normalize_mode(raw: str | None) -> str:
    mode = (raw or "").strip().lower()
    if not mode:
        return DEFAULT_MODE
    if mode not in VALID_MODES:
        logger.warning("Unknown KGM mode '%s' (valid: %s), using %s", raw, ", ".join(VALID_MODES), DEFAULT_MODE)
        return DEFAULT_MODE
    return mode


def _normalize_provider(raw: str | None) -> str:
    provider = (raw or "").strip().lower() or "memgraph"
    if provider not in VALID_PROVIDERS:
        logger.warning("Unknown KGM provider '%s' (valid: %s)", raw, ", ".join(VALID_PROVIDERS))
    return provider


def load_config() -> Config:
    """Load configuration from environment variables."""
    return Config(
        kgm=KgmSettings(
            enabled=os.getenv("KGM_ENABLED", "false").lower() in _BOOL_TRUTHY,
            provider=_normalize_provider(os.getenv("KGM_PROVIDER", "memgraph")),
            mode=_normalize_mode(os.getenv("KGM_MODE", DEFAULT_MODE)),
            memgraph=load_memgraph_config(),
            decay=DecaySettings(
                half_life_ms=int(os.getenv("KGM_DECAY_HALF_LIFE_MS", str(DEFAULT_DECAY.half_life_ms))),
                min_weight=float(os.getenv("KGM_DECAY_MIN_WEIGHT", str(DEFAULT_DECAY.min_weight))),
                max_nodes_per_scope=int(os.getenv("KGM_DECAY_MAX_NODES", str(DEFAULT_DECAY.max_nodes_per_scope))),
            ),
        ),
        auth=AuthConfig(
            enabled=os.getenv("KGM_AUTH_ENABLED", "false").lower() in _BOOL_TRUTHY,
            api_key=os.getenv("KGM_API_KEY") or None,
            header_name=os.getenv("KGM_AUTH_HEADER", "X-API-Key"),
        ),
        state_dir=os.getenv("KGM_STATE_DIR", str(Path.home() / ".kgm")),
        session_store=os.getenv("KGM_SESSION_STORE", ""),
        workspace_dir=os.getenv("KGM_WORKSPACE_DIR", ""),
        bootstrap_max_chars=int(os.getenv("KGM_BOOTSTRAP_MAX_CHARS", "20000")),
        http_host=os.getenv("KGM_HTTP_HOST", "0.0.0.0"),
        http_port=int(os.getenv("KGM_HTTP_PORT", "8000")),
        cors_origins=_parse_cors_origins(os.getenv("KGM_CORS_ORIGINS", "*")),
    )


def _section(data: dict, name: str) -> dict:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def _pick(data: dict, key: str, default: Any, target_type: type) -> Any:
    """Read a key in either snake_case or camelCase form, coerced to target_type."""
    camel = key.split("_")[0] + "".join(p.title() for p in key.split("_")[1:])
    value = data.get(key, data.get(camel))
    if value is None:
        return default
    if target_type is bool:
        if isinstance(value, str):
            return value.lower() in _BOOL_TRUTHY
        return bool(value)
    return target_type(value)


def config_from_mapping(data: dict, base: Config | None = None) -> Config:
    """Build a Config from a nested document such as ``{"kgm": {"enabled": true}}``.

    Unknown keys are ignored; missing keys keep the values of ``base`` (or defaults).
    """
    base = base or Config()
    kgm = _section(data, "kgm")
    memgraph = _section(kgm, "memgraph")
    decay = _section(kgm, "decay")
    b_mg = base.kgm.memgraph
    b_decay = base.kgm.decay

    return Config(
        kgm=KgmSettings(
            enabled=_pick(kgm, "enabled", base.kgm.enabled, bool),
            provider=_normalize_provider(_pick(kgm, "provider", base.kgm.provider, str)),
            mode=_normalize_mode(_pick(kgm, "mode", base.kgm.mode, str)),
            memgraph=MemgraphConfig(
                url=_pick(memgraph, "url", b_mg.url, str),
                user=_pick(memgraph, "user", b_mg.user, str),
                password=_pick(memgraph, "password", b_mg.password, str),
                database=_pick(memgraph, "database", b_mg.database, str),
                timeout_ms=_pick(memgraph, "timeout_ms", b_mg.timeout_ms, int),
                max_pool_size=_pick(memgraph, "max_pool_size", b_mg.max_pool_size, int),
            ),
            decay=DecaySettings(
                half_life_ms=_pick(decay, "half_life_ms", b_decay.half_life_ms, int),
                min_weight=_pick(decay, "min_weight", b_decay.min_weight, float),
                max_nodes_per_scope=_pick(decay, "max_nodes_per_scope", b_decay.max_nodes_per_scope, int),
            ),
        ),
        auth=base.auth,
        state_dir=_pick(data, "state_dir", base.state_dir, str),
        session_store=_pick(data, "session_store", base.session_store, str),
        workspace_dir=_pick(data, "workspace_dir", base.workspace_dir, str),
        bootstrap_max_chars=_pick(data, "bootstrap_max_chars", base.bootstrap_max_chars, int),
        http_host=base.http_host,
        http_port=base.http_port,
        cors_origins=base.cors_origins,
    )


SECRET_KEYS = ("kgm.memgraph.password", "auth.api_key")


def _flatten(prefix: str, obj: Any, out: dict[str, Any]) -> None:
    for f in fields(obj):
        value = getattr(obj, f.name)
        name = f"{prefix}{f.name}"
        if is_dataclass(value):
            _flatten(f"{name}.", value, out)
        elif not isinstance(value, list):
            out[name] = value


def config_to_flat(config: Config) -> dict[str, Any]:
    """Dot-notation view of the config for display. Secrets are masked; lists are omitted."""
    result: dict[str, Any] = {}
    _flatten("", config, result)
    for key in SECRET_KEYS:
        if result.get(key):
            result[key] = "********"
    return result

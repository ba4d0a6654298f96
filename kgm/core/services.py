"""Service container and factory. Centralizes component initialization."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from kgm.config import Config, config_from_mapping, load_config
from kgm.core import audit, mirror
from kgm.core.errors import InvalidRequest
from kgm.core.ingest import TranscriptIngestScheduler, ingest_session_transcript_file
from kgm.core.methods import KgmMethods
from kgm.core.outcome import Outcome
from kgm.graph.registry import ProviderRegistry
from kgm.graph.scoped import ScopedGraphProvider

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Holds all initialized KGM components.

    Best-effort operations (mirrors, snapshots, ingest) return an ``Outcome``;
    failures are logged here and never propagate to the caller.
    """

    config: Config
    registry: ProviderRegistry
    methods: KgmMethods
    ingest_scheduler: TranscriptIngestScheduler = field(init=False)

    def __post_init__(self):
        # Calls back into the container so ingest always sees the live config.
        self.ingest_scheduler = TranscriptIngestScheduler(self.ingest_transcript)

    @property
    def provider(self) -> ScopedGraphProvider | None:
        return self.registry.resolve(self.config.kgm)

    def dispatch(self, method: str, params: dict | None = None) -> dict:
        return self.methods.dispatch(method, params)

    def _log_outcome(self, what: str, outcome: Outcome) -> Outcome:
        if not outcome.ok:
            logger.warning("kgm %s failed: %s", what, outcome.reason, exc_info=outcome.error)
        elif outcome.skipped:
            logger.debug("kgm %s skipped: %s", what, outcome.reason)
        return outcome

    # -- config ------------------------------------------------------------

    def apply_config(
        self,
        raw: str,
        reason: str = "config.apply",
        session_key: str | None = None,
        note: str | None = None,
    ) -> Config:
        """Replace the running config from a JSON document and snapshot it."""
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise InvalidRequest(f"invalid config: {e}") from e
        if not isinstance(data, dict):
            raise InvalidRequest("invalid config: expected an object")

        try:
            self.config = config_from_mapping(data, base=self.config)
        except (TypeError, ValueError) as e:
            raise InvalidRequest(f"invalid config: {e}") from e
        self.methods.config = self.config
        logger.info("Config applied (%s): kgm.enabled=%s mode=%s",
                    reason, self.config.kgm.enabled, self.config.kgm.effective_mode)
        self.record_config_snapshot(raw, reason, session_key=session_key, note=note)
        return self.config

    def record_config_snapshot(
        self,
        raw: str,
        reason: str,
        session_key: str | None = None,
        note: str | None = None,
    ) -> Outcome:
        outcome = audit.record_config_snapshot(
            self.config, raw, reason, session_key=session_key, note=note, provider=self.provider,
        )
        return self._log_outcome("config snapshot", outcome)

    # -- mirrors -----------------------------------------------------------

    def mirror_agents(self, agents: list[dict]) -> Outcome:
        return self._log_outcome(
            "agents mirror", mirror.mirror_agents(self.config.kgm, agents, self.provider),
        )

    def mirror_skills(self, agent_id: str, skills: list[dict]) -> Outcome:
        return self._log_outcome(
            "skills mirror", mirror.mirror_skills(self.config.kgm, agent_id, skills, self.provider),
        )

    def mirror_nodes(self, nodes: list[dict]) -> Outcome:
        return self._log_outcome(
            "nodes mirror", mirror.mirror_nodes(self.config.kgm, nodes, self.provider),
        )

    def read_agents(self) -> list[dict] | None:
        """Agents from the graph in kgm-primary mode; None means use the filesystem."""
        outcome = self._log_outcome("agents read", mirror.read_agents(self.config.kgm, self.provider))
        return outcome.value if outcome.ok else None

    def read_nodes(self) -> list[dict] | None:
        outcome = self._log_outcome("nodes read", mirror.read_nodes(self.config.kgm, self.provider))
        return outcome.value if outcome.ok else None

    # -- transcripts ---------------------------------------------------------

    def ingest_transcript(self, session_file: str) -> Outcome:
        outcome = ingest_session_transcript_file(self.config, session_file, self.provider)
        return self._log_outcome("transcript ingest", outcome)

    def on_transcript_update(self, session_file: str) -> None:
        """Debounced entry point for transcript writers."""
        if not self.config.kgm.enabled:
            return
        self.ingest_scheduler.schedule(session_file)

    def close(self) -> None:
        self.ingest_scheduler.shutdown()
        self.registry.close()


def create_services(config: Config | None = None, registry: ProviderRegistry | None = None) -> Services:
    """Build all KGM services from config.

    Args:
        config: Configuration to use. Loads from env if None.
        registry: Provider registry. A fresh one is created if None.
    """
    if config is None:
        config = load_config()
    if registry is None:
        registry = ProviderRegistry()

    svc = Services(config=config, registry=registry, methods=KgmMethods(config, registry))

    if config.kgm.enabled:
        logger.info("KGM enabled: provider=%s mode=%s url=%s",
                    config.kgm.provider, config.kgm.effective_mode, config.kgm.memgraph.url)
    else:
        logger.info("KGM disabled (fs-only)")
    return svc

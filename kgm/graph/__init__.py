"""Graph provider factory. Returns None when KGM is disabled (graceful degradation)."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kgm.config import KgmSettings
    from kgm.graph.interface import GraphProvider

logger = logging.getLogger(__name__)


def get_graph_provider(settings: KgmSettings) -> GraphProvider | None:
    """Create and return a graph provider, or None if not configured.

    Only the 'memgraph' provider is supported. Returns None for any other
    provider, when KGM is disabled, or if initialization fails. The result
    is unscoped; callers wrap it in ``ScopedGraphProvider``.
    """
    if not settings.enabled or settings.provider != "memgraph":
        return None

    try:
        from kgm.graph.memgraph_provider import MemgraphGraphProvider

        return MemgraphGraphProvider(settings.memgraph)
    except Exception:
        logger.warning("Failed to initialize Memgraph graph provider", exc_info=True)
        return None

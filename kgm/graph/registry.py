"""Process-wide provider cache keyed by connection fingerprint."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable

from kgm.core.errors import ProviderUnavailable
from kgm.graph import get_graph_provider
from kgm.graph.scoped import ScopedGraphProvider

if TYPE_CHECKING:
    from kgm.config import KgmSettings
    from kgm.graph.interface import GraphProvider

logger = logging.getLogger(__name__)


def fingerprint(settings: KgmSettings) -> tuple:
    mg = settings.memgraph
    return (settings.enabled, settings.provider, mg.url, mg.user, mg.database)


class ProviderRegistry:
    """Hands out one scoped provider per configuration fingerprint.

    A request with a different fingerprint closes the cached provider and
    replaces it. The factory is injectable so tests can supply fakes.
    """

    def __init__(self, factory: Callable[[KgmSettings], GraphProvider | None] | None = None):
        self._factory = factory or get_graph_provider
        self._lock = threading.Lock()
        self._provider: ScopedGraphProvider | None = None
        self._fingerprint: tuple | None = None

    def get_or_create(self, settings: KgmSettings) -> ScopedGraphProvider | None:
        fp = fingerprint(settings)
        with self._lock:
            if self._provider is not None and self._fingerprint == fp:
                return self._provider
            if self._provider is not None:
                logger.info("KGM provider configuration changed, replacing provider")
                try:
                    self._provider.close()
                except Exception:
                    logger.warning("Failed to close previous KGM provider", exc_info=True)
                self._provider = None
                self._fingerprint = None
            inner = self._factory(settings)
            if inner is None:
                return None
            self._provider = ScopedGraphProvider(inner)
            self._fingerprint = fp
            return self._provider

    def resolve(self, settings: KgmSettings) -> ScopedGraphProvider | None:
        """Provider for ``settings``, or None when KGM is off or not Memgraph."""
        if not settings.enabled or settings.provider != "memgraph":
            return None
        return self.get_or_create(settings)

    def require(self, settings: KgmSettings) -> ScopedGraphProvider:
        provider = self.resolve(settings)
        if provider is None:
            raise ProviderUnavailable()
        return provider

    def close(self) -> None:
        with self._lock:
            if self._provider is not None:
                self._provider.close()
            self._provider = None
            self._fingerprint = None

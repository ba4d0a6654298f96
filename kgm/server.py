"""KGM HTTP server. Entry point for the graph memory service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from kgm.config import load_config
from kgm.core.rbac import resolve_admin_scope
from kgm.core.services import Services, create_services
from kgm.graph.interface import Actor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("kgm")


def _start(svc: Services) -> None:
    """Connect the graph provider and ensure identity indexes (non-fatal)."""
    provider = svc.provider
    if provider is None:
        return
    try:
        provider.connect()
        provider.ensure_schema(Actor.operator(), resolve_admin_scope())
        logger.info("Memgraph connected and indexes ensured")
    except Exception:
        logger.warning("Memgraph not reachable at startup, continuing", exc_info=True)


def _stop(svc: Services) -> None:
    svc.close()
    logger.info("KGM stopped")


def main():
    """Run the KGM HTTP server."""
    import uvicorn

    from kgm.api import create_api

    config = load_config()
    svc = create_services(config=config)
    app = create_api(svc)

    @asynccontextmanager
    async def lifespan(app):
        _start(svc)
        try:
            yield
        finally:
            _stop(svc)

    app.router.lifespan_context = lifespan

    logger.info("Starting KGM (HTTP on %s:%d)", config.http_host, config.http_port)
    uvicorn.run(app, host=config.http_host, port=config.http_port)


if __name__ == "__main__":
    main()

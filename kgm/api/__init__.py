"""KGM HTTP API.

Route modules live under kgm/api/ and each exposes
``register_routes(router, svc)``; ``create_api`` wires them into one app.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from kgm import __version__
from kgm.api import platform, rpc
from kgm.api.utils import APIKeyAuthMiddleware, error_response
from kgm.core.errors import KgmError
from kgm.core.services import Services

logger = logging.getLogger(__name__)

ROUTE_MODULES = (rpc, platform)


def create_api(svc: Services) -> FastAPI:
    """FastAPI app exposing the kgm.* method table and platform hooks."""
    cfg = svc.config
    app = FastAPI(
        title="KGM API",
        description="Scoped graph memory: kgm.* methods and platform hooks.",
        version=__version__,
        docs_url="/swagger",
        redoc_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    if cfg.auth.enabled and cfg.auth.api_key:
        app.add_middleware(APIKeyAuthMiddleware, api_key=cfg.auth.api_key, header_name=cfg.auth.header_name)
        logger.info("API key auth on (%s)", cfg.auth.header_name)

    @app.exception_handler(KgmError)
    async def _kgm_error(request: Request, exc: KgmError):
        if exc.code in ("UNAVAILABLE", "TRANSIENT"):
            logger.warning("%s %s: %s", request.method, request.url.path, exc.message)
        return error_response(exc)

    router = APIRouter()
    for module in ROUTE_MODULES:
        module.register_routes(router, svc)
    app.include_router(router)
    return app

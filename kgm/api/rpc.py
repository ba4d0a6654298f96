"""Method-table endpoints: status and kgm.* RPC."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Path

from kgm import __version__
from kgm.core.services import Services

logger = logging.getLogger(__name__)


def register_routes(router: APIRouter, svc: Services, **kw):

    @router.get("/status")
    def api_status():
        status = svc.dispatch("kgm.admin.status")
        return {**status, "version": __version__}

    @router.get("/methods")
    def api_methods():
        return {"ok": True, "methods": svc.methods.methods}

    @router.post("/rpc/{method}")
    def api_rpc(
        method: str = Path(...),
        params: dict | None = Body(default=None),
    ):
        logger.debug("rpc %s", method)
        return svc.dispatch(method, params)

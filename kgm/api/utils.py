"""Error envelope and API key middleware shared by the route modules."""

from __future__ import annotations

import hmac

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from kgm.core.errors import KgmError

ERROR_STATUS = {
    "INVALID_REQUEST": 400,
    "SCOPE_NOT_ALLOWED": 403,
    "UNAVAILABLE": 503,
    "TRANSIENT": 503,
}

# Health checks and API docs stay reachable without a key.
OPEN_PATHS = frozenset({"/status", "/swagger", "/openapi.json"})


def error_body(code: str, message: str) -> dict:
    return {"ok": False, "error": {"code": code, "message": message}}


def error_response(error: KgmError) -> JSONResponse:
    """Error envelope for a KgmError; unknown codes map to 500."""
    return JSONResponse(
        status_code=ERROR_STATUS.get(error.code, 500),
        content=error_body(error.code, error.message),
    )


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """Rejects requests without the configured API key header.

    CORS preflight and ``OPEN_PATHS`` pass through untouched.
    """

    def __init__(self, app, api_key: str, header_name: str = "X-API-Key", open_paths=OPEN_PATHS):
        super().__init__(app)
        self._expected = api_key.encode("utf-8")
        self._header = header_name
        self._open = frozenset(open_paths)

    def _authorized(self, request: Request) -> bool:
        supplied = request.headers.get(self._header)
        return bool(supplied) and hmac.compare_digest(supplied.encode("utf-8"), self._expected)

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path.rstrip("/") in self._open:
            return await call_next(request)
        if not self._authorized(request):
            return JSONResponse(status_code=401, content=error_body("UNAUTHORIZED", "Invalid or missing API key"))
        return await call_next(request)

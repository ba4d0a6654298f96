"""KGM error taxonomy.

Each error carries a stable ``code`` so the request layer can map it without
string matching. Best-effort failures are not exceptions: see ``kgm.core.outcome``.
"""

from __future__ import annotations


class KgmError(Exception):
    """Base class for errors surfaced to KGM callers."""

    code = "INTERNAL"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(KgmError):
    """Missing or ambiguous scope, malformed params, unknown method."""

    code = "INVALID_REQUEST"


class ScopeNotAllowed(KgmError):
    """The actor may not read or write the requested scope."""

    code = "SCOPE_NOT_ALLOWED"

    def __init__(self, message: str = "scope not allowed"):
        super().__init__(message)


class ProviderUnavailable(KgmError):
    """KGM is disabled or no provider is configured."""

    code = "UNAVAILABLE"

    def __init__(self, message: str = "KGM is disabled or not configured"):
        super().__init__(message)


class TransientStoreError(KgmError):
    """The graph store kept failing with retryable errors."""

    code = "TRANSIENT"

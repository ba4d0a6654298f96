"""Result type for best-effort work (mirrors, snapshots, ingest).

These operations must never break the caller, so instead of raising they
return an ``Outcome`` and leave logging to the service layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Outcome:
    ok: bool
    skipped: bool = False
    reason: str | None = None
    value: Any = None
    error: BaseException | None = None

    @classmethod
    def success(cls, value: Any = None) -> Outcome:
        return cls(ok=True, value=value)

    @classmethod
    def skip(cls, reason: str) -> Outcome:
        return cls(ok=True, skipped=True, reason=reason)

    @classmethod
    def failure(cls, error: BaseException, reason: str | None = None) -> Outcome:
        return cls(ok=False, reason=reason or str(error), error=error)

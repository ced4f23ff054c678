"""Gate error taxonomy.

`BlockedError` and `RateLimitedError` terminate a request with a user-visible
denial. `StoreUnavailableError` is raised at the BlockStore boundary for any
storage failure and is never shown to end users by the gate. `BlockNotFoundError`
is only raised on admin paths.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from starlette.responses import JSONResponse

BLOCKED_MESSAGE = "Access denied. Your IP has been blocked due to excessive requests."
RATE_LIMITED_MESSAGE = "Too many requests, please try again later."


class GateError(Exception):
    """Base class for gate errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def payload(self) -> dict[str, Any]:
        return {"status": "error", "message": self.message}

    def headers(self) -> dict[str, str]:
        return {}

    def to_response(self) -> JSONResponse:
        """Render the error in the `{status, message}` denial shape."""
        return JSONResponse(
            status_code=self.status_code,
            content=self.payload(),
            headers=self.headers() or None,
        )


class BlockedError(GateError):
    """Identity has an active block record."""

    status_code = 403

    def __init__(self, identity: str, blocked_at: datetime, message: str = BLOCKED_MESSAGE) -> None:
        super().__init__(message)
        self.identity = identity
        self.blocked_at = blocked_at

    def payload(self) -> dict[str, Any]:
        body = super().payload()
        body["blocked_at"] = self.blocked_at.isoformat()
        return body


class RateLimitedError(GateError):
    """Tier budget exceeded in the current window."""

    status_code = 429

    def __init__(
        self,
        identity: str,
        tier: str,
        count: int,
        retry_after: float,
        message: str = RATE_LIMITED_MESSAGE,
    ) -> None:
        super().__init__(message)
        self.identity = identity
        self.tier = tier
        self.count = count
        self.retry_after = retry_after

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(max(1, math.ceil(self.retry_after)))}


class StoreUnavailableError(GateError):
    """Durable block storage failed or timed out."""

    status_code = 503

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        super().__init__(f"Block store unavailable during {operation}")
        self.operation = operation
        self.cause = cause


class BlockNotFoundError(LookupError):
    """No block record exists for the requested identity or id."""

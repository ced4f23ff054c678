"""Abuse-control gate middleware.

Every inbound request walks a fixed pipeline:

    CHECK_BLOCK -> CHECK_RATE -> ADMIT

short-circuiting to a 403 (active block) or a 429 (tier budget exceeded).
The block check fails open when storage is unavailable; the rate check is
purely in memory and never consults storage.
"""

from __future__ import annotations

from collections.abc import Iterable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from ipgate.core.errors import BlockedError, GateError, RateLimitedError, StoreUnavailableError
from ipgate.core.logging import get_logger
from ipgate.services.blocks import BlockStore
from ipgate.services.identity import client_identity
from ipgate.services.tiers import RouteTiers, Tier
from ipgate.services.window import WindowCounter

logger = get_logger(__name__)


def auto_block_reason(tier: Tier, count: int, window_seconds: float) -> str:
    return f"Auto-blocked for {tier.value} abuse: {count} requests in {window_seconds:g}s"


class GateMiddleware(BaseHTTPMiddleware):
    """Middleware that denies blocked identities and enforces per-tier budgets."""

    def __init__(
        self,
        app: ASGIApp,
        counter: WindowCounter,
        store: BlockStore,
        routes: RouteTiers,
        trust_proxy_headers: bool = True,
        exempt_paths: Iterable[str] = (),
    ) -> None:
        super().__init__(app)
        self._counter = counter
        self._store = store
        self._routes = routes
        self._trust_proxy_headers = trust_proxy_headers
        self._exempt_paths = frozenset(exempt_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Run the block and rate checks before handing the request to the routes."""
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        identity = client_identity(request, self._trust_proxy_headers)
        try:
            await self._check_block(identity)
            await self._check_rate(identity, self._routes.tier_for(request.url.path))
        except GateError as exc:
            return exc.to_response()

        return await call_next(request)

    async def _check_block(self, identity: str) -> None:
        try:
            block = await self._store.find_active(identity)
        except StoreUnavailableError as exc:
            logger.warning("block_check_failed", ip=identity, error=repr(exc.cause))
            return
        if block is not None:
            logger.info("request_blocked", ip=identity, blocked_at=block.created_at.isoformat())
            raise BlockedError(identity, block.created_at)

    async def _check_rate(self, identity: str, tier: Tier) -> None:
        admission = self._counter.admit(identity, tier)
        if admission.allowed:
            return

        limit = self._counter.policy.limit_for(tier)
        logger.info(
            "request_rate_limited",
            ip=identity,
            tier=tier.value,
            count=admission.count_in_window,
        )
        if admission.threshold_crossed and limit.auto_block:
            await self._store.record_auto_block(
                identity,
                auto_block_reason(tier, admission.count_in_window, limit.window_seconds),
                admission.count_in_window,
            )
        raise RateLimitedError(
            identity,
            tier.value,
            admission.count_in_window,
            admission.retry_after,
        )

"""End-to-end tests for the gate middleware."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ipgate.core.config import Settings
from ipgate.core.errors import BLOCKED_MESSAGE, RATE_LIMITED_MESSAGE
from ipgate.main import create_app
from ipgate.schemas.blocks import BlockLookup
from ipgate.services.blocks import BlockStore
from tests.conftest import FakeRedis, ManualClock, broken_session_factory, stalled_session_factory


def from_ip(ip: str) -> dict[str, str]:
    return {"X-Forwarded-For": ip}


def add_ping_route(app: FastAPI) -> None:
    @app.get("/api/ping")
    async def ping() -> dict[str, bool]:
        return {"ok": True}


@pytest.fixture()
async def storeless_client(
    test_settings: Settings, clock: ManualClock
) -> AsyncIterator[tuple[FastAPI, AsyncClient]]:
    """App whose block storage never answers within the store timeout."""
    settings = test_settings.model_copy(
        update={"store_timeout_seconds": 0.05, "rate_limit_public_requests": 2}
    )
    app = create_app(
        settings=settings,
        session_factory=stalled_session_factory,  # type: ignore[arg-type]
        clock=clock,
    )
    add_ping_route(app)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield app, ac


async def test_auth_tier_storm_is_denied_and_auto_blocked(
    client: AsyncClient, app: FastAPI, clock: ManualClock
) -> None:
    """11 logins in 5 seconds: 10 reach the route, the 11th is rate limited and blocked."""
    credentials = {"email": "nobody@example.com", "password": "guess-123"}

    for _ in range(10):
        r = await client.post("/api/auth/login", json=credentials, headers=from_ip("198.51.100.7"))
        assert r.status_code == 401
        clock.advance(0.45)

    r11 = await client.post("/api/auth/login", json=credentials, headers=from_ip("198.51.100.7"))
    assert r11.status_code == 429
    assert r11.json() == {"status": "error", "message": RATE_LIMITED_MESSAGE}
    assert int(r11.headers["Retry-After"]) >= 1

    store: BlockStore = app.state.block_store
    block = await store.find_active("198.51.100.7")
    assert block is not None
    assert "auth abuse" in block.reason
    assert block.request_count == 11

    r12 = await client.get("/api/health", headers=from_ip("198.51.100.7"))
    assert r12.status_code == 403
    body = r12.json()
    assert body["status"] == "error"
    assert body["message"] == BLOCKED_MESSAGE
    assert datetime.fromisoformat(body["blocked_at"]) == block.created_at


async def test_manual_block_then_unblock(
    client: AsyncClient, admin_headers: dict[str, str]
) -> None:
    created = await client.post(
        "/api/visitors/blocked",
        json={"ip": "203.0.113.5", "reason": "abuse report"},
        headers=admin_headers,
    )
    assert created.status_code == 200
    block = created.json()["data"]

    denied = await client.get("/api/health", headers=from_ip("203.0.113.5"))
    assert denied.status_code == 403
    assert datetime.fromisoformat(denied.json()["blocked_at"]) == datetime.fromisoformat(
        block["created_at"]
    )

    unblocked = await client.patch(
        f"/api/visitors/blocked/{block['id']}", json={"active": False}, headers=admin_headers
    )
    assert unblocked.status_code == 200
    assert unblocked.json()["message"] == "IP unblocked"

    admitted = await client.get("/api/health", headers=from_ip("203.0.113.5"))
    assert admitted.status_code == 200


async def test_block_takes_precedence_over_rate_window(
    client: AsyncClient, app: FastAPI
) -> None:
    store: BlockStore = app.state.block_store
    await store.set_active("192.0.2.10", True, "abuse report")

    for _ in range(5):
        r = await client.get("/api/health", headers=from_ip("192.0.2.10"))
        assert r.status_code == 403

    # Denied at the block check, so the window was never consulted.
    assert len(app.state.window_counter) == 0


async def test_public_tier_storm_auto_blocks(
    test_settings: Settings, session_maker: async_sessionmaker[AsyncSession], clock: ManualClock
) -> None:
    settings = test_settings.model_copy(update={"rate_limit_public_requests": 3})
    app = create_app(settings=settings, session_factory=session_maker, clock=clock)
    add_ping_route(app)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        codes = [(await ac.get("/api/ping", headers=from_ip("192.0.2.20"))).status_code for _ in range(5)]

    assert codes == [200, 200, 200, 429, 403]
    block = await app.state.block_store.find_active("192.0.2.20")
    assert block is not None and "public abuse" in block.reason


async def test_auto_block_can_be_limited_to_auth_tier(
    test_settings: Settings, session_maker: async_sessionmaker[AsyncSession], clock: ManualClock
) -> None:
    settings = test_settings.model_copy(
        update={"rate_limit_public_requests": 2, "auto_block_tiers": "auth"}
    )
    app = create_app(settings=settings, session_factory=session_maker, clock=clock)
    add_ping_route(app)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        codes = [(await ac.get("/api/ping", headers=from_ip("192.0.2.30"))).status_code for _ in range(4)]
        clock.advance(61.0)
        after_window = await ac.get("/api/ping", headers=from_ip("192.0.2.30"))

    assert codes == [200, 200, 429, 429]
    assert after_window.status_code == 200
    assert await app.state.block_store.find_active("192.0.2.30") is None


async def test_public_traffic_does_not_consume_auth_budget(
    client: AsyncClient, app: FastAPI
) -> None:
    for _ in range(15):
        assert (await client.get("/api/health", headers=from_ip("192.0.2.40"))).status_code == 200

    r = await client.post(
        "/api/auth/login",
        json={"email": "nobody@example.com", "password": "guess-123"},
        headers=from_ip("192.0.2.40"),
    )
    assert r.status_code == 401


async def test_block_check_fails_open_when_store_times_out(
    storeless_client: tuple[FastAPI, AsyncClient],
) -> None:
    app, ac = storeless_client

    first = await ac.get("/api/ping", headers=from_ip("198.51.100.7"))
    second = await ac.get("/api/ping", headers=from_ip("198.51.100.7"))
    third = await ac.get("/api/ping", headers=from_ip("198.51.100.7"))

    assert first.status_code == 200
    assert second.status_code == 200
    # The rate check still runs; the failed auto-block write does not change the denial.
    assert third.status_code == 429
    assert third.json()["message"] == RATE_LIMITED_MESSAGE


async def test_block_check_fails_open_when_store_is_down(
    test_settings: Settings, clock: ManualClock
) -> None:
    app = create_app(
        settings=test_settings,
        session_factory=broken_session_factory,  # type: ignore[arg-type]
        clock=clock,
    )
    add_ping_route(app)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        r = await ac.get("/api/ping")

    assert r.status_code == 200


async def test_exempt_paths_bypass_the_gate(
    test_settings: Settings, session_maker: async_sessionmaker[AsyncSession], clock: ManualClock
) -> None:
    settings = test_settings.model_copy(
        update={"rate_limit_public_requests": 1, "gate_exempt_paths": "/api/ping"}
    )
    app = create_app(settings=settings, session_factory=session_maker, clock=clock)
    add_ping_route(app)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        codes = [(await ac.get("/api/ping")).status_code for _ in range(3)]

    assert codes == [200, 200, 200]


async def test_loopback_clients_share_one_identity(client: AsyncClient, app: FastAPI) -> None:
    await client.get("/api/health", headers=from_ip("::1"))
    await client.get("/api/health", headers=from_ip("::ffff:127.0.0.1"))
    await client.get("/api/health")

    assert len(app.state.window_counter) == 1


async def test_unreadable_cached_lookup_does_not_break_requests(
    test_settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    clock: ManualClock,
    fake_redis: FakeRedis,
) -> None:
    fake_redis._data["block:198.51.100.7"] = "{not json"
    app = create_app(
        settings=test_settings,
        session_factory=session_maker,
        redis_client=fake_redis,  # type: ignore[arg-type]
        clock=clock,
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        r = await ac.get("/api/health", headers=from_ip("198.51.100.7"))

    assert r.status_code == 200
    assert BlockLookup.model_validate_json(fake_redis._data["block:198.51.100.7"]).block is None

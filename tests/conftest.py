"""Pytest fixtures for the gate.

The suite uses a file-backed SQLite database (so that concurrent sessions see
the same data), an in-memory fake for Redis and a manual clock so window
behaviour is deterministic.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ipgate.core.config import Settings, get_settings
from ipgate.core.security import create_admin_token
from ipgate.db.models import Base
from ipgate.main import create_app
from ipgate.repositories.admins import AdminsRepository
from ipgate.services.auth import AuthService
from ipgate.services.blocks import BlockStore

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "s3cret-pass"


class FakeRedis:
    """In-memory async Redis substitute with call counters.

    Implements the subset used by the cache helpers (get, setex, delete, incr).
    With `fail=True` every call raises a Redis connection error.
    """

    def __init__(self, fail: bool = False) -> None:
        self._data: dict[str, str] = {}
        self.fail = fail
        self.get_calls: int = 0
        self.setex_calls: int = 0
        self.delete_calls: int = 0

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis is down")

    async def get(self, key: str) -> str | None:
        self.get_calls += 1
        self._check()
        return self._data.get(key)

    async def setex(self, name: str, time: int, value: str) -> None:
        self.setex_calls += 1
        self._check()
        self._data[name] = value

    async def delete(self, key: str) -> None:
        self.delete_calls += 1
        self._check()
        self._data.pop(key, None)

    async def incr(self, key: str) -> int:
        self._check()
        value = int(self._data.get(key, "0")) + 1
        self._data[key] = str(value)
        return value

    async def aclose(self) -> None:
        return None


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _StalledSession:
    async def __aenter__(self) -> Any:
        await asyncio.sleep(30)

    async def __aexit__(self, *exc: object) -> None:
        return None


class _BrokenSession:
    async def __aenter__(self) -> Any:
        raise OSError("connection refused")

    async def __aexit__(self, *exc: object) -> None:
        return None


def stalled_session_factory() -> _StalledSession:
    """Session factory whose sessions never open (storage timeout)."""
    return _StalledSession()


def broken_session_factory() -> _BrokenSession:
    """Session factory whose sessions fail to connect (storage outage)."""
    return _BrokenSession()


@pytest.fixture()
async def session_maker(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """SQLite async session factory for tests."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ipgate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    yield maker
    await engine.dispose()


@pytest.fixture()
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_maker() as session:
        yield session


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def block_store(session_maker: async_sessionmaker[AsyncSession]) -> BlockStore:
    return BlockStore(session_maker, timeout_seconds=5.0)


@pytest.fixture()
def test_settings() -> Settings:
    """Settings with the documented default tiers and all tiers auto-blocking."""
    return get_settings().model_copy(
        update={
            "rate_limit_public_requests": 100,
            "rate_limit_public_window_seconds": 60.0,
            "rate_limit_auth_requests": 10,
            "rate_limit_auth_window_seconds": 60.0,
            "rate_limit_admin_requests": 20,
            "rate_limit_admin_window_seconds": 60.0,
            "auto_block_tiers": "public,auth,admin",
            "gate_exempt_paths": "",
            "trust_proxy_headers": True,
            "block_cache_enabled": False,
            "admin_email": None,
            "admin_password": None,
        }
    )


@pytest.fixture()
def app(
    test_settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    clock: ManualClock,
) -> FastAPI:
    return create_app(settings=test_settings, session_factory=session_maker, clock=clock)


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """HTTP client talking to the app in-process; the default peer is 127.0.0.1."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def admin(db_session: AsyncSession) -> str:
    """Seed the admin account and return its email."""
    await AuthService(AdminsRepository(db_session)).ensure_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
    return ADMIN_EMAIL


@pytest.fixture()
def admin_headers(admin: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_admin_token(admin)}"}

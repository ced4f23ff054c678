"""FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import redis.asyncio as redis
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ipgate.api.deps import BlockStoreDep
from ipgate.api.routes.auth import router as auth_router
from ipgate.api.routes.blocks import router as blocks_router
from ipgate.core.config import Settings, get_settings, split_csv
from ipgate.core.errors import StoreUnavailableError
from ipgate.core.logging import configure_logging, get_logger
from ipgate.db.session import SessionFactory, create_engine, create_session_factory
from ipgate.middleware.gate import GateMiddleware
from ipgate.repositories.admins import AdminsRepository
from ipgate.services.auth import AuthService
from ipgate.services.blocks import BlockStore
from ipgate.services.tiers import RouteTiers, TierPolicy
from ipgate.services.window import Clock, WindowCounter

logger = get_logger(__name__)


async def seed_admin(settings: Settings, session_factory: SessionFactory) -> None:
    """Create the configured admin account if it does not exist yet."""
    if not settings.admin_email or not settings.admin_password:
        return
    async with session_factory() as session:
        await AuthService(AdminsRepository(session)).ensure_admin(
            settings.admin_email, settings.admin_password
        )


def create_app(
    settings: Settings | None = None,
    session_factory: SessionFactory | None = None,
    redis_client: redis.Redis | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """
    Build the application with its gate components.

    Args:
        settings: Settings to use; defaults to the cached environment settings.
        session_factory: Session factory; defaults to one bound to `settings.database_dsn`.
        redis_client: Redis client for the block lookup cache; created from settings
            when `BLOCK_CACHE_ENABLED` is set and none is given.
        clock: Monotonic clock for the window counter.
    """
    settings = settings or get_settings()
    configure_logging(settings.app_name, settings.log_level, settings.log_json)

    engine = None
    if session_factory is None:
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)

    owns_redis = redis_client is None and settings.block_cache_enabled
    if owns_redis:
        redis_client = redis.from_url(
            settings.redis_dsn,
            encoding="utf-8",
            decode_responses=True,
        )

    counter = WindowCounter(
        TierPolicy.from_settings(settings),
        sweep_interval=settings.sweep_interval_seconds,
        grace_multiplier=settings.sweep_grace_multiplier,
        clock=clock,
    )
    store = BlockStore(
        session_factory,
        redis=redis_client,
        timeout_seconds=settings.store_timeout_seconds,
        cache_ttl_seconds=settings.block_cache_ttl_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        counter.start()
        try:
            await seed_admin(settings, session_factory)
        except Exception as exc:
            logger.error("admin_seed_failed", error=repr(exc))
        yield
        await counter.stop()
        if owns_redis and redis_client is not None:
            await redis_client.aclose()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.window_counter = counter
    app.state.block_store = store

    app.add_middleware(
        GateMiddleware,
        counter=counter,
        store=store,
        routes=RouteTiers.from_settings(settings),
        trust_proxy_headers=settings.trust_proxy_headers,
        exempt_paths=split_csv(settings.gate_exempt_paths),
    )
    # Outermost, so gate denials carry CORS headers too.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=split_csv(settings.api_cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(blocks_router)

    @app.get("/api/health")
    async def health(store: BlockStoreDep) -> dict[str, Any]:
        try:
            await store.ping()
        except StoreUnavailableError as exc:
            raise HTTPException(
                status_code=503, detail={"database": f"fail: {type(exc.cause).__name__}"}
            ) from exc
        return {"status": "success", "message": "ipgate API active", "detail": {"database": "ok"}}

    return app


app = create_app()

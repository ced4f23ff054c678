"""
Redis-based cache helpers for the block lookup.

Low-level cache utilities intended for repositories only.

Responsibilities:
- Build stable Redis keys for identities.
- Serialize / deserialize Pydantic DTOs to/from JSON.
- Provide minimal cache primitives: get/set/invalidate and generation counters.

Non-responsibilities:
- Deciding what a failed cache call means (the caller owns fallback policy).
- Database access.
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel
from redis.asyncio import Redis

T = TypeVar("T", bound=BaseModel)


def cache_key(prefix: str, identity: str) -> str:
    """
    Build a Redis key for an identity.

    Args:
        prefix: Namespace/prefix (e.g. "block").
        identity: Normalized client identity.

    Returns:
        Redis key string in the format: "{prefix}:{identity}".
    """
    return f"{prefix}:{identity}"


async def get_cached(
    redis: Redis[str],
    key: str,
    model: type[T],
) -> T | None:
    """
    Retrieve a cached model from Redis by key.

    Returns:
        Parsed Pydantic model instance if present in cache, otherwise None.

    Raises:
        pydantic.ValidationError: If cached JSON is invalid for the model.
    """
    raw: str | None = await redis.get(key)
    if raw is None:
        return None
    return model.model_validate_json(raw)


async def set_cached(
    redis: Redis[str],
    key: str,
    value: T,
    ttl_seconds: int,
) -> None:
    """Store a Pydantic model in Redis with TTL, overwriting any previous entry."""
    await redis.setex(
        name=key,
        time=ttl_seconds,
        value=value.model_dump_json(),
    )


async def invalidate_key(redis: Redis[Any], key: str) -> None:
    """Remove a cache entry by key; safe to call when the key does not exist."""
    await redis.delete(key)


async def get_generation(redis: Redis[str], key: str) -> int:
    """
    Read a write-generation counter; a missing key is generation 0.

    Raises:
        ValueError: If the stored counter is not an integer.
    """
    raw: str | None = await redis.get(key)
    return int(raw) if raw is not None else 0


async def bump_generation(redis: Redis[Any], key: str) -> None:
    """Advance a write-generation counter, making entries filled under the old one stale."""
    await redis.incr(key)

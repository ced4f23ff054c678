"""
Block records repository (ORM + cache).

This repository is the single place that knows about:
- SQLAlchemy persistence of `BlockedIP` rows.
- The optional Redis cache of per-identity lookups.

It implements cache-aside for the hot-path lookup:
- Read: read the identity's write generation, then try Redis; an entry counts
  only if it was filled under the current generation. On miss load from DB and
  populate Redis tagged with the generation read before the DB query (negative
  results included, so unblocked identities do not hit the DB on every request).
- Write: write to DB; then bump the generation and drop the cache entry. A fill
  racing with the write lands under the old generation and is never served.

Redis failures and unreadable entries never fail a call: they are logged and
the DB is used instead. Uniqueness of `ip` is enforced by the database, so
concurrent inserts for one identity collapse into a single row.
"""

from __future__ import annotations

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import delete, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ipgate.core.errors import BlockNotFoundError
from ipgate.core.logging import get_logger
from ipgate.db.models import BlockedIP
from ipgate.schemas.blocks import BlockLookup, BlockRead
from ipgate.services.cache import (
    bump_generation,
    cache_key,
    get_cached,
    get_generation,
    invalidate_key,
    set_cached,
)

logger = get_logger(__name__)

MANUAL_BLOCK_REASON = "Blocked manually by administrator"


class BlocksRepository:
    """
    Data access layer for block records, with optional Redis caching.

    Args:
        session: SQLAlchemy async session scoped to one operation.
        redis: Redis client. If None, repository works without caching.
        cache_ttl_seconds: TTL of cached lookups.
    """

    def __init__(
        self,
        session: AsyncSession,
        redis: Redis[str] | None = None,
        cache_ttl_seconds: int = 30,
    ) -> None:
        self._session = session
        self._redis = redis
        self._cache_ttl_seconds = cache_ttl_seconds

    @staticmethod
    def _cache_key(ip: str) -> str:
        return cache_key("block", ip)

    @staticmethod
    def _generation_key(ip: str) -> str:
        return cache_key("block-gen", ip)

    async def _get(self, ip: str) -> BlockedIP | None:
        stmt = select(BlockedIP).where(BlockedIP.ip == ip)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def _get_by_id(self, block_id: int) -> BlockedIP | None:
        stmt = select(BlockedIP).where(BlockedIP.id == block_id)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def _read_generation(self, ip: str) -> int | None:
        """Current write generation, or None when the cache must be bypassed."""
        if self._redis is None:
            return None
        try:
            return await get_generation(self._redis, self._generation_key(ip))
        except (RedisError, ValueError) as exc:
            logger.warning("block_cache_unavailable", operation="generation", ip=ip, error=str(exc))
            return None

    async def _read_cache(self, ip: str, generation: int) -> BlockLookup | None:
        if self._redis is None:
            return None
        key = self._cache_key(ip)
        try:
            cached = await get_cached(self._redis, key, BlockLookup)
        except RedisError as exc:
            logger.warning("block_cache_unavailable", operation="get", ip=ip, error=str(exc))
            return None
        except ValidationError as exc:
            logger.warning("block_cache_unavailable", operation="decode", ip=ip, error=str(exc))
            await self._drop_entry(ip)
            return None
        if cached is None or cached.generation != generation:
            return None
        return cached

    async def _write_cache(self, ip: str, lookup: BlockLookup) -> None:
        if self._redis is None:
            return
        try:
            await set_cached(
                redis=self._redis,
                key=self._cache_key(ip),
                value=lookup,
                ttl_seconds=self._cache_ttl_seconds,
            )
        except RedisError as exc:
            logger.warning("block_cache_unavailable", operation="set", ip=ip, error=str(exc))

    async def _drop_entry(self, ip: str) -> None:
        if self._redis is None:
            return
        try:
            await invalidate_key(self._redis, self._cache_key(ip))
        except RedisError as exc:
            logger.warning("block_cache_unavailable", operation="delete", ip=ip, error=str(exc))

    async def _invalidate(self, ip: str) -> None:
        if self._redis is None:
            return
        try:
            await bump_generation(self._redis, self._generation_key(ip))
        except RedisError as exc:
            logger.warning("block_cache_unavailable", operation="incr", ip=ip, error=str(exc))
        await self._drop_entry(ip)

    async def lookup(self, ip: str) -> BlockRead | None:
        """
        Get the block record of an identity (cache-aside), active or not.

        Args:
            ip: Normalized identity.

        Returns:
            BlockRead DTO or None if the identity has no record.
        """
        generation = await self._read_generation(ip)
        if generation is not None:
            cached = await self._read_cache(ip, generation)
            if cached is not None:
                return cached.block

        record = await self._get(ip)
        read = BlockRead.model_validate(record, from_attributes=True) if record else None
        if generation is not None:
            await self._write_cache(ip, BlockLookup(block=read, generation=generation))
        return read

    async def insert_if_absent(self, ip: str, reason: str, request_count: int) -> bool:
        """
        Create an active record unless one already exists for the identity.

        Existing records (active or not) are left untouched.

        Returns:
            True if this call created the record.
        """
        if await self._get(ip) is not None:
            return False

        self._session.add(BlockedIP(ip=ip, reason=reason, request_count=request_count, active=True))
        try:
            await self._session.commit()
        except IntegrityError:
            # Another writer created the row between our read and insert.
            await self._session.rollback()
            return False

        await self._invalidate(ip)
        return True

    async def upsert_active(self, ip: str, active: bool, reason: str | None = None) -> BlockRead:
        """
        Set the active flag of an identity's record, creating it when blocking.

        Notes:
            - An existing record is reactivated/deactivated in place; `reason`
              replaces the stored reason only when given.
            - A missing record is created only when `active` is True, with
              `request_count=0` (manual blocks have no trigger count).

        Raises:
            BlockNotFoundError: If unblocking an identity that has no record.
        """
        record = await self._get(ip)
        if record is None:
            if not active:
                raise BlockNotFoundError(ip)
            record = BlockedIP(
                ip=ip,
                reason=reason or MANUAL_BLOCK_REASON,
                request_count=0,
                active=True,
            )
            self._session.add(record)
            try:
                await self._session.commit()
            except IntegrityError:
                await self._session.rollback()
                record = await self._get(ip)
                if record is None:
                    raise
                return await self._apply(record, active, reason)
            await self._session.refresh(record)
            await self._invalidate(ip)
            return BlockRead.model_validate(record, from_attributes=True)

        return await self._apply(record, active, reason)

    async def update_by_id(
        self, block_id: int, active: bool | None = None, reason: str | None = None
    ) -> BlockRead:
        """
        Update a record by id; `active=None` flips the current flag.

        Raises:
            BlockNotFoundError: If no record has this id.
        """
        record = await self._get_by_id(block_id)
        if record is None:
            raise BlockNotFoundError(block_id)
        return await self._apply(record, (not record.active) if active is None else active, reason)

    async def _apply(self, record: BlockedIP, active: bool, reason: str | None) -> BlockRead:
        record.active = active
        if reason:
            record.reason = reason
        await self._session.commit()
        await self._session.refresh(record)
        await self._invalidate(record.ip)
        return BlockRead.model_validate(record, from_attributes=True)

    async def delete_by_ip(self, ip: str) -> None:
        """
        Hard-delete an identity's record.

        Raises:
            BlockNotFoundError: If the identity has no record.
        """
        result = await self._session.execute(delete(BlockedIP).where(BlockedIP.ip == ip))
        await self._session.commit()
        await self._invalidate(ip)
        if not result.rowcount:
            raise BlockNotFoundError(ip)

    async def delete_by_id(self, block_id: int) -> BlockRead:
        """
        Hard-delete a record by id and return what was removed.

        Raises:
            BlockNotFoundError: If no record has this id.
        """
        record = await self._get_by_id(block_id)
        if record is None:
            raise BlockNotFoundError(block_id)
        removed = BlockRead.model_validate(record, from_attributes=True)
        await self._session.delete(record)
        await self._session.commit()
        await self._invalidate(removed.ip)
        return removed

    async def ping(self) -> None:
        await self._session.execute(text("SELECT 1"))

    async def list_all(self, newest_first: bool = True) -> list[BlockRead]:
        """List every record (active and inactive) ordered by creation time."""
        order = BlockedIP.created_at.desc() if newest_first else BlockedIP.created_at.asc()
        stmt = select(BlockedIP).order_by(order, BlockedIP.id.desc() if newest_first else BlockedIP.id)
        records = (await self._session.execute(stmt)).scalars().all()
        return [BlockRead.model_validate(r, from_attributes=True) for r in records]

"""
Block store: the durable source of truth for denial decisions.

Every call opens its own session and is bounded by a timeout, so a slow or
failing database can never stall the gate. Storage failures are converted to
`StoreUnavailableError` at this boundary; the auto-block path swallows them
after logging.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from ipgate.core.errors import StoreUnavailableError
from ipgate.core.logging import get_logger
from ipgate.db.session import SessionFactory
from ipgate.repositories.blocks import BlocksRepository
from ipgate.schemas.blocks import BlockList, BlockRead

logger = get_logger(__name__)

T = TypeVar("T")

_STORE_ERRORS = (asyncio.TimeoutError, SQLAlchemyError, RedisError, OSError)


class BlockStore:
    """
    Block-list operations used by the gate (hot path) and the admin API.

    Args:
        session_factory: Factory of async sessions; one session per call.
        redis: Optional Redis client caching per-identity lookups.
        timeout_seconds: Upper bound for any single store call.
        cache_ttl_seconds: TTL of cached lookups.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        redis: Redis[str] | None = None,
        timeout_seconds: float = 2.0,
        cache_ttl_seconds: int = 30,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis
        self._timeout = timeout_seconds
        self._cache_ttl_seconds = cache_ttl_seconds
        self._pending: set[str] = set()

    async def _call(self, operation: str, fn: Callable[[BlocksRepository], Awaitable[T]]) -> T:
        async def run() -> T:
            async with self._session_factory() as session:
                repo = BlocksRepository(
                    session=session,
                    redis=self._redis,
                    cache_ttl_seconds=self._cache_ttl_seconds,
                )
                return await fn(repo)

        try:
            return await asyncio.wait_for(run(), timeout=self._timeout)
        except _STORE_ERRORS as exc:
            raise StoreUnavailableError(operation, exc) from exc

    async def find_active(self, identity: str) -> BlockRead | None:
        """
        Return the identity's record if it is currently active.

        Raises:
            StoreUnavailableError: On storage failure or timeout.
        """
        record = await self._call("find_active", lambda repo: repo.lookup(identity))
        if record is None or not record.active:
            return None
        return record

    async def is_active(self, identity: str) -> bool:
        return await self.find_active(identity) is not None

    async def record_auto_block(self, identity: str, reason: str, count_at_block: int) -> bool:
        """
        Persist an automatic block unless the identity already has a record.

        Best-effort: never raises. Concurrent calls for the same identity in
        this process are collapsed; across processes the unique `ip` column
        guarantees a single record.

        Returns:
            True if a new record was created by this call.
        """
        if identity in self._pending:
            return False
        self._pending.add(identity)
        try:
            created = await self._call(
                "record_auto_block",
                lambda repo: repo.insert_if_absent(identity, reason, count_at_block),
            )
        except StoreUnavailableError as exc:
            logger.error(
                "auto_block_failed",
                ip=identity,
                reason=reason,
                error=repr(exc.cause),
            )
            return False
        except Exception:
            logger.exception("auto_block_failed", ip=identity, reason=reason)
            return False
        finally:
            self._pending.discard(identity)

        if created:
            logger.warning("auto_block_recorded", ip=identity, reason=reason, count=count_at_block)
        return created

    async def set_active(self, identity: str, active: bool, reason: str | None = None) -> BlockRead:
        """
        Block or unblock an identity (upsert).

        - Existing record: set `active`; replace reason when given.
        - No record and `active=True`: create an active record with request_count=0.

        Raises:
            BlockNotFoundError: Unblocking an identity without a record.
            StoreUnavailableError: On storage failure or timeout.
        """
        block = await self._call(
            "set_active", lambda repo: repo.upsert_active(identity, active, reason)
        )
        logger.info("block_state_changed", ip=identity, active=block.active, reason=block.reason)
        return block

    async def toggle(self, block_id: int, active: bool | None = None, reason: str | None = None) -> BlockRead:
        """Flip (or set, when `active` is given) the state of a record by id."""
        block = await self._call(
            "toggle", lambda repo: repo.update_by_id(block_id, active=active, reason=reason)
        )
        logger.info("block_state_changed", ip=block.ip, active=block.active, reason=block.reason)
        return block

    async def remove(self, identity: str) -> None:
        """Hard-delete an identity's record (irreversible)."""
        await self._call("remove", lambda repo: repo.delete_by_ip(identity))
        logger.info("block_removed", ip=identity)

    async def remove_by_id(self, block_id: int) -> BlockRead:
        removed = await self._call("remove", lambda repo: repo.delete_by_id(block_id))
        logger.info("block_removed", ip=removed.ip)
        return removed

    async def list(self, newest_first: bool = True) -> BlockList:
        """All records, active and inactive, with the active count."""
        records = await self._call("list", lambda repo: repo.list_all(newest_first))
        return BlockList(
            records=records,
            total=len(records),
            active=sum(1 for r in records if r.active),
        )

    async def ping(self) -> None:
        """Probe storage liveness; raises StoreUnavailableError when it is down."""
        await self._call("ping", lambda repo: repo.ping())

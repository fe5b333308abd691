"""
Distributed lock coordination for scheduled jobs.

Every instance of the host process runs the same job roster. Before a job
executes, the instance claims `lock:{job_name}` in Redis with SET NX EX.
Whoever sets the key runs the job; the others skip that tick.

- No lock store configured: every acquire succeeds (single instance).
- Lock store unreachable: acquire succeeds (fail-open).
- Locks are never released explicitly; the TTL reclaims them.
- Any store error counts as unreachable.
"""
import logging
import os
import socket
from typing import Optional, Protocol

import redis.asyncio as aioredis

from sla_scheduler.core.config import settings


logger = logging.getLogger(__name__)


class LockStore(Protocol):
    """Expiring key-value store able to set a key only if absent."""

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        ...

    async def close(self) -> None:
        ...


class RedisLockStore:
    """LockStore backed by Redis SET NX EX."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisLockStore":
        return cls(aioredis.from_url(url, socket_timeout=5, socket_connect_timeout=5))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        result = await self.client.set(key, value, nx=True, ex=ttl_seconds)
        return bool(result)

    async def close(self) -> None:
        await self.client.aclose()


def default_holder_id() -> str:
    """Identify this process in lock values (advisory only)."""
    return f"{socket.gethostname()}:{os.getpid()}"


class LockCoordinator:
    """
    Best-effort, fail-open mutual exclusion across scheduler instances.
    """

    def __init__(
        self,
        store: Optional[LockStore] = None,
        holder_id: Optional[str] = None,
        key_prefix: str = "lock:"
    ):
        self.store = store
        self.holder_id = holder_id or default_holder_id()
        self.key_prefix = key_prefix

    def key_for(self, name: str) -> str:
        return f"{self.key_prefix}{name}"

    async def acquire(self, name: str, ttl_seconds: int) -> bool:
        """
        Try to claim the named lock for ttl_seconds.

        Returns True when this instance should proceed.
        """
        if self.store is None:
            return True

        try:
            acquired = await self.store.set_if_absent(
                self.key_for(name), self.holder_id, ttl_seconds
            )
        except Exception as e:
            logger.warning(f"Lock store unavailable for '{name}', proceeding without lock: {e}")
            return True

        if not acquired:
            logger.debug(f"Lock '{name}' held by another instance, skipping")
        return acquired

    async def close(self) -> None:
        """Close the underlying store connection, if any."""
        if self.store is None:
            return
        try:
            await self.store.close()
        except Exception as e:
            logger.warning(f"Failed to close lock store: {e}")


def create_lock_coordinator() -> LockCoordinator:
    """Build the coordinator from settings (Redis if configured)."""
    store = None
    if settings.lock_store_enabled:
        store = RedisLockStore.from_url(settings.redis_url)
        logger.info("Scheduler locks backed by Redis")
    else:
        logger.info("No lock store configured - running as single instance")
    return LockCoordinator(store=store, key_prefix=settings.lock_key_prefix)

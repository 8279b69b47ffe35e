"""Keyed mutual exclusion for slot and appointment operations."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import LockError

from vetcare.config import Settings, settings as default_settings
from vetcare.core.exceptions import LockTimeoutException, StorageUnavailableException

logger = structlog.get_logger(__name__)


class LockManager(Protocol):
    """Hands out exclusive locks by string key with a bounded wait."""

    def hold(self, key: str) -> AbstractAsyncContextManager[None]: ...


class LocalLockManager:
    """
    Per-key asyncio locks for a single process.

    Locks are created on first use and dropped once nobody holds or waits
    for them, so the table stays bounded by the number of keys in flight.
    """

    def __init__(self, timeout: float):
        """Initialize with the maximum wait in seconds."""
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockTimeoutException: If the lock is not acquired within the timeout
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except TimeoutError:
                logger.warning("lock_timeout", key=key, timeout=self.timeout)
                raise LockTimeoutException(key) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)


class RedisLockManager:
    """Distributed locks backed by redis-py's ``Lock`` for multi-worker deployments."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        timeout: float,
        lease: float,
        prefix: str = "vetcare:lock:",
    ):
        """Initialize with a Redis client, wait timeout and lock lease in seconds."""
        self.redis = redis_client
        self.timeout = timeout
        self.lease = lease
        self.prefix = prefix

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Hold the distributed lock for ``key`` for the duration of the block.

        Raises:
            LockTimeoutException: If the lock is not acquired within the timeout
            StorageUnavailableException: If Redis cannot be reached
        """
        lock = self.redis.lock(
            f"{self.prefix}{key}",
            timeout=self.lease,
            blocking_timeout=self.timeout,
        )
        try:
            acquired = await lock.acquire()
        except (aioredis.ConnectionError, aioredis.TimeoutError) as e:
            logger.error("lock_backend_unavailable", key=key, error=str(e))
            raise StorageUnavailableException("Lock backend unavailable") from e

        if not acquired:
            logger.warning("lock_timeout", key=key, timeout=self.timeout)
            raise LockTimeoutException(key)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lease expired while held; another worker may own the key now
                logger.error("lock_release_failed", key=key, error=str(e))


def create_lock_manager(
    settings: Settings | None = None,
    redis_client: aioredis.Redis | None = None,
) -> LocalLockManager | RedisLockManager:
    """
    Build the lock manager selected by LOCK_BACKEND.

    Args:
        settings: Application settings
        redis_client: Optional pre-built Redis client for the redis backend

    Returns:
        Lock manager instance
    """
    settings = settings or default_settings
    backend = settings.lock_backend.lower()

    if backend == "local":
        return LocalLockManager(timeout=settings.lock_timeout_seconds)

    if backend == "redis":
        client = redis_client or aioredis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password or None,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )
        return RedisLockManager(
            client,
            timeout=settings.lock_timeout_seconds,
            lease=settings.lock_lease_seconds,
        )

    raise ValueError(f"Unknown lock backend: {settings.lock_backend}")

"""
Keyed Critical Sections

Dispatch and settlement each need a critical section scoped to one entity
(an order, a partner, a wallet). Contention is local to that entity, so locks
are keyed by strings such as ``partner:<id>`` and never span entities.

Two backends:
- InMemoryLockManager: one asyncio.Lock per key, for a single process
- RedisLockManager: redis-py token locks, for several API workers

Usage:
    async with get_lock_manager().hold(f"partner:{partner_id}"):
        ...
"""
import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from redis.exceptions import LockError, LockNotOwnedError, RedisError

from dispatch_engine.core import redis_client
from dispatch_engine.core.config import settings
from dispatch_engine.core.exceptions import LockTimeoutError, StoreUnavailableError
from dispatch_engine.core.logging import get_logger

logger = get_logger(__name__)


def order_lock_key(order_id: str) -> str:
    return f"order:{order_id}"


def partner_lock_key(partner_id: str) -> str:
    return f"partner:{partner_id}"


def wallet_lock_key(partner_id: str) -> str:
    return f"wallet:{partner_id}"


class LockManager(ABC):
    """Interface of a keyed, non-reentrant lock"""

    @abstractmethod
    def hold(self, key: str, timeout: float | None = None):
        """Async context manager that holds ``key`` for the duration of the block.

        Raises LockTimeoutError if the lock is not acquired within ``timeout``
        seconds (default: LOCK_ACQUIRE_TIMEOUT_SECONDS).
        """


@dataclass
class _LockEntry:
    lock: asyncio.Lock
    users: int = 0


class InMemoryLockManager(LockManager):
    """Per-process keyed locks.

    Entries are dropped once no task holds or waits on them, so the map only
    grows with the number of entities currently in contention.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, key: str, timeout: float | None = None) -> AsyncIterator[None]:
        timeout = timeout if timeout is not None else settings.LOCK_ACQUIRE_TIMEOUT_SECONDS
        entry = self._entries.get(key)
        if entry is None:
            entry = _LockEntry(lock=asyncio.Lock())
            self._entries[key] = entry
        entry.users += 1

        try:
            try:
                async with asyncio.timeout(timeout):
                    await entry.lock.acquire()
            except TimeoutError:
                logger.warning(
                    "Lock acquisition timed out",
                    extra_data={"key": key, "timeout_seconds": timeout}
                )
                raise LockTimeoutError(key, timeout) from None

            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]


class RedisLockManager(LockManager):
    """Cross-process keyed locks on Redis, built on redis-py's Lock.

    Acquire is ``SET lock:<key> <token> NX PX ttl``, retried every
    ``poll_interval`` until the acquire timeout. Release runs redis-py's
    token-checked Lua script, so a lock that expired and was taken by another
    worker is never deleted. Such an expiry is logged, not raised;
    LOCK_TTL_SECONDS must exceed STORE_TIMEOUT_SECONDS, which bounds every
    critical section.
    """

    def __init__(
        self,
        ttl_seconds: int | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds or settings.LOCK_TTL_SECONDS
        self.poll_interval = poll_interval or settings.LOCK_POLL_INTERVAL_SECONDS

    @staticmethod
    def _redis_key(key: str) -> str:
        return f"lock:{key}"

    @asynccontextmanager
    async def hold(self, key: str, timeout: float | None = None) -> AsyncIterator[None]:
        timeout = timeout if timeout is not None else settings.LOCK_ACQUIRE_TIMEOUT_SECONDS
        client = await redis_client.get_redis()
        lock = client.lock(
            self._redis_key(key),
            timeout=self.ttl_seconds,
            sleep=self.poll_interval,
            blocking_timeout=timeout,
            # the token belongs to this hold(), not to the thread
            thread_local=False,
        )

        try:
            acquired = await lock.acquire()
        except LockError:
            acquired = False
        except RedisError as e:
            raise StoreUnavailableError("lock", str(e)) from e

        if not acquired:
            logger.warning(
                "Redis lock acquisition timed out",
                extra_data={"key": key, "timeout_seconds": timeout}
            )
            raise LockTimeoutError(key, timeout)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockNotOwnedError:
                logger.warning(
                    "Redis lock expired before release",
                    extra_data={"key": key, "ttl_seconds": self.ttl_seconds}
                )


_lock_manager: LockManager | None = None


def get_lock_manager() -> LockManager:
    """Process-wide lock manager for the configured LOCK_BACKEND"""
    global _lock_manager
    if _lock_manager is None:
        if settings.LOCK_BACKEND == "redis":
            _lock_manager = RedisLockManager()
        else:
            _lock_manager = InMemoryLockManager()
    return _lock_manager


def reset_lock_manager() -> None:
    """Forget the current lock manager (for testing)"""
    global _lock_manager
    _lock_manager = None

"""Per-entity locking.

Every mutation of a stored quote or transaction runs under the lock for
its id, so two concurrent status updates for the same transaction never
interleave. Different ids never contend.
"""

import asyncio
import logging
from typing import Hashable, Optional

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class LockRegistry:
    """Lazily created asyncio.Lock per key."""

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def get(self, key: Hashable) -> asyncio.Lock:
        """Get or create the lock for `key`."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def discard(self, key: Hashable) -> None:
        """Forget the lock for an evicted entity. Held locks are kept."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def hold(
        self,
        key: Hashable,
        timeout: Optional[float] = 30.0,
        operation: str = "update",
    ) -> "EntityLock":
        return EntityLock(self, key, timeout=timeout, operation=operation)

    def clear(self) -> None:
        self._locks.clear()


class EntityLock:
    """Context manager for exclusive access to one entity.

    Example:
        async with registry.hold(tx_id, operation="cancel"):
            tx = store.get(tx_id)
            tx.status = ...
    """

    def __init__(
        self,
        registry: LockRegistry,
        key: Hashable,
        timeout: Optional[float] = 30.0,
        operation: str = "update",
    ):
        """Initialize the lock.

        Args:
            registry: Registry the lock lives in
            key: Entity id
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description of the operation for logging
        """
        self.registry = registry
        self.key = key
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "EntityLock":
        self._lock = self.registry.get(self.key)
        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
        except asyncio.TimeoutError:
            logger.warning(f"Lock timeout for {self.key} after {self.timeout}s: {self.operation}")
            raise LockTimeoutError(f"Could not acquire lock for {self.key} within {self.timeout}s")

        self._acquired = True
        logger.debug(f"Lock acquired for {self.key}: {self.operation}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Lock released for {self.key}: {self.operation}")
        return False

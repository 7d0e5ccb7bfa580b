"""Concurrency control for deposit address allocation.

Allocation of derivation indexes is single-writer per xpub inside a
process. Named locks live in a registry keyed by the xpub fingerprint.
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Global lock registry: name -> asyncio.Lock
_locks: dict[str, asyncio.Lock] = {}


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


def get_named_lock(name: str) -> asyncio.Lock:
    """Get or create the lock registered under ``name``.

    The check and insert run without an await in between, so two tasks on
    the same loop always receive the same lock object.
    """
    lock = _locks.get(name)
    if lock is None:
        lock = _locks[name] = asyncio.Lock()
    return lock


class KeyedLock:
    """Context manager for exclusive access to a named resource.

    Example:
        async with KeyedLock(f"derivation:{fingerprint}", operation="allocate"):
            index = await repo.reserve_next_index(fingerprint)
    """

    def __init__(
        self,
        name: str,
        timeout: Optional[float] = 30.0,
        operation: str = "allocation",
    ):
        """Initialize the lock.

        Args:
            name: Registry key of the lock
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description of the operation for logging
        """
        self.name = name
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "KeyedLock":
        self._lock = get_named_lock(self.name)

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
        except asyncio.TimeoutError:
            logger.warning(f"Lock timeout on {self.name} after {self.timeout}s: {self.operation}")
            raise LockTimeoutError(
                f"Could not acquire lock {self.name} within {self.timeout}s"
            )

        self._acquired = True
        logger.debug(f"Lock acquired on {self.name}: {self.operation}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Lock released on {self.name}: {self.operation}")
        return False


def clear_locks() -> None:
    """Clear all registered locks (useful for testing)."""
    _locks.clear()

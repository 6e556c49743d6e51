"""In-process concurrency control.

Provides named asyncio locks used to serialize contended steps such as
derivation index assignment. Cross-process safety comes from database
constraints; these locks only keep one process from racing itself.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

logger = logging.getLogger(__name__)

# Global lock registry: key -> asyncio.Lock
_locks: dict[str, asyncio.Lock] = {}


def get_lock(key: str) -> asyncio.Lock:
    """Get or create the lock for ``key``."""
    lock = _locks.get(key)
    if lock is None:
        lock = _locks.setdefault(key, asyncio.Lock())
    return lock


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


@asynccontextmanager
async def keyed_lock(
    key: str,
    timeout: Optional[float] = 30.0,
    operation: str = "operation",
):
    """Hold the named lock for the duration of the block.

    Args:
        key: Lock name
        timeout: Maximum time to wait for the lock (None = wait forever)
        operation: Description for logging

    Example:
        async with keyed_lock("address-index", operation="assign"):
            ...
    """
    lock = get_lock(key)

    try:
        if timeout:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        else:
            await lock.acquire()
    except asyncio.TimeoutError:
        logger.warning(f"Lock timeout for {key} after {timeout}s: {operation}")
        raise LockTimeoutError(f"Could not acquire lock {key} within {timeout}s")

    logger.debug(f"Lock acquired for {key}: {operation}")
    try:
        yield
    finally:
        lock.release()
        logger.debug(f"Lock released for {key}: {operation}")


def clear_locks() -> None:
    """Clear all locks (useful for testing)."""
    _locks.clear()

"""
Concurrency guard serializing mutating store calls.

One FIFO asyncio.Lock per guarded key:
- FileBackedStore guards a single collection-wide key
- RelationalStore guards one key per entity id

Invariants:
    - Waiters on the same key are granted the lock in arrival order
    - The lock is released on every exit path, including errors
    - A caller that gives up waiting gets ConcurrencyTimeout and its
      operation never runs
    - Lease.check() fails once the caller's deadline has passed or the
      caller was cancelled, so such a write is abandoned instead of committed
    - A lock granted after its waiter timed out or was cancelled is released
      at once, never leaked

How to change safely:
    - Keep lock acquisition inside acquire(); stores never touch _locks
    - Reads must not use the guard
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional

from ..errors import ConcurrencyTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    """Proof of holding a guard key until a monotonic deadline.

    Attributes:
        key: Guarded key
        timeout_s: Total time the caller allowed for the operation
        deadline: time.monotonic() value after which commits are refused
    """

    key: str
    timeout_s: float
    deadline: float
    _cancelled: threading.Event = field(
        default_factory=threading.Event, compare=False, repr=False
    )

    def cancel(self) -> None:
        """Mark the caller as gone; pending commits will be refused."""
        self._cancelled.set()

    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def expired(self) -> bool:
        return time.monotonic() > self.deadline

    def check(self) -> None:
        """Raise ConcurrencyTimeout if the caller can no longer commit.

        Safe to call from executor threads.
        """
        if self.cancelled():
            logger.warning(
                "Caller cancelled before commit; abandoning write",
                extra={"key": self.key},
            )
            raise ConcurrencyTimeout(self.key, self.timeout_s)
        if self.expired():
            logger.warning(
                "Deadline passed before commit; abandoning write",
                extra={"key": self.key, "timeout_s": self.timeout_s},
            )
            raise ConcurrencyTimeout(self.key, self.timeout_s)


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


async def _acquire_within(lock: asyncio.Lock, timeout: float) -> bool:
    """Acquire lock within timeout seconds; False on timeout.

    On timeout or cancellation the pending acquire is withdrawn, and a lock
    it already obtained is released.
    """
    acquire = asyncio.ensure_future(lock.acquire())
    try:
        done, _ = await asyncio.wait({acquire}, timeout=timeout)
    except asyncio.CancelledError:
        _withdraw(lock, acquire)
        raise
    if done:
        return True
    _withdraw(lock, acquire)
    return False


def _withdraw(lock: asyncio.Lock, acquire: asyncio.Future) -> None:
    if acquire.done() and not acquire.cancelled():
        lock.release()
    else:
        acquire.cancel()


class ConcurrencyGuard:
    """Per-key FIFO locks with bounded waits.

    Example:
        >>> guard = ConcurrencyGuard(default_timeout_s=2.0)
        >>> async with guard.acquire("metric:M-1") as lease:
        ...     ...  # read-modify-write
        ...     lease.check()
        ...     ...  # commit
    """

    def __init__(self, default_timeout_s: float = 5.0) -> None:
        if default_timeout_s <= 0:
            raise ValueError(f"default_timeout_s must be positive, got {default_timeout_s}")
        self.default_timeout_s = default_timeout_s
        self._locks: Dict[str, _KeyLock] = {}

    def pending(self, key: str) -> int:
        """Number of holders plus waiters on key."""
        entry = self._locks.get(key)
        return entry.users if entry else 0

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        timeout_s: Optional[float] = None,
    ) -> AsyncIterator[Lease]:
        """Hold key for the duration of the block.

        Args:
            key: Guarded resource key
            timeout_s: Bound on waiting plus working; defaults to
                default_timeout_s

        Yields:
            Lease carrying the caller's deadline

        Raises:
            ConcurrencyTimeout: If the lock is not granted in time
        """
        timeout = self.default_timeout_s if timeout_s is None else timeout_s
        if timeout <= 0:
            raise ConcurrencyTimeout(key, timeout)
        deadline = time.monotonic() + timeout

        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            if not await _acquire_within(entry.lock, timeout):
                logger.warning(
                    f"Timed out after {timeout:.3f}s waiting for guard",
                    extra={"key": key, "waiters": entry.users - 1},
                )
                raise ConcurrencyTimeout(key, timeout) from None
            try:
                yield Lease(key=key, timeout_s=timeout, deadline=deadline)
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

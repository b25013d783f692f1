"""Admission control for inference requests.

A global cap bounds in-flight calls (excess callers wait in FIFO order) and
an optional key serializes all calls for one node, so an improve and a
recreate for the same node never interleave. Errors from the wrapped task
always propagate; nothing is cached here.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Deque, Dict, Optional, TypeVar

from dialogforge.protocols import ErrorKind, RequestError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class LimiterStats:
    total: int = 0
    successful: int = 0
    failed: int = 0
    timeout: int = 0
    active: int = 0
    queued: int = 0

    @property
    def success_rate(self) -> float:
        finished = self.successful + self.failed + self.timeout
        return self.successful / finished if finished else 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["success_rate"] = round(self.success_rate, 3)
        return data


class ConcurrencyLimiter:
    def __init__(self, max_concurrent: int = 3) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max = max_concurrent
        self._active = 0
        self._waiters: Deque[asyncio.Future] = deque()
        self._key_locks: Dict[str, asyncio.Lock] = {}
        self._key_users: Dict[str, int] = {}
        self._stats = LimiterStats()
        logger.debug("Concurrency limiter initialized with max %d", max_concurrent)

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return len(self._waiters)

    def stats(self) -> LimiterStats:
        return LimiterStats(
            total=self._stats.total,
            successful=self._stats.successful,
            failed=self._stats.failed,
            timeout=self._stats.timeout,
            active=self._active,
            queued=len(self._waiters),
        )

    def reset_stats(self) -> None:
        self._stats = LimiterStats()

    def set_max_concurrent(self, value: int) -> None:
        if value < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max = value
        self._wake_waiters()

    async def execute(self, task: Callable[[], Awaitable[T]], key: Optional[str] = None) -> T:
        """Run ``task()`` once admitted; serialize with other calls sharing ``key``."""
        self._stats.total += 1
        if key is None:
            return await self._run_admitted(task)

        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._key_users[key] = self._key_users.get(key, 0) + 1
        try:
            async with lock:
                return await self._run_admitted(task)
        finally:
            self._key_users[key] -= 1
            if self._key_users[key] == 0:
                del self._key_users[key]
                del self._key_locks[key]

    async def _run_admitted(self, task: Callable[[], Awaitable[T]]) -> T:
        await self._acquire()
        try:
            result = await task()
        except (asyncio.TimeoutError, RequestError) as e:
            if isinstance(e, asyncio.TimeoutError) or e.kind is ErrorKind.TIMEOUT:
                self._stats.timeout += 1
                logger.warning("Limited request timed out")
            else:
                self._stats.failed += 1
            raise
        except Exception:
            self._stats.failed += 1
            raise
        finally:
            self._release()
        self._stats.successful += 1
        return result

    async def _acquire(self) -> None:
        if self._active < self._max and not self._waiters:
            self._active += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug("Limiter full (%d/%d), queued request", self._active, self._max)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            elif not waiter.cancelled():
                # Slot was handed over just before cancellation; pass it on
                self._active -= 1
                self._wake_waiters()
            raise

    def _release(self) -> None:
        self._active -= 1
        self._wake_waiters()

    def _wake_waiters(self) -> None:
        while self._waiters and self._active < self._max:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._active += 1
            waiter.set_result(None)

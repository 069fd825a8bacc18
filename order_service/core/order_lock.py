"""
Order Service — Per-order serialization point

Two read-then-write sequences against the same order must never interleave,
because deriving the order status reads item rows and then writes the order
row. Every mutating transaction therefore holds a lock keyed by order id:

  - a process-local asyncio.Lock per order id (dropped once nobody waits on it)
  - on PostgreSQL, additionally pg_advisory_xact_lock(hashtext('order:<id>')),
    released automatically when the transaction commits or rolls back

Waiting longer than ORDER_LOCK_TIMEOUT_SECONDS raises LockTimeoutError before
anything has been written. No retry happens here; callers may retry.
"""
import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from order_service.core.config import get_settings
from order_service.core.errors import LockTimeoutError

settings = get_settings()
logger = logging.getLogger(__name__)

# SQLSTATE lock_not_available, raised when lock_timeout expires
LOCK_NOT_AVAILABLE = "55P03"


def lock_key(order_id: str) -> str:
    return f"order:{order_id}"


class OrderLockRegistry:
    """Process-local keyed locks, one per order id currently in use."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout if timeout is not None else settings.ORDER_LOCK_TIMEOUT_SECONDS
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = defaultdict(int)

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._users[order_id] += 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning("Timed out after %.2fs waiting for lock on order %s", self.timeout, order_id)
                raise LockTimeoutError(f"Order {order_id} is busy, please retry")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[order_id] -= 1
            if self._users[order_id] == 0:
                del self._users[order_id]
                self._locks.pop(order_id, None)


async def acquire_advisory_lock(session: AsyncSession, order_id: str, timeout: float) -> None:
    """Take the transaction-scoped advisory lock for ``order_id`` (PostgreSQL only)."""
    if session.bind.dialect.name != "postgresql":
        return
    try:
        await session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))
        await session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": lock_key(order_id)}
        )
    except DBAPIError as exc:
        sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
        if sqlstate == LOCK_NOT_AVAILABLE:
            raise LockTimeoutError(f"Order {order_id} is busy, please retry") from exc
        raise

"""Per-property lock adapters.

Implements ILockManager twice:
- PostgresAdvisoryLockManager: session advisory locks, safe across workers
- InProcessLockManager: asyncio locks for single-process deployments and tests

Locks are always taken in sorted key order so two submissions sharing
properties cannot deadlock.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from ...api.database import database_connection
from ...api.exceptions import InvalidStateError
from ..domain.ports import ILockManager

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


def lock_keys(tenant_id: str, property_ids: list[str]) -> list[str]:
    return sorted({f"xe:{tenant_id}:{pid}" for pid in property_ids})


def _timeout_error(key: str, timeout: float) -> InvalidStateError:
    return InvalidStateError(
        "Another sync for this property is in progress",
        current_state="LOCKED",
        details={"lock": key, "timeout_seconds": timeout},
        recoverable=True,
    )


class PostgresAdvisoryLockManager(ILockManager):
    """Session-level advisory locks held on one pooled connection.

    The connection stays checked out for the whole block, which spans the
    two transactions and the portal call of a submission. Pass a pool that
    the repositories do not share, otherwise concurrent holders can take
    every connection the writes inside the block need.
    """

    def __init__(self, pool: "asyncpg.Pool", poll_interval: float = 0.2):
        self.pool = pool
        self.poll_interval = poll_interval

    @asynccontextmanager
    async def hold(
        self, tenant_id: str, property_ids: list[str], timeout: float
    ) -> AsyncIterator[None]:
        keys = lock_keys(tenant_id, property_ids)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        async with database_connection(self.pool) as conn:
            acquired: list[str] = []
            try:
                for key in keys:
                    while not await conn.fetchval(
                        "SELECT pg_try_advisory_lock(hashtextextended($1, 0))", key
                    ):
                        if loop.time() >= deadline:
                            raise _timeout_error(key, timeout)
                        await asyncio.sleep(self.poll_interval)
                    acquired.append(key)

                yield

            finally:
                for key in reversed(acquired):
                    try:
                        await conn.execute(
                            "SELECT pg_advisory_unlock(hashtextextended($1, 0))", key
                        )
                    except Exception as e:
                        # asyncpg resets the connection on release, which unlocks all
                        logger.warning(f"Failed to release advisory lock {key}: {e}")


class InProcessLockManager(ILockManager):
    """asyncio.Lock per property key.

    A key's entry lives only while some task holds or waits for it.
    """

    def __init__(self):
        # key -> [lock, number of holders and waiters]
        self._locks: dict[str, list] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        entry = self._locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        return entry[0]

    def _checkin(self, key: str) -> None:
        entry = self._locks[key]
        entry[1] -= 1
        if entry[1] == 0:
            del self._locks[key]

    @asynccontextmanager
    async def hold(
        self, tenant_id: str, property_ids: list[str], timeout: float
    ) -> AsyncIterator[None]:
        keys = lock_keys(tenant_id, property_ids)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        used: list[str] = []
        acquired: list[asyncio.Lock] = []
        try:
            for key in keys:
                lock = self._checkout(key)
                used.append(key)
                remaining = max(deadline - loop.time(), 0)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=remaining)
                except asyncio.TimeoutError:
                    raise _timeout_error(key, timeout)
                acquired.append(lock)

            yield

        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in used:
                self._checkin(key)

"""
In-process keyed locks
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from app.core.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    One asyncio lock per resource key (e.g. ``payment:<id>``).

    Serializes state changes on the same payment or booking inside a worker
    process. Row locks and the payment version column cover the
    cross-process case. Entries are dropped once nobody holds or waits on
    them, so the registry does not grow with the number of payments.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, key: str, timeout: Optional[float] = None):
        timeout = self.timeout if timeout is None else timeout
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Timed out waiting for lock {key}")
                raise ConcurrencyError(f"Resource {key} is busy, please retry")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


def payment_lock_key(payment_id) -> str:
    return f"payment:{payment_id}"


def booking_lock_key(booking_id) -> str:
    return f"booking:{booking_id}"

"""
In-process per-account locks.

Used by the payment ledger when the database has no native row locks
(SQLite). Only serializes coroutines running in the same process and
event loop; server databases rely on SELECT ... FOR UPDATE instead.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from backend.app.core.exceptions import LockTimeoutError


class AccountLockRegistry:
    """
    One asyncio.Lock per account number, created on demand.

    Waiters are served in arrival order. A lock is dropped from the
    registry as soon as nobody holds or waits for it, so the registry
    never outlives an event loop with stale locks.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, account_number: str) -> bool:
        lock = self._locks.get(account_number)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, account_number: str, timeout: float) -> AsyncIterator[None]:
        """
        Hold the account's lock for the duration of the block.

        Raises:
            LockTimeoutError: if the lock is not acquired within ``timeout`` seconds
        """
        lock = self._locks.setdefault(account_number, asyncio.Lock())
        self._users[account_number] = self._users.get(account_number, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout)
            except asyncio.TimeoutError:
                raise LockTimeoutError(account_number, timeout) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[account_number] -= 1
            if not self._users[account_number]:
                del self._users[account_number]
                del self._locks[account_number]


# Shared by every session in the process
account_locks = AccountLockRegistry()

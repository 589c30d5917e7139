"""OwnerLocks — per-owner asyncio locks serializing tree and share mutations."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


class OwnerLocks:
    """One ``asyncio.Lock`` per folder owner with a unit of work in flight.

    Every mutating unit of work on an owner's folders or shares runs
    under that owner's lock, so callers of one facade instance queue here
    instead of contending on the database.  Owners are independent trees,
    so different owners never contend.

    Only covers one facade instance.  Other instances and processes on the
    same database are ordered by the database: ``BEGIN IMMEDIATE`` on
    SQLite, ``SELECT ... FOR UPDATE`` on the moved folder, the destination
    and its ancestors elsewhere, and the share unique constraint.

    A lock is dropped once its last holder or waiter leaves, so the map
    only ever holds owners with work in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, owner_id: str) -> AsyncGenerator[None]:
        """Hold the lock for *owner_id* for the duration of the block."""
        lock = self._locks.get(owner_id)
        if lock is None:
            lock = self._locks[owner_id] = asyncio.Lock()
        elif lock.locked():
            logger.debug("Waiting for owner lock %s", owner_id)
        self._users[owner_id] = self._users.get(owner_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[owner_id] -= 1
            if not self._users[owner_id]:
                del self._users[owner_id]
                del self._locks[owner_id]

    def is_locked(self, owner_id: str) -> bool:
        lock = self._locks.get(owner_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

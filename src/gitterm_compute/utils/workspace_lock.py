"""In-process per-workspace leases.

Serializes create calls for the same workspace id inside one process, so a
retried create cannot race the first attempt through the same deterministic
resource names. Callers in other processes are not covered; a shared lease
store would be needed for that.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

logger = structlog.get_logger()


class WorkspaceLocks:
    """Keyed asyncio locks, dropped once no caller holds or waits on them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def is_locked(self, workspace_id: str) -> bool:
        lock = self._locks.get(workspace_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def lease(self, workspace_id: str) -> AsyncIterator[None]:
        """Hold the workspace's lock for the duration of the block."""
        lock = self._locks.setdefault(workspace_id, asyncio.Lock())
        self._waiters[workspace_id] = self._waiters.get(workspace_id, 0) + 1
        if lock.locked():
            logger.info("Waiting for in-flight workspace operation", workspace_id=workspace_id)
        try:
            async with lock:
                yield
        finally:
            self._waiters[workspace_id] -= 1
            if self._waiters[workspace_id] == 0:
                del self._waiters[workspace_id]
                del self._locks[workspace_id]

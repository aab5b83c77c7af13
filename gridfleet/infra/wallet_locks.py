"""
Per-wallet submission coordinator.

Provides a single asyncio.Lock per wallet address so every component that
sends transactions for the same wallet (grid placement, counter orders,
rebalancing, manual triggers) serializes nonce usage.
"""

from __future__ import annotations

import asyncio
from typing import Dict


class WalletLockRegistry:
    def __init__(self) -> None:
        # map lowercase address -> asyncio.Lock
        self._locks: Dict[str, asyncio.Lock] = {}
        # guard for creating locks
        self._guard = asyncio.Lock()

    async def get_lock(self, address: str) -> asyncio.Lock:
        """Return the shared asyncio.Lock for `address` (case-insensitive)."""
        key = address.lower()
        async with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    def is_locked(self, address: str) -> bool:
        lock = self._locks.get(address.lower())
        return bool(lock and lock.locked())

"""
Async facade over SqliteLedger.

Runs every ledger call on a single worker thread and serializes access with
an `asyncio.Lock`, so wallet loops never block the event loop on disk IO and
never interleave transactions. Each call goes through LEDGER_POLICY, which
retries only `LedgerBusy` (database locked by another process).
"""

from __future__ import annotations

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from gridfleet.core.retry import LEDGER_POLICY, RetryPolicy
from gridfleet.state.models import (
    ActivityRecord,
    BalanceSyncEntry,
    Order,
    OrderStatus,
    OrderType,
    SyncStatus,
    WalletRecord,
)
from gridfleet.state.sqlite_ledger import SqliteLedger

T = TypeVar("T")


class LedgerStore:
    def __init__(
        self,
        db_path: str | Path = ":memory:",
        policy: RetryPolicy = LEDGER_POLICY,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self._ledger = SqliteLedger(db_path, busy_timeout_ms=busy_timeout_ms)
        self._policy = policy
        self._lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gridfleet-ledger")

    @property
    def sync(self) -> SqliteLedger:
        """Underlying synchronous ledger (tests and offline tooling)."""
        return self._ledger

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        async def attempt() -> T:
            async with self._lock:
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

        return await self._policy.run(attempt, op=f"ledger.{fn.__name__}")

    async def close(self) -> None:
        async with self._lock:
            self._ledger.close()
        self._executor.shutdown(wait=True)

    # ── Wallets ──

    async def upsert_wallet(self, address: str, index: int, trading_pool: str) -> WalletRecord:
        return await self._call(self._ledger.upsert_wallet, address, index, trading_pool)

    async def get_wallet(self, address: str) -> Optional[WalletRecord]:
        return await self._call(self._ledger.get_wallet, address)

    async def list_wallets(self, index: Optional[int] = None) -> List[WalletRecord]:
        return await self._call(self._ledger.list_wallets, index)

    async def claim_grid_slot(self, address: str, expected: int) -> bool:
        return await self._call(self._ledger.claim_grid_slot, address, expected)

    async def reset_grid_counter(self, address: str) -> None:
        await self._call(self._ledger.reset_grid_counter, address)

    # ── Orders ──

    async def insert_order(self, order: Order) -> Order:
        return await self._call(self._ledger.insert_order, order)

    async def get_order(self, order_id: int) -> Optional[Order]:
        return await self._call(self._ledger.get_order, order_id)

    async def get_order_by_venue_id(self, venue_order_id: str) -> Optional[Order]:
        return await self._call(self._ledger.get_order_by_venue_id, venue_order_id)

    async def list_orders(
        self,
        wallet: Optional[str] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
        order_type: Optional[OrderType] = None,
        parent_id: Optional[int] = None,
        since: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[Order]:
        statuses = list(statuses) if statuses is not None else None
        return await self._call(
            self._ledger.list_orders,
            wallet=wallet, statuses=statuses, order_type=order_type,
            parent_id=parent_id, since=since, limit=limit,
        )

    async def find_counter(self, parent_id: int, counter_type: OrderType) -> Optional[Order]:
        return await self._call(self._ledger.find_counter, parent_id, counter_type)

    async def filled_without_counter(self, wallet: str) -> List[Order]:
        return await self._call(self._ledger.filled_without_counter, wallet)

    async def apply_transition(
        self,
        order_id: int,
        status: OrderStatus,
        progress: float,
        checked_at: Optional[float] = None,
        filled_at: Optional[float] = None,
        filled_from_amount: Optional[Decimal] = None,
        filled_to_amount: Optional[Decimal] = None,
    ) -> bool:
        return await self._call(
            self._ledger.apply_transition, order_id, status, progress,
            checked_at=checked_at, filled_at=filled_at,
            filled_from_amount=filled_from_amount, filled_to_amount=filled_to_amount,
        )

    async def mark_skip(self, order_id: int, reason: str) -> None:
        await self._call(self._ledger.mark_skip, order_id, reason)

    async def cancel_active_orders(self, wallet: str) -> int:
        return await self._call(self._ledger.cancel_active_orders, wallet)

    async def count_by_status(self, wallet: str) -> Dict[str, int]:
        return await self._call(self._ledger.count_by_status, wallet)

    async def open_usd_value(self, wallet: str) -> float:
        return await self._call(self._ledger.open_usd_value, wallet)

    # ── Activity ──

    async def record_activity(self, record: ActivityRecord) -> bool:
        return await self._call(self._ledger.record_activity, record)

    async def has_activity_for_order(self, order_ref: str) -> bool:
        return await self._call(self._ledger.has_activity_for_order, order_ref)

    async def list_activity(self, wallet: Optional[str] = None, limit: int = 100) -> List[ActivityRecord]:
        return await self._call(self._ledger.list_activity, wallet, limit)

    # ── Ops journal ──

    async def log_error(
        self,
        wallet_index: Optional[int],
        wallet_address: Optional[str],
        error_type: str,
        message: str,
        context: Optional[str] = None,
    ) -> None:
        await self._call(self._ledger.log_error, wallet_index, wallet_address, error_type, message, context)

    async def recent_errors(self, limit: int = 50, wallet: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._call(self._ledger.recent_errors, limit, wallet)

    async def record_metric(
        self, wallet_index: Optional[int], wallet_address: str, metric: str, value: float,
    ) -> None:
        await self._call(self._ledger.record_metric, wallet_index, wallet_address, metric, value)

    async def daily_metrics(self, day: Optional[str] = None, wallet: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._call(self._ledger.daily_metrics, day, wallet)

    # ── Balance sync ──

    async def enqueue_balance_sync(
        self, wallet_address: str, wallet_index: int, error: str, max_retries: int = 3,
    ) -> int:
        return await self._call(
            self._ledger.enqueue_balance_sync, wallet_address, wallet_index, error, max_retries,
        )

    async def due_balance_syncs(self, limit: int = 50) -> List[BalanceSyncEntry]:
        return await self._call(self._ledger.due_balance_syncs, limit)

    async def update_balance_sync(
        self, entry_id: int, status: SyncStatus, retry_count: int, last_error: Optional[str] = None,
    ) -> None:
        await self._call(self._ledger.update_balance_sync, entry_id, status, retry_count, last_error)

    async def save_balances(self, wallet_address: str, balances: Dict[str, Decimal]) -> None:
        await self._call(self._ledger.save_balances, wallet_address, balances)

    async def get_balances(self, wallet_address: str) -> Dict[str, Decimal]:
        return await self._call(self._ledger.get_balances, wallet_address)

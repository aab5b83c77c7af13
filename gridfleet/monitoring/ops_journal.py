"""
Persistent operations journal backed by the ledger store.

Two tables: `error_log` (one row per failure, attributed to a wallet) and
`daily_metrics` (per-day, per-wallet count + total aggregates such as
`order_placed`, `order_filled`, `counter_order_placed`, `rebalance_executed`).

Journal writes never raise into trading code; a failed write is logged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from gridfleet.core.json_utils import dumps

if TYPE_CHECKING:
    from gridfleet.state.ledger_store import LedgerStore

log = logging.getLogger("gridfleet")


class OpsJournal:
    def __init__(self, ledger: "LedgerStore") -> None:
        self._ledger = ledger

    async def log_error(
        self,
        wallet_index: Optional[int],
        wallet_address: Optional[str],
        error_type: str,
        message: str,
        context: Optional[str] = None,
    ) -> None:
        try:
            await self._ledger.log_error(wallet_index, wallet_address, error_type, message, context)
        except Exception as exc:
            log.error(dumps({
                "event": "journal_write_failed",
                "table": "error_log",
                "wallet": wallet_address,
                "error_type": error_type,
                "err": str(exc),
            }))

    async def record_metric(
        self,
        wallet_index: Optional[int],
        wallet_address: str,
        metric: str,
        value: float = 1.0,
    ) -> None:
        try:
            await self._ledger.record_metric(wallet_index, wallet_address, metric, float(value))
        except Exception as exc:
            log.error(dumps({
                "event": "journal_write_failed",
                "table": "daily_metrics",
                "wallet": wallet_address,
                "metric": metric,
                "err": str(exc),
            }))

    async def recent_errors(self, limit: int = 50, wallet: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._ledger.recent_errors(limit, wallet)

    async def daily_metrics(self, day: Optional[str] = None, wallet: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._ledger.daily_metrics(day, wallet)

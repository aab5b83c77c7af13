"""
Ledger-level cancellation for the startup/daily reset.

Nothing is cancelled on-chain: active ledger rows are marked canceled so a
fresh grid can be placed, and the venue orders run out at their deadline.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, Optional

from gridfleet.core.json_utils import dumps

if TYPE_CHECKING:
    from gridfleet.monitoring.ops_journal import OpsJournal
    from gridfleet.state.ledger_store import LedgerStore
    from gridfleet.wallets import FleetWallet

log = logging.getLogger("gridfleet")


class LedgerCanceller:
    def __init__(self, ledger: "LedgerStore", journal: Optional["OpsJournal"] = None) -> None:
        self.ledger = ledger
        self.journal = journal

    async def cancel_all(self, wallets: Iterable["FleetWallet"]) -> Dict[str, int]:
        """Mark every pending/partial order of each wallet canceled. Returns counts per address."""
        counts: Dict[str, int] = {}
        for wallet in wallets:
            n = await self.ledger.cancel_active_orders(wallet.address)
            counts[wallet.address] = n
            if self.journal:
                await self.journal.record_metric(wallet.index, wallet.address, "orders_canceled_reset", n)
            log.info(dumps({"event": "orders_canceled_reset", "wallet": wallet.address, "count": n}))
        return counts

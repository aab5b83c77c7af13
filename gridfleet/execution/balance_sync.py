"""
Balance snapshot synchronization with an out-of-band retry queue.

`sync(wallet)` reads both pool tokens from the chain and stores the snapshot
in the ledger. A failed read never blocks trading: the wallet is enqueued in
`balance_sync_queue` and `drain_queue()` retries it on later cycles until
`max_retries` is reached, after which the entry is abandoned.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Optional

from gridfleet.config.tokens import TOKENS, TokenRegistry
from gridfleet.core.json_utils import dumps
from gridfleet.state.models import SyncStatus

if TYPE_CHECKING:
    from gridfleet.state.ledger_store import LedgerStore
    from gridfleet.venue.interfaces import ChainClient
    from gridfleet.wallets import FleetWallet

log = logging.getLogger("gridfleet")


@dataclass
class BalanceSyncConfig:
    max_retries: int = 3
    log_event_callback: Optional[Callable[..., None]] = None


class BalanceSynchronizer:
    def __init__(
        self,
        chain: "ChainClient",
        ledger: "LedgerStore",
        registry: TokenRegistry = TOKENS,
        config: Optional[BalanceSyncConfig] = None,
    ) -> None:
        self.chain = chain
        self.ledger = ledger
        self.registry = registry
        self.config = config or BalanceSyncConfig()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    async def _read_and_save(self, wallet: "FleetWallet") -> Dict[str, Decimal]:
        target, base = self.registry.parse_trading_pool(wallet.trading_pool)
        balances: Dict[str, Decimal] = {}
        for token in (target, base):
            balances[token.symbol] = await self.chain.get_balance(token, wallet.address)
        await self.ledger.save_balances(wallet.address, balances)
        return balances

    async def sync(self, wallet: "FleetWallet") -> bool:
        """Refresh the wallet's balance snapshot. Never raises (except cancellation)."""
        try:
            balances = await self._read_and_save(wallet)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log_event("balance_sync_failed", wallet=wallet.address, err=str(exc))
            try:
                await self.ledger.enqueue_balance_sync(
                    wallet.address, wallet.index, str(exc), max_retries=self.config.max_retries,
                )
            except asyncio.CancelledError:
                raise
            except Exception as queue_exc:
                log.error(dumps({
                    "event": "balance_sync_enqueue_failed",
                    "wallet": wallet.address,
                    "err": str(queue_exc),
                }))
            return False

        log.debug(dumps({
            "event": "balance_synced",
            "wallet": wallet.address,
            "balances": {k: str(v) for k, v in balances.items()},
        }))
        return True

    async def drain_queue(self, wallets: Iterable["FleetWallet"]) -> int:
        """Retry due queue entries for the given wallets. Returns the number synced."""
        by_address = {w.address.lower(): w for w in wallets}
        synced = 0
        for entry in await self.ledger.due_balance_syncs():
            wallet = by_address.get(entry.wallet_address.lower())
            if wallet is None:
                continue
            try:
                await self._read_and_save(wallet)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                attempts = entry.retry_count + 1
                status = SyncStatus.ABANDONED if attempts >= entry.max_retries else SyncStatus.RETRYING
                await self.ledger.update_balance_sync(entry.id, status, attempts, str(exc)[:1000])
                self._log_event(
                    "balance_sync_retry_failed",
                    wallet=wallet.address,
                    attempt=attempts,
                    max_retries=entry.max_retries,
                    abandoned=status is SyncStatus.ABANDONED,
                    err=str(exc),
                )
                continue
            await self.ledger.update_balance_sync(entry.id, SyncStatus.SUCCESS, entry.retry_count)
            synced += 1
            self._log_event("balance_sync_recovered", wallet=wallet.address, attempts=entry.retry_count + 1)
        return synced

"""
OrderExecutor: submits constructed orders to the venue and records them.

Sequence (under the per-wallet lock):
    1. Approve the venue spender for the source token (skipped for native)
    2. Value the order in USD
    3. Submit the order transaction and wait for the receipt
    4. Wait `settle_delay` for the venue to index the order
    5. Resolve the venue order id from the tx hash (falls back to the hash)
    6. Insert the ledger row

Architecture:
    The executor owns no state. The venue and chain clients carry their own
    RetryPolicy. Everything that can fail without touching the venue (the
    approval and the USD price) runs before submission; after a confirmed
    submit the only remaining step is the ledger insert, and an order-id
    lookup failure degrades to the tx hash. Status sync matches rows by venue
    id or tx hash, so a hash-keyed row is still tracked.

Thread Safety:
    All transactions for one wallet go through WalletLockRegistry, so
    approval, submission and nonce use never interleave across components.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from gridfleet.core.errors import DuplicateOrder, GridFleetError
from gridfleet.core.json_utils import dumps
from gridfleet.state.models import Order, OrderStatus

if TYPE_CHECKING:
    from gridfleet.infra.wallet_locks import WalletLockRegistry
    from gridfleet.monitoring.metrics import FleetMetrics
    from gridfleet.monitoring.ops_journal import OpsJournal
    from gridfleet.state.ledger_store import LedgerStore
    from gridfleet.venue.interfaces import ChainClient, OrderDescriptor, PriceFeed, VenueClient
    from gridfleet.wallets import FleetWallet

log = logging.getLogger("gridfleet")


@dataclass
class OrderExecutionConfig:
    # Seconds between receipt and order-id lookup
    settle_delay: float = 5.0
    log_event_callback: Optional[Callable[..., None]] = None


class OrderExecutor:
    def __init__(
        self,
        venue: "VenueClient",
        chain: "ChainClient",
        ledger: "LedgerStore",
        prices: "PriceFeed",
        locks: "WalletLockRegistry",
        metrics: Optional["FleetMetrics"] = None,
        journal: Optional["OpsJournal"] = None,
        config: Optional[OrderExecutionConfig] = None,
    ) -> None:
        self.venue = venue
        self.chain = chain
        self.ledger = ledger
        self.prices = prices
        self.locks = locks
        self.metrics = metrics
        self.journal = journal
        self.config = config or OrderExecutionConfig()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    async def execute(
        self,
        wallet: "FleetWallet",
        descriptor: "OrderDescriptor",
        parent_order_id: Optional[int] = None,
    ) -> Order:
        """
        Place `descriptor` on the venue and record it.

        Returns the persisted Order (with ledger id). Any failure is counted,
        journaled and re-raised to the caller.
        """
        lock = await self.locks.get_lock(wallet.address)
        try:
            async with lock:
                order = await self._execute_locked(wallet, descriptor, parent_order_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = type(exc).__name__
            if self.metrics:
                self.metrics.orders_failed.labels(wallet=wallet.address, reason=reason).inc()
            if self.journal:
                await self.journal.log_error(
                    wallet.index, wallet.address, "order_execution_failed", str(exc),
                    context=descriptor.order_type.value,
                )
            self._log_event(
                "order_execution_failed",
                wallet=wallet.address,
                order_type=descriptor.order_type.value,
                parent_order_id=parent_order_id,
                reason=reason,
                err=str(exc),
            )
            raise

        if self.metrics:
            self.metrics.orders_placed.labels(wallet=wallet.address, order_type=order.order_type.value).inc()
        if self.journal:
            await self.journal.record_metric(wallet.index, wallet.address, "order_placed", order.usd_value)
        self._log_event(
            "order_placed",
            wallet=wallet.address,
            order_id=order.id,
            venue_order_id=order.venue_order_id,
            order_type=order.order_type.value,
            parent_order_id=parent_order_id,
            from_token=order.from_token,
            to_token=order.to_token,
            from_amount=str(order.from_amount),
            to_amount_min=str(order.to_amount_min),
            usd_value=round(order.usd_value, 2),
            tx_hash=order.tx_hash,
        )
        return order

    async def _execute_locked(
        self,
        wallet: "FleetWallet",
        descriptor: "OrderDescriptor",
        parent_order_id: Optional[int],
    ) -> Order:
        if descriptor.requires_approval:
            approval = await self.chain.ensure_approval(
                wallet.signer, descriptor.from_token, self.venue.spender, descriptor.from_amount_wei,
            )
            if not approval.approved:
                raise GridFleetError(
                    f"Approval of {descriptor.from_token.symbol} for {self.venue.spender} failed",
                    wallet=wallet.address,
                )

        # Nothing after submit_order may raise before the insert
        price = await self.prices.get_price(descriptor.from_token.symbol)
        usd_value = float(descriptor.from_amount) * price

        receipt = await self.venue.submit_order(wallet.signer, descriptor)
        if self.config.settle_delay > 0:
            await asyncio.sleep(self.config.settle_delay)

        venue_order_id = await self._resolve_order_id(wallet, receipt.tx_hash)

        existing = await self.ledger.get_order_by_venue_id(venue_order_id)
        if existing is not None:
            raise DuplicateOrder(venue_order_id, wallet=wallet.address)

        order = Order(
            venue_order_id=venue_order_id,
            wallet_address=wallet.address,
            order_type=descriptor.order_type,
            from_token=descriptor.from_token.symbol,
            to_token=descriptor.to_token.symbol,
            from_amount=descriptor.from_amount,
            to_amount_min=descriptor.to_amount_min,
            status=OrderStatus.PENDING,
            progress=0.0,
            parent_order_id=parent_order_id,
            tx_hash=receipt.tx_hash,
            limit_price=descriptor.limit_price,
            grid_offset=descriptor.grid_offset,
            usd_value=usd_value,
            placed_at=time.time(),
        )
        return await self.ledger.insert_order(order)

    async def _resolve_order_id(self, wallet: "FleetWallet", tx_hash: str) -> str:
        """Venue order id for a confirmed submission, or the tx hash when the indexer cannot say."""
        try:
            venue_order_id = await self.venue.find_order_id(wallet.address, tx_hash)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning(dumps({
                "event": "order_id_lookup_failed",
                "wallet": wallet.address,
                "tx_hash": tx_hash,
                "err": str(exc),
            }))
            return tx_hash
        if not venue_order_id:
            log.warning(dumps({
                "event": "order_id_unresolved",
                "wallet": wallet.address,
                "tx_hash": tx_hash,
            }))
            return tx_hash
        return venue_order_id

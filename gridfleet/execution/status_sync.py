"""
StatusSynchronizer: reconciles ledger orders with the venue.

Each pass:
    1. Load the wallet's active (pending/partial) ledger orders
    2. Fetch the wallet's full order book from the venue
    3. Match by venue order id, falling back to the submission tx hash
    4. Map venue state to ledger state and emit a transition when the
       status or progress changed
    5. Persist each transition through the ledger's conditional update

Status mapping precedence:
    progress == 100          -> filled  (even if the venue label is still Open)
    0 < progress < 100       -> partial (even if the label is Canceled/Expired)
    Completed                -> filled
    Canceled / Expired       -> canceled / expired
    anything else            -> pending

Idempotence:
    A second pass without a venue-side change finds every order already at
    the venue's (status, progress) and emits nothing. Terminal rows are out of
    the active set, and the conditional UPDATE refuses regressions, so a stale
    transition applied twice changes nothing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Tuple

from gridfleet.core.json_utils import dumps
from gridfleet.execution.order_state_machine import LedgerStatusMachine
from gridfleet.state.models import ACTIVE_STATUSES, Order, OrderStatus
from gridfleet.venue.interfaces import (
    VENUE_CANCELED,
    VENUE_COMPLETED,
    VENUE_EXPIRED,
    VenueOrder,
)

if TYPE_CHECKING:
    from gridfleet.monitoring.metrics import FleetMetrics
    from gridfleet.monitoring.ops_journal import OpsJournal
    from gridfleet.state.ledger_store import LedgerStore
    from gridfleet.venue.interfaces import VenueClient
    from gridfleet.wallets import FleetWallet

log = logging.getLogger("gridfleet")


def map_venue_status(venue_order: VenueOrder) -> Tuple[OrderStatus, float]:
    """Ledger (status, progress) for a venue order. Progress is authoritative."""
    progress = max(0.0, min(100.0, float(venue_order.progress or 0.0)))
    label = (venue_order.status or "").strip().lower()
    if progress >= 100.0:
        return OrderStatus.FILLED, 100.0
    if progress > 0.0:
        return OrderStatus.PARTIAL, progress
    if label == VENUE_COMPLETED.lower():
        return OrderStatus.FILLED, 100.0
    if label == VENUE_CANCELED.lower():
        return OrderStatus.CANCELED, progress
    if label == VENUE_EXPIRED.lower():
        return OrderStatus.EXPIRED, progress
    return OrderStatus.PENDING, progress


@dataclass
class StatusTransition:
    """One detected (status, progress) change for a ledger order."""
    order: Order
    old_status: OrderStatus
    old_progress: float
    new_status: OrderStatus
    new_progress: float
    filled_from_amount: Optional[Decimal] = None
    filled_to_amount: Optional[Decimal] = None
    venue_order: Optional[VenueOrder] = None

    @property
    def is_fill(self) -> bool:
        return self.new_status is OrderStatus.FILLED

    @property
    def status_changed(self) -> bool:
        return self.new_status is not self.old_status


@dataclass
class StatusSyncConfig:
    log_event_callback: Optional[Callable[..., None]] = None


class StatusSynchronizer:
    """
    Observational reconciler: never places orders, only moves ledger rows
    forward to match the venue.
    """

    def __init__(
        self,
        venue: "VenueClient",
        ledger: "LedgerStore",
        machine: Optional[LedgerStatusMachine] = None,
        metrics: Optional["FleetMetrics"] = None,
        journal: Optional["OpsJournal"] = None,
        config: Optional[StatusSyncConfig] = None,
    ) -> None:
        self.venue = venue
        self.ledger = ledger
        self.machine = machine or LedgerStatusMachine()
        self.metrics = metrics
        self.journal = journal
        self.config = config or StatusSyncConfig()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    async def detect(self, wallet: "FleetWallet") -> List[StatusTransition]:
        """
        Compare active ledger orders with the venue book.

        Raises whatever the venue client raises once its retries are spent.
        """
        active = await self.ledger.list_orders(wallet=wallet.address, statuses=ACTIVE_STATUSES)
        if not active:
            return []

        book = await self.venue.fetch_orders(wallet.address)
        by_id = book.by_id()
        by_tx = book.by_tx_hash()

        transitions: List[StatusTransition] = []
        for order in active:
            venue_order = by_id.get(order.venue_order_id)
            if venue_order is None and order.tx_hash:
                venue_order = by_tx.get(order.tx_hash.lower())
            if venue_order is None:
                log.debug(dumps({
                    "event": "venue_order_missing",
                    "wallet": wallet.address,
                    "order_id": order.id,
                    "venue_order_id": order.venue_order_id,
                }))
                continue

            new_status, new_progress = map_venue_status(venue_order)
            if new_status is order.status and new_progress == order.progress:
                continue
            if not self.machine.check(order.id, order.status, order.progress, new_status, new_progress):
                continue

            transition = StatusTransition(
                order=order,
                old_status=order.status,
                old_progress=order.progress,
                new_status=new_status,
                new_progress=new_progress,
                venue_order=venue_order,
            )
            if new_status is OrderStatus.FILLED:
                transition.filled_from_amount = venue_order.filled_src_amount
                transition.filled_to_amount = venue_order.filled_dst_amount
            transitions.append(transition)
        return transitions

    async def apply(self, transition: StatusTransition, wallet_index: Optional[int] = None) -> bool:
        """Persist one transition. Returns False when the row had already moved on."""
        order = transition.order
        now = time.time()
        changed = await self.ledger.apply_transition(
            order.id,
            transition.new_status,
            transition.new_progress,
            checked_at=now,
            filled_at=now if transition.is_fill else None,
            filled_from_amount=transition.filled_from_amount,
            filled_to_amount=transition.filled_to_amount,
        )
        if not changed:
            self._log_event(
                "status_transition_stale",
                wallet=order.wallet_address,
                order_id=order.id,
                to_status=transition.new_status.value,
                to_progress=transition.new_progress,
            )
            return False

        order.status = transition.new_status
        order.progress = transition.new_progress
        order.last_checked_at = now
        if transition.is_fill:
            order.filled_at = now
            order.filled_from_amount = transition.filled_from_amount
            order.filled_to_amount = transition.filled_to_amount
            if self.metrics:
                self.metrics.fills.labels(wallet=order.wallet_address, order_type=order.order_type.value).inc()
            if self.journal:
                await self.journal.record_metric(wallet_index, order.wallet_address, "order_filled", order.usd_value)

        self._log_event(
            "order_status_changed",
            wallet=order.wallet_address,
            order_id=order.id,
            venue_order_id=order.venue_order_id,
            order_type=order.order_type.value,
            from_status=transition.old_status.value,
            to_status=transition.new_status.value,
            from_progress=transition.old_progress,
            to_progress=transition.new_progress,
            filled_from_amount=None if transition.filled_from_amount is None else str(transition.filled_from_amount),
            filled_to_amount=None if transition.filled_to_amount is None else str(transition.filled_to_amount),
        )
        return True

    async def sync(self, wallet: "FleetWallet") -> List[StatusTransition]:
        """detect + apply. Returns the transitions that were actually persisted."""
        try:
            transitions = await self.detect(wallet)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log_event("venue_fetch_failed", wallet=wallet.address, err=str(exc))
            if self.journal:
                await self.journal.log_error(wallet.index, wallet.address, "venue_fetch_failed", str(exc), "status_sync")
            return []

        applied: List[StatusTransition] = []
        for transition in transitions:
            try:
                if await self.apply(transition, wallet.index):
                    applied.append(transition)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._log_event(
                    "status_transition_failed",
                    wallet=wallet.address,
                    order_id=transition.order.id,
                    to_status=transition.new_status.value,
                    err=str(exc),
                )
                if self.journal:
                    await self.journal.log_error(
                        wallet.index, wallet.address, "status_transition_failed", str(exc),
                        context=f"order:{transition.order.id}",
                    )

        if self.metrics:
            counts = await self.ledger.count_by_status(wallet.address)
            open_count = sum(counts.get(s.value, 0) for s in ACTIVE_STATUSES)
            self.metrics.open_orders.labels(wallet=wallet.address).set(open_count)
        return applied

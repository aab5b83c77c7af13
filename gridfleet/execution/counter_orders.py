"""
CounterOrderManager: places the reversed order for every fill.

Flow for one filled parent:
    1. counter_type = parent.order_type.counter_type()
       (any buy -> COUNTER_SELL, any sell -> COUNTER_BUY)
    2. Stop if the ledger already holds that counter for the parent
    3. Realized execution price (USD per unit of the pool's target token)
       from the parent's filled amounts and current reference prices
    4. Counter price = exec * (1 + margin) for a buy parent,
                       exec * (1 - margin) for a sell parent
    5. Counter trades the parent's entire filled destination amount
    6. Below the configured USD minimum: record skip_reason on the parent
    7. Construct + execute with parent_order_id set

Reconciliation sweep:
    Re-runs steps 2-7 for every filled order that lacks its counter, using
    the filled amounts stored on the row. Orders the venue already reports
    filled but the ledger still holds as active are persisted first. Parents
    with a skip_reason are not retried.

Architecture:
    The parent link is a lookup-only back-reference. A counter can itself be
    countered later, so chains grow forward without bound and never cycle.
    Uniqueness is enforced twice: the find_counter pre-check and the partial
    UNIQUE index on (parent_order_id, order_type), which turns a lost race
    into CounterAlreadyExists.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from gridfleet.config.pair_config import PairConfig
from gridfleet.core.errors import (
    BelowMinimumOrderValue,
    CounterAlreadyExists,
    InsufficientBalance,
    InvalidFillAmounts,
)
from gridfleet.core.json_utils import dumps
from gridfleet.core.units import now_ms, to_decimal
from gridfleet.state.models import ActivityRecord, ActivityType, Order, OrderStatus, OrderType

if TYPE_CHECKING:
    from gridfleet.execution.order_construction import OrderConstructor
    from gridfleet.execution.order_execution import OrderExecutor
    from gridfleet.execution.status_sync import StatusSynchronizer, StatusTransition
    from gridfleet.monitoring.metrics import FleetMetrics
    from gridfleet.monitoring.ops_journal import OpsJournal
    from gridfleet.state.ledger_store import LedgerStore
    from gridfleet.venue.interfaces import PriceFeed
    from gridfleet.wallets import FleetWallet

log = logging.getLogger("gridfleet")

SKIP_BELOW_MINIMUM = "below_minimum"
SKIP_INVALID_FILL = "invalid_fill_amounts"


@dataclass(frozen=True)
class CounterPlan:
    counter_type: OrderType
    from_token: str
    to_token: str
    amount: Decimal
    execution_price: float  # USD per target unit
    counter_price: float  # USD per target unit
    limit_price: float  # destination per source
    usd_value: float


def compute_counter_plan(
    parent: Order,
    filled_from_amount: Optional[Decimal],
    filled_to_amount: Optional[Decimal],
    price_from: float,
    price_to: float,
    margin_pct: float,
) -> CounterPlan:
    """
    Derive the counter order for a filled parent. Pure.

    A buy parent spent the base token (source) for the target (destination);
    a sell parent spent the target for the base. Either way the counter sells
    what was acquired back into what was spent.

    Raises:
        InvalidFillAmounts: missing or non-positive filled amounts/prices
    """
    filled_src = to_decimal(filled_from_amount) if filled_from_amount is not None else Decimal(0)
    filled_dst = to_decimal(filled_to_amount) if filled_to_amount is not None else Decimal(0)
    if filled_src <= 0 or filled_dst <= 0:
        raise InvalidFillAmounts(
            f"Order {parent.id} has no usable filled amounts (src={filled_src}, dst={filled_dst})",
            wallet=parent.wallet_address,
        )
    if price_from <= 0 or price_to <= 0:
        raise InvalidFillAmounts(f"Order {parent.id}: non-positive reference price", wallet=parent.wallet_address)

    margin = margin_pct / 100.0
    counter_type = parent.order_type.counter_type()

    if parent.order_type.is_buy:
        # base -> target: exec = base USD spent per target unit received
        execution_price = float(filled_src) * price_from / float(filled_dst)
        counter_price = execution_price * (1 + margin)
        base_price = price_from
        limit_price = counter_price / base_price
        usd_value = float(filled_dst) * execution_price
    else:
        # target -> base: exec = base USD received per target unit sold
        execution_price = float(filled_dst) * price_to / float(filled_src)
        counter_price = execution_price * (1 - margin)
        base_price = price_to
        limit_price = base_price / counter_price
        usd_value = float(filled_dst) * base_price

    return CounterPlan(
        counter_type=counter_type,
        from_token=parent.to_token,
        to_token=parent.from_token,
        amount=filled_dst,
        execution_price=execution_price,
        counter_price=counter_price,
        limit_price=limit_price,
        usd_value=usd_value,
    )


def ensure_minimum_value(plan: CounterPlan, minimum_usd: float) -> None:
    if plan.usd_value < minimum_usd:
        raise BelowMinimumOrderValue(plan.usd_value, minimum_usd)


@dataclass
class CounterResult:
    """Outcome of one counter placement attempt: placed | exists | skipped | failed."""
    status: str
    parent_id: Optional[int] = None
    counter_order: Optional[Order] = None
    plan: Optional[CounterPlan] = None
    reason: Optional[str] = None

    @property
    def placed(self) -> bool:
        return self.status == "placed"


@dataclass
class SweepResult:
    checked: int = 0
    missing: int = 0
    placed: int = 0
    skipped: int = 0
    failed: int = 0
    exists: int = 0
    newly_filled: int = 0


@dataclass
class CounterOrderConfig:
    # Pause between consecutive sweep placements
    sweep_gap: float = 1.0
    log_event_callback: Optional[Callable[..., None]] = None


class CounterOrderManager:
    def __init__(
        self,
        constructor: "OrderConstructor",
        executor: "OrderExecutor",
        ledger: "LedgerStore",
        prices: "PriceFeed",
        pair_configs: Optional[Dict[str, PairConfig]] = None,
        synchronizer: Optional["StatusSynchronizer"] = None,
        metrics: Optional["FleetMetrics"] = None,
        journal: Optional["OpsJournal"] = None,
        config: Optional[CounterOrderConfig] = None,
    ) -> None:
        self.constructor = constructor
        self.executor = executor
        self.ledger = ledger
        self.prices = prices
        self.pair_configs = pair_configs or {}
        self.synchronizer = synchronizer
        self.metrics = metrics
        self.journal = journal
        self.config = config or CounterOrderConfig()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    def _pair_config(self, wallet: "FleetWallet") -> PairConfig:
        cfg = self.pair_configs.get(wallet.trading_pool)
        return cfg if cfg is not None else PairConfig(pool=wallet.trading_pool)

    async def handle_fill(self, transition: "StatusTransition", wallet: "FleetWallet") -> CounterResult:
        """React to a freshly persisted fill."""
        parent = transition.order
        if not transition.is_fill:
            return CounterResult(status="skipped", parent_id=parent.id, reason="not_filled")
        return await self._place_counter(
            parent, transition.filled_from_amount, transition.filled_to_amount, wallet, source="fill",
        )

    async def record_fill_activity(self, transition: "StatusTransition", wallet: "FleetWallet") -> bool:
        """Append a LIMIT_ORDER activity row for a fill, once per venue order."""
        order = transition.order
        if not transition.is_fill:
            return False
        try:
            if await self.ledger.has_activity_for_order(order.venue_order_id):
                return False
            amount_from = transition.filled_from_amount or order.from_amount
            amount_to = transition.filled_to_amount or order.to_amount_min
            try:
                usd_volume = float(amount_from) * await self.prices.get_price(order.from_token)
            except asyncio.CancelledError:
                raise
            except Exception:
                usd_volume = order.usd_value
            record = ActivityRecord(
                wallet_address=wallet.address,
                activity_type=ActivityType.LIMIT_ORDER,
                tx_hash=f"LIMIT_{order.venue_order_id}_{now_ms()}",
                token_from=order.from_token,
                token_to=order.to_token,
                amount_from=to_decimal(amount_from),
                amount_to=to_decimal(amount_to),
                usd_volume=usd_volume,
                execution_price=float(amount_to) / float(amount_from) if amount_from else None,
                order_ref=order.venue_order_id,
                metadata={
                    "order_id": order.id,
                    "order_type": order.order_type.value,
                    "parent_order_id": order.parent_order_id,
                    "progress": transition.new_progress,
                },
            )
            return await self.ledger.record_activity(record)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log_event("fill_activity_failed", wallet=wallet.address, order_id=order.id, err=str(exc))
            return False

    async def sweep(self, wallet: "FleetWallet") -> SweepResult:
        """Backfill counters for every filled order that lacks one."""
        result = SweepResult()

        if self.synchronizer is not None:
            result.newly_filled = await self._persist_venue_fills(wallet)

        filled = await self.ledger.list_orders(wallet=wallet.address, statuses=[OrderStatus.FILLED])
        result.checked = len(filled)
        missing = await self.ledger.filled_without_counter(wallet.address)
        result.missing = len(missing)

        for i, parent in enumerate(missing):
            outcome = await self._place_counter(
                parent, parent.filled_from_amount, parent.filled_to_amount, wallet, source="sweep",
            )
            if outcome.status == "placed":
                result.placed += 1
            elif outcome.status == "skipped":
                result.skipped += 1
            elif outcome.status == "exists":
                result.exists += 1
            else:
                result.failed += 1
            if outcome.placed and i < len(missing) - 1 and self.config.sweep_gap > 0:
                await asyncio.sleep(self.config.sweep_gap)

        if result.missing or result.newly_filled:
            self._log_event(
                "counter_sweep_done",
                wallet=wallet.address,
                checked=result.checked,
                missing=result.missing,
                placed=result.placed,
                skipped=result.skipped,
                failed=result.failed,
                newly_filled=result.newly_filled,
            )
        return result

    async def _persist_venue_fills(self, wallet: "FleetWallet") -> int:
        try:
            transitions = await self.synchronizer.detect(wallet)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log_event("sweep_venue_fetch_failed", wallet=wallet.address, err=str(exc))
            return 0
        persisted = 0
        for transition in transitions:
            if not transition.is_fill:
                continue
            try:
                if await self.synchronizer.apply(transition, wallet.index):
                    persisted += 1
                    await self.record_fill_activity(transition, wallet)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._log_event(
                    "sweep_fill_persist_failed", wallet=wallet.address, order_id=transition.order.id, err=str(exc),
                )
        return persisted

    async def _skip(self, parent: Order, wallet: "FleetWallet", reason: str, **fields: Any) -> CounterResult:
        await self.ledger.mark_skip(parent.id, reason)
        parent.skip_reason = reason
        if self.metrics:
            self.metrics.counter_orders_skipped.labels(wallet=wallet.address, reason=reason).inc()
        if self.journal:
            await self.journal.record_metric(wallet.index, wallet.address, "counter_order_skipped")
        self._log_event("counter_order_skipped", wallet=wallet.address, parent_id=parent.id, reason=reason, **fields)
        return CounterResult(status="skipped", parent_id=parent.id, reason=reason)

    async def _place_counter(
        self,
        parent: Order,
        filled_from_amount: Optional[Decimal],
        filled_to_amount: Optional[Decimal],
        wallet: "FleetWallet",
        source: str,
    ) -> CounterResult:
        counter_type = parent.order_type.counter_type()
        existing = await self.ledger.find_counter(parent.id, counter_type)
        if existing is not None:
            return CounterResult(status="exists", parent_id=parent.id, counter_order=existing)

        cfg = self._pair_config(wallet)
        try:
            price_from = await self.prices.get_price(parent.from_token)
            price_to = await self.prices.get_price(parent.to_token)
            plan = compute_counter_plan(
                parent, filled_from_amount, filled_to_amount, price_from, price_to, cfg.profit_margin_pct,
            )
        except InvalidFillAmounts as exc:
            return await self._skip(parent, wallet, SKIP_INVALID_FILL, err=str(exc))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return await self._failed(parent, wallet, exc, source)

        try:
            ensure_minimum_value(plan, cfg.counter_min_order_usd)
        except BelowMinimumOrderValue as exc:
            result = await self._skip(
                parent, wallet, SKIP_BELOW_MINIMUM,
                value_usd=round(exc.value_usd, 4), minimum_usd=exc.minimum_usd,
            )
            result.plan = plan
            return result

        try:
            descriptor = await self.constructor.construct(
                wallet.address,
                plan.counter_type,
                plan.from_token,
                plan.to_token,
                plan.amount,
                plan.limit_price,
                cfg.counter_expiry_hours,
                slippage_pct=cfg.slippage_pct,
            )
            counter = await self.executor.execute(wallet, descriptor, parent_order_id=parent.id)
        except CounterAlreadyExists:
            existing = await self.ledger.find_counter(parent.id, counter_type)
            return CounterResult(status="exists", parent_id=parent.id, counter_order=existing, plan=plan)
        except asyncio.CancelledError:
            raise
        except InsufficientBalance as exc:
            return await self._failed(parent, wallet, exc, source, plan=plan, reason="insufficient_balance")
        except Exception as exc:
            return await self._failed(parent, wallet, exc, source, plan=plan)

        if self.journal:
            await self.journal.record_metric(wallet.index, wallet.address, "counter_order_placed", counter.usd_value)
        self._log_event(
            "counter_order_placed",
            wallet=wallet.address,
            source=source,
            parent_id=parent.id,
            parent_type=parent.order_type.value,
            counter_id=counter.id,
            counter_type=counter.order_type.value,
            amount=str(plan.amount),
            execution_price=round(plan.execution_price, 8),
            counter_price=round(plan.counter_price, 8),
            usd_value=round(plan.usd_value, 2),
        )
        return CounterResult(status="placed", parent_id=parent.id, counter_order=counter, plan=plan)

    async def _failed(
        self,
        parent: Order,
        wallet: "FleetWallet",
        exc: Exception,
        source: str,
        plan: Optional[CounterPlan] = None,
        reason: Optional[str] = None,
    ) -> CounterResult:
        reason = reason or type(exc).__name__
        if self.journal:
            await self.journal.log_error(
                wallet.index, wallet.address, "counter_order_failed", str(exc), context=f"parent:{parent.id}",
            )
        self._log_event(
            "counter_order_failed", wallet=wallet.address, source=source, parent_id=parent.id, reason=reason, err=str(exc),
        )
        return CounterResult(status="failed", parent_id=parent.id, plan=plan, reason=reason)

    async def handle_fills(self, transitions: List["StatusTransition"], wallet: "FleetWallet") -> List[CounterResult]:
        """Record activity and place counters for each fill in a sync result."""
        results: List[CounterResult] = []
        for transition in transitions:
            if not transition.is_fill:
                continue
            await self.record_fill_activity(transition, wallet)
            results.append(await self.handle_fill(transition, wallet))
        return results

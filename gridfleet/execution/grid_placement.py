"""
GridPlacementEngine: one-time placement of the initial buy/sell ladder.

This module handles:
- Per-side sizing from wallet balances (buy side from the base token,
  sell side from the target token)
- Slot claims on the wallet's placed-pairs counter
- Sequential pair placement through OrderConstructor + OrderExecutor

Architecture:
    Sizing is a pure function (compute_sizing). The engine reads balances
    and prices once, derives the pair count, then walks the ladder from the
    wallet's current counter value. Each pair claims its slot first with a
    compare-and-increment in the ledger, so two scheduler instances can never
    both place pair i; a process that dies between claim and placement leaves
    the slot consumed rather than placing twice.

    Pricing for offset o (percent) around reference price P (USD per target):
        buy at  P * (1 + o_buy/100)   base -> target, limit = P_base / buy_price
        sell at P * (1 + o_sell/100)  target -> base, limit = sell_price / P_base

Thread Safety:
    An in-process guard rejects overlapping placements for the same wallet;
    cross-process safety comes from the ledger slot claim.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Set

from gridfleet.config.pair_config import PairConfig
from gridfleet.config.tokens import TOKENS, Token, TokenRegistry
from gridfleet.core.errors import InsufficientBalanceForGrid
from gridfleet.core.json_utils import dumps
from gridfleet.core.units import quantize_down, to_decimal
from gridfleet.state.models import OrderType

if TYPE_CHECKING:
    from gridfleet.execution.order_construction import OrderConstructor
    from gridfleet.execution.order_execution import OrderExecutor
    from gridfleet.monitoring.ops_journal import OpsJournal
    from gridfleet.state.ledger_store import LedgerStore
    from gridfleet.venue.interfaces import ChainClient, PriceFeed
    from gridfleet.wallets import FleetWallet

log = logging.getLogger("gridfleet")


@dataclass(frozen=True)
class GridSizing:
    """Affordability of one side of the grid."""
    balance: Decimal
    price: float
    balance_usd: float
    allocable_usd: float
    pairs: int
    order_usd: float

    def order_amount(self, pairs: int, decimals: int, allocation: float) -> Decimal:
        """Per-order token amount when the side is split across `pairs` orders."""
        if pairs <= 0:
            return Decimal(0)
        return quantize_down(self.balance * to_decimal(allocation) / pairs, decimals)


def compute_sizing(
    balance: Any,
    price: float,
    min_usd: float,
    ladder_len: int,
    allocation: float = 1.0,
) -> GridSizing:
    """
    pairs = min(ladder_len, floor(balance_usd * allocation / min_usd)).

    balance_usd is rounded to cents before dividing.
    """
    bal = to_decimal(balance)
    balance_usd = round(float(bal) * price, 2)
    allocable = balance_usd * allocation
    affordable = math.floor(allocable / min_usd) if min_usd > 0 else 0
    pairs = max(0, min(affordable, ladder_len))
    order_usd = allocable / pairs if pairs else 0.0
    return GridSizing(
        balance=bal,
        price=price,
        balance_usd=balance_usd,
        allocable_usd=allocable,
        pairs=pairs,
        order_usd=order_usd,
    )


@dataclass
class GridPlacementResult:
    """Result of a grid placement."""
    pairs_target: int = 0
    pairs_placed: int = 0
    partial_pairs: int = 0
    orders_placed: int = 0
    orders_failed: int = 0
    start_slot: int = 0
    skipped_reason: Optional[str] = None
    buy_sizing: Optional[GridSizing] = None
    sell_sizing: Optional[GridSizing] = None

    @property
    def success(self) -> bool:
        return self.orders_placed > 0 or self.skipped_reason == "already_placed"


@dataclass
class GridPlacementConfig:
    # Gap between the buy and the sell of one pair
    order_gap: float = 2.0
    # Gap between pairs
    pair_gap: float = 3.0
    log_event_callback: Optional[Callable[..., None]] = None


class GridPlacementEngine:
    def __init__(
        self,
        constructor: "OrderConstructor",
        executor: "OrderExecutor",
        chain: "ChainClient",
        prices: "PriceFeed",
        ledger: "LedgerStore",
        pair_configs: Optional[Dict[str, PairConfig]] = None,
        registry: TokenRegistry = TOKENS,
        journal: Optional["OpsJournal"] = None,
        config: Optional[GridPlacementConfig] = None,
    ) -> None:
        self.constructor = constructor
        self.executor = executor
        self.chain = chain
        self.prices = prices
        self.ledger = ledger
        self.pair_configs = pair_configs or {}
        self.registry = registry
        self.journal = journal
        self.config = config or GridPlacementConfig()
        self._in_progress: Set[str] = set()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    def _pair_config(self, wallet: "FleetWallet") -> PairConfig:
        cfg = self.pair_configs.get(wallet.trading_pool)
        return cfg if cfg is not None else PairConfig(pool=wallet.trading_pool)

    def is_placing(self, address: str) -> bool:
        return address.lower() in self._in_progress

    async def place_grid(self, wallet: "FleetWallet") -> GridPlacementResult:
        """
        Place the wallet's remaining grid pairs.

        Raises:
            InsufficientBalanceForGrid: not even one pair is affordable
            CounterMismatch: ledger counter fell behind the value read at start
        """
        key = wallet.address.lower()
        if key in self._in_progress:
            self._log_event("grid_placement_busy", wallet=wallet.address)
            return GridPlacementResult(skipped_reason="in_progress")

        self._in_progress.add(key)
        try:
            return await self._place_grid_inner(wallet)
        finally:
            self._in_progress.discard(key)

    async def _place_grid_inner(self, wallet: "FleetWallet") -> GridPlacementResult:
        cfg = self._pair_config(wallet)
        record = await self.ledger.get_wallet(wallet.address)
        if record is None:
            record = await self.ledger.upsert_wallet(wallet.address, wallet.index, wallet.trading_pool)
        start = record.placed_initial_orders
        ladder_len = cfg.ladder_len

        if start >= ladder_len:
            self._log_event("grid_already_placed", wallet=wallet.address, placed=start)
            return GridPlacementResult(pairs_target=ladder_len, start_slot=start, skipped_reason="already_placed")

        target, base = self.registry.parse_trading_pool(wallet.trading_pool)
        base_balance = await self.chain.get_balance(base, wallet.address)
        target_balance = await self.chain.get_balance(target, wallet.address)
        base_price = await self.prices.get_price(base.symbol)
        target_price = await self.prices.get_price(target.symbol)

        buy_sizing = compute_sizing(base_balance, base_price, cfg.min_order_usd, ladder_len, cfg.grid_allocation)
        sell_sizing = compute_sizing(target_balance, target_price, cfg.min_order_usd, ladder_len, cfg.grid_allocation)
        pairs = min(buy_sizing.pairs, sell_sizing.pairs)

        self._log_event(
            "grid_sizing",
            wallet=wallet.address,
            pool=wallet.trading_pool,
            reference_price=target_price,
            base_usd=buy_sizing.balance_usd,
            target_usd=sell_sizing.balance_usd,
            buy_pairs=buy_sizing.pairs,
            sell_pairs=sell_sizing.pairs,
            pairs=pairs,
            start_slot=start,
        )

        if pairs < 1:
            short = min(buy_sizing.allocable_usd, sell_sizing.allocable_usd)
            if self.journal:
                await self.journal.log_error(
                    wallet.index, wallet.address, "insufficient_balance_for_grid",
                    f"${short:.2f} allocable, ${cfg.min_order_usd:.2f} per order", context=wallet.trading_pool,
                )
            raise InsufficientBalanceForGrid(short, cfg.min_order_usd, wallet=wallet.address)

        result = GridPlacementResult(
            pairs_target=pairs, start_slot=start, buy_sizing=buy_sizing, sell_sizing=sell_sizing,
        )
        if start >= pairs:
            result.skipped_reason = "already_placed"
            return result

        buy_amount = buy_sizing.order_amount(pairs, base.decimals, cfg.grid_allocation)
        sell_amount = sell_sizing.order_amount(pairs, target.decimals, cfg.grid_allocation)

        for i in range(start, pairs):
            claimed = await self.ledger.claim_grid_slot(wallet.address, expected=i)
            if not claimed:
                result.skipped_reason = "claimed_elsewhere"
                self._log_event("grid_slot_claimed_elsewhere", wallet=wallet.address, slot=i)
                break

            buy_offset = cfg.buy_offsets[i]
            sell_offset = cfg.sell_offsets[i]
            buy_price = target_price * (1 + buy_offset / 100)
            sell_price = target_price * (1 + sell_offset / 100)

            buy_ok = await self._place_side(
                wallet, cfg, OrderType.GRID_BUY, base, target, buy_amount, base_price / buy_price, buy_offset,
            )
            if self.config.order_gap > 0:
                await asyncio.sleep(self.config.order_gap)
            sell_ok = await self._place_side(
                wallet, cfg, OrderType.GRID_SELL, target, base, sell_amount, sell_price / base_price, sell_offset,
            )

            placed_now = int(buy_ok) + int(sell_ok)
            result.orders_placed += placed_now
            result.orders_failed += 2 - placed_now
            if placed_now == 2:
                result.pairs_placed += 1
            elif placed_now == 1:
                result.partial_pairs += 1
                self._log_event("grid_pair_partial", wallet=wallet.address, slot=i, buy_ok=buy_ok, sell_ok=sell_ok)

            if i < pairs - 1 and self.config.pair_gap > 0:
                await asyncio.sleep(self.config.pair_gap)

        if self.journal and result.pairs_placed:
            await self.journal.record_metric(wallet.index, wallet.address, "grid_pairs_placed", result.pairs_placed)
        self._log_event(
            "grid_placed",
            wallet=wallet.address,
            pairs_target=result.pairs_target,
            pairs_placed=result.pairs_placed,
            partial_pairs=result.partial_pairs,
            orders_placed=result.orders_placed,
            orders_failed=result.orders_failed,
            skipped_reason=result.skipped_reason,
        )
        return result

    async def _place_side(
        self,
        wallet: "FleetWallet",
        cfg: PairConfig,
        order_type: OrderType,
        from_token: Token,
        to_token: Token,
        amount: Decimal,
        limit_price: float,
        offset: float,
    ) -> bool:
        try:
            descriptor = await self.constructor.construct(
                wallet.address,
                order_type,
                from_token,
                to_token,
                amount,
                limit_price,
                cfg.expiry_hours,
                grid_offset=offset,
                slippage_pct=cfg.slippage_pct,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log_event(
                "grid_order_failed", wallet=wallet.address, order_type=order_type.value,
                offset=offset, stage="construct", err=str(exc),
            )
            if self.journal:
                await self.journal.log_error(
                    wallet.index, wallet.address, "grid_order_failed", str(exc), context=f"{order_type.value}@{offset}",
                )
            return False

        try:
            await self.executor.execute(wallet, descriptor)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # executor already journaled the failure
            self._log_event(
                "grid_order_failed", wallet=wallet.address, order_type=order_type.value,
                offset=offset, stage="execute", err=str(exc),
            )
            return False
        return True

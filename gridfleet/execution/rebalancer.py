"""
RebalancingEngine: swaps a wallet back toward a 50/50 value split.

    total      = usd(target) + usd(base)
    allocation = usd(target) / total * 100
    imbalance  = |50 - allocation|

No swap when imbalance <= threshold or the required swap is <= the minimum
swap size. Otherwise swap (heavier side - total/2) USD of the heavier token
into the lighter one through the venue's swap router.

Execution (under the per-wallet lock):
    1. Re-read the source balance
    2. Approve the router (tx_to of the route) and re-verify the allowance
    3. Submit; on NonceConflict wait and resubmit once (the send refetches the nonce)
    4. Record a CLASSIC activity row keyed by the swap tx hash
    5. Refresh the balance snapshot
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

from gridfleet.config.pair_config import PairConfig
from gridfleet.config.tokens import TOKENS, Token, TokenRegistry
from gridfleet.core.errors import InsufficientBalance, NonceConflict, VenueError
from gridfleet.core.json_utils import dumps
from gridfleet.core.units import from_wei, quantize_down, to_wei
from gridfleet.state.models import ActivityRecord, ActivityType

if TYPE_CHECKING:
    from gridfleet.execution.balance_sync import BalanceSynchronizer
    from gridfleet.infra.wallet_locks import WalletLockRegistry
    from gridfleet.monitoring.metrics import FleetMetrics
    from gridfleet.monitoring.ops_journal import OpsJournal
    from gridfleet.state.ledger_store import LedgerStore
    from gridfleet.venue.interfaces import ChainClient, PriceFeed, SubmissionReceipt, SwapRoute, VenueClient
    from gridfleet.wallets import FleetWallet

log = logging.getLogger("gridfleet")


def allocation(value1: float, value2: float) -> Tuple[float, float]:
    """(share of side 1 in percent, deviation from 50) rounded to 6 places."""
    total = value1 + value2
    if total <= 0:
        return 0.0, 0.0
    share = value1 / total * 100
    return round(share, 6), round(abs(50 - share), 6)


@dataclass(frozen=True)
class RebalancePlan:
    from_side: int  # 0 -> swap side 1 into side 2, 1 -> the reverse
    swap_usd: float
    allocation_pct: float
    imbalance_pct: float
    total_usd: float


def plan(value1: float, value2: float, threshold_pct: float, min_swap_usd: float) -> Optional[RebalancePlan]:
    """Swap needed to restore 50/50, or None when within tolerance. Pure."""
    share, imbalance = allocation(value1, value2)
    total = value1 + value2
    if total <= 0 or imbalance <= threshold_pct:
        return None
    half = total / 2
    if value1 > half:
        from_side, swap_usd = 0, value1 - half
    else:
        from_side, swap_usd = 1, value2 - half
    swap_usd = round(swap_usd, 6)
    if swap_usd <= min_swap_usd:
        return None
    return RebalancePlan(
        from_side=from_side,
        swap_usd=swap_usd,
        allocation_pct=share,
        imbalance_pct=imbalance,
        total_usd=total,
    )


@dataclass
class RebalanceResult:
    """Outcome: swapped | balanced | below_minimum | no_route | disabled | failed."""
    success: bool
    action: str
    swap_usd: float = 0.0
    from_token: Optional[str] = None
    to_token: Optional[str] = None
    amount: Optional[Decimal] = None
    tx_hash: Optional[str] = None
    allocation_pct: float = 0.0
    error: Optional[str] = None


@dataclass
class RebalancerConfig:
    enabled: bool = True
    # Wait after an approval before re-checking the allowance
    approval_confirm_delay: float = 2.0
    # Wait before resubmitting after a stale-nonce rejection
    nonce_retry_delay: float = 2.0
    log_event_callback: Optional[Callable[..., None]] = None


class RebalancingEngine:
    def __init__(
        self,
        venue: "VenueClient",
        chain: "ChainClient",
        prices: "PriceFeed",
        ledger: "LedgerStore",
        locks: "WalletLockRegistry",
        balance_sync: Optional["BalanceSynchronizer"] = None,
        pair_configs: Optional[Dict[str, PairConfig]] = None,
        registry: TokenRegistry = TOKENS,
        metrics: Optional["FleetMetrics"] = None,
        journal: Optional["OpsJournal"] = None,
        config: Optional[RebalancerConfig] = None,
    ) -> None:
        self.venue = venue
        self.chain = chain
        self.prices = prices
        self.ledger = ledger
        self.locks = locks
        self.balance_sync = balance_sync
        self.pair_configs = pair_configs or {}
        self.registry = registry
        self.metrics = metrics
        self.journal = journal
        self.config = config or RebalancerConfig()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    def _pair_config(self, wallet: "FleetWallet") -> PairConfig:
        cfg = self.pair_configs.get(wallet.trading_pool)
        return cfg if cfg is not None else PairConfig(pool=wallet.trading_pool)

    def _count(self, wallet: "FleetWallet", outcome: str) -> None:
        if self.metrics:
            self.metrics.rebalances.labels(wallet=wallet.address, outcome=outcome).inc()

    async def rebalance(self, wallet: "FleetWallet") -> RebalanceResult:
        if not self.config.enabled:
            return RebalanceResult(success=True, action="disabled")
        try:
            result = await self._rebalance(wallet)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._count(wallet, "failed")
            if self.journal:
                await self.journal.log_error(
                    wallet.index, wallet.address, "rebalance_failed", str(exc), context=wallet.trading_pool,
                )
            self._log_event("rebalance_failed", wallet=wallet.address, err=str(exc))
            return RebalanceResult(success=False, action="failed", error=str(exc))
        self._count(wallet, result.action)
        return result

    async def _rebalance(self, wallet: "FleetWallet") -> RebalanceResult:
        cfg = self._pair_config(wallet)
        target, base = self.registry.parse_trading_pool(wallet.trading_pool)
        target_balance = await self.chain.get_balance(target, wallet.address)
        base_balance = await self.chain.get_balance(base, wallet.address)
        target_price = await self.prices.get_price(target.symbol)
        base_price = await self.prices.get_price(base.symbol)
        target_usd = float(target_balance) * target_price
        base_usd = float(base_balance) * base_price

        swap = plan(target_usd, base_usd, cfg.rebalance_threshold_pct, cfg.rebalance_min_swap_usd)
        share, imbalance = allocation(target_usd, base_usd)
        if swap is None:
            action = "balanced" if imbalance <= cfg.rebalance_threshold_pct else "below_minimum"
            self._log_event(
                "rebalance_skipped",
                wallet=wallet.address,
                reason=action,
                allocation_pct=share,
                target_usd=round(target_usd, 2),
                base_usd=round(base_usd, 2),
            )
            return RebalanceResult(success=True, action=action, allocation_pct=share)

        if swap.from_side == 0:
            src, dst, src_price = target, base, target_price
        else:
            src, dst, src_price = base, target, base_price
        amount = quantize_down(Decimal(repr(swap.swap_usd / src_price)), src.decimals)
        amount_wei = to_wei(amount, src.decimals)

        self._log_event(
            "rebalance_start",
            wallet=wallet.address,
            allocation_pct=share,
            swap_usd=round(swap.swap_usd, 2),
            from_token=src.symbol,
            to_token=dst.symbol,
            amount=str(amount),
        )

        lock = await self.locks.get_lock(wallet.address)
        async with lock:
            route = await self.venue.get_swap_route(
                wallet.address, src, dst, amount_wei, cfg.rebalance_slippage_pct,
            )
            if route is None:
                self._log_event("rebalance_no_route", wallet=wallet.address, from_token=src.symbol, to_token=dst.symbol)
                return RebalanceResult(
                    success=True, action="no_route", swap_usd=swap.swap_usd,
                    from_token=src.symbol, to_token=dst.symbol, amount=amount, allocation_pct=share,
                )
            receipt = await self._execute_swap(wallet, src, route, amount)

        amount_out = from_wei(route.amount_out_wei, dst.decimals)
        await self.ledger.record_activity(ActivityRecord(
            wallet_address=wallet.address,
            activity_type=ActivityType.CLASSIC,
            tx_hash=receipt.tx_hash,
            token_from=src.symbol,
            token_to=dst.symbol,
            amount_from=amount,
            amount_to=amount_out,
            usd_volume=swap.swap_usd,
            execution_price=src_price,
            metadata={
                "reason": "rebalance",
                "allocation_pct": share,
                "imbalance_pct": imbalance,
                "price_impact": route.price_impact,
            },
        ))
        if self.journal:
            await self.journal.record_metric(wallet.index, wallet.address, "rebalance_executed", swap.swap_usd)
        if self.balance_sync:
            await self.balance_sync.sync(wallet)

        self._log_event(
            "rebalance_swapped",
            wallet=wallet.address,
            tx_hash=receipt.tx_hash,
            from_token=src.symbol,
            to_token=dst.symbol,
            amount_in=str(amount),
            amount_out=str(amount_out),
            swap_usd=round(swap.swap_usd, 2),
        )
        return RebalanceResult(
            success=True,
            action="swapped",
            swap_usd=swap.swap_usd,
            from_token=src.symbol,
            to_token=dst.symbol,
            amount=amount,
            tx_hash=receipt.tx_hash,
            allocation_pct=share,
        )

    async def _execute_swap(
        self, wallet: "FleetWallet", src: Token, route: "SwapRoute", amount: Decimal,
    ) -> "SubmissionReceipt":
        balance = await self.chain.get_balance(src, wallet.address)
        if balance < amount:
            raise InsufficientBalance(src.symbol, float(balance), float(amount), wallet=wallet.address)

        if not src.is_native:
            approval = await self.chain.ensure_approval(wallet.signer, src, route.tx_to, route.amount_in_wei)
            if not approval.already_approved:
                if self.config.approval_confirm_delay > 0:
                    await asyncio.sleep(self.config.approval_confirm_delay)
                allowance = await self.chain.get_allowance(src, wallet.address, route.tx_to)
                if allowance < route.amount_in_wei:
                    raise VenueError(
                        f"Approval of {src.symbol} for router {route.tx_to} not effective "
                        f"(allowance {allowance} < {route.amount_in_wei})",
                        wallet=wallet.address,
                    )

        try:
            return await self.venue.submit_swap(wallet.signer, route)
        except NonceConflict as exc:
            self._log_event("rebalance_nonce_conflict", wallet=wallet.address, err=str(exc))
            if self.config.nonce_retry_delay > 0:
                await asyncio.sleep(self.config.nonce_retry_delay)
            # submit_swap reads the pending nonce itself
            self._log_event("rebalance_resubmit", wallet=wallet.address)
            return await self.venue.submit_swap(wallet.signer, route)

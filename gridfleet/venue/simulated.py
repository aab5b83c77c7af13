"""
In-memory venue and chain used by test mode and the test suite.

SimulatedVenue assigns ids `TEST_{ms}_{rand}` and tx hashes `0xTEST...`,
keeps orders per maker and lets a scenario drive them with fill(), expire()
and cancel(). With `fill_probability` > 0 every fetch_orders() call fills
each open order with that probability (0.3 reproduces the production test
mode). Fills move balances on the attached SimulatedChain.
"""

from __future__ import annotations

import random
import secrets
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from gridfleet.config.tokens import TOKENS, Token, TokenRegistry
from gridfleet.core.errors import NonceConflict, VenueUnavailable
from gridfleet.core.units import from_wei, now_ms, to_wei
from gridfleet.venue.interfaces import (
    VENUE_CANCELED,
    VENUE_COMPLETED,
    VENUE_EXPIRED,
    VENUE_OPEN,
    ApprovalResult,
    OrderDescriptor,
    SubmissionReceipt,
    SwapRoute,
    VenueOrder,
    VenueOrderBook,
)

MAX_UINT256 = 2**256 - 1
SIMULATED_SPENDER = "0x" + "7e57" * 10
SIMULATED_ROUTER = "0x" + "5a5a" * 10


def simulated_tx_hash() -> str:
    return "0xTEST" + secrets.token_hex(30)


class SimulatedChain:
    def __init__(self, registry: TokenRegistry = TOKENS) -> None:
        self._registry = registry
        self._balances: Dict[Tuple[str, str], Decimal] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._nonces: Dict[str, int] = {}
        self.approvals: List[Tuple[str, str, str]] = []
        self.balance_failures = 0

    def set_balance(self, address: str, symbol: str, amount: Any) -> None:
        self._balances[(address.lower(), symbol.upper())] = Decimal(str(amount))

    def adjust_balance(self, address: str, symbol: str, delta: Decimal) -> None:
        key = (address.lower(), symbol.upper())
        self._balances[key] = self._balances.get(key, Decimal(0)) + delta

    def balance_of(self, address: str, symbol: str) -> Decimal:
        return self._balances.get((address.lower(), symbol.upper()), Decimal(0))

    async def get_balance(self, token: Token, wallet_address: str) -> Decimal:
        if self.balance_failures > 0:
            self.balance_failures -= 1
            raise VenueUnavailable("simulated balance read failure")
        return self.balance_of(wallet_address, token.symbol)

    async def get_allowance(self, token: Token, owner: str, spender: str) -> int:
        if token.is_native:
            return MAX_UINT256
        return self._allowances.get((owner.lower(), token.symbol, spender.lower()), 0)

    async def ensure_approval(self, signer: Any, token: Token, spender: str, amount_wei: int) -> ApprovalResult:
        owner = str(getattr(signer, "address", signer) or "")
        if await self.get_allowance(token, owner, spender) >= amount_wei:
            return ApprovalResult(approved=True, already_approved=True)
        self._allowances[(owner.lower(), token.symbol, spender.lower())] = MAX_UINT256
        self.approvals.append((owner.lower(), token.symbol, spender.lower()))
        self._bump_nonce(owner)
        return ApprovalResult(approved=True, tx_hash=simulated_tx_hash())

    def _bump_nonce(self, address: str) -> int:
        key = address.lower()
        self._nonces[key] = self._nonces.get(key, 0) + 1
        return self._nonces[key]

    async def pending_nonce(self, address: str) -> int:
        return self._nonces.get(address.lower(), 0)

    async def close(self) -> None:
        return None


class SimulatedVenue:
    def __init__(
        self,
        chain: SimulatedChain,
        fill_probability: float = 0.0,
        prices: Optional[Dict[str, float]] = None,
        index_orders: bool = True,
        rng: Optional[random.Random] = None,
        registry: TokenRegistry = TOKENS,
    ) -> None:
        self.chain = chain
        self.fill_probability = fill_probability
        self.prices = dict(prices or {})
        self.index_orders = index_orders
        self._rng = rng or random.Random()
        self._registry = registry
        self._orders: Dict[str, List[VenueOrder]] = {}
        self._makers: Dict[str, str] = {}  # order id -> maker
        self._tokens: Dict[str, Tuple[Token, Token]] = {}  # order id -> (src, dst)
        self.submitted: List[OrderDescriptor] = []
        self.swaps: List[SwapRoute] = []
        self.fetch_failures = 0
        self.submit_failures = 0
        self.lookup_failures = 0
        self.nonce_conflicts = 0
        self.no_route = False

    @property
    def spender(self) -> str:
        return SIMULATED_SPENDER

    async def close(self) -> None:
        return None

    # ── Limit orders ──

    async def submit_order(self, signer: Any, descriptor: OrderDescriptor) -> SubmissionReceipt:
        if self.submit_failures > 0:
            self.submit_failures -= 1
            raise VenueUnavailable("simulated submission failure")
        order_id = f"TEST_{now_ms()}_{self._rng.randrange(16**6):06x}"
        tx_hash = simulated_tx_hash()
        order = VenueOrder(
            id=order_id,
            status=VENUE_OPEN,
            progress=0.0,
            src_amount=descriptor.from_amount,
            dst_amount=descriptor.to_amount_min,
            tx_hash=tx_hash,
            src_token_address=descriptor.from_token.address,
            dst_token_address=descriptor.to_token.address,
            deadline=descriptor.deadline,
            created_at=time.time(),
        )
        maker = descriptor.wallet_address.lower()
        self._orders.setdefault(maker, []).append(order)
        self._makers[order_id] = maker
        self._tokens[order_id] = (descriptor.from_token, descriptor.to_token)
        self.submitted.append(descriptor)
        return SubmissionReceipt(tx_hash=tx_hash, block_number=len(self.submitted))

    def _find(self, order_id: str) -> VenueOrder:
        maker = self._makers.get(order_id)
        if maker is None:
            raise KeyError(order_id)
        for order in self._orders[maker]:
            if order.id == order_id:
                return order
        raise KeyError(order_id)

    def orders_for(self, wallet_address: str) -> List[VenueOrder]:
        return list(self._orders.get(wallet_address.lower(), []))

    def fill(
        self,
        order_id: str,
        progress: float = 100.0,
        filled_dst: Optional[Decimal] = None,
    ) -> VenueOrder:
        """Advance an order to `progress`; fills move balances on the chain."""
        order = self._find(order_id)
        src, dst = self._tokens[order_id]
        fraction = Decimal(str(progress)) / Decimal(100)
        new_src = order.src_amount * fraction
        new_dst = filled_dst if filled_dst is not None else order.dst_amount * fraction
        maker = self._makers[order_id]
        self.chain.adjust_balance(maker, src.symbol, -(new_src - order.filled_src_amount))
        self.chain.adjust_balance(maker, dst.symbol, new_dst - order.filled_dst_amount)
        order.filled_src_amount = new_src
        order.filled_dst_amount = new_dst
        order.progress = float(progress)
        if progress >= 100:
            order.status = VENUE_COMPLETED
        return order

    def expire(self, order_id: str) -> VenueOrder:
        order = self._find(order_id)
        order.status = VENUE_EXPIRED
        return order

    def cancel(self, order_id: str) -> VenueOrder:
        order = self._find(order_id)
        order.status = VENUE_CANCELED
        return order

    async def fetch_orders(self, wallet_address: str) -> VenueOrderBook:
        if self.fetch_failures > 0:
            self.fetch_failures -= 1
            raise VenueUnavailable("simulated indexer outage")
        now = time.time()
        for order in self._orders.get(wallet_address.lower(), []):
            if order.status != VENUE_OPEN:
                continue
            if order.deadline is not None and order.deadline <= now:
                order.status = VENUE_EXPIRED
            elif self.fill_probability > 0 and self._rng.random() < self.fill_probability:
                self.fill(order.id)
        return VenueOrderBook.from_orders(self.orders_for(wallet_address))

    async def find_order_id(self, wallet_address: str, tx_hash: str) -> Optional[str]:
        if self.lookup_failures > 0:
            self.lookup_failures -= 1
            raise VenueUnavailable("simulated indexer outage")
        if not self.index_orders:
            return None
        for order in self._orders.get(wallet_address.lower(), []):
            if order.tx_hash and order.tx_hash.lower() == tx_hash.lower():
                return order.id
        return None

    # ── Swaps ──

    async def get_swap_route(
        self, wallet_address: str, token_in: Token, token_out: Token, amount_in_wei: int, slippage_pct: float,
    ) -> Optional[SwapRoute]:
        if self.no_route:
            return None
        amount_out_wei = 0
        p_in = self.prices.get(token_in.symbol)
        p_out = self.prices.get(token_out.symbol)
        if p_in and p_out:
            human_out = from_wei(amount_in_wei, token_in.decimals) * Decimal(str(p_in)) / Decimal(str(p_out))
            amount_out_wei = to_wei(human_out, token_out.decimals)
        return SwapRoute(
            token_in=token_in,
            token_out=token_out,
            amount_in_wei=amount_in_wei,
            amount_out_wei=amount_out_wei,
            tx_to=SIMULATED_ROUTER,
            tx_data="0x" + secrets.token_hex(4),
            tx_value=amount_in_wei if token_in.is_native else 0,
            price_impact=0.0,
        )

    async def submit_swap(self, signer: Any, route: SwapRoute) -> SubmissionReceipt:
        if self.nonce_conflicts > 0:
            self.nonce_conflicts -= 1
            raise NonceConflict("nonce too low")
        owner = str(getattr(signer, "address", signer) or "")
        self.chain.adjust_balance(owner, route.token_in.symbol, -from_wei(route.amount_in_wei, route.token_in.decimals))
        self.chain.adjust_balance(owner, route.token_out.symbol, from_wei(route.amount_out_wei, route.token_out.decimals))
        self.chain._bump_nonce(owner)
        self.swaps.append(route)
        return SubmissionReceipt(tx_hash=simulated_tx_hash(), block_number=len(self.swaps))

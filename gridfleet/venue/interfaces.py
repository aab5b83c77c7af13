"""
Collaborator boundary: venue, chain and price feed.

The engine talks to the outside world only through these protocols and the
wire-neutral dataclasses below. Production adapters (TwapVenueClient,
RpcChainClient, HttpPriceFeed) and the in-memory simulation used by test mode
both satisfy them.

Amounts on VenueOrder are human units (Decimal); adapters convert from the
venue's smallest units using the token registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from gridfleet.config.tokens import Token
from gridfleet.state.models import OrderType


# Venue status labels (TWAP SDK OrderStatus)
VENUE_OPEN = "Open"
VENUE_COMPLETED = "Completed"
VENUE_CANCELED = "Canceled"
VENUE_EXPIRED = "Expired"


@dataclass(frozen=True)
class OrderDescriptor:
    """Fully specified limit order, ready for submission. Built by OrderConstructor."""
    wallet_address: str
    order_type: OrderType
    from_token: Token
    to_token: Token
    from_amount: Decimal
    from_amount_wei: int
    to_amount_min: Decimal
    to_amount_min_wei: int
    limit_price: float  # destination per source
    deadline: int  # unix seconds
    chunk_amount_wei: int
    fill_delay_seconds: int = 180
    grid_offset: Optional[float] = None

    @property
    def requires_approval(self) -> bool:
        return not self.from_token.is_native

    @property
    def tx_value(self) -> int:
        return self.from_amount_wei if self.from_token.is_native else 0


@dataclass(frozen=True)
class SubmissionReceipt:
    tx_hash: str
    block_number: Optional[int] = None
    status: bool = True


@dataclass
class VenueOrder:
    id: str
    status: str
    progress: float
    src_amount: Decimal = Decimal(0)
    dst_amount: Decimal = Decimal(0)
    filled_src_amount: Decimal = Decimal(0)
    filled_dst_amount: Decimal = Decimal(0)
    tx_hash: Optional[str] = None
    src_token_address: Optional[str] = None
    dst_token_address: Optional[str] = None
    deadline: Optional[int] = None
    created_at: Optional[float] = None


@dataclass
class VenueOrderBook:
    all: List[VenueOrder] = field(default_factory=list)
    open: List[VenueOrder] = field(default_factory=list)
    completed: List[VenueOrder] = field(default_factory=list)
    canceled: List[VenueOrder] = field(default_factory=list)
    expired: List[VenueOrder] = field(default_factory=list)

    @classmethod
    def from_orders(cls, orders: List[VenueOrder]) -> "VenueOrderBook":
        def by_status(label: str) -> List[VenueOrder]:
            picked = [o for o in orders if o.status == label]
            picked.sort(key=lambda o: o.created_at or 0, reverse=True)
            return picked

        return cls(
            all=list(orders),
            open=by_status(VENUE_OPEN),
            completed=by_status(VENUE_COMPLETED),
            canceled=by_status(VENUE_CANCELED),
            expired=by_status(VENUE_EXPIRED),
        )

    def by_id(self) -> Dict[str, VenueOrder]:
        return {str(o.id): o for o in self.all}

    def by_tx_hash(self) -> Dict[str, VenueOrder]:
        return {o.tx_hash.lower(): o for o in self.all if o.tx_hash}


@dataclass(frozen=True)
class SwapRoute:
    token_in: Token
    token_out: Token
    amount_in_wei: int
    amount_out_wei: int
    tx_to: str
    tx_data: str
    tx_value: int = 0
    price_impact: Optional[float] = None


@dataclass(frozen=True)
class ApprovalResult:
    approved: bool
    tx_hash: Optional[str] = None
    already_approved: bool = False


@runtime_checkable
class VenueClient(Protocol):
    """Limit-order venue plus swap-router access."""

    @property
    def spender(self) -> str:
        """Contract that must be approved to pull source tokens."""
        ...

    async def submit_order(self, signer: Any, descriptor: OrderDescriptor) -> SubmissionReceipt:
        """Send the order transaction and wait for on-chain confirmation."""
        ...

    async def fetch_orders(self, wallet_address: str) -> VenueOrderBook:
        ...

    async def find_order_id(self, wallet_address: str, tx_hash: str) -> Optional[str]:
        """Venue-assigned id for the order created by `tx_hash`, if indexed yet."""
        ...

    async def get_swap_route(
        self, wallet_address: str, token_in: Token, token_out: Token, amount_in_wei: int, slippage_pct: float,
    ) -> Optional[SwapRoute]:
        ...

    async def submit_swap(self, signer: Any, route: SwapRoute) -> SubmissionReceipt:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class ChainClient(Protocol):
    async def get_balance(self, token: Token, wallet_address: str) -> Decimal:
        ...

    async def get_allowance(self, token: Token, owner: str, spender: str) -> int:
        ...

    async def ensure_approval(self, signer: Any, token: Token, spender: str, amount_wei: int) -> ApprovalResult:
        ...

    async def pending_nonce(self, address: str) -> int:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class PriceFeed(Protocol):
    async def get_price(self, symbol: str) -> float:
        """USD price for `symbol`."""
        ...

    async def close(self) -> None:
        ...

"""
Ledger entities: wallets, orders, activity and the balance-sync queue.

OrderType is modelled on two orthogonal axes, role (grid vs counter) and
direction (buy vs sell), so reversing an order is a total function over the
enum instead of string matching on the type tag.

Orders reference their parent through `parent_order_id` only. No order owns
its counter; chains are walked by lookup (see FleetQueries.counter_chain).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class Role(Enum):
    GRID = "grid"
    COUNTER = "counter"


class Direction(Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "Direction":
        return Direction.SELL if self is Direction.BUY else Direction.BUY


class OrderType(Enum):
    GRID_BUY = "grid_buy"
    GRID_SELL = "grid_sell"
    COUNTER_BUY = "counter_buy"
    COUNTER_SELL = "counter_sell"

    @property
    def role(self) -> Role:
        return Role.GRID if self.value.startswith("grid") else Role.COUNTER

    @property
    def direction(self) -> Direction:
        return Direction.BUY if self.value.endswith("buy") else Direction.SELL

    @property
    def is_buy(self) -> bool:
        return self.direction is Direction.BUY

    @classmethod
    def of(cls, role: Role, direction: Direction) -> "OrderType":
        return cls(f"{role.value}_{direction.value}")

    def counter_type(self) -> "OrderType":
        """Canonical reversed type: any buy -> COUNTER_SELL, any sell -> COUNTER_BUY."""
        return OrderType.of(Role.COUNTER, self.direction.opposite)


class OrderStatus(Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    FILLED = "filled"
    CANCELED = "canceled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.FILLED, OrderStatus.CANCELED, OrderStatus.EXPIRED})
ACTIVE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PARTIAL})


@dataclass
class WalletRecord:
    address: str
    index: int
    trading_pool: str
    placed_initial_orders: int = 0
    created_at: float = 0.0
    updated_at: float = 0.0


@dataclass
class Order:
    """One ledger row. Amounts are human units (Decimal)."""
    venue_order_id: str
    wallet_address: str
    order_type: OrderType
    from_token: str
    to_token: str
    from_amount: Decimal
    to_amount_min: Decimal
    status: OrderStatus = OrderStatus.PENDING
    progress: float = 0.0
    parent_order_id: Optional[int] = None
    tx_hash: Optional[str] = None
    limit_price: Optional[float] = None
    grid_offset: Optional[float] = None
    usd_value: float = 0.0
    placed_at: float = 0.0
    filled_at: Optional[float] = None
    last_checked_at: Optional[float] = None
    filled_from_amount: Optional[Decimal] = None
    filled_to_amount: Optional[Decimal] = None
    skip_reason: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "venue_order_id": self.venue_order_id,
            "tx_hash": self.tx_hash,
            "wallet_address": self.wallet_address,
            "order_type": self.order_type.value,
            "parent_order_id": self.parent_order_id,
            "from_token": self.from_token,
            "to_token": self.to_token,
            "from_amount": str(self.from_amount),
            "to_amount_min": str(self.to_amount_min),
            "status": self.status.value,
            "progress": self.progress,
            "limit_price": self.limit_price,
            "grid_offset": self.grid_offset,
            "usd_value": self.usd_value,
            "placed_at": self.placed_at,
            "filled_at": self.filled_at,
            "last_checked_at": self.last_checked_at,
            "filled_from_amount": None if self.filled_from_amount is None else str(self.filled_from_amount),
            "filled_to_amount": None if self.filled_to_amount is None else str(self.filled_to_amount),
            "skip_reason": self.skip_reason,
        }


class ActivityType(Enum):
    LIMIT_ORDER = "LIMIT_ORDER"
    CLASSIC = "CLASSIC"


@dataclass
class ActivityRecord:
    """Append-only audit event for executed trades (fills and rebalance swaps)."""
    wallet_address: str
    activity_type: ActivityType
    tx_hash: str
    token_from: str
    token_to: str
    amount_from: Decimal
    amount_to: Decimal
    usd_volume: float
    execution_price: Optional[float] = None
    order_ref: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    id: Optional[int] = None


class SyncStatus(Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    ABANDONED = "abandoned"


@dataclass
class BalanceSyncEntry:
    wallet_address: str
    wallet_index: int
    status: SyncStatus = SyncStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    last_error: Optional[str] = None
    created_at: float = 0.0
    updated_at: float = 0.0
    id: Optional[int] = None

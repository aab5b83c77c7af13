"""Order ledger: entities, sqlite store and its async facade."""

from gridfleet.state.ledger_store import LedgerStore
from gridfleet.state.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ActivityRecord,
    ActivityType,
    BalanceSyncEntry,
    Direction,
    Order,
    OrderStatus,
    OrderType,
    Role,
    SyncStatus,
    WalletRecord,
)
from gridfleet.state.sqlite_ledger import SqliteLedger

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "ActivityRecord",
    "ActivityType",
    "BalanceSyncEntry",
    "Direction",
    "LedgerStore",
    "Order",
    "OrderStatus",
    "OrderType",
    "Role",
    "SqliteLedger",
    "SyncStatus",
    "WalletRecord",
]

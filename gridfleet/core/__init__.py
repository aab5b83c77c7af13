"""
Core utilities package.

Error taxonomy, the shared retry policy, JSON helpers and unit conversions.
"""

from gridfleet.core.errors import (
    GridFleetError,
    InsufficientBalance,
    InsufficientBalanceForGrid,
    DuplicateOrder,
    CounterAlreadyExists,
    BelowMinimumOrderValue,
    VenueError,
    VenueTimeout,
    VenueUnavailable,
    NonceConflict,
    LedgerError,
    LedgerBusy,
    is_retryable,
)
from gridfleet.core.retry import RetryPolicy, VENUE_POLICY, PRICE_POLICY, LEDGER_POLICY, RPC_POLICY
from gridfleet.core.json_utils import dumps, loads
from gridfleet.core.units import to_wei, from_wei, min_amount_out, output_amount_wei, deadline

__all__ = [
    "GridFleetError",
    "InsufficientBalance",
    "InsufficientBalanceForGrid",
    "DuplicateOrder",
    "CounterAlreadyExists",
    "BelowMinimumOrderValue",
    "VenueError",
    "VenueTimeout",
    "VenueUnavailable",
    "NonceConflict",
    "LedgerError",
    "LedgerBusy",
    "is_retryable",
    "RetryPolicy",
    "VENUE_POLICY",
    "PRICE_POLICY",
    "LEDGER_POLICY",
    "RPC_POLICY",
    "dumps",
    "loads",
    "to_wei",
    "from_wei",
    "min_amount_out",
    "output_amount_wei",
    "deadline",
]

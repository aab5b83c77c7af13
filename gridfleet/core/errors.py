"""
Error taxonomy for the order-lifecycle engine.

Every error raised by gridfleet derives from GridFleetError. Errors carry a
`retryable` class attribute consumed by RetryPolicy, so transient failures
(venue timeouts, locked database) are retried at the collaborator boundary
while domain outcomes (insufficient balance, duplicate order) surface at once.

Outcome vs failure:
    BelowMinimumOrderValue and CounterAlreadyExists describe expected,
    non-exceptional outcomes. Components convert them into result objects
    (CounterResult, GridPlacementResult) rather than letting them escape a
    wallet cycle.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx


class GridFleetError(Exception):
    """Base class for all gridfleet errors."""

    retryable: bool = False

    def __init__(self, message: str = "", wallet: Optional[str] = None) -> None:
        super().__init__(message)
        self.wallet = wallet


class UnknownToken(GridFleetError):
    def __init__(self, symbol: str) -> None:
        super().__init__(f"Unknown token symbol: {symbol}")
        self.symbol = symbol


class InsufficientBalance(GridFleetError):
    """Construction-time balance check failed; the order is not placed."""

    def __init__(self, token: str, have: float, need: float, wallet: Optional[str] = None) -> None:
        super().__init__(f"Insufficient {token} balance: have {have}, need {need}", wallet=wallet)
        self.token = token
        self.have = have
        self.need = need


class InsufficientBalanceForGrid(GridFleetError):
    """Wallet cannot afford a single offset pair at the configured minimum."""

    def __init__(self, balance_usd: float, minimum_usd: float, wallet: Optional[str] = None) -> None:
        super().__init__(
            f"Balance ${balance_usd:.2f} cannot fund one grid pair (minimum ${minimum_usd:.2f} per order)",
            wallet=wallet,
        )
        self.balance_usd = balance_usd
        self.minimum_usd = minimum_usd


class DuplicateOrder(GridFleetError):
    """A ledger row already exists for this venue order id."""

    def __init__(self, venue_order_id: str, wallet: Optional[str] = None) -> None:
        super().__init__(f"Order {venue_order_id} already recorded in ledger", wallet=wallet)
        self.venue_order_id = venue_order_id


class CounterAlreadyExists(GridFleetError):
    def __init__(self, parent_id: int, counter_id: Optional[int] = None) -> None:
        super().__init__(f"Counter order already exists for parent {parent_id}")
        self.parent_id = parent_id
        self.counter_id = counter_id


class BelowMinimumOrderValue(GridFleetError):
    def __init__(self, value_usd: float, minimum_usd: float) -> None:
        super().__init__(f"Order value ${value_usd:.2f} below minimum ${minimum_usd:.2f}")
        self.value_usd = value_usd
        self.minimum_usd = minimum_usd


class InvalidFillAmounts(GridFleetError):
    pass


class VenueError(GridFleetError):
    """Venue or chain rejected a request."""


class VenueTimeout(VenueError):
    retryable = True


class VenueUnavailable(VenueError):
    retryable = True


class NonceConflict(VenueError):
    """Transaction rejected because its nonce is stale."""


class LedgerError(GridFleetError):
    pass


class LedgerBusy(LedgerError):
    """Database locked / busy; safe to retry."""

    retryable = True


class CounterMismatch(LedgerError):
    """Grid slot counter is behind the expected value."""

    def __init__(self, address: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Counter mismatch for {address}: expected {expected}, got {actual}",
            wallet=address,
        )
        self.expected = expected
        self.actual = actual


class InvalidTransition(LedgerError):
    pass


_NONCE_MARKERS = (
    "nonce too low",
    "nonce_expired",
    "nonce has already been used",
    "replacement transaction underpriced",
)


def looks_like_nonce_error(message: str) -> bool:
    msg = message.lower()
    return any(marker in msg for marker in _NONCE_MARKERS)


def is_retryable(exc: BaseException) -> bool:
    """Default retryable-error predicate shared by every RetryPolicy."""
    if isinstance(exc, GridFleetError):
        return exc.retryable
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return False

"""
Ledger Status Machine - guards order status transitions.

Orders move through:

    pending ──┬──> partial ──┬──> filled
              │      │       │
              │      ▼       │
              ├──> canceled <┤
              │              │
              └──> expired <─┘

- pending may also stay pending with a higher progress value
- partial may stay partial with a higher progress value
- filled, canceled and expired are terminal: no further transitions

Progress is monotonic while the order is active. The ledger enforces the same
rule in its conditional UPDATE; this machine rejects bad transitions before
they reach the store and keeps counters of what it saw.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, FrozenSet, Optional

from gridfleet.core.errors import InvalidTransition
from gridfleet.core.json_utils import dumps
from gridfleet.state.models import OrderStatus

log = logging.getLogger("gridfleet")


VALID_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.PENDING,    # progress update only
        OrderStatus.PARTIAL,
        OrderStatus.FILLED,
        OrderStatus.CANCELED,
        OrderStatus.EXPIRED,
    }),
    OrderStatus.PARTIAL: frozenset({
        OrderStatus.PARTIAL,
        OrderStatus.FILLED,
        OrderStatus.CANCELED,
        OrderStatus.EXPIRED,
    }),
    # Terminal
    OrderStatus.FILLED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
}


TransitionCallback = Callable[[int, OrderStatus, OrderStatus, float], None]


class LedgerStatusMachine:
    """
    Validates (status, progress) changes for ledger orders.

    Stateless with respect to orders: the current status always comes from
    the ledger row, so the machine can be shared across wallets.
    """

    def __init__(
        self,
        log_event: Optional[Callable[..., None]] = None,
        on_transition: Optional[TransitionCallback] = None,
    ) -> None:
        self._log_event = log_event or self._default_log
        self._on_transition = on_transition
        self._stats = {
            "accepted": 0,
            "filled": 0,
            "canceled": 0,
            "expired": 0,
            "blocked_terminal": 0,
            "blocked_regression": 0,
            "blocked_invalid": 0,
        }

    def _default_log(self, event: str, **kwargs) -> None:
        log.info(dumps({"event": event, **kwargs}))

    @staticmethod
    def is_valid(
        from_status: OrderStatus,
        from_progress: float,
        to_status: OrderStatus,
        to_progress: float,
    ) -> bool:
        if to_status not in VALID_TRANSITIONS[from_status]:
            return False
        return to_progress >= from_progress

    def check(
        self,
        order_id: int,
        from_status: OrderStatus,
        from_progress: float,
        to_status: OrderStatus,
        to_progress: float,
    ) -> bool:
        """Return True and count the transition if allowed; log and return False otherwise."""
        if from_status.is_terminal:
            self._stats["blocked_terminal"] += 1
            self._log_event(
                "status_transition_blocked",
                order_id=order_id,
                from_status=from_status.value,
                to_status=to_status.value,
                reason="terminal",
            )
            return False
        if to_progress < from_progress:
            self._stats["blocked_regression"] += 1
            self._log_event(
                "status_transition_blocked",
                order_id=order_id,
                from_status=from_status.value,
                to_status=to_status.value,
                from_progress=from_progress,
                to_progress=to_progress,
                reason="progress_regression",
            )
            return False
        if to_status not in VALID_TRANSITIONS[from_status]:
            self._stats["blocked_invalid"] += 1
            self._log_event(
                "status_transition_blocked",
                order_id=order_id,
                from_status=from_status.value,
                to_status=to_status.value,
                reason="invalid",
            )
            return False

        self._stats["accepted"] += 1
        if to_status is OrderStatus.FILLED:
            self._stats["filled"] += 1
        elif to_status is OrderStatus.CANCELED:
            self._stats["canceled"] += 1
        elif to_status is OrderStatus.EXPIRED:
            self._stats["expired"] += 1

        if self._on_transition:
            try:
                self._on_transition(order_id, from_status, to_status, to_progress)
            except Exception as e:
                log.error(f"on_transition callback error: {e}")
        return True

    def validate(
        self,
        order_id: int,
        from_status: OrderStatus,
        from_progress: float,
        to_status: OrderStatus,
        to_progress: float,
    ) -> None:
        """Like check() but raises InvalidTransition."""
        if not self.check(order_id, from_status, from_progress, to_status, to_progress):
            raise InvalidTransition(
                f"Order {order_id}: {from_status.value}@{from_progress} -> {to_status.value}@{to_progress} not allowed"
            )

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

"""
Reusable retry policy for collaborator boundaries.

One policy object describes max attempts, exponential base delay, jitter and
the retryable-error predicate. The venue, price feed, chain and ledger
adapters wrap their calls with `policy.run(...)`; call sites inside the
engine never loop on their own.

Usage:
    orders = await VENUE_POLICY.run(client.fetch_orders, address, op="fetch_orders")
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

from gridfleet.core.errors import LedgerBusy, is_retryable
from gridfleet.core.json_utils import dumps

log = logging.getLogger("gridfleet")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 5.0
    jitter: float = 0.5  # fraction of the computed delay
    timeout: Optional[float] = None  # per-attempt timeout (seconds)
    retryable: Callable[[BaseException], bool] = field(default=is_retryable)
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, compare=False)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, delay * self.jitter)
        return delay

    def with_overrides(self, **changes: Any) -> "RetryPolicy":
        return replace(self, **changes)

    async def run(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        op: str = "call",
        **kwargs: Any,
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                coro = fn(*args, **kwargs)
                if self.timeout is not None:
                    return await asyncio.wait_for(coro, timeout=self.timeout)
                return await coro
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if attempt >= self.max_attempts or not self.retryable(exc):
                    raise
                delay = self.delay_for(attempt)
                log.warning(dumps({
                    "event": "retry",
                    "op": op,
                    "attempt": attempt,
                    "max_attempts": self.max_attempts,
                    "delay_s": round(delay, 3),
                    "err": str(exc) or type(exc).__name__,
                }))
                await self.sleep(delay)


def _always(exc: BaseException) -> bool:
    return True


def _ledger_retryable(exc: BaseException) -> bool:
    return isinstance(exc, LedgerBusy)


# Venue order submission/listing: a few quick retries, bounded wait per call
VENUE_POLICY = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=8.0, timeout=30.0)
# Price API: any failure, 3 attempts, 3s apart
PRICE_POLICY = RetryPolicy(
    max_attempts=3, base_delay=3.0, max_delay=3.0, jitter=0.0, timeout=10.0, retryable=_always,
)
# Ledger: lock timeouts, 200ms doubling up to 2s
LEDGER_POLICY = RetryPolicy(
    max_attempts=3, base_delay=0.2, max_delay=2.0, jitter=0.0, retryable=_ledger_retryable,
)
RPC_POLICY = RetryPolicy(max_attempts=3, base_delay=0.5, max_delay=4.0, timeout=15.0)

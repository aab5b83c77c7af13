"""Read-only ledger views for an external HTTP/admin layer."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set, Union

from gridfleet.core.json_utils import dumps
from gridfleet.state.models import ACTIVE_STATUSES, Order, OrderStatus

if TYPE_CHECKING:
    from gridfleet.state.ledger_store import LedgerStore

log = logging.getLogger("gridfleet")


class FleetQueries:
    def __init__(self, ledger: "LedgerStore") -> None:
        self.ledger = ledger

    async def orders_for_wallet(
        self,
        address: str,
        statuses: Optional[Iterable[OrderStatus]] = None,
        limit: Optional[int] = 100,
    ) -> List[Order]:
        return await self.ledger.list_orders(wallet=address, statuses=statuses, limit=limit)

    async def orders_by_status(self, status: Union[OrderStatus, str], limit: Optional[int] = None) -> List[Order]:
        status = status if isinstance(status, OrderStatus) else OrderStatus(status)
        return await self.ledger.list_orders(statuses=[status], limit=limit)

    async def children_of(self, order_id: int) -> List[Order]:
        return await self.ledger.list_orders(parent_id=order_id)

    async def counter_chain(self, order_id: int) -> List[Order]:
        """
        The order followed by its counter, that counter's counter, and so on.

        Walks parent back-references forward one lookup at a time.
        """
        start = await self.ledger.get_order(order_id)
        if start is None:
            return []
        chain = [start]
        seen: Set[int] = {start.id}
        current = start
        while True:
            children = await self.children_of(current.id)
            expected = current.order_type.counter_type()
            nxt = next((c for c in children if c.order_type is expected), None)
            if nxt is None:
                break
            if nxt.id in seen:
                log.error(dumps({"event": "counter_chain_cycle", "order_id": order_id, "at": nxt.id}))
                break
            chain.append(nxt)
            seen.add(nxt.id)
            current = nxt
        return chain

    async def wallet_summary(self, address: str) -> Optional[Dict[str, Any]]:
        record = await self.ledger.get_wallet(address)
        if record is None:
            return None
        counts = await self.ledger.count_by_status(address)
        balances = await self.ledger.get_balances(address)
        return {
            "address": record.address,
            "index": record.index,
            "trading_pool": record.trading_pool,
            "placed_initial_orders": record.placed_initial_orders,
            "orders_by_status": counts,
            "open_orders": sum(counts.get(s.value, 0) for s in ACTIVE_STATUSES),
            "open_usd_value": round(await self.ledger.open_usd_value(address), 2),
            "balances": {symbol: str(amount) for symbol, amount in balances.items()},
        }

    async def recent_errors(self, limit: int = 50, wallet: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.ledger.recent_errors(limit, wallet)

    async def daily_metrics(self, day: Optional[str] = None, wallet: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.ledger.daily_metrics(day, wallet)

"""
Tests for the read-only FleetQueries views.
"""

import pytest

from conftest import fund
from gridfleet.orchestrator.queries import FleetQueries
from gridfleet.state.models import OrderStatus, OrderType


@pytest.mark.asyncio
async def test_counter_chain_follows_counters_forward(engine, wallet):
    fund(engine.chain, wallet, eth="0", usdc="2000")
    d = await engine.constructor.construct(wallet.address, OrderType.GRID_BUY, "USDC", "ETH", "2000", 0.0005, 168)
    parent = await engine.executor.execute(wallet, d)
    engine.venue.fill(parent.venue_order_id)
    first = (await engine.counters.handle_fills(await engine.synchronizer.sync(wallet), wallet))[0]
    engine.venue.fill(first.counter_order.venue_order_id)
    await engine.counters.handle_fills(await engine.synchronizer.sync(wallet), wallet)

    chain = await FleetQueries(engine.ledger).counter_chain(parent.id)

    assert [o.order_type for o in chain] == [OrderType.GRID_BUY, OrderType.COUNTER_SELL, OrderType.COUNTER_BUY]
    assert chain[1].parent_order_id == parent.id
    assert chain[2].parent_order_id == chain[1].id


@pytest.mark.asyncio
async def test_counter_chain_of_unknown_order(engine):
    assert await FleetQueries(engine.ledger).counter_chain(999) == []


@pytest.mark.asyncio
async def test_wallet_summary(engine, wallet):
    fund(engine.chain, wallet)
    await engine.grid.place_grid(wallet)
    await engine.balance_sync.sync(wallet)

    summary = await FleetQueries(engine.ledger).wallet_summary(wallet.address)

    assert summary["placed_initial_orders"] == 5
    assert summary["orders_by_status"] == {"pending": 10}
    assert summary["open_orders"] == 10
    assert summary["open_usd_value"] == pytest.approx(4000.0)
    assert summary["balances"]["USDC"] == "2000"


@pytest.mark.asyncio
async def test_wallet_summary_unknown_wallet(engine):
    assert await FleetQueries(engine.ledger).wallet_summary("0x" + "99" * 20) is None


@pytest.mark.asyncio
async def test_orders_by_status_accepts_strings(engine, wallet):
    fund(engine.chain, wallet)
    await engine.grid.place_grid(wallet)
    queries = FleetQueries(engine.ledger)

    assert len(await queries.orders_by_status("pending")) == 10
    assert await queries.orders_by_status(OrderStatus.FILLED) == []
    with pytest.raises(ValueError):
        await queries.orders_by_status("bogus")


@pytest.mark.asyncio
async def test_ledger_cancel_leaves_terminal_rows(engine, wallet):
    fund(engine.chain, wallet)
    await engine.grid.place_grid(wallet)
    filled = (await engine.ledger.list_orders(wallet=wallet.address))[0]
    engine.venue.fill(filled.venue_order_id)
    await engine.synchronizer.sync(wallet)

    counts = await engine.canceller.cancel_all([wallet])

    assert counts == {wallet.address: 9}
    assert await engine.ledger.count_by_status(wallet.address) == {"filled": 1, "canceled": 9}

"""
Tests for CounterOrderManager - reversed orders for fills and the backfill sweep.

Tests cover:
- Counter pricing for buy and sell parents
- At most one canonical counter per parent
- Below-minimum and invalid-fill skips
- Sweep completeness, including fills the ledger has not seen yet
- LIMIT_ORDER activity rows written once per fill
"""

from decimal import Decimal

import pytest

from conftest import fund
from gridfleet.core.errors import InvalidFillAmounts
from gridfleet.execution.counter_orders import (
    SKIP_BELOW_MINIMUM,
    SKIP_INVALID_FILL,
    compute_counter_plan,
)
from gridfleet.state.models import ActivityType, Order, OrderStatus, OrderType


def parent_order(order_type: OrderType, from_token: str, to_token: str) -> Order:
    return Order(
        id=1,
        venue_order_id="P1",
        wallet_address="0x" + "11" * 20,
        order_type=order_type,
        from_token=from_token,
        to_token=to_token,
        from_amount=Decimal("1"),
        to_amount_min=Decimal("1"),
    )


class TestCounterPricing:
    def test_buy_parent_sells_acquired_target_above_execution(self):
        # spent 2000 USDC for 1.0 ETH, 1% margin
        parent = parent_order(OrderType.GRID_BUY, "USDC", "ETH")
        plan = compute_counter_plan(parent, Decimal("2000"), Decimal("1.0"), 1.0, 2000.0, 1.0)

        assert plan.counter_type is OrderType.COUNTER_SELL
        assert (plan.from_token, plan.to_token) == ("ETH", "USDC")
        assert plan.amount == Decimal("1.0")
        assert plan.execution_price == pytest.approx(2000.0)
        assert plan.counter_price == pytest.approx(2020.0)
        assert plan.limit_price == pytest.approx(2020.0)
        assert plan.usd_value == pytest.approx(2000.0)

    def test_sell_parent_buys_back_below_execution(self):
        # sold 1.0 ETH for 2000 USDC
        parent = parent_order(OrderType.GRID_SELL, "ETH", "USDC")
        plan = compute_counter_plan(parent, Decimal("1.0"), Decimal("2000"), 2000.0, 1.0, 1.0)

        assert plan.counter_type is OrderType.COUNTER_BUY
        assert (plan.from_token, plan.to_token) == ("USDC", "ETH")
        assert plan.amount == Decimal("2000")
        assert plan.counter_price == pytest.approx(1980.0)
        assert plan.limit_price == pytest.approx(1 / 1980)
        assert plan.usd_value == pytest.approx(2000.0)

    def test_grid_buy_of_one_unit_for_two_thousand(self):
        # 1.0 TOKEN_A spent for 2000 TOKEN_B; prices in USD put TOKEN_B at 2000
        parent = parent_order(OrderType.GRID_BUY, "TOKEN_A", "TOKEN_B")
        plan = compute_counter_plan(parent, Decimal("1.0"), Decimal("2000"), 4_000_000.0, 2000.0, 1.0)

        assert plan.counter_type is OrderType.COUNTER_SELL
        assert (plan.from_token, plan.to_token) == ("TOKEN_B", "TOKEN_A")
        assert plan.amount == Decimal("2000")
        assert plan.execution_price == pytest.approx(2000.0)
        assert plan.counter_price == pytest.approx(2020.0)
        # TOKEN_A received per TOKEN_B sold
        assert plan.limit_price == pytest.approx(2020.0 / 4_000_000.0)
        assert plan.usd_value == pytest.approx(4_000_000.0)

    def test_buy_parent_with_non_dollar_base(self):
        # spent 4000 POL at $0.50 for 1.0 ETH
        parent = parent_order(OrderType.GRID_BUY, "POL", "ETH")
        plan = compute_counter_plan(parent, Decimal("4000"), Decimal("1.0"), 0.5, 2100.0, 1.0)

        assert plan.execution_price == pytest.approx(2000.0)
        assert plan.counter_price == pytest.approx(2020.0)
        assert plan.limit_price == pytest.approx(4040.0)
        assert plan.usd_value == pytest.approx(2000.0)

    def test_sell_parent_with_non_dollar_base(self):
        # sold 1.0 ETH for 4000 POL at $0.50
        parent = parent_order(OrderType.GRID_SELL, "ETH", "POL")
        plan = compute_counter_plan(parent, Decimal("1.0"), Decimal("4000"), 2100.0, 0.5, 1.0)

        assert plan.counter_type is OrderType.COUNTER_BUY
        assert plan.amount == Decimal("4000")
        assert plan.execution_price == pytest.approx(2000.0)
        assert plan.counter_price == pytest.approx(1980.0)
        # ETH received per POL spent
        assert plan.limit_price == pytest.approx(0.5 / 1980.0)
        assert plan.usd_value == pytest.approx(2000.0)

    def test_counter_of_counter_keeps_reversing(self):
        parent = parent_order(OrderType.COUNTER_SELL, "ETH", "USDC")
        plan = compute_counter_plan(parent, Decimal("1"), Decimal("2020"), 2000.0, 1.0, 1.0)
        assert plan.counter_type is OrderType.COUNTER_BUY
        assert plan.counter_price == pytest.approx(2020 * 0.99)

    @pytest.mark.parametrize("src,dst", [(None, Decimal("1")), (Decimal("2000"), Decimal("0")), (None, None)])
    def test_missing_fill_amounts(self, src, dst):
        parent = parent_order(OrderType.GRID_BUY, "USDC", "ETH")
        with pytest.raises(InvalidFillAmounts):
            compute_counter_plan(parent, src, dst, 1.0, 2000.0, 1.0)


async def filled_buy(engine, wallet, usdc="2000"):
    """Place a grid buy of `usdc` USDC at 2000 USDC/ETH and fill it on the venue."""
    d = await engine.constructor.construct(wallet.address, OrderType.GRID_BUY, "USDC", "ETH", usdc, 0.0005, 168)
    order = await engine.executor.execute(wallet, d)
    engine.venue.fill(order.venue_order_id, progress=100)
    return order


class TestCounterOrderManager:
    @pytest.mark.asyncio
    async def test_fill_places_counter_sell(self, engine, wallet):
        fund(engine.chain, wallet, eth="0", usdc="2000")
        parent = await filled_buy(engine, wallet)

        transitions = await engine.synchronizer.sync(wallet)
        results = await engine.counters.handle_fills(transitions, wallet)

        assert [r.status for r in results] == ["placed"]
        counter = results[0].counter_order
        assert counter.order_type is OrderType.COUNTER_SELL
        assert counter.parent_order_id == parent.id
        assert counter.from_token == "ETH"
        assert counter.from_amount == Decimal("1")
        assert counter.limit_price == pytest.approx(2020.0)

        stored = await engine.ledger.find_counter(parent.id, OrderType.COUNTER_SELL)
        assert stored.id == counter.id

    @pytest.mark.asyncio
    async def test_at_most_one_counter_per_parent(self, engine, wallet):
        fund(engine.chain, wallet, eth="0", usdc="2000")
        parent = await filled_buy(engine, wallet)
        transitions = await engine.synchronizer.sync(wallet)

        first = await engine.counters.handle_fill(transitions[0], wallet)
        again = await engine.counters.handle_fill(transitions[0], wallet)
        sweep = await engine.counters.sweep(wallet)

        assert first.placed
        assert again.status == "exists"
        assert again.counter_order.id == first.counter_order.id
        assert sweep.missing == 0 and sweep.placed == 0
        assert len(await engine.ledger.list_orders(parent_id=parent.id)) == 1

    @pytest.mark.asyncio
    async def test_lookup_outage_during_counter_placement_leaves_one_counter(self, engine, wallet):
        fund(engine.chain, wallet, eth="0", usdc="2000")
        parent = await filled_buy(engine, wallet)
        transitions = await engine.synchronizer.sync(wallet)
        engine.venue.lookup_failures = 1

        result = await engine.counters.handle_fill(transitions[0], wallet)
        assert result.placed
        assert result.counter_order.venue_order_id == result.counter_order.tx_hash

        for _ in range(2):
            assert (await engine.counters.sweep(wallet)).placed == 0

        counters_sent = [d for d in engine.venue.submitted if d.order_type is OrderType.COUNTER_SELL]
        assert len(counters_sent) == 1
        assert len(await engine.ledger.list_orders(parent_id=parent.id)) == 1

    @pytest.mark.asyncio
    async def test_fill_activity_recorded_once(self, engine, wallet):
        fund(engine.chain, wallet, eth="0", usdc="2000")
        parent = await filled_buy(engine, wallet)
        transitions = await engine.synchronizer.sync(wallet)

        assert await engine.counters.record_fill_activity(transitions[0], wallet)
        assert not await engine.counters.record_fill_activity(transitions[0], wallet)

        rows = await engine.ledger.list_activity(wallet.address)
        assert len(rows) == 1
        assert rows[0].activity_type is ActivityType.LIMIT_ORDER
        assert rows[0].order_ref == parent.venue_order_id
        assert rows[0].tx_hash.startswith(f"LIMIT_{parent.venue_order_id}_")
        assert rows[0].usd_volume == pytest.approx(2000.0)

    @pytest.mark.asyncio
    async def test_below_minimum_is_skipped_and_not_retried(self, engine, wallet):
        fund(engine.chain, wallet, eth="0", usdc="2000")
        parent = await filled_buy(engine, wallet, usdc="5")
        transitions = await engine.synchronizer.sync(wallet)

        result = await engine.counters.handle_fill(transitions[0], wallet)

        assert result.status == "skipped"
        assert result.reason == SKIP_BELOW_MINIMUM
        assert result.plan.usd_value == pytest.approx(5.0)
        assert (await engine.ledger.get_order(parent.id)).skip_reason == SKIP_BELOW_MINIMUM
        sweep = await engine.counters.sweep(wallet)
        assert sweep.missing == 0
        assert engine.metrics.registry.get_sample_value(
            "counter_orders_skipped_total", {"wallet": wallet.address, "reason": SKIP_BELOW_MINIMUM},
        ) == 1.0

    @pytest.mark.asyncio
    async def test_invalid_fill_amounts_are_skipped(self, engine, wallet):
        fund(engine.chain, wallet, eth="0", usdc="2000")
        d = await engine.constructor.construct(wallet.address, OrderType.GRID_BUY, "USDC", "ETH", "100", 0.0005, 168)
        order = await engine.executor.execute(wallet, d)
        engine.venue.fill(order.venue_order_id, progress=100, filled_dst=Decimal(0))
        transitions = await engine.synchronizer.sync(wallet)

        result = await engine.counters.handle_fill(transitions[0], wallet)

        assert result.status == "skipped"
        assert result.reason == SKIP_INVALID_FILL
        assert (await engine.ledger.get_order(order.id)).skip_reason == SKIP_INVALID_FILL

    @pytest.mark.asyncio
    async def test_sweep_backfills_missing_counters(self, engine, wallet):
        fund(engine.chain, wallet, eth="0", usdc="4000")
        a = await filled_buy(engine, wallet)
        b = await filled_buy(engine, wallet)
        # persisted fills, but no counters placed (e.g. crash after sync)
        await engine.synchronizer.sync(wallet)

        sweep = await engine.counters.sweep(wallet)

        assert sweep.checked == 2
        assert sweep.missing == 2
        assert sweep.placed == 2
        for parent in (a, b):
            assert await engine.ledger.find_counter(parent.id, OrderType.COUNTER_SELL) is not None
        assert (await engine.counters.sweep(wallet)).missing == 0

    @pytest.mark.asyncio
    async def test_sweep_persists_fills_the_ledger_missed(self, engine, wallet):
        fund(engine.chain, wallet, eth="0", usdc="2000")
        parent = await filled_buy(engine, wallet)

        sweep = await engine.counters.sweep(wallet)

        assert sweep.newly_filled == 1
        assert sweep.placed == 1
        assert (await engine.ledger.get_order(parent.id)).status is OrderStatus.FILLED
        assert await engine.ledger.has_activity_for_order(parent.venue_order_id)

    @pytest.mark.asyncio
    async def test_insufficient_balance_fails_then_sweep_retries(self, engine, wallet):
        fund(engine.chain, wallet, eth="0", usdc="2000")
        parent = await filled_buy(engine, wallet)
        transitions = await engine.synchronizer.sync(wallet)
        engine.chain.set_balance(wallet.address, "ETH", "0")

        result = await engine.counters.handle_fill(transitions[0], wallet)
        assert result.status == "failed"
        assert result.reason == "insufficient_balance"
        assert (await engine.ledger.get_order(parent.id)).skip_reason is None

        engine.chain.set_balance(wallet.address, "ETH", "1")
        sweep = await engine.counters.sweep(wallet)
        assert sweep.placed == 1

    @pytest.mark.asyncio
    async def test_counter_chain_grows_forward(self, engine, wallet):
        fund(engine.chain, wallet, eth="0", usdc="2000")
        parent = await filled_buy(engine, wallet)
        first = (await engine.counters.handle_fills(await engine.synchronizer.sync(wallet), wallet))[0]

        engine.venue.fill(first.counter_order.venue_order_id, progress=100)
        second = (await engine.counters.handle_fills(await engine.synchronizer.sync(wallet), wallet))[0]

        assert second.placed
        assert second.counter_order.order_type is OrderType.COUNTER_BUY
        assert second.counter_order.parent_order_id == first.counter_order.id
        assert first.counter_order.parent_order_id == parent.id

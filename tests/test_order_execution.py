"""
Tests for OrderConstructor and OrderExecutor.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import fund
from gridfleet.core.errors import DuplicateOrder, InsufficientBalance, VenueUnavailable
from gridfleet.state.models import OrderStatus, OrderType
from gridfleet.venue.simulated import SIMULATED_SPENDER


class TestOrderConstructor:
    @pytest.mark.asyncio
    async def test_builds_descriptor(self, engine, wallet):
        fund(engine.chain, wallet)
        d = await engine.constructor.construct(
            wallet.address, OrderType.GRID_BUY, "USDC", "ETH", "400", 1 / 1980, 168,
            grid_offset=-1.0, slippage_pct=0.1, now=1_000.0,
        )
        assert d.from_amount == Decimal("400")
        assert d.from_amount_wei == 400 * 10**6
        assert d.chunk_amount_wei == d.from_amount_wei
        assert d.deadline == 1_000 + 168 * 3600
        # 400 / 1980 ETH minus 0.1% slippage
        assert float(d.to_amount_min) == pytest.approx(400 / 1980 * 0.999, rel=1e-9)
        assert d.requires_approval
        assert d.grid_offset == -1.0

    @pytest.mark.asyncio
    async def test_native_source_needs_no_approval(self, engine, wallet):
        fund(engine.chain, wallet)
        d = await engine.constructor.construct(wallet.address, OrderType.GRID_SELL, "ETH", "USDC", "0.2", 2020, 168)
        assert not d.requires_approval
        assert d.tx_value == d.from_amount_wei

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, engine, wallet):
        fund(engine.chain, wallet, usdc="100")
        with pytest.raises(InsufficientBalance) as info:
            await engine.constructor.construct(wallet.address, OrderType.GRID_BUY, "USDC", "ETH", "400", 0.0005, 168)
        assert info.value.token == "USDC"
        assert info.value.have == 100.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("src,dst,amount,price", [
        ("USDC", "USDC", "1", 1.0),
        ("USDC", "ETH", "0", 0.0005),
        ("USDC", "ETH", "1", 0),
        ("USDC", "ETH", "0.0000001", 0.0005),
    ])
    async def test_rejects_invalid_inputs(self, engine, wallet, src, dst, amount, price):
        fund(engine.chain, wallet)
        with pytest.raises(ValueError):
            await engine.constructor.construct(wallet.address, OrderType.GRID_BUY, src, dst, amount, price, 168)


class TestOrderExecutor:
    async def _descriptor(self, engine, wallet, amount="400"):
        return await engine.constructor.construct(
            wallet.address, OrderType.GRID_BUY, "USDC", "ETH", amount, 1 / 1980, 168,
        )

    @pytest.mark.asyncio
    async def test_execute_records_pending_order(self, engine, wallet):
        fund(engine.chain, wallet)
        descriptor = await self._descriptor(engine, wallet)

        order = await engine.executor.execute(wallet, descriptor)

        assert order.id is not None
        assert order.status is OrderStatus.PENDING
        assert order.venue_order_id.startswith("TEST_")
        assert order.usd_value == pytest.approx(400.0)
        assert order.parent_order_id is None
        assert (wallet.address.lower(), "USDC", SIMULATED_SPENDER.lower()) in engine.chain.approvals
        assert engine.metrics.registry.get_sample_value(
            "orders_placed_total", {"wallet": wallet.address, "order_type": "grid_buy"},
        ) == 1.0

    @pytest.mark.asyncio
    async def test_unindexed_order_falls_back_to_tx_hash(self, engine, wallet):
        fund(engine.chain, wallet)
        engine.venue.index_orders = False
        order = await engine.executor.execute(wallet, await self._descriptor(engine, wallet))
        assert order.venue_order_id == order.tx_hash

    @pytest.mark.asyncio
    async def test_lookup_outage_after_submit_still_records_order(self, engine, wallet):
        fund(engine.chain, wallet)
        engine.venue.lookup_failures = 1

        order = await engine.executor.execute(wallet, await self._descriptor(engine, wallet))

        assert len(engine.venue.submitted) == 1
        assert order.venue_order_id == order.tx_hash
        assert [o.id for o in await engine.ledger.list_orders(wallet=wallet.address)] == [order.id]

        # the hash-keyed row is still tracked by status sync
        engine.venue.fill(engine.venue.orders_for(wallet.address)[0].id)
        transitions = await engine.synchronizer.sync(wallet)
        assert [(t.order.id, t.new_status) for t in transitions] == [(order.id, OrderStatus.FILLED)]

    @pytest.mark.asyncio
    async def test_price_outage_fails_before_submission(self, engine, wallet):
        fund(engine.chain, wallet)
        descriptor = await self._descriptor(engine, wallet)
        engine.prices.get_price = AsyncMock(side_effect=VenueUnavailable("no price for USDC"))

        with pytest.raises(VenueUnavailable):
            await engine.executor.execute(wallet, descriptor)

        assert engine.venue.submitted == []
        assert await engine.ledger.list_orders(wallet=wallet.address) == []

    @pytest.mark.asyncio
    async def test_duplicate_venue_id_is_rejected(self, engine, wallet):
        fund(engine.chain, wallet)
        engine.venue.find_order_id = AsyncMock(return_value="SAME-ID")
        await engine.executor.execute(wallet, await self._descriptor(engine, wallet))

        with pytest.raises(DuplicateOrder):
            await engine.executor.execute(wallet, await self._descriptor(engine, wallet))

        assert len(await engine.ledger.list_orders(wallet=wallet.address)) == 1
        errors = await engine.ledger.recent_errors(wallet=wallet.address)
        assert errors[0]["error_type"] == "order_execution_failed"

    @pytest.mark.asyncio
    async def test_submission_failure_is_counted_and_reraised(self, engine, wallet):
        fund(engine.chain, wallet)
        engine.venue.submit_failures = 1
        with pytest.raises(VenueUnavailable):
            await engine.executor.execute(wallet, await self._descriptor(engine, wallet))

        assert await engine.ledger.list_orders(wallet=wallet.address) == []
        assert engine.metrics.registry.get_sample_value(
            "orders_failed_total", {"wallet": wallet.address, "reason": "VenueUnavailable"},
        ) == 1.0
        assert not engine.locks.is_locked(wallet.address)

    @pytest.mark.asyncio
    async def test_counter_carries_parent_link(self, engine, wallet):
        fund(engine.chain, wallet)
        parent = await engine.executor.execute(wallet, await self._descriptor(engine, wallet))
        d = await engine.constructor.construct(wallet.address, OrderType.COUNTER_SELL, "ETH", "USDC", "0.1", 2020, 168)
        counter = await engine.executor.execute(wallet, d, parent_order_id=parent.id)
        assert counter.parent_order_id == parent.id
        assert counter.usd_value == pytest.approx(200.0)

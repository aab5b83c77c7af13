"""
Tests for RebalancingEngine - 50/50 value rebalancing through the swap router.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import fund
from gridfleet.execution.rebalancer import RebalancerConfig, RebalancingEngine, allocation, plan
from gridfleet.state.models import ActivityType
from gridfleet.venue.simulated import SIMULATED_ROUTER


def set_eth_price(engine, price: float) -> None:
    for table in (engine.prices.prices, engine.venue.prices):
        table.update({"ETH": price, "WETH": price, "USDC": 1.0})


class TestPlan:
    def test_allocation(self):
        assert allocation(60.0, 40.0) == (60.0, 10.0)
        assert allocation(0.0, 0.0) == (0.0, 0.0)

    def test_swaps_heavier_side_down_to_half(self):
        p = plan(60.0, 40.0, threshold_pct=1.0, min_swap_usd=5.0)
        assert p.from_side == 0
        assert p.swap_usd == 10.0
        assert p.imbalance_pct == 10.0

        p = plan(25.0, 75.0, threshold_pct=1.0, min_swap_usd=5.0)
        assert p.from_side == 1
        assert p.swap_usd == 25.0

    @pytest.mark.parametrize("v1,v2", [(50.5, 49.5), (55.0, 45.0), (0.0, 0.0)])
    def test_no_swap(self, v1, v2):
        assert plan(v1, v2, threshold_pct=1.0, min_swap_usd=5.0) is None


class TestRebalancingEngine:
    @pytest.mark.asyncio
    async def test_target_heavy_wallet_swaps_into_base(self, engine, wallet):
        set_eth_price(engine, 120.0)
        fund(engine.chain, wallet, eth="0.5", usdc="40")  # $60 / $40

        result = await engine.rebalancer.rebalance(wallet)

        assert result.action == "swapped"
        assert result.success
        assert (result.from_token, result.to_token) == ("ETH", "USDC")
        assert result.swap_usd == pytest.approx(10.0)
        assert float(result.amount) == pytest.approx(10 / 120)
        assert float(engine.chain.balance_of(wallet.address, "USDC")) == pytest.approx(50.0, abs=1e-5)

        rows = await engine.ledger.list_activity(wallet.address)
        assert len(rows) == 1
        assert rows[0].activity_type is ActivityType.CLASSIC
        assert rows[0].tx_hash == result.tx_hash
        assert rows[0].usd_volume == pytest.approx(10.0)
        assert rows[0].metadata["reason"] == "rebalance"
        # snapshot refreshed after the swap
        assert set(await engine.ledger.get_balances(wallet.address)) == {"ETH", "USDC"}

    @pytest.mark.asyncio
    async def test_base_heavy_wallet_approves_router(self, engine, wallet):
        set_eth_price(engine, 120.0)
        fund(engine.chain, wallet, eth="0.25", usdc="70")  # $30 / $70

        result = await engine.rebalancer.rebalance(wallet)

        assert result.action == "swapped"
        assert (result.from_token, result.to_token) == ("USDC", "ETH")
        assert result.amount == Decimal("20")
        assert (wallet.address.lower(), "USDC", SIMULATED_ROUTER.lower()) in engine.chain.approvals

    @pytest.mark.asyncio
    @pytest.mark.parametrize("eth_price,usdc,action", [
        (110.0, "45", "below_minimum"),  # $55 / $45 -> $5 swap is not above the minimum
        (101.0, "49.5", "balanced"),  # 50.5% is within the 1% threshold
    ])
    async def test_skips_without_swapping(self, engine, wallet, eth_price, usdc, action):
        set_eth_price(engine, eth_price)
        fund(engine.chain, wallet, eth="0.5", usdc=usdc)

        result = await engine.rebalancer.rebalance(wallet)

        assert result.success
        assert result.action == action
        assert engine.venue.swaps == []
        assert await engine.ledger.list_activity(wallet.address) == []

    @pytest.mark.asyncio
    async def test_nonce_conflict_resubmits_once(self, engine, wallet):
        set_eth_price(engine, 120.0)
        fund(engine.chain, wallet, eth="0.5", usdc="40")
        engine.venue.nonce_conflicts = 1
        engine.chain.pending_nonce = AsyncMock(return_value=0)

        result = await engine.rebalancer.rebalance(wallet)

        assert result.action == "swapped"
        assert len(engine.venue.swaps) == 1
        engine.chain.pending_nonce.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repeated_nonce_conflict_fails(self, engine, wallet):
        set_eth_price(engine, 120.0)
        fund(engine.chain, wallet, eth="0.5", usdc="40")
        engine.venue.nonce_conflicts = 2

        result = await engine.rebalancer.rebalance(wallet)

        assert not result.success
        assert result.action == "failed"
        assert engine.venue.swaps == []
        errors = await engine.ledger.recent_errors(wallet=wallet.address)
        assert errors[0]["error_type"] == "rebalance_failed"
        assert engine.metrics.registry.get_sample_value(
            "rebalances_total", {"wallet": wallet.address, "outcome": "failed"},
        ) == 1.0

    @pytest.mark.asyncio
    async def test_no_route_is_not_an_error(self, engine, wallet):
        set_eth_price(engine, 120.0)
        fund(engine.chain, wallet, eth="0.5", usdc="40")
        engine.venue.no_route = True

        result = await engine.rebalancer.rebalance(wallet)

        assert result.success
        assert result.action == "no_route"
        assert engine.chain.balance_of(wallet.address, "ETH") == Decimal("0.5")

    @pytest.mark.asyncio
    async def test_disabled(self, engine, wallet):
        fund(engine.chain, wallet, eth="10", usdc="0")
        disabled = RebalancingEngine(
            engine.venue, engine.chain, engine.prices, engine.ledger, engine.locks,
            config=RebalancerConfig(enabled=False),
        )

        result = await disabled.rebalance(wallet)

        assert result.action == "disabled"
        assert engine.venue.swaps == []

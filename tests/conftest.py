"""
Pytest configuration and fixtures.
Adds the repo root to sys.path so tests can import gridfleet without installing it.
"""

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, Optional

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from gridfleet.config.pair_config import PairConfig  # noqa: E402
from gridfleet.execution.balance_sync import BalanceSynchronizer  # noqa: E402
from gridfleet.execution.cancellation import LedgerCanceller  # noqa: E402
from gridfleet.execution.counter_orders import CounterOrderConfig, CounterOrderManager  # noqa: E402
from gridfleet.execution.grid_placement import GridPlacementConfig, GridPlacementEngine  # noqa: E402
from gridfleet.execution.order_construction import OrderConstructionConfig, OrderConstructor  # noqa: E402
from gridfleet.execution.order_execution import OrderExecutionConfig, OrderExecutor  # noqa: E402
from gridfleet.execution.rebalancer import RebalancerConfig, RebalancingEngine  # noqa: E402
from gridfleet.execution.status_sync import StatusSynchronizer  # noqa: E402
from gridfleet.infra.wallet_locks import WalletLockRegistry  # noqa: E402
from gridfleet.monitoring.metrics import FleetMetrics, HealthChecker  # noqa: E402
from gridfleet.monitoring.ops_journal import OpsJournal  # noqa: E402
from gridfleet.orchestrator.fleet_scheduler import FleetScheduler, SchedulerConfig  # noqa: E402
from gridfleet.state.ledger_store import LedgerStore  # noqa: E402
from gridfleet.venue.simulated import SimulatedChain, SimulatedVenue  # noqa: E402
from gridfleet.wallets import FleetWallet  # noqa: E402

POOL = "ETH/USDC"
DEFAULT_PRICES = {"ETH": 2000.0, "WETH": 2000.0, "USDC": 1.0}


class StaticPriceFeed:
    """Fixed USD prices; raises KeyError for unknown symbols."""

    def __init__(self, prices: Optional[Dict[str, float]] = None) -> None:
        self.prices = dict(prices or DEFAULT_PRICES)
        self.calls = 0

    async def get_price(self, symbol: str) -> float:
        self.calls += 1
        return self.prices[symbol.upper()]

    async def close(self) -> None:
        return None


def make_wallet(index: int = 0, pool: str = POOL) -> FleetWallet:
    return FleetWallet(index=index, address="0x" + f"{index + 1:02x}" * 20, trading_pool=pool)


@pytest.fixture
def ledger(tmp_path):
    store = LedgerStore(tmp_path / "ledger.db")
    yield store
    store.sync.close()


@pytest.fixture
def chain():
    return SimulatedChain()


@pytest.fixture
def venue(chain):
    return SimulatedVenue(chain, prices=DEFAULT_PRICES)


@pytest.fixture
def prices():
    return StaticPriceFeed()


@pytest.fixture
def wallet():
    return make_wallet(0)


@pytest.fixture
def pair_config():
    return PairConfig(pool=POOL)


@pytest.fixture
def engine(ledger, chain, venue, prices, pair_config):
    """All components wired around the simulated venue with zero delays."""
    metrics = FleetMetrics()
    health = HealthChecker()
    journal = OpsJournal(ledger)
    locks = WalletLockRegistry()
    pair_configs = {POOL: pair_config}

    constructor = OrderConstructor(chain, config=OrderConstructionConfig(slippage_pct=0.0))
    executor = OrderExecutor(
        venue, chain, ledger, prices, locks, metrics=metrics, journal=journal,
        config=OrderExecutionConfig(settle_delay=0),
    )
    synchronizer = StatusSynchronizer(venue, ledger, metrics=metrics, journal=journal)
    counters = CounterOrderManager(
        constructor, executor, ledger, prices,
        pair_configs=pair_configs, synchronizer=synchronizer, metrics=metrics, journal=journal,
        config=CounterOrderConfig(sweep_gap=0),
    )
    grid = GridPlacementEngine(
        constructor, executor, chain, prices, ledger,
        pair_configs=pair_configs, journal=journal,
        config=GridPlacementConfig(order_gap=0, pair_gap=0),
    )
    balance_sync = BalanceSynchronizer(chain, ledger)
    rebalancer = RebalancingEngine(
        venue, chain, prices, ledger, locks,
        balance_sync=balance_sync, pair_configs=pair_configs, metrics=metrics, journal=journal,
        config=RebalancerConfig(approval_confirm_delay=0, nonce_retry_delay=0),
    )
    canceller = LedgerCanceller(ledger, journal)

    def scheduler(wallets, **config_kwargs) -> FleetScheduler:
        defaults = dict(loop_interval=3600, wallet_stagger=0, reset_on_startup=False, daily_reset_hour=-1)
        defaults.update(config_kwargs)
        clock = defaults.pop("clock", None)
        extra = {"clock": clock} if clock is not None else {}
        return FleetScheduler(
            wallets, ledger, grid, synchronizer, counters, rebalancer, balance_sync, canceller,
            metrics=metrics, journal=journal, health=health, config=SchedulerConfig(**defaults), **extra,
        )

    return SimpleNamespace(
        ledger=ledger,
        chain=chain,
        venue=venue,
        prices=prices,
        metrics=metrics,
        health=health,
        journal=journal,
        locks=locks,
        constructor=constructor,
        executor=executor,
        synchronizer=synchronizer,
        counters=counters,
        grid=grid,
        balance_sync=balance_sync,
        rebalancer=rebalancer,
        canceller=canceller,
        scheduler=scheduler,
    )


def fund(chain: SimulatedChain, wallet: FleetWallet, eth="1.0", usdc="2000") -> None:
    chain.set_balance(wallet.address, "ETH", eth)
    chain.set_balance(wallet.address, "USDC", usdc)

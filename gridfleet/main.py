"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Dict, List, Optional

from gridfleet.config.config import Settings
from gridfleet.config.pair_config import PairConfig, load_pair_overrides, resolve_pair_configs
from gridfleet.config.tokens import TOKENS
from gridfleet.core.json_utils import dumps
from gridfleet.core.retry import PRICE_POLICY
from gridfleet.execution.balance_sync import BalanceSynchronizer
from gridfleet.execution.cancellation import LedgerCanceller
from gridfleet.execution.counter_orders import CounterOrderConfig, CounterOrderManager
from gridfleet.execution.grid_placement import GridPlacementConfig, GridPlacementEngine
from gridfleet.execution.order_construction import OrderConstructionConfig, OrderConstructor
from gridfleet.execution.order_execution import OrderExecutionConfig, OrderExecutor
from gridfleet.execution.order_state_machine import LedgerStatusMachine
from gridfleet.execution.rebalancer import RebalancerConfig, RebalancingEngine
from gridfleet.execution.status_sync import StatusSynchronizer
from gridfleet.infra.logging_cfg import build_logger
from gridfleet.infra.wallet_locks import WalletLockRegistry
from gridfleet.monitoring.metrics import FleetMetrics, HealthChecker, start_metrics_server
from gridfleet.monitoring.ops_journal import OpsJournal
from gridfleet.orchestrator.fleet_scheduler import FleetScheduler, SchedulerConfig
from gridfleet.state.ledger_store import LedgerStore
from gridfleet.venue.interfaces import ChainClient, PriceFeed, VenueClient
from gridfleet.venue.price_feed import FALLBACK_PRICES, HttpPriceFeed
from gridfleet.venue.rpc_chain import RpcChainClient
from gridfleet.venue.simulated import SimulatedChain, SimulatedVenue
from gridfleet.venue.twap_venue import TwapVenueClient
from gridfleet.wallets import FleetWallet, load_fleet, register_fleet

log = logging.getLogger("gridfleet")

# Simulated wallets start with this much USD on each side of their pool
TEST_MODE_SEED_USD = 100.0
TEST_MODE_FILL_PROBABILITY = 0.3


def build_scheduler(
    settings: Settings,
    ledger: LedgerStore,
    venue: VenueClient,
    chain: ChainClient,
    prices: PriceFeed,
    fleet: List[FleetWallet],
    pair_configs: Optional[Dict[str, PairConfig]] = None,
    metrics: Optional[FleetMetrics] = None,
    health: Optional[HealthChecker] = None,
) -> FleetScheduler:
    """Assemble the engine components around the given collaborators."""
    pair_configs = pair_configs or resolve_pair_configs(settings, settings.trading_pools)
    journal = OpsJournal(ledger)
    locks = WalletLockRegistry()

    constructor = OrderConstructor(
        chain,
        config=OrderConstructionConfig(slippage_pct=settings.slippage_pct),
    )
    executor = OrderExecutor(
        venue, chain, ledger, prices, locks, metrics=metrics, journal=journal,
        config=OrderExecutionConfig(settle_delay=settings.settle_delay),
    )
    synchronizer = StatusSynchronizer(venue, ledger, LedgerStatusMachine(), metrics=metrics, journal=journal)
    counters = CounterOrderManager(
        constructor, executor, ledger, prices,
        pair_configs=pair_configs, synchronizer=synchronizer, metrics=metrics, journal=journal,
        config=CounterOrderConfig(sweep_gap=settings.sweep_gap),
    )
    grid = GridPlacementEngine(
        constructor, executor, chain, prices, ledger,
        pair_configs=pair_configs, journal=journal,
        config=GridPlacementConfig(order_gap=settings.order_gap, pair_gap=settings.pair_gap),
    )
    balance_sync = BalanceSynchronizer(chain, ledger)
    rebalancer = RebalancingEngine(
        venue, chain, prices, ledger, locks,
        balance_sync=balance_sync, pair_configs=pair_configs, metrics=metrics, journal=journal,
        config=RebalancerConfig(
            enabled=settings.rebalance_enabled,
            approval_confirm_delay=settings.approval_confirm_delay,
            nonce_retry_delay=settings.nonce_retry_delay,
        ),
    )
    return FleetScheduler(
        fleet,
        ledger,
        grid,
        synchronizer,
        counters,
        rebalancer,
        balance_sync,
        LedgerCanceller(ledger, journal),
        metrics=metrics,
        journal=journal,
        health=health,
        config=SchedulerConfig(
            loop_interval=settings.loop_interval,
            wallet_stagger=settings.wallet_stagger,
            reset_on_startup=settings.reset_on_startup,
            daily_reset_hour=settings.daily_reset_hour,
        ),
    )


async def seed_simulated_balances(chain: SimulatedChain, prices: PriceFeed, fleet: List[FleetWallet]) -> None:
    for wallet in fleet:
        target, base = TOKENS.parse_trading_pool(wallet.trading_pool)
        for token in (target, base):
            price = await prices.get_price(token.symbol)
            chain.set_balance(wallet.address, token.symbol, round(TEST_MODE_SEED_USD / price, token.decimals))


async def main() -> None:
    settings = Settings.load()
    build_logger("gridfleet", level=settings.log_level, file_path=settings.log_file)

    health = HealthChecker()
    health.set_component_health("config", True, "Configuration validated")

    if settings.db_path != ":memory:":
        Path(settings.db_path).parent.mkdir(parents=True, exist_ok=True)
    ledger = LedgerStore(settings.db_path)
    health.set_component_health("ledger", True)

    pair_configs = resolve_pair_configs(
        settings, settings.trading_pools, load_pair_overrides(settings.pair_config_path),
    )
    prices = HttpPriceFeed(
        settings.price_api_url,
        settings.chain_id,
        timeout=settings.http_timeout,
        cache_ttl=settings.price_cache_ttl,
        policy=PRICE_POLICY.with_overrides(
            max_attempts=settings.price_retries,
            base_delay=settings.price_retry_delay,
            max_delay=settings.price_retry_delay,
        ),
    )

    fleet = load_fleet(settings)
    if settings.test_mode:
        chain: ChainClient = SimulatedChain()
        venue: VenueClient = SimulatedVenue(
            chain, fill_probability=TEST_MODE_FILL_PROBABILITY, prices=FALLBACK_PRICES,
        )
        await seed_simulated_balances(chain, prices, fleet)
    else:
        rpc = RpcChainClient(
            settings.rpc_url, settings.chain_id,
            timeout=settings.http_timeout, receipt_timeout=settings.receipt_timeout,
        )
        chain = rpc
        venue = TwapVenueClient(
            settings.venue_url, settings.swap_router_url, rpc, settings.twap_contract,
            settings.chain_id, timeout=settings.http_timeout,
        )
    await register_fleet(ledger, fleet)

    metrics = FleetMetrics()
    srv = None
    if settings.metrics_port:
        srv = await start_metrics_server(metrics, settings.metrics_port, health_checker=health)

    scheduler = build_scheduler(
        settings, ledger, venue, chain, prices, fleet,
        pair_configs=pair_configs, metrics=metrics, health=health,
    )
    log.info(dumps({
        "event": "startup",
        "wallets": len(fleet),
        "pools": settings.trading_pools,
        "test_mode": settings.test_mode,
    }))

    loop = asyncio.get_running_loop()
    run_task = asyncio.create_task(scheduler.run_forever())

    def stop_all() -> None:
        if not run_task.done():
            run_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_all)
        except NotImplementedError:
            pass

    try:
        await run_task
    except asyncio.CancelledError:
        log.info("Shutdown signal received, cleaning up...")
    finally:
        log.info("Closing servers and connections...")
        if srv is not None:
            srv.close()
            await srv.wait_closed()
        await venue.close()
        await chain.close()
        await prices.close()
        await ledger.close()
        log.info("Shutdown complete")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nStopped by user")
    sys.exit(0)


if __name__ == "__main__":
    run()

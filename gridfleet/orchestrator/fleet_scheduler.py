"""
FleetScheduler: one reconciliation loop per wallet.

Per-wallet state machine:

    IDLE ──> GRID_PLACED ──> MONITORING ──┬──> MONITORING
                                          └──> FAILED ──> MONITORING (next cycle)

Each wallet loop:
    1. Balance sync, then place the grid once (retried each cycle until it
       succeeds or the wallet's ladder is already claimed)
    2. Every cycle: status sync -> counters for fresh fills -> backfill
       sweep -> drain the balance retry queue
    3. Sleep `loop_interval`

Architecture:
    Wallet loops run as tasks in one asyncio.TaskGroup with start offsets of
    position * wallet_stagger. A cycle failure is caught, journaled and
    counted inside the loop, so it never reaches the TaskGroup and never
    affects sibling wallets. Only cancellation propagates.

    RunState is owned by the scheduler and is the single entry point for a
    full sequential pass (run_pass); a second concurrent pass is refused.
    Resets (startup and daily) close a gate that waits for in-flight wallet
    cycles to finish, then rebalance, ledger-cancel and zero the grid
    counters before reopening it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from gridfleet.core.errors import CounterMismatch, InsufficientBalanceForGrid, InvalidTransition
from gridfleet.core.json_utils import dumps
from gridfleet.infra.logging_cfg import CRITICAL_SAFETY, log_event

if TYPE_CHECKING:
    from gridfleet.execution.balance_sync import BalanceSynchronizer
    from gridfleet.execution.cancellation import LedgerCanceller
    from gridfleet.execution.counter_orders import CounterOrderManager, SweepResult
    from gridfleet.execution.grid_placement import GridPlacementEngine, GridPlacementResult
    from gridfleet.execution.rebalancer import RebalanceResult, RebalancingEngine
    from gridfleet.execution.status_sync import StatusSynchronizer
    from gridfleet.monitoring.metrics import FleetMetrics, HealthChecker
    from gridfleet.monitoring.ops_journal import OpsJournal
    from gridfleet.state.ledger_store import LedgerStore
    from gridfleet.wallets import FleetWallet

log = logging.getLogger("gridfleet")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunState:
    """Process-wide pass guard. Only the scheduler mutates it."""
    running: bool = False
    pass_started_at: Optional[float] = None
    passes_completed: int = 0
    last_reset_day: Optional[str] = None
    first_pass_done: bool = False

    def try_begin(self, now: Optional[float] = None) -> bool:
        if self.running:
            return False
        self.running = True
        self.pass_started_at = time.time() if now is None else now
        return True

    def end(self, completed: bool = True) -> None:
        self.running = False
        self.pass_started_at = None
        if completed:
            self.passes_completed += 1
            self.first_pass_done = True


class WalletPhase(Enum):
    IDLE = "idle"
    GRID_PLACED = "grid_placed"
    MONITORING = "monitoring"
    FAILED = "failed"


class WalletRunner:
    """Loop bookkeeping for one wallet."""

    def __init__(self, wallet: "FleetWallet") -> None:
        self.wallet = wallet
        self.phase = WalletPhase.IDLE
        self.grid_done = False
        self.cycles = 0
        self.consecutive_errors = 0
        self.last_cycle_at: Optional[float] = None
        self.last_cycle_seconds: Optional[float] = None
        self.last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet": self.wallet.address,
            "index": self.wallet.index,
            "pool": self.wallet.trading_pool,
            "phase": self.phase.value,
            "grid_done": self.grid_done,
            "cycles": self.cycles,
            "consecutive_errors": self.consecutive_errors,
            "last_cycle_at": self.last_cycle_at,
            "last_cycle_seconds": self.last_cycle_seconds,
            "last_error": self.last_error,
        }


@dataclass
class CycleReport:
    """Result of one wallet reconciliation cycle."""
    wallet: str
    transitions: int = 0
    fills: int = 0
    counters_placed: int = 0
    counters_exists: int = 0
    counters_skipped: int = 0
    counters_failed: int = 0
    sweep: Optional["SweepResult"] = None
    balances_recovered: int = 0
    grid: Optional["GridPlacementResult"] = None
    duration_s: float = 0.0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class SchedulerConfig:
    loop_interval: float = 300.0
    wallet_stagger: float = 2.0
    reset_on_startup: bool = False
    daily_reset_hour: int = -1  # UTC hour; -1 disables
    # How often the daily-reset watcher wakes up
    reset_check_interval: float = 60.0
    log_event_callback: Optional[Callable[..., None]] = None


class _ResetGate:
    """Lets wallet cycles run concurrently while a reset runs exclusively."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._active = 0
        self._resetting = False

    async def enter_cycle(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._resetting)
            self._active += 1

    async def exit_cycle(self) -> None:
        async with self._cond:
            self._active -= 1
            self._cond.notify_all()

    async def begin_reset(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._resetting)
            self._resetting = True
            await self._cond.wait_for(lambda: self._active == 0)

    async def end_reset(self) -> None:
        async with self._cond:
            self._resetting = False
            self._cond.notify_all()


class FleetScheduler:
    def __init__(
        self,
        wallets: List["FleetWallet"],
        ledger: "LedgerStore",
        grid: "GridPlacementEngine",
        status_sync: "StatusSynchronizer",
        counters: "CounterOrderManager",
        rebalancer: "RebalancingEngine",
        balance_sync: "BalanceSynchronizer",
        canceller: "LedgerCanceller",
        metrics: Optional["FleetMetrics"] = None,
        journal: Optional["OpsJournal"] = None,
        health: Optional["HealthChecker"] = None,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.ledger = ledger
        self.grid = grid
        self.status_sync = status_sync
        self.counters = counters
        self.rebalancer = rebalancer
        self.balance_sync = balance_sync
        self.canceller = canceller
        self.metrics = metrics
        self.journal = journal
        self.health = health
        self.config = config or SchedulerConfig()
        self.clock = clock

        self.state = RunState()
        self.runners: Dict[str, WalletRunner] = {w.address.lower(): WalletRunner(w) for w in wallets}
        self._gate = _ResetGate()
        self._forever_started = False
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    @property
    def wallets(self) -> List["FleetWallet"]:
        return [r.wallet for r in self.runners.values()]

    def runner(self, address: str) -> WalletRunner:
        runner = self.runners.get(address.lower())
        if runner is None:
            raise KeyError(f"Unknown wallet {address}")
        return runner

    # ── Reset ──

    def _today(self) -> str:
        return self.clock().strftime("%Y-%m-%d")

    def reset_due(self) -> bool:
        hour = self.config.daily_reset_hour
        if hour < 0:
            return False
        now = self.clock()
        return self.state.last_reset_day != now.strftime("%Y-%m-%d") and now.hour >= hour

    async def _reset_locked(self, reason: str) -> Dict[str, int]:
        self._log_event("fleet_reset_start", reason=reason, wallets=len(self.runners))
        for runner in self.runners.values():
            await self.rebalancer.rebalance(runner.wallet)
        counts = await self.canceller.cancel_all(self.wallets)
        for runner in self.runners.values():
            await self.ledger.reset_grid_counter(runner.wallet.address)
            runner.grid_done = False
            runner.phase = WalletPhase.IDLE
        self.state.last_reset_day = self._today()
        self._log_event("fleet_reset_done", reason=reason, canceled=sum(counts.values()))
        return counts

    async def trigger_reset(self, reason: str = "manual") -> Dict[str, int]:
        """Rebalance, ledger-cancel and zero grid counters for every wallet."""
        await self._gate.begin_reset()
        try:
            return await self._reset_locked(reason)
        finally:
            await self._gate.end_reset()

    async def _reset_watch(self) -> None:
        while True:
            await asyncio.sleep(self.config.reset_check_interval)
            if self.reset_due():
                try:
                    await self.trigger_reset(reason="daily")
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._log_event("fleet_reset_failed", reason="daily", err=str(exc))
                    if self.journal:
                        await self.journal.log_error(None, None, "fleet_reset_failed", str(exc), "daily")

    # ── Wallet cycle ──

    async def run_cycle(self, wallet: "FleetWallet") -> CycleReport:
        """One reconciliation cycle. Exceptions propagate to the caller."""
        report = CycleReport(wallet=wallet.address)
        transitions = await self.status_sync.sync(wallet)
        report.transitions = len(transitions)
        report.fills = sum(1 for t in transitions if t.is_fill)

        for result in await self.counters.handle_fills(transitions, wallet):
            if result.status == "placed":
                report.counters_placed += 1
            elif result.status == "exists":
                report.counters_exists += 1
            elif result.status == "skipped":
                report.counters_skipped += 1
            else:
                report.counters_failed += 1

        report.sweep = await self.counters.sweep(wallet)
        report.balances_recovered = await self.balance_sync.drain_queue([wallet])
        return report

    async def _ensure_grid(self, runner: WalletRunner) -> Optional["GridPlacementResult"]:
        if runner.grid_done:
            return None
        wallet = runner.wallet
        await self.balance_sync.sync(wallet)
        try:
            result = await self.grid.place_grid(wallet)
        except InsufficientBalanceForGrid as exc:
            self._log_event(
                "grid_unaffordable", wallet=wallet.address,
                balance_usd=round(exc.balance_usd, 2), minimum_usd=exc.minimum_usd,
            )
            return None
        if result.skipped_reason != "in_progress":
            runner.grid_done = True
            runner.phase = WalletPhase.GRID_PLACED
        return result

    async def _wallet_cycle(self, runner: WalletRunner) -> CycleReport:
        wallet = runner.wallet
        started = time.perf_counter()
        report = CycleReport(wallet=wallet.address)
        await self._gate.enter_cycle()
        try:
            grid_result = await self._ensure_grid(runner)
            report = await self.run_cycle(wallet)
            report.grid = grid_result
            runner.phase = WalletPhase.MONITORING
            runner.consecutive_errors = 0
            runner.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            runner.phase = WalletPhase.FAILED
            runner.consecutive_errors += 1
            runner.last_error = str(exc)
            report.error = str(exc)
            if self.metrics:
                self.metrics.wallet_cycle_errors.labels(wallet=wallet.address).inc()
            if isinstance(exc, (CounterMismatch, InvalidTransition)):
                log_event(log, "ledger_inconsistency", level=CRITICAL_SAFETY, wallet=wallet.address, err=str(exc))
            if self.journal:
                await self.journal.log_error(
                    wallet.index, wallet.address, "wallet_cycle_failed", str(exc), context=type(exc).__name__,
                )
            self._log_event(
                "wallet_cycle_failed",
                wallet=wallet.address,
                consecutive_errors=runner.consecutive_errors,
                err=str(exc),
            )
        finally:
            await self._gate.exit_cycle()
            elapsed = time.perf_counter() - started
            runner.cycles += 1
            runner.last_cycle_at = time.time()
            runner.last_cycle_seconds = elapsed
            report.duration_s = elapsed
            if self.metrics:
                self.metrics.wallet_cycle_seconds.labels(wallet=wallet.address).observe(elapsed)
            if self.health:
                self.health.heartbeat()

        if report.success and (report.transitions or report.counters_placed or (report.sweep and report.sweep.placed)):
            self._log_event(
                "wallet_cycle_done",
                wallet=wallet.address,
                transitions=report.transitions,
                fills=report.fills,
                counters_placed=report.counters_placed,
                sweep_placed=report.sweep.placed if report.sweep else 0,
                duration_s=round(elapsed, 3),
            )
        return report

    async def _wallet_loop(self, runner: WalletRunner, start_delay: float) -> None:
        if start_delay > 0:
            await asyncio.sleep(start_delay)
        self._log_event("wallet_loop_start", wallet=runner.wallet.address, index=runner.wallet.index)
        while True:
            await self._wallet_cycle(runner)
            await asyncio.sleep(self.config.loop_interval)

    # ── Entry points ──

    async def start(self) -> None:
        """Startup reset (or mark today as reset when disabled)."""
        if self.config.reset_on_startup:
            await self.trigger_reset(reason="startup")
        else:
            self.state.last_reset_day = self._today()

    async def run_forever(self) -> None:
        if self._forever_started:
            raise RuntimeError("FleetScheduler.run_forever already running")
        self._forever_started = True
        try:
            await self.start()
            if self.health:
                self.health.set_component_health("scheduler", True)
                self.health.set_ready(True)
            async with asyncio.TaskGroup() as tg:
                for position, runner in enumerate(self.runners.values()):
                    tg.create_task(
                        self._wallet_loop(runner, position * self.config.wallet_stagger),
                        name=f"wallet-{runner.wallet.index}",
                    )
                if self.config.daily_reset_hour >= 0:
                    tg.create_task(self._reset_watch(), name="daily-reset")
        finally:
            self._forever_started = False
            if self.health:
                self.health.set_ready(False)

    async def run_pass(self) -> Optional[List[CycleReport]]:
        """One sequential, staggered pass over all wallets. None if a pass is already running."""
        if not self.state.try_begin():
            self._log_event("pass_skipped", started_at=self.state.pass_started_at)
            return None
        if self.metrics:
            self.metrics.scheduler_running.set(1)
        completed = False
        try:
            if self.reset_due():
                await self.trigger_reset(reason="daily")
            reports: List[CycleReport] = []
            for position, runner in enumerate(self.runners.values()):
                if position and self.config.wallet_stagger > 0:
                    await asyncio.sleep(self.config.wallet_stagger)
                reports.append(await self._wallet_cycle(runner))
            completed = True
            if self.health:
                self.health.set_ready(True)
            return reports
        finally:
            self.state.end(completed=completed)
            if self.metrics:
                self.metrics.scheduler_running.set(0)

    # ── Manual triggers ──

    async def trigger_grid(self, address: str) -> "GridPlacementResult":
        runner = self.runner(address)
        result = await self.grid.place_grid(runner.wallet)
        if result.skipped_reason != "in_progress":
            runner.grid_done = True
            if runner.phase is WalletPhase.IDLE:
                runner.phase = WalletPhase.GRID_PLACED
        return result

    async def trigger_cycle(self, address: str) -> CycleReport:
        return await self._wallet_cycle(self.runner(address))

    async def trigger_rebalance(self, address: str) -> "RebalanceResult":
        return await self.rebalancer.rebalance(self.runner(address).wallet)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.state.running,
            "passes_completed": self.state.passes_completed,
            "last_reset_day": self.state.last_reset_day,
            "wallets": [r.to_dict() for r in self.runners.values()],
        }

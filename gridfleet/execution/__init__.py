"""
Execution layer of the order-lifecycle engine.

- OrderConstructor: validated, balance-checked order descriptors
- OrderExecutor: approval, submission and exactly-once ledger insert
- StatusSynchronizer: venue -> ledger status/progress reconciliation
- CounterOrderManager: reversed orders for fills plus the backfill sweep
- GridPlacementEngine: one-time grid ladder placement
- RebalancingEngine: swap back toward a 50/50 value split
- BalanceSynchronizer: balance snapshots with a retry queue
- LedgerCanceller: ledger-level reset cancellation
"""

from gridfleet.execution.balance_sync import BalanceSyncConfig, BalanceSynchronizer
from gridfleet.execution.cancellation import LedgerCanceller
from gridfleet.execution.counter_orders import (
    CounterOrderConfig,
    CounterOrderManager,
    CounterPlan,
    CounterResult,
    SweepResult,
    compute_counter_plan,
)
from gridfleet.execution.grid_placement import (
    GridPlacementConfig,
    GridPlacementEngine,
    GridPlacementResult,
    GridSizing,
    compute_sizing,
)
from gridfleet.execution.order_construction import OrderConstructionConfig, OrderConstructor
from gridfleet.execution.order_execution import OrderExecutionConfig, OrderExecutor
from gridfleet.execution.order_state_machine import VALID_TRANSITIONS, LedgerStatusMachine
from gridfleet.execution.rebalancer import (
    RebalancePlan,
    RebalanceResult,
    RebalancerConfig,
    RebalancingEngine,
    plan as plan_rebalance,
)
from gridfleet.execution.status_sync import (
    StatusSyncConfig,
    StatusSynchronizer,
    StatusTransition,
    map_venue_status,
)

__all__ = [
    "BalanceSyncConfig",
    "BalanceSynchronizer",
    "LedgerCanceller",
    "CounterOrderConfig",
    "CounterOrderManager",
    "CounterPlan",
    "CounterResult",
    "SweepResult",
    "compute_counter_plan",
    "GridPlacementConfig",
    "GridPlacementEngine",
    "GridPlacementResult",
    "GridSizing",
    "compute_sizing",
    "OrderConstructionConfig",
    "OrderConstructor",
    "OrderExecutionConfig",
    "OrderExecutor",
    "VALID_TRANSITIONS",
    "LedgerStatusMachine",
    "RebalancePlan",
    "RebalanceResult",
    "RebalancerConfig",
    "RebalancingEngine",
    "plan_rebalance",
    "StatusSyncConfig",
    "StatusSynchronizer",
    "StatusTransition",
    "map_venue_status",
]

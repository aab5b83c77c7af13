"""Fleet scheduling and the read-only query surface."""

from gridfleet.orchestrator.fleet_scheduler import (
    CycleReport,
    FleetScheduler,
    RunState,
    SchedulerConfig,
    WalletPhase,
    WalletRunner,
)
from gridfleet.orchestrator.queries import FleetQueries

__all__ = [
    "CycleReport",
    "FleetScheduler",
    "RunState",
    "SchedulerConfig",
    "WalletPhase",
    "WalletRunner",
    "FleetQueries",
]

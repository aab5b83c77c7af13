"""Per-pool configuration resolved from Settings plus YAML overrides.

Optional file path via env `GF_PAIR_CONFIG`, default `configs/pairs.yaml`:

    ETH/USDC:
      profit_margin_pct: 1.5
      buy_offsets: [-1, -2, -3]
      sell_offsets: [1, 2, 3]
    WBTC/USDC:
      min_order_usd: 10

Returns a dict mapping pool -> dict of overrides.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from gridfleet.config.config import Settings
from gridfleet.core.json_utils import dumps

log = logging.getLogger("gridfleet")


@dataclass(frozen=True)
class PairConfig:
    """Trading parameters for one TARGET/BASE pool."""
    pool: str
    buy_offsets: Tuple[float, ...] = (-1.0, -1.5, -2.0, -2.5, -3.0)
    sell_offsets: Tuple[float, ...] = (1.0, 1.5, 2.0, 2.5, 3.0)
    min_order_usd: float = 6.0
    expiry_hours: float = 168.0
    grid_allocation: float = 1.0
    slippage_pct: float = 0.1
    profit_margin_pct: float = 1.0
    counter_min_order_usd: float = 6.0
    counter_expiry_hours: float = 168.0
    rebalance_threshold_pct: float = 1.0
    rebalance_min_swap_usd: float = 5.0
    rebalance_slippage_pct: float = 0.5

    @property
    def ladder_len(self) -> int:
        return min(len(self.buy_offsets), len(self.sell_offsets))

    @classmethod
    def from_settings(cls, settings: Settings, pool: str) -> "PairConfig":
        return cls(
            pool=pool,
            buy_offsets=tuple(settings.buy_offsets),
            sell_offsets=tuple(settings.sell_offsets),
            min_order_usd=settings.min_order_usd,
            expiry_hours=settings.expiry_hours,
            grid_allocation=settings.grid_allocation,
            slippage_pct=settings.slippage_pct,
            profit_margin_pct=settings.profit_margin_pct,
            counter_min_order_usd=settings.counter_min_order_usd,
            counter_expiry_hours=settings.counter_expiry_hours,
            rebalance_threshold_pct=settings.rebalance_threshold_pct,
            rebalance_min_swap_usd=settings.rebalance_min_swap_usd,
            rebalance_slippage_pct=settings.rebalance_slippage_pct,
        )

    @classmethod
    def for_pool(
        cls,
        settings: Settings,
        pool: str,
        overrides: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> "PairConfig":
        base = cls.from_settings(settings, pool)
        pool_overrides = (overrides or {}).get(pool)
        if not pool_overrides:
            return base
        return base.merged(pool_overrides)

    def merged(self, overrides: Dict[str, Any]) -> "PairConfig":
        known = {f.name for f in fields(self)} - {"pool"}
        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in known:
                log.warning(dumps({"event": "pair_config_unknown_key", "pool": self.pool, "key": key}))
                continue
            if key in ("buy_offsets", "sell_offsets"):
                changes[key] = tuple(float(v) for v in value)
            else:
                changes[key] = float(value)
        return replace(self, **changes)


def load_pair_overrides(path: str | None = None) -> Dict[str, Dict[str, Any]]:
    if path is None:
        path = os.getenv("GF_PAIR_CONFIG", "configs/pairs.yaml")
    p = Path(path)
    if not p.exists():
        return {}
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        log.error(dumps({"event": "pair_config_invalid", "path": str(p), "err": str(exc)}))
        return {}
    if isinstance(data, dict):
        return {str(k): v for k, v in data.items() if isinstance(v, dict)}
    return {}


def resolve_pair_configs(
    settings: Settings,
    pools: List[str],
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Dict[str, PairConfig]:
    return {pool: PairConfig.for_pool(settings, pool, overrides) for pool in pools}

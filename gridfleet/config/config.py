"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

from gridfleet.core.json_utils import dumps

load_dotenv()

ENV_PREFIX = "GF_"
_SECRET_FIELDS = {"mnemonic"}


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


def _float_list_env(key: str, default: List[float]) -> List[float]:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return list(default)
    return [float(x) for x in raw.split(",") if x.strip()]


def _str_list_env(key: str, default: List[str]) -> List[str]:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return list(default)
    return [x.strip() for x in raw.split(",") if x.strip()]


def _optional_int_env(key: str) -> Optional[int]:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return None
    return int(raw)


@dataclass(frozen=True)
class Settings:
    # Chain
    rpc_url: str
    chain_id: int
    http_timeout: float
    receipt_timeout: float
    # Venue
    venue_url: str
    twap_contract: str
    swap_router_url: str
    # Price feed
    price_api_url: str
    price_retries: int
    price_retry_delay: float
    price_cache_ttl: float
    # Grid
    buy_offsets: List[float]
    sell_offsets: List[float]
    min_order_usd: float
    expiry_hours: float
    grid_allocation: float
    slippage_pct: float
    # Counter orders
    profit_margin_pct: float
    counter_min_order_usd: float
    counter_expiry_hours: float
    # Rebalancing
    rebalance_enabled: bool
    rebalance_threshold_pct: float
    rebalance_min_swap_usd: float
    rebalance_slippage_pct: float
    approval_confirm_delay: float
    nonce_retry_delay: float
    # Scheduler
    loop_interval: float
    wallet_stagger: float
    settle_delay: float
    order_gap: float
    pair_gap: float
    sweep_gap: float
    reset_on_startup: bool
    daily_reset_hour: int  # -1 disables the daily reset
    single_wallet_index: Optional[int]
    # Fleet
    mnemonic: Optional[str]
    wallet_count: int
    trading_pools: List[str]
    # Storage / ops
    db_path: str
    log_file: Optional[str]
    log_level: str
    metrics_port: int
    test_mode: bool
    pair_config_path: str

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging (secrets redacted)."""
        data = self.__dict__.copy()
        for key in _SECRET_FIELDS:
            if data.get(key):
                data[key] = "***"
        return data

    def wallet_key(self, index: int) -> Optional[str]:
        """Per-index private key override (GF_WALLET_<i>)."""
        return os.getenv(f"{ENV_PREFIX}WALLET_{index}") or None

    @classmethod
    def load(cls) -> "Settings":
        p = ENV_PREFIX
        log_file = os.getenv(f"{p}LOG_FILE", "gridfleet.log")
        cfg = cls(
            rpc_url=os.getenv(f"{p}RPC_URL", "https://rpc.katana.network"),
            chain_id=_int_env(f"{p}CHAIN_ID", 747474),
            http_timeout=_float_env(f"{p}HTTP_TIMEOUT", 10.0),
            receipt_timeout=_float_env(f"{p}RECEIPT_TIMEOUT", 120.0),
            venue_url=os.getenv(f"{p}VENUE_URL", "https://twap.orbs.network"),
            twap_contract=os.getenv(f"{p}TWAP_CONTRACT", ""),
            swap_router_url=os.getenv(f"{p}SWAP_ROUTER_URL", "https://api.sushi.com/swap/v7"),
            price_api_url=os.getenv(f"{p}PRICE_API_URL", "https://api.sushi.com/price/v1"),
            price_retries=_int_env(f"{p}PRICE_RETRIES", 3),
            price_retry_delay=_float_env(f"{p}PRICE_RETRY_DELAY_SEC", 3.0),
            price_cache_ttl=_float_env(f"{p}PRICE_CACHE_TTL_SEC", 30.0),
            buy_offsets=_float_list_env(f"{p}BUY_OFFSETS", [-1, -1.5, -2, -2.5, -3]),
            sell_offsets=_float_list_env(f"{p}SELL_OFFSETS", [1, 1.5, 2, 2.5, 3]),
            min_order_usd=_float_env(f"{p}MIN_ORDER_USD", 6.0),
            expiry_hours=_float_env(f"{p}EXPIRY_HOURS", 168.0),
            grid_allocation=_float_env(f"{p}GRID_ALLOCATION", 1.0),
            slippage_pct=_float_env(f"{p}SLIPPAGE_PCT", 0.1),
            profit_margin_pct=_float_env(f"{p}PROFIT_MARGIN_PCT", 1.0),
            counter_min_order_usd=_float_env(f"{p}COUNTER_MIN_ORDER_USD", 6.0),
            counter_expiry_hours=_float_env(f"{p}COUNTER_EXPIRY_HOURS", 168.0),
            rebalance_enabled=env_bool(f"{p}REBALANCE_ENABLED", True),
            rebalance_threshold_pct=_float_env(f"{p}REBALANCE_THRESHOLD_PCT", 1.0),
            rebalance_min_swap_usd=_float_env(f"{p}REBALANCE_MIN_SWAP_USD", 5.0),
            rebalance_slippage_pct=_float_env(f"{p}REBALANCE_SLIPPAGE_PCT", 0.5),
            approval_confirm_delay=_float_env(f"{p}APPROVAL_CONFIRM_DELAY_SEC", 2.0),
            nonce_retry_delay=_float_env(f"{p}NONCE_RETRY_DELAY_SEC", 2.0),
            loop_interval=_float_env(f"{p}LOOP_INTERVAL_SEC", 300.0),
            wallet_stagger=_float_env(f"{p}WALLET_STAGGER_SEC", 2.0),
            settle_delay=_float_env(f"{p}SETTLE_DELAY_SEC", 5.0),
            order_gap=_float_env(f"{p}ORDER_GAP_SEC", 2.0),
            pair_gap=_float_env(f"{p}PAIR_GAP_SEC", 3.0),
            sweep_gap=_float_env(f"{p}SWEEP_GAP_SEC", 1.0),
            reset_on_startup=env_bool(f"{p}RESET_ON_STARTUP", False),
            daily_reset_hour=_int_env(f"{p}DAILY_RESET_HOUR", -1),
            single_wallet_index=_optional_int_env(f"{p}SINGLE_WALLET_INDEX"),
            mnemonic=os.getenv(f"{p}MNEMONIC") or None,
            wallet_count=_int_env(f"{p}WALLET_COUNT", 1),
            trading_pools=_str_list_env(f"{p}TRADING_POOLS", ["ETH/USDC"]),
            db_path=os.getenv(f"{p}DB_PATH", "state/gridfleet.db"),
            log_file=log_file or None,
            log_level=os.getenv(f"{p}LOG_LEVEL", "INFO").upper(),
            metrics_port=_int_env(f"{p}METRICS_PORT", 9095),
            test_mode=env_bool(f"{p}TEST_MODE", False),
            pair_config_path=os.getenv(f"{p}PAIR_CONFIG", "configs/pairs.yaml"),
        )
        _sanity_check(cfg)
        cfg._validate()
        return cfg

    def _validate(self) -> None:
        if not self.buy_offsets or not self.sell_offsets:
            raise ValueError("GF_BUY_OFFSETS and GF_SELL_OFFSETS must be non-empty")
        if len(self.buy_offsets) != len(self.sell_offsets):
            raise ValueError("GF_BUY_OFFSETS and GF_SELL_OFFSETS must have the same length")
        if any(o >= 0 for o in self.buy_offsets):
            raise ValueError("GF_BUY_OFFSETS must all be negative (below reference price)")
        if any(o <= 0 for o in self.sell_offsets):
            raise ValueError("GF_SELL_OFFSETS must all be positive (above reference price)")
        if self.min_order_usd <= 0 or self.counter_min_order_usd <= 0:
            raise ValueError("Minimum order values must be > 0")
        if not 0 < self.profit_margin_pct < 100:
            raise ValueError("GF_PROFIT_MARGIN_PCT must be in (0, 100)")
        if not 0 < self.rebalance_threshold_pct < 50:
            raise ValueError("GF_REBALANCE_THRESHOLD_PCT must be in (0, 50)")
        if not 0 < self.grid_allocation <= 1:
            raise ValueError("GF_GRID_ALLOCATION must be in (0, 1]")
        if not 0 <= self.slippage_pct < 100:
            raise ValueError("GF_SLIPPAGE_PCT must be in [0, 100)")
        if self.expiry_hours <= 0 or self.counter_expiry_hours <= 0:
            raise ValueError("Expiry horizons must be > 0")
        if self.loop_interval <= 0:
            raise ValueError("GF_LOOP_INTERVAL_SEC must be > 0")
        if self.wallet_count < 0:
            raise ValueError("GF_WALLET_COUNT must be >= 0")
        if not self.trading_pools:
            raise ValueError("GF_TRADING_POOLS must list at least one pool")
        if self.daily_reset_hour > 23 or self.daily_reset_hour < -1:
            raise ValueError("GF_DAILY_RESET_HOUR must be -1 (disabled) or 0-23")

        logger = logging.getLogger("gridfleet")
        if not self.test_mode and not self.twap_contract:
            logger.warning(
                "WARNING: GF_TWAP_CONTRACT not set. "
                "Token approvals for limit orders will target an empty spender."
            )
        if self.profit_margin_pct < self.slippage_pct * 2:
            logger.warning(
                f"WARNING: GF_PROFIT_MARGIN_PCT={self.profit_margin_pct} is close to slippage "
                f"({self.slippage_pct}%). Counter orders may not be profitable."
            )
        if self.loop_interval < 30 and not self.test_mode:
            logger.warning(
                f"WARNING: GF_LOOP_INTERVAL_SEC={self.loop_interval} is aggressive for RPC rate limits."
            )


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    logger = logging.getLogger("gridfleet")
    payload = {
        "event": "config_loaded",
        "chain_id": cfg.chain_id,
        "buy_offsets": cfg.buy_offsets,
        "sell_offsets": cfg.sell_offsets,
        "min_order_usd": cfg.min_order_usd,
        "profit_margin_pct": cfg.profit_margin_pct,
        "loop_interval": cfg.loop_interval,
        "wallet_count": cfg.wallet_count,
        "trading_pools": cfg.trading_pools,
        "test_mode": cfg.test_mode,
    }
    logger.info(dumps(payload))

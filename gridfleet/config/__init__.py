"""
Configuration package.

Environment settings, per-pool YAML overrides and the token registry.
"""

from gridfleet.config.config import Settings, env_bool
from gridfleet.config.pair_config import PairConfig, load_pair_overrides, resolve_pair_configs
from gridfleet.config.tokens import Token, TokenRegistry, TOKENS, get_token, parse_trading_pool

__all__ = [
    "Settings",
    "env_bool",
    "PairConfig",
    "load_pair_overrides",
    "resolve_pair_configs",
    "Token",
    "TokenRegistry",
    "TOKENS",
    "get_token",
    "parse_trading_pool",
]

"""
Infrastructure package.

Logging setup and per-wallet submission locks.
"""

from gridfleet.infra.logging_cfg import build_logger, log_event, JsonFormatter, ThrottledFilter
from gridfleet.infra.wallet_locks import WalletLockRegistry

__all__ = [
    "build_logger",
    "log_event",
    "JsonFormatter",
    "ThrottledFilter",
    "WalletLockRegistry",
]

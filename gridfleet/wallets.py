"""
Fleet wallet loading.

Wallet `i` is derived from the mnemonic at m/44'/60'/0'/0/{i}, or read from
the GF_WALLET_<i> private key when no mnemonic is configured. Wallet `i`
trades pool `trading_pools[i % len(trading_pools)]`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional

from eth_account import Account

from gridfleet.core.json_utils import dumps

if TYPE_CHECKING:
    from gridfleet.config.config import Settings
    from gridfleet.state.ledger_store import LedgerStore

log = logging.getLogger("gridfleet")

Account.enable_unaudited_hdwallet_features()

# Public development mnemonic; only used in test mode when no keys are configured
TEST_MNEMONIC = "test test test test test test test test test test test junk"


@dataclass(frozen=True)
class FleetWallet:
    index: int
    address: str
    trading_pool: str
    account: Any = None  # eth_account LocalAccount; None for simulated wallets

    @property
    def signer(self) -> Any:
        """Signing account, or the bare address for simulated wallets."""
        return self.account if self.account is not None else self.address

    @property
    def short(self) -> str:
        return f"{self.address[:6]}...{self.address[-4:]}"


def derivation_path(index: int) -> str:
    return f"m/44'/60'/0'/0/{index}"


def _account_for(settings: "Settings", index: int) -> Optional[Any]:
    mnemonic = settings.mnemonic
    if not mnemonic and settings.test_mode and settings.wallet_key(index) is None:
        mnemonic = TEST_MNEMONIC
    if mnemonic:
        return Account.from_mnemonic(mnemonic, account_path=derivation_path(index))
    key = settings.wallet_key(index)
    if key:
        return Account.from_key(key)
    return None


def pool_for_index(settings: "Settings", index: int) -> str:
    pools = settings.trading_pools
    return pools[index % len(pools)]


def load_fleet(settings: "Settings") -> List[FleetWallet]:
    """Resolve every configured wallet; wallets without key material are skipped."""
    indices = range(settings.wallet_count)
    if settings.single_wallet_index is not None:
        indices = [settings.single_wallet_index]

    fleet: List[FleetWallet] = []
    for i in indices:
        account = _account_for(settings, i)
        if account is None:
            log.warning(dumps({"event": "wallet_key_missing", "index": i}))
            continue
        fleet.append(FleetWallet(
            index=i,
            address=account.address,
            trading_pool=pool_for_index(settings, i),
            account=account,
        ))
    log.info(dumps({"event": "fleet_loaded", "wallets": len(fleet)}))
    return fleet


async def register_fleet(ledger: "LedgerStore", fleet: List[FleetWallet]) -> None:
    """Upsert fleet wallets; `placed_initial_orders` survives restarts."""
    for wallet in fleet:
        await ledger.upsert_wallet(wallet.address, wallet.index, wallet.trading_pool)

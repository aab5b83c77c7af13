"""
Tests for Settings, per-pool overrides and fleet loading.
"""

import os

import pytest

from gridfleet.config.config import Settings
from gridfleet.config.pair_config import PairConfig, load_pair_overrides, resolve_pair_configs
from gridfleet.wallets import TEST_MNEMONIC, derivation_path, load_fleet


@pytest.fixture
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("GF_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestSettings:
    def test_defaults(self, clean_env):
        s = Settings.load()
        assert s.buy_offsets == [-1, -1.5, -2, -2.5, -3]
        assert s.sell_offsets == [1, 1.5, 2, 2.5, 3]
        assert s.min_order_usd == 6.0
        assert s.profit_margin_pct == 1.0
        assert s.rebalance_threshold_pct == 1.0
        assert s.rebalance_min_swap_usd == 5.0
        assert s.trading_pools == ["ETH/USDC"]
        assert s.daily_reset_hour == -1
        assert not s.reset_on_startup
        assert s.single_wallet_index is None
        assert not s.test_mode

    def test_env_overrides(self, clean_env):
        clean_env.setenv("GF_BUY_OFFSETS", "-0.5, -1")
        clean_env.setenv("GF_SELL_OFFSETS", "0.5,1")
        clean_env.setenv("GF_TRADING_POOLS", "ETH/USDC, WBTC/USDC")
        clean_env.setenv("GF_TEST_MODE", "true")
        clean_env.setenv("GF_DAILY_RESET_HOUR", "6")
        clean_env.setenv("GF_SINGLE_WALLET_INDEX", "3")
        clean_env.setenv("GF_LOG_LEVEL", "debug")

        s = Settings.load()

        assert s.buy_offsets == [-0.5, -1.0]
        assert s.trading_pools == ["ETH/USDC", "WBTC/USDC"]
        assert s.test_mode
        assert s.daily_reset_hour == 6
        assert s.single_wallet_index == 3
        assert s.log_level == "DEBUG"

    @pytest.mark.parametrize("key,value", [
        ("GF_BUY_OFFSETS", "-1,-2"),  # length mismatch with the default sells
        ("GF_BUY_OFFSETS", "1,-1.5,-2,-2.5,-3"),
        ("GF_SELL_OFFSETS", "0,1.5,2,2.5,3"),
        ("GF_MIN_ORDER_USD", "0"),
        ("GF_PROFIT_MARGIN_PCT", "100"),
        ("GF_REBALANCE_THRESHOLD_PCT", "50"),
        ("GF_GRID_ALLOCATION", "1.5"),
        ("GF_DAILY_RESET_HOUR", "24"),
    ])
    def test_invalid_values_rejected(self, clean_env, key, value):
        clean_env.setenv(key, value)
        with pytest.raises(ValueError):
            Settings.load()

    def test_dump_redacts_mnemonic(self, clean_env):
        clean_env.setenv("GF_MNEMONIC", TEST_MNEMONIC)
        assert Settings.load().dump()["mnemonic"] == "***"


class TestPairConfig:
    def test_overrides_from_yaml(self, clean_env, tmp_path):
        path = tmp_path / "pairs.yaml"
        path.write_text(
            "ETH/USDC:\n"
            "  profit_margin_pct: 1.5\n"
            "  buy_offsets: [-1, -2]\n"
            "  sell_offsets: [1, 2]\n"
            "  not_a_field: 3\n"
            "WBTC/USDC:\n"
            "  min_order_usd: 10\n"
        )
        overrides = load_pair_overrides(str(path))
        configs = resolve_pair_configs(Settings.load(), ["ETH/USDC", "WBTC/USDC", "ARB/USDC"], overrides)

        eth = configs["ETH/USDC"]
        assert eth.profit_margin_pct == 1.5
        assert eth.buy_offsets == (-1.0, -2.0)
        assert eth.ladder_len == 2
        assert configs["WBTC/USDC"].min_order_usd == 10.0
        assert configs["ARB/USDC"] == PairConfig.from_settings(Settings.load(), "ARB/USDC")

    def test_missing_or_invalid_file(self, tmp_path):
        assert load_pair_overrides(str(tmp_path / "absent.yaml")) == {}
        bad = tmp_path / "bad.yaml"
        bad.write_text("ETH/USDC: [unclosed\n")
        assert load_pair_overrides(str(bad)) == {}

    def test_ladder_len_uses_shorter_side(self):
        cfg = PairConfig(pool="ETH/USDC", buy_offsets=(-1.0, -2.0, -3.0), sell_offsets=(1.0, 2.0))
        assert cfg.ladder_len == 2


class TestFleet:
    def test_test_mode_derives_from_development_mnemonic(self, clean_env):
        clean_env.setenv("GF_TEST_MODE", "1")
        clean_env.setenv("GF_WALLET_COUNT", "3")
        clean_env.setenv("GF_TRADING_POOLS", "ETH/USDC,WBTC/USDC")

        fleet = load_fleet(Settings.load())

        assert [w.index for w in fleet] == [0, 1, 2]
        assert [w.trading_pool for w in fleet] == ["ETH/USDC", "WBTC/USDC", "ETH/USDC"]
        assert len({w.address for w in fleet}) == 3
        assert all(w.address.startswith("0x") and len(w.address) == 42 for w in fleet)
        assert fleet[0].signer is fleet[0].account

    def test_single_wallet_index(self, clean_env):
        clean_env.setenv("GF_TEST_MODE", "1")
        clean_env.setenv("GF_WALLET_COUNT", "5")
        clean_env.setenv("GF_SINGLE_WALLET_INDEX", "4")

        fleet = load_fleet(Settings.load())

        assert [w.index for w in fleet] == [4]

    def test_wallets_without_keys_are_skipped(self, clean_env):
        clean_env.setenv("GF_WALLET_COUNT", "2")
        clean_env.setenv("GF_WALLET_1", "0x" + "11" * 32)

        fleet = load_fleet(Settings.load())

        assert [w.index for w in fleet] == [1]

    def test_derivation_path(self):
        assert derivation_path(7) == "m/44'/60'/0'/0/7"

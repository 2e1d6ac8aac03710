"""
Test the config_loader module.
"""

import pytest

from keeper.engine.config_loader import load_keeper_config, resolve_path
from keeper.engine.exceptions import ConfigError
from keeper.engine.models import PriceBounds


def test_config_loaded_ok(config):
    assert config.CHAIN_NAME == "mezo-testnet"
    assert config.RPC_URL == "http://127.0.0.1:8545"
    assert config.KEEPER_MODES == ["liquidation"]
    assert config.SAVE_STATE_PATH.endswith("mezo-testnet_runs.jsonl")


def test_config_loader_validates(config):
    config.validate()


def test_defaults_from_yaml(config):
    assert config.MAX_TROVES_TO_SCAN_PER_RUN == 500
    assert config.MAX_TROVES_PER_JOB == 20
    assert config.EARLY_EXIT_SCAN_THRESHOLD == 50
    assert config.GAS_BUFFER_PCT == 20
    assert config.MAX_TX_RETRIES == 2
    assert config.MAX_PRICE_AGE_SECONDS == 0
    assert config.RECEIPT_TIMEOUT_SECONDS == 180


def test_zero_optional_guards_are_disabled(config):
    assert config.MAX_GAS_PER_JOB is None
    assert config.MAX_NATIVE_SPENT_PER_RUN is None
    assert config.MIN_BTC_PRICE is None
    assert config.MAX_FEE_PER_GAS is None
    assert config.price_bounds == PriceBounds()


def test_env_overrides_yaml(make_config):
    config = make_config(MAX_TROVES_PER_JOB=5, MAX_GAS_PER_JOB=3_000_000, MIN_BTC_PRICE=10, MAX_BTC_PRICE=20)
    assert config.MAX_TROVES_PER_JOB == 5
    assert config.MAX_GAS_PER_JOB == 3_000_000
    assert config.price_bounds == PriceBounds(min_price_e18=10, max_price_e18=20)


def test_max_gas_per_tx_alias(make_config):
    assert make_config(MAX_GAS_PER_TX=2_000_000).MAX_GAS_PER_JOB == 2_000_000


def test_addresses_are_checksummed(config):
    assert config.TROVE_PILOT_ENGINE_ADDRESS == "0x6666666666666666666666666666666666666666"
    assert config.SORTED_TROVES_ADDRESS.startswith("0x")


def test_fee_overrides(make_config):
    overrides = make_config(MAX_FEE_PER_GAS=5, MAX_PRIORITY_FEE_PER_GAS=1).fee_overrides
    assert overrides.max_fee_per_gas == 5
    assert overrides.max_priority_fee_per_gas == 1


def test_unknown_chain():
    with pytest.raises(ConfigError):
        load_keeper_config(1, env={})


@pytest.mark.parametrize(
    "overrides",
    [
        {"MEZO_RPC_URL": None},
        {"KEEPER_MODES": "liquidation,arbitrage"},
        {"TROVE_MANAGER_ADDRESS": "0x0000000000000000000000000000000000000000"},
        {"TROVE_PILOT_ENGINE_ADDRESS": "not-an-address"},
        {"MAX_TROVES_PER_JOB": 600},
        {"MAX_TROVES_TO_SCAN_PER_RUN": -1},
        {"GAS_BUFFER_PCT": 501},
        {"MIN_BTC_PRICE": 20, "MAX_BTC_PRICE": 10},
        {"MAX_NATIVE_SPENT_PER_RUN": -5},
        {"MAX_TX_RETRIES": "two"},
        {"UPPER_SEED": "0x123"},
        {"KEEPER_PRIVATE_KEY": None},
        {"KEEPER_PRIVATE_KEY": None, "UNLOCKED_RPC_URL": "http://127.0.0.1:8546"},
    ],
)
def test_invalid_config_rejected(make_config, overrides):
    with pytest.raises(ConfigError):
        make_config(**overrides)


def test_redemption_mode_requires_musd(make_config):
    with pytest.raises(ConfigError):
        make_config(KEEPER_MODES="liquidation,redemption", MUSD_ADDRESS=None)


def test_dry_run_without_signer(make_config):
    config = make_config(DRY_RUN="true", KEEPER_PRIVATE_KEY=None)
    assert config.DRY_RUN is True
    assert not config.has_signer


def test_unlocked_signer(make_config):
    config = make_config(
        KEEPER_PRIVATE_KEY=None,
        UNLOCKED_RPC_URL="http://127.0.0.1:8546",
        KEEPER_ADDRESS="0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266",
    )
    assert config.has_signer
    assert config.KEEPER_ADDRESS == "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def test_resolve_path_is_repo_relative():
    assert resolve_path("keeper/abis/ERC20.json").endswith("keeper/abis/ERC20.json")
    assert resolve_path("/tmp/x.json") == "/tmp/x.json"

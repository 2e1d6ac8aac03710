"""
Tests for the Flask app factory.
"""

from unittest.mock import MagicMock

import pytest

import keeper
from keeper import create_app
from keeper.engine import routes
from keeper.engine.exceptions import ConfigError

from conftest import TEST_CHAIN_ID


@pytest.fixture(autouse=True)
def reset_manager(monkeypatch):
    monkeypatch.setattr(routes, "_keeper_manager", None)


def test_invalid_config_stops_startup(monkeypatch):
    monkeypatch.setenv("KEEPER_CHAIN_IDS", "1")

    with pytest.raises(ConfigError, match="No configuration found for chain ID 1"):
        create_app()

    assert routes._keeper_manager is None


def test_missing_rpc_url_stops_startup(monkeypatch):
    monkeypatch.setenv("KEEPER_CHAIN_IDS", "31612")
    monkeypatch.delenv("MEZO_RPC_URL", raising=False)

    with pytest.raises(ConfigError, match="Missing RPC URL"):
        create_app()


def test_manager_built_before_thread_starts(monkeypatch, config):
    manager = MagicMock()
    manager.configs = {TEST_CHAIN_ID: config}
    manager.last_runs = {}
    manager_cls = MagicMock(return_value=manager)
    monkeypatch.setattr(keeper, "KeeperManager", manager_cls)
    monkeypatch.setenv("KEEPER_CHAIN_IDS", str(TEST_CHAIN_ID))

    app = create_app()

    manager_cls.assert_called_once_with([TEST_CHAIN_ID])
    assert routes._keeper_manager is manager
    assert app.test_client().get("/health").status_code == 200
    assert app.test_client().get(f"/keeper/lastRun?chainId={TEST_CHAIN_ID}").status_code == 404

"""
Tests for the /keeper API routes.
"""

import time
from unittest.mock import MagicMock

import pytest
from flask import Flask

from keeper.engine import routes
from keeper.engine.models import RunSummary
from keeper.engine.state import save_run_summary

from conftest import TEST_CHAIN_ID


@pytest.fixture()
def manager(monkeypatch, config):
    keeper_manager = MagicMock()
    keeper_manager.configs = {TEST_CHAIN_ID: config}
    keeper_manager.last_runs = {}
    monkeypatch.setattr(routes, "_keeper_manager", keeper_manager)
    return keeper_manager


@pytest.fixture()
def client():
    app = Flask(__name__)
    app.register_blueprint(routes.keeper, url_prefix="/keeper")
    return app.test_client()


def _summary(run_id):
    return RunSummary(run_id=run_id, chain_id=TEST_CHAIN_ID, network="mezo-testnet", started_at=time.time())


def test_last_run_in_memory(client, manager):
    manager.last_runs[TEST_CHAIN_ID] = _summary("live")

    response = client.get(f"/keeper/lastRun?chainId={TEST_CHAIN_ID}")

    assert response.status_code == 200
    assert response.get_json()["run_id"] == "live"


def test_last_run_from_snapshot(client, manager, config):
    save_run_summary(config.SAVE_STATE_PATH, _summary("saved"))

    response = client.get(f"/keeper/lastRun?chainId={TEST_CHAIN_ID}")

    assert response.status_code == 200
    assert response.get_json()["run_id"] == "saved"


def test_no_run_yet(client, manager):
    assert client.get(f"/keeper/lastRun?chainId={TEST_CHAIN_ID}").status_code == 404


def test_unknown_chain(client, manager):
    assert client.get("/keeper/lastRun?chainId=1").status_code == 500
